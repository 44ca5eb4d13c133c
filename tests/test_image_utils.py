"""Tests for image_utils.py utility functions."""

import pytest
from hypothesis import given, strategies as st
from PIL import Image

from image_toolkit.core.image_utils import (
    compute_target_size,
    content_type_for,
    describe_mode,
    has_alpha,
    output_extension,
    png_compress_level,
)
from image_toolkit.core.models import ProcessingSettings


class TestComputeTargetSize:
    """Tests for the resize policy."""

    def test_no_dimensions_means_no_resize(self):
        assert compute_target_size((400, 300), ProcessingSettings()) is None

    def test_fit_inside_width_only(self):
        """Test that a width-only box keeps the aspect ratio."""
        settings = ProcessingSettings(width=800)
        assert compute_target_size((4000, 3000), settings) == (800, 600)

    def test_fit_inside_box_uses_limiting_side(self):
        settings = ProcessingSettings(width=800, height=800)
        assert compute_target_size((4000, 2000), settings) == (800, 400)
        assert compute_target_size((1000, 2000), settings) == (400, 800)

    def test_never_upscales_with_aspect_ratio(self):
        """Test that a source smaller than the box is left as is."""
        settings = ProcessingSettings(width=800, height=800)
        assert compute_target_size((200, 100), settings) is None

    def test_stretch_to_exact_box(self):
        settings = ProcessingSettings(width=300, height=300, maintain_aspect_ratio=False)
        assert compute_target_size((400, 200), settings) == (300, 300)

    def test_stretch_may_upscale(self):
        settings = ProcessingSettings(width=800, height=600, maintain_aspect_ratio=False)
        assert compute_target_size((200, 100), settings) == (800, 600)

    def test_stretch_derives_missing_side(self):
        settings = ProcessingSettings(height=150, maintain_aspect_ratio=False)
        assert compute_target_size((400, 300), settings) == (200, 150)

    def test_target_equal_to_source_is_no_resize(self):
        settings = ProcessingSettings(width=400, height=300, maintain_aspect_ratio=False)
        assert compute_target_size((400, 300), settings) is None

    def test_tiny_result_is_at_least_one_pixel(self):
        settings = ProcessingSettings(width=1)
        assert compute_target_size((1000, 10), settings) == (1, 1)

    @given(
        src_w=st.integers(min_value=1, max_value=5000),
        src_h=st.integers(min_value=1, max_value=5000),
        box_w=st.one_of(st.none(), st.integers(min_value=1, max_value=5000)),
        box_h=st.one_of(st.none(), st.integers(min_value=1, max_value=5000)),
    )
    def test_aspect_ratio_mode_never_enlarges(self, src_w, src_h, box_w, box_h):
        """With the aspect ratio kept, output fits the source and the box."""
        settings = ProcessingSettings(width=box_w, height=box_h)
        target = compute_target_size((src_w, src_h), settings) or (src_w, src_h)
        assert target[0] <= src_w and target[1] <= src_h
        if box_w:
            assert target[0] <= box_w
        if box_h:
            assert target[1] <= box_h


class TestFormatHelpers:
    @pytest.mark.parametrize(
        "fmt,ext", [("jpeg", "jpg"), ("png", "png"), ("webp", "webp"), ("avif", "avif")]
    )
    def test_output_extension(self, fmt, ext):
        assert output_extension(fmt) == ext

    def test_content_type(self):
        assert content_type_for("webp") == "image/webp"
        assert content_type_for("jpeg") == "image/jpeg"
        assert content_type_for("mystery") == "application/octet-stream"

    @pytest.mark.parametrize("quality,level", [(100, 0), (1, 9), (80, 2), (50, 5), (12, 8)])
    def test_png_compress_level(self, quality, level):
        assert png_compress_level(quality) == level

    @given(st.integers(min_value=1, max_value=100))
    def test_png_compress_level_in_range(self, quality):
        assert 0 <= png_compress_level(quality) <= 9


class TestDescribeMode:
    """Tests for color description of decoded images."""

    def test_rgb(self):
        assert describe_mode(Image.new("RGB", (2, 2))) == (3, "srgb", False)

    def test_rgba(self):
        assert describe_mode(Image.new("RGBA", (2, 2))) == (4, "srgb", True)

    def test_greyscale(self):
        assert describe_mode(Image.new("L", (2, 2))) == (1, "b-w", False)

    def test_palette_with_transparency(self):
        image = Image.new("P", (2, 2))
        image.info["transparency"] = 0
        assert has_alpha(image)
        assert describe_mode(image) == (4, "srgb", True)

    def test_cmyk(self):
        assert describe_mode(Image.new("CMYK", (2, 2))) == (4, "cmyk", False)
