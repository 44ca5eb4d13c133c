"""Unit tests for streaming delivery."""

import asyncio
import contextlib
import io
import json
import zipfile

import pytest
from hypothesis import given, strategies as st

from image_toolkit.core.delivery import (
    ARCHIVE_NAME,
    CHUNK_SIZE,
    DeliveryStreamer,
    ReleaseOnce,
    compression_ratio,
    content_disposition,
    output_name,
    unique_names,
)
from image_toolkit.core.exceptions import NotFoundError
from image_toolkit.core.models import (
    Dimensions,
    ProcessingFailure,
    ProcessingSuccess,
    StorageArea,
    TranscodeResult,
)
from image_toolkit.testing import FakeLogger, InMemoryStorage


def consume(response):
    """Drain a StreamingResponse body."""

    async def drain():
        return b"".join([chunk async for chunk in response.body_iterator])

    return asyncio.run(drain())


def abandon_after_first_chunk(response):
    """Read one chunk, then drop the body the way a disconnecting client does."""

    async def read_one():
        first = await response.body_iterator.__anext__()
        await response.body_iterator.aclose()
        return first

    return asyncio.run(read_one())


def send_until_disconnect(response):
    """Run the response as an ASGI app whose client vanishes after the first body chunk."""
    sent = []

    async def receive():
        await asyncio.sleep(3600)
        return {"type": "http.disconnect"}

    async def send(message):
        sent.append(message)
        if message["type"] == "http.response.body" and message.get("more_body"):
            raise OSError("connection reset by peer")

    scope = {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.4"},
        "http_version": "1.1",
        "method": "POST",
        "path": "/images/process",
        "headers": [],
    }
    # Depending on the server version the disconnect surfaces as an error or a short send
    with contextlib.suppress(Exception):
        asyncio.run(response(scope, receive, send))
    return sent


def success(storage, name, data, fmt="webp", original_size=1000):
    key = storage.put(StorageArea.PROCESSED, data, "jpg" if fmt == "jpeg" else fmt)
    return ProcessingSuccess(
        result=TranscodeResult(
            output_key=key,
            output_format=fmt,
            output_dimensions=Dimensions(width=80, height=60),
            output_size=len(data),
            source_format="jpeg",
            source_dimensions=Dimensions(width=400, height=300),
        ),
        original_name=name,
        original_size=original_size,
    )


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def streamer(storage):
    return DeliveryStreamer(storage, FakeLogger())


class TestHelpers:
    @pytest.mark.parametrize(
        "original,processed,expected",
        [(1000, 250, 75.0), (1000, 1000, 0.0), (1000, 1500, -50.0), (3, 1, 66.7), (0, 10, 0.0)],
    )
    def test_compression_ratio(self, original, processed, expected):
        assert compression_ratio(original, processed) == expected

    def test_compression_ratio_has_no_negative_zero(self):
        """Outputs a few bytes larger than the source report 0.0, not -0.0."""
        assert str(compression_ratio(100000, 100004)) == "0.0"

    @given(
        original=st.integers(min_value=1, max_value=10**9),
        processed=st.integers(min_value=0, max_value=10**9),
    )
    def test_compression_ratio_bounds(self, original, processed):
        """Savings never exceed 100% and are negative only when the output grew."""
        ratio = compression_ratio(original, processed)
        assert ratio <= 100.0
        if processed <= original:
            assert ratio >= 0.0
        assert ratio == round(ratio, 1)

    @pytest.mark.parametrize(
        "original,fmt,expected",
        [
            ("photo.jpg", "webp", "photo.webp"),
            ("photo.png", "jpeg", "photo.jpg"),
            ("archive.tar.gz", "png", "archive.tar.png"),
            ("dir/noext", "avif", "noext.avif"),
            ("", "png", "image.png"),
        ],
    )
    def test_output_name(self, original, fmt, expected):
        assert output_name(original, fmt) == expected

    def test_unique_names(self):
        assert unique_names(["a.jpg", "b.jpg", "a.jpg", "a.jpg", "a (1).jpg"]) == [
            "a.jpg",
            "b.jpg",
            "a (1).jpg",
            "a (2).jpg",
            "a (1) (1).jpg",
        ]

    def test_content_disposition_non_ascii(self):
        header = content_disposition("café.png")
        assert header.startswith('attachment; filename="caf.png"')
        assert "filename*=UTF-8''caf%C3%A9.png" in header


class TestReleaseOnce:
    def test_runs_callback_once(self):
        calls = []
        release = ReleaseOnce(lambda: calls.append(1))
        release()
        release()
        assert calls == [1]
        assert release.done


class TestSingleFileResponse:
    """Tests for single-stream delivery."""

    def test_headers_and_body(self, streamer, storage):
        data = b"processed-bytes" * 10
        item = success(storage, "My Photo.jpg", data, original_size=600)
        response = streamer.single_file_response(item)

        assert response.media_type == "image/webp"
        headers = response.headers
        assert headers["x-original-name"] == "My%20Photo.jpg"
        assert headers["x-original-size"] == "600"
        assert headers["x-processed-size"] == str(len(data))
        assert headers["x-original-width"] == "400"
        assert headers["x-original-height"] == "300"
        assert headers["x-processed-width"] == "80"
        assert headers["x-processed-height"] == "60"
        assert headers["x-compression-ratio"] == "75.0"
        assert headers["x-output-format"] == "webp"
        assert headers["content-length"] == str(len(data))
        assert 'filename="My Photo.webp"' in headers["content-disposition"]
        assert "x-processing-errors" not in headers

        assert consume(response) == data

    def test_release_runs_once_after_stream(self, streamer, storage):
        item = success(storage, "a.jpg", b"x" * 100)
        calls = []

        def release():
            calls.append(1)
            storage.delete(StorageArea.PROCESSED, item.result.output_key)

        consume(streamer.single_file_response(item, release=release))

        assert calls == [1]
        assert storage.keys(StorageArea.PROCESSED) == []

    def test_failures_reported_in_header(self, streamer, storage):
        item = success(storage, "good.jpg", b"x")
        failed = [ProcessingFailure(original_name="bad.jpg", error="Unsupported or corrupt image data.")]
        response = streamer.single_file_response(item, failed)
        assert json.loads(response.headers["x-processing-errors"]) == [
            {"file": "bad.jpg", "error": "Unsupported or corrupt image data."}
        ]

    def test_slightly_larger_output_ratio_header(self, streamer, storage):
        item = success(storage, "a.jpg", b"x" * 100004, original_size=100000)
        response = streamer.single_file_response(item)
        assert response.headers["x-compression-ratio"] == "0.0"

    def test_release_runs_when_body_abandoned(self, streamer, storage):
        item = success(storage, "big.jpg", b"x" * (3 * CHUNK_SIZE))
        calls = []

        def release():
            calls.append(1)
            storage.delete(StorageArea.PROCESSED, item.result.output_key)

        response = streamer.single_file_response(item, release=release)
        assert len(abandon_after_first_chunk(response)) == CHUNK_SIZE

        assert calls == [1]
        assert storage.keys(StorageArea.PROCESSED) == []

    def test_release_runs_when_client_disconnects(self, streamer, storage):
        item = success(storage, "big.jpg", b"x" * (3 * CHUNK_SIZE))
        calls = []

        def release():
            calls.append(1)
            storage.delete(StorageArea.PROCESSED, item.result.output_key)

        sent = send_until_disconnect(streamer.single_file_response(item, release=release))

        assert [m["type"] for m in sent] == ["http.response.start", "http.response.body"]
        assert calls == [1]
        assert storage.keys(StorageArea.PROCESSED) == []


class TestArchiveResponse:
    """Tests for ZIP delivery."""

    def test_entries_follow_outcome_order(self, streamer, storage):
        outcomes = [
            success(storage, "b.jpg", b"second-ish"),
            ProcessingFailure(original_name="broken.jpg", error="bad"),
            success(storage, "a.jpg", b"first-ish"),
            success(storage, "b.png", b"duplicate name"),
        ]
        response = streamer.archive_response(outcomes)

        assert response.media_type == "application/zip"
        assert response.headers["x-processed-count"] == "3"
        assert response.headers["x-failed-count"] == "1"
        assert f'filename="{ARCHIVE_NAME}"' in response.headers["content-disposition"]
        assert json.loads(response.headers["x-processing-errors"]) == [
            {"file": "broken.jpg", "error": "bad"}
        ]

        archive = zipfile.ZipFile(io.BytesIO(consume(response)))
        assert archive.namelist() == ["b.webp", "a.webp", "b (1).webp"]
        assert archive.read("b.webp") == b"second-ish"
        assert archive.read("b (1).webp") == b"duplicate name"
        assert archive.testzip() is None
        for info in archive.infolist():
            assert info.compress_type == zipfile.ZIP_DEFLATED
            assert info.date_time == (1980, 1, 1, 0, 0, 0)

    def test_archive_is_deterministic(self, streamer, storage):
        outcomes = [success(storage, "a.jpg", b"A" * 5000), success(storage, "b.jpg", b"B" * 7000)]
        first = consume(streamer.archive_response(outcomes))
        second = consume(streamer.archive_response(outcomes))
        assert first == second

    def test_large_entry_streams_in_chunks(self, streamer, storage):
        payload = bytes(range(256)) * 2048
        outcomes = [success(storage, "big.jpg", payload), success(storage, "small.jpg", b"s")]
        response = streamer.archive_response(outcomes)

        async def chunks():
            return [chunk async for chunk in response.body_iterator]

        parts = asyncio.run(chunks())
        assert len(parts) > 1
        archive = zipfile.ZipFile(io.BytesIO(b"".join(parts)))
        assert archive.read("big.webp") == payload

    def test_release_after_archive(self, streamer, storage):
        outcomes = [success(storage, "a.jpg", b"a"), success(storage, "b.jpg", b"b")]
        calls = []
        consume(streamer.archive_response(outcomes, release=lambda: calls.append(1)))
        assert calls == [1]

    def _releasing(self, storage, outcomes, calls):
        def release():
            calls.append(1)
            for outcome in outcomes:
                storage.delete(StorageArea.PROCESSED, outcome.result.output_key)

        return release

    def test_release_runs_when_archive_abandoned(self, streamer, storage):
        outcomes = [
            success(storage, "big.jpg", bytes(range(256)) * 2048),
            success(storage, "small.jpg", b"s"),
        ]
        calls = []
        response = streamer.archive_response(outcomes, release=self._releasing(storage, outcomes, calls))

        assert abandon_after_first_chunk(response)
        assert calls == [1]
        assert storage.keys(StorageArea.PROCESSED) == []

    def test_release_runs_when_archive_client_disconnects(self, streamer, storage):
        outcomes = [
            success(storage, "big.jpg", bytes(range(256)) * 2048),
            success(storage, "small.jpg", b"s"),
        ]
        calls = []
        response = streamer.archive_response(outcomes, release=self._releasing(storage, outcomes, calls))

        send_until_disconnect(response)

        assert calls == [1]
        assert storage.keys(StorageArea.PROCESSED) == []

    def test_missing_entry_aborts_and_releases(self, streamer, storage):
        outcomes = [success(storage, "a.jpg", b"a"), success(storage, "b.jpg", b"b")]
        storage.delete(StorageArea.PROCESSED, outcomes[1].result.output_key)
        calls = []
        response = streamer.archive_response(outcomes, release=lambda: calls.append(1))
        with pytest.raises(NotFoundError):
            consume(response)
        assert calls == [1]


class TestResidentFiles:
    """Tests for re-bundling and serving resident outputs."""

    def test_bundle_skips_missing_and_unsafe_names(self, streamer, storage):
        storage.add(StorageArea.PROCESSED, "one.webp", b"1")
        storage.add(StorageArea.PROCESSED, "two.png", b"2")
        response = streamer.bundle_response(
            ["one.webp", "missing.jpg", "../../two.png", "one.webp", ".."]
        )
        archive = zipfile.ZipFile(io.BytesIO(consume(response)))
        assert archive.namelist() == ["one.webp", "two.png"]
        # Resident files stay for the sweep
        assert storage.keys(StorageArea.PROCESSED) == ["one.webp", "two.png"]

    def test_bundle_nothing_found(self, streamer):
        with pytest.raises(NotFoundError, match="No valid files found."):
            streamer.bundle_response(["missing.jpg"])

    def test_resident_file(self, streamer, storage):
        storage.add(StorageArea.PROCESSED, "out.jpg", b"jpeg-bytes")
        response = streamer.resident_file_response("out.jpg")
        assert response.media_type == "image/jpeg"
        assert response.headers["content-length"] == "10"
        assert consume(response) == b"jpeg-bytes"
        assert storage.exists(StorageArea.PROCESSED, "out.jpg")

    def test_resident_file_missing(self, streamer):
        with pytest.raises(NotFoundError):
            streamer.resident_file_response("../uploads/x.jpg")


class TestSummary:
    def test_summary_shape(self, streamer, storage):
        item = success(storage, "a.jpg", b"x" * 250, original_size=1000)
        outcomes = [item, ProcessingFailure(original_name="b.jpg", error="bad")]
        summary = streamer.summary(outcomes)

        assert summary["success"] is True
        assert summary["total"] == 2
        assert summary["succeeded"] == 1
        assert summary["failed"] == 1
        assert summary["errors"] == [{"file": "b.jpg", "error": "bad"}]
        processed = summary["processed"][0]
        assert processed["originalName"] == "a.jpg"
        assert processed["processedName"] == item.result.output_key
        assert processed["downloadUrl"] == f"/images/processed/{item.result.output_key}"
        assert processed["compressionRatio"] == 75.0
        assert processed["processedDimensions"] == {"width": 80, "height": 60}
