"""Testing utilities and fakes for the image toolkit."""

from .fakes import (
    FailingCodec,
    FakeLogger,
    InMemoryStorage,
    StoredBlob,
    UploadSpec,
    create_corrupt_image,
    create_test_image,
)

__all__ = [
    "FailingCodec",
    "FakeLogger",
    "InMemoryStorage",
    "StoredBlob",
    "UploadSpec",
    "create_corrupt_image",
    "create_test_image",
]
