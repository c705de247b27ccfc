"""Testing utilities and fakes for the image store."""

from .fakes import (
    FakeLogger,
    InMemoryStorage,
    create_test_image,
    make_uploads,
    write_test_image,
)

__all__ = [
    "FakeLogger",
    "InMemoryStorage",
    "create_test_image",
    "make_uploads",
    "write_test_image",
]
