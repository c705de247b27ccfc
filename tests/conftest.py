import os

import pytest

from image_store.core import logging_config
from image_store.core.logging_config import set_log_level
from image_store.core.models import ENV_PREFIX


@pytest.fixture(autouse=True)
def clean_image_store_env(monkeypatch):
    """Keep IMAGE_STORE_* variables of the calling shell out of every test."""
    for name in list(os.environ):
        if name.upper().startswith(ENV_PREFIX):
            monkeypatch.delenv(name)


@pytest.fixture(autouse=True)
def restore_log_level(monkeypatch):
    """Undo set_log_level calls, such as the one made by --debug."""
    monkeypatch.setattr(logging_config, "_namespace_level", None)
    yield
    if logging_config._namespace_level is not None:
        set_log_level("INFO")
