"""
Test Configuration
==================

Pytest fixtures shared across the media service tests.
"""

import io
import os

import pytest
from PIL import Image

from media_service.config import Settings
from media_service.errors import SinkError
from media_service.storage import StorageSink, StoredObject


def _encode(image, fmt):
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def make_image():
    """Factory producing encoded images of a given size/format/mode."""

    def _make(size=(64, 48), fmt="PNG", mode="RGB", color="red"):
        return _encode(Image.new(mode, size, color), fmt)

    return _make


@pytest.fixture
def png_bytes(make_image):
    return make_image()


@pytest.fixture
def corrupt_png_bytes():
    """A PNG whose header parses but whose pixel data is cut off halfway."""
    size = (96, 96)
    noise = Image.frombytes("RGB", size, os.urandom(size[0] * size[1] * 3))
    data = _encode(noise, "PNG")
    return data[: len(data) // 2]


@pytest.fixture
def local_settings(tmp_path):
    return Settings(
        _env_file=None,
        storage_backend="local",
        storage_root_folder="media",
        local_storage_dir=tmp_path / "store",
        local_public_base_url="https://cdn.test/",
        upload_timeout_seconds=5,
        upload_retry_base_delay_seconds=0,
        smtp_username=None,
        smtp_password=None,
    )


class RecordingSink(StorageSink):
    """In-memory sink that can be primed with failures."""

    def __init__(self, failures=None):
        self.failures = list(failures or [])
        self.objects = {}
        self.calls = 0
        self.deleted = []

    def put_object(self, data, destination):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        public_id = destination.full_public_id
        self.objects[public_id] = data
        return StoredObject(
            secure_url=f"https://cdn.test/{public_id}.{destination.format}",
            public_id=public_id,
            bytes=len(data),
            width=10,
            height=10,
            format=destination.format,
        )

    def delete_object(self, public_id, fmt="webp"):
        if public_id not in self.objects:
            raise SinkError(f"missing {public_id}", transient=False)
        del self.objects[public_id]
        self.deleted.append(public_id)
        return True


@pytest.fixture
def recording_sink():
    return RecordingSink()
