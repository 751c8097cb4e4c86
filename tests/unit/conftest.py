"""Shared fixtures for unit tests."""

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

import pytest
import pytest_asyncio

from storehub_persistence.sqlite_repository import SQLiteJobRepository
from storehub_storage.object_store import ObjectStore, build_public_url


@dataclass
class StoredObject:
    data: bytes
    content_type: str


class FakeObjectStore(ObjectStore):
    """
    In-memory ObjectStore.

    ignore_upload_content_type mimics backends that drop the content type
    sent with file uploads; fail_copy forces the download/re-upload path.
    """

    def __init__(
        self,
        bucket: str = "bucket",
        public_base_url: str = "http://cdn.local:9000",
        ignore_upload_content_type: bool = False,
        fail_copy: bool = False,
    ):
        self.bucket = bucket
        self.public_base_url = public_base_url
        self.ignore_upload_content_type = ignore_upload_content_type
        self.fail_copy = fail_copy
        self.objects: dict[str, StoredObject] = {}
        self.writes: list[str] = []

    def put_file(self, key: str, local_path: str, content_type: str) -> None:
        data = Path(local_path).read_bytes()
        if self.ignore_upload_content_type:
            content_type = "binary/octet-stream"
        self.objects[key] = StoredObject(data, content_type)
        self.writes.append(key)

    def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        self.objects[key] = StoredObject(bytes(data), content_type)
        self.writes.append(key)

    def get_bytes(self, key: str) -> bytes:
        return self.objects[key].data

    def stat_content_type(self, key: str) -> str:
        return self.objects[key].content_type

    def copy_with_content_type(self, key: str, content_type: str) -> None:
        if self.fail_copy:
            raise RuntimeError("copy not supported")
        self.objects[key].content_type = content_type
        self.writes.append(key)

    def list_keys(self, prefix: str) -> list[str]:
        return sorted(k for k in self.objects if k.startswith(prefix))

    def public_url(self, key: str) -> str:
        return build_public_url(self.public_base_url, self.bucket, key)


@pytest.fixture
def fake_store():
    """Create an empty in-memory object store."""
    return FakeObjectStore()


@pytest.fixture
def db_path():
    """Create a temporary database file path."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    yield path

    if os.path.exists(path):
        os.unlink(path)


@pytest_asyncio.fixture
async def temp_db(db_path):
    """Create an initialized repository on a temporary database."""
    repo = SQLiteJobRepository(db_path)
    await repo.initialize()

    yield repo

    await repo.close()


def _write_files(root: Path, files: dict[str, str | bytes]) -> Path:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def write_files():
    """Return a helper creating files under a root from {relative path: content}."""
    return _write_files
