"""
Object store abstraction and its MinIO/S3 implementation.

The worker only needs a handful of operations: upload, download, stat,
list by prefix and a server-side copy that replaces the content type.
"""

import io
import logging
import posixpath
from abc import ABC, abstractmethod
from urllib.parse import urlsplit, urlunsplit

from minio import Minio
from minio.commonconfig import REPLACE, CopySource

from storehub_common.errors import ConfigError

logger = logging.getLogger(__name__)


def build_public_url(public_base: str, bucket: str, key: str) -> str:
    """
    Build the public URL of an object.

    The bucket segment appears exactly once whether or not any path segment
    of public_base is already the bucket name, e.g. both "http://cdn:9000"
    and "http://cdn:9000/bucket" give "http://cdn:9000/bucket/<key>", and
    "http://cdn/storage/bucket" gives "http://cdn/storage/bucket/<key>".
    """
    base = public_base.strip()
    if not base.startswith(("http://", "https://")):
        base = "http://" + base
    clean_key = key.lstrip("/")

    parts = urlsplit(base)
    base_path = parts.path.strip("/")

    segments = base_path.split("/") if base_path else []
    if bucket in segments:
        path = "/" + posixpath.join(base_path, clean_key)
    elif base_path:
        path = "/" + posixpath.join(base_path, bucket, clean_key)
    else:
        path = "/" + posixpath.join(bucket, clean_key)

    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


def parse_endpoint(raw_endpoint: str) -> tuple[str, bool]:
    """
    Split an S3 endpoint setting into (host[:port], secure).

    Accepts "host:port" or a URL without a path.

    Raises:
        ConfigError: If the URL carries a path
    """
    if "://" not in raw_endpoint:
        return raw_endpoint, False

    parts = urlsplit(raw_endpoint)
    if parts.path not in ("", "/"):
        raise ConfigError(f"S3_ENDPOINT must not include a path; got {raw_endpoint!r}")
    if not parts.netloc:
        raise ConfigError(f"Invalid S3_ENDPOINT: {raw_endpoint!r}")
    return parts.netloc, parts.scheme == "https"


class ObjectStore(ABC):
    """Storage port used by the artifact publisher."""

    @abstractmethod
    def put_file(self, key: str, local_path: str, content_type: str) -> None:
        """Upload a file from disk under key with an explicit content type."""

    @abstractmethod
    def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        """Upload an in-memory payload under key."""

    @abstractmethod
    def get_bytes(self, key: str) -> bytes:
        """Download an object's content."""

    @abstractmethod
    def stat_content_type(self, key: str) -> str:
        """Return the content type the store currently serves for key."""

    @abstractmethod
    def copy_with_content_type(self, key: str, content_type: str) -> None:
        """Server-side copy of key onto itself, replacing its content type."""

    @abstractmethod
    def list_keys(self, prefix: str) -> list[str]:
        """List every key under prefix, recursively."""

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Return the URL the object is publicly served from."""


class MinioObjectStore(ObjectStore):
    """
    ObjectStore backed by any S3-compatible server via the MinIO SDK.

    The bucket and its public-read policy are provisioned outside the worker.
    """

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        bucket: str,
        public_base_url: str,
        secure: bool = False,
    ):
        """
        Initialize the store.

        Args:
            endpoint: host[:port] of the S3 API
            access_key: Access key ID
            secret_key: Secret access key
            bucket: Bucket all keys live in
            public_base_url: Base URL objects are publicly served from
            secure: Use HTTPS for the API
        """
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")
        self.client = Minio(
            endpoint, access_key=access_key, secret_key=secret_key, secure=secure
        )

    def put_file(self, key: str, local_path: str, content_type: str) -> None:
        self.client.fput_object(
            bucket_name=self.bucket,
            object_name=key,
            file_path=local_path,
            content_type=content_type,
        )

    def put_bytes(self, key: str, data: bytes, content_type: str) -> None:
        self.client.put_object(
            bucket_name=self.bucket,
            object_name=key,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )

    def get_bytes(self, key: str) -> bytes:
        response = self.client.get_object(bucket_name=self.bucket, object_name=key)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    def stat_content_type(self, key: str) -> str:
        stat = self.client.stat_object(bucket_name=self.bucket, object_name=key)
        return stat.content_type or ""

    def copy_with_content_type(self, key: str, content_type: str) -> None:
        stat = self.client.stat_object(bucket_name=self.bucket, object_name=key)

        # Carry user metadata over; system headers are replaced
        metadata: dict[str, str] = {}
        for name, value in (stat.metadata or {}).items():
            if name.lower().startswith("x-amz-meta-"):
                metadata[name] = value
        metadata["Content-Type"] = content_type

        self.client.copy_object(
            bucket_name=self.bucket,
            object_name=key,
            source=CopySource(self.bucket, key),
            metadata=metadata,
            metadata_directive=REPLACE,
        )

    def list_keys(self, prefix: str) -> list[str]:
        return [
            obj.object_name
            for obj in self.client.list_objects(
                bucket_name=self.bucket, prefix=prefix, recursive=True
            )
        ]

    def public_url(self, key: str) -> str:
        return build_public_url(self.public_base_url, self.bucket, key)
