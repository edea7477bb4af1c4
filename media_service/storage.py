"""
Storage sinks: durably persist encoded bytes and hand back a locator.

`StorageSink` is the capability set the upload orchestrator depends on. Any
implementation (R2/S3, local disk, ...) can be swapped in without touching the
retry layer. Sinks report failures as `SinkError` (with a `transient` flag) or
`SinkTimeoutError` so callers never need to know about boto/botocore.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from io import BytesIO
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urljoin

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)
from PIL import Image

from .config import Settings
from .errors import ConfigurationError, SinkError, SinkTimeoutError

logger = logging.getLogger(__name__)

CONTENT_TYPES = {"webp": "image/webp", "png": "image/png", "jpeg": "image/jpeg", "jpg": "image/jpeg"}
TRANSIENT_ERROR_CODES = {
    "InternalError",
    "ServiceUnavailable",
    "SlowDown",
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "Throttling",
    "ThrottlingException",
}
PRESIGNED_URL_TTL_SECONDS = 3600


@dataclass(frozen=True)
class UploadDestination:
    folder: str
    public_id: str
    format: str = "webp"
    overwrite: bool = False

    @property
    def full_public_id(self) -> str:
        folder = self.folder.strip("/")
        return f"{folder}/{self.public_id}" if folder else self.public_id


@dataclass
class StoredObject:
    secure_url: str
    public_id: str
    bytes: int
    width: int
    height: int
    format: str


def object_key(public_id: str, fmt: str = "webp") -> str:
    return f"{public_id}.{fmt}"


def _probe_dimensions(data: bytes) -> tuple:
    try:
        with Image.open(BytesIO(data)) as image:
            return image.size
    except Exception:  # noqa: BLE001
        return 0, 0


class StorageSink(ABC):
    """Persist bytes under a public id and delete them again on request."""

    @abstractmethod
    def put_object(self, data: bytes, destination: UploadDestination) -> StoredObject:
        ...

    @abstractmethod
    def delete_object(self, public_id: str, fmt: str = "webp") -> bool:
        ...


class R2StorageSink(StorageSink):
    """Cloudflare R2 (or any S3-compatible store) via boto3."""

    def __init__(
        self,
        endpoint: str,
        access_key_id: str,
        secret_access_key: str,
        bucket: str,
        public_base_url: Optional[str] = None,
        timeout_seconds: float = 45.0,
        client=None,
    ) -> None:
        self.bucket = bucket
        self.public_base_url = public_base_url
        if client is None:
            session = boto3.session.Session()
            client = session.client(
                service_name="s3",
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                endpoint_url=endpoint,
                config=BotoConfig(
                    signature_version="s3v4",
                    connect_timeout=timeout_seconds,
                    read_timeout=timeout_seconds,
                    # The upload orchestrator owns retries.
                    retries={"total_max_attempts": 1},
                ),
            )
        self._client = client

    def _build_public_url(self, key: str) -> str:
        if self.public_base_url:
            return urljoin(self.public_base_url.rstrip("/") + "/", key)
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=PRESIGNED_URL_TTL_SECONDS,
        )

    def _translate(self, exc: Exception, action: str, key: str) -> SinkError:
        if isinstance(exc, (ReadTimeoutError, ConnectTimeoutError)):
            return SinkTimeoutError(f"R2 {action} timed out for {key}: {exc}")
        if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
            raise ConfigurationError(f"R2 credentials are missing or incomplete: {exc}") from exc
        if isinstance(exc, (EndpointConnectionError, ConnectionClosedError)):
            return SinkError(f"R2 {action} connection failed for {key}: {exc}", transient=True)
        if isinstance(exc, ClientError):
            error = exc.response.get("Error", {})
            code = error.get("Code", "")
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
            transient = status >= 500 or code in TRANSIENT_ERROR_CODES
            return SinkError(f"R2 {action} failed for {key} ({code or status}): {exc}", transient=transient)
        if isinstance(exc, BotoCoreError):
            return SinkError(f"R2 {action} failed for {key}: {exc}", transient=True)
        return SinkError(f"R2 {action} failed for {key}: {exc}", transient=False)

    def _existing_object(self, key: str, public_id: str, fmt: str) -> Optional[StoredObject]:
        try:
            head = self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            code = exc.response.get("Error", {}).get("Code")
            if status == 404 or code in ("404", "NoSuchKey", "NotFound"):
                return None
            raise self._translate(exc, "head", key) from exc
        except Exception as exc:  # noqa: BLE001
            raise self._translate(exc, "head", key) from exc

        metadata = head.get("Metadata", {})
        return StoredObject(
            secure_url=self._build_public_url(key),
            public_id=public_id,
            bytes=int(head.get("ContentLength", 0)),
            width=int(metadata.get("width", 0)),
            height=int(metadata.get("height", 0)),
            format=fmt,
        )

    def put_object(self, data: bytes, destination: UploadDestination) -> StoredObject:
        public_id = destination.full_public_id
        key = object_key(public_id, destination.format)

        if not destination.overwrite:
            existing = self._existing_object(key, public_id, destination.format)
            if existing is not None:
                logger.info("R2 object %s already exists; overwrite disabled", key)
                return existing

        width, height = _probe_dimensions(data)
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=CONTENT_TYPES.get(destination.format, "application/octet-stream"),
                Metadata={"width": str(width), "height": str(height)},
            )
            url = self._build_public_url(key)
        except Exception as exc:  # noqa: BLE001
            raise self._translate(exc, "upload", key) from exc

        logger.debug("Uploaded %s to R2 bucket %s (%d bytes)", key, self.bucket, len(data))
        return StoredObject(
            secure_url=url,
            public_id=public_id,
            bytes=len(data),
            width=width,
            height=height,
            format=destination.format,
        )

    def delete_object(self, public_id: str, fmt: str = "webp") -> bool:
        key = object_key(public_id, fmt)
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except Exception as exc:  # noqa: BLE001
            raise self._translate(exc, "delete", key) from exc
        logger.info("Deleted %s from R2 bucket %s", key, self.bucket)
        return True


class LocalDiskSink(StorageSink):
    """Stores objects under a local directory; handy for development and tests."""

    def __init__(self, root: Path, public_base_url: Optional[str] = None) -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise SinkError(f"Refusing to write outside storage root: {key}")
        return path

    def _locator(self, key: str, path: Path) -> str:
        if self.public_base_url:
            return urljoin(self.public_base_url.rstrip("/") + "/", key)
        return path.as_uri()

    def put_object(self, data: bytes, destination: UploadDestination) -> StoredObject:
        public_id = destination.full_public_id
        key = object_key(public_id, destination.format)
        path = self._path_for(key)

        if path.exists() and not destination.overwrite:
            logger.info("Local object %s already exists; overwrite disabled", key)
            data = path.read_bytes()
        else:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(data)
            except OSError as exc:
                raise SinkError(f"Local write failed for {key}: {exc}", transient=False) from exc

        width, height = _probe_dimensions(data)
        return StoredObject(
            secure_url=self._locator(key, path),
            public_id=public_id,
            bytes=len(data),
            width=width,
            height=height,
            format=destination.format,
        )

    def delete_object(self, public_id: str, fmt: str = "webp") -> bool:
        path = self._path_for(object_key(public_id, fmt))
        if not path.exists():
            return False
        path.unlink()
        logger.info("Deleted local object %s", path)
        return True


def build_storage_sink(settings: Settings, timeout_seconds: Optional[float] = None) -> StorageSink:
    """
    Construct the sink selected by `settings.storage_backend`.

    Raises:
        ConfigurationError: when the selected backend is not fully configured.
    """
    backend = settings.storage_backend
    if backend == "local":
        return LocalDiskSink(settings.local_storage_dir, settings.local_public_base_url)
    if backend == "r2":
        required = [
            settings.r2_endpoint,
            settings.r2_access_key_id,
            settings.r2_secret_access_key,
            settings.r2_bucket_name,
        ]
        if any(not v for v in required):
            raise ConfigurationError("R2 configuration is incomplete; check env vars.")
        return R2StorageSink(
            endpoint=settings.r2_endpoint,
            access_key_id=settings.r2_access_key_id,
            secret_access_key=settings.r2_secret_access_key,
            bucket=settings.r2_bucket_name,
            public_base_url=settings.r2_public_base_url,
            timeout_seconds=timeout_seconds or settings.upload_timeout_seconds,
        )
    raise ConfigurationError(f"Unknown storage backend: {backend}")
