"""S3-compatible storage backend for union-store."""

from __future__ import annotations

import io
import logging
import posixpath
import time
from pathlib import Path
from typing import Any, BinaryIO, Callable, List, Optional, TypeVar, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from unionstore.backends.base import FileStat, StorageBackend, http_range
from unionstore.config import S3Config, load_config
from unionstore.error_wrapper import wrap_boto3_exception
from unionstore.exceptions import ObjectNotFoundError

logger = logging.getLogger(__name__)

__all__ = ["RECYCLE_PREFIX", "S3Storage"]

T = TypeVar("T")

# Deleted objects are moved here instead of being removed outright
RECYCLE_PREFIX = "_recycle/"


def _is_transient(exc: BaseException) -> bool:
    """Return True for S3 failures worth retrying (throttling, 5xx, connection)."""
    if isinstance(exc, BotoCoreError):
        return True
    if isinstance(exc, ClientError):
        try:
            status = int(exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0))
        except (TypeError, ValueError):
            status = 0
        code = exc.response.get("Error", {}).get("Code")
        return status == 429 or status >= 500 or code in {"SlowDown", "RequestLimitExceeded"}
    return False


_retry_transient = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)


def _as_dir(key: str) -> str:
    return key if key.endswith("/") else key + "/"


class S3Storage(StorageBackend):
    """S3-compatible storage backend using boto3.

    Supports AWS S3, MinIO, and any S3-compatible object storage. Uploads
    overwrite existing objects; deletes are soft and move objects under
    ``_recycle/``.
    """

    def __init__(self, config: S3Config, client: Any = None):
        """Initialize S3 storage backend.

        Args:
            config: Bucket and credential settings
            client: Pre-built boto3 S3 client (built from ``config`` if omitted)
        """
        self.config = config
        self.bucket = config.bucket

        if client is None:
            session_kwargs: dict = {}
            if config.access_key and config.secret_key:
                session_kwargs["aws_access_key_id"] = config.access_key
                session_kwargs["aws_secret_access_key"] = config.secret_key
                if config.token:
                    session_kwargs["aws_session_token"] = config.token
            try:
                client = boto3.client(
                    "s3",
                    endpoint_url=config.endpoint_url(),
                    region_name=config.region or None,
                    use_ssl=config.use_ssl,
                    **session_kwargs,
                )
            except (BotoCoreError, ValueError) as e:
                logger.error("Failed to create S3 client: %s", e)
                raise wrap_boto3_exception(e, "initialize") from e
            logger.debug(
                "Created S3 client for bucket '%s' with endpoint: %s",
                self.bucket,
                config.endpoint_url() or "default",
            )
        self.client = client

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "S3Storage":
        """Build a backend from a JSON/TOML/YAML config file."""
        return cls(load_config(path, S3Config))

    @property
    def scheme(self) -> str:
        return "s3"

    def __repr__(self) -> str:
        return f"S3Storage(bucket={self.bucket!r}, endpoint={self.config.endpoint!r})"

    def _call(self, operation: str, key: str, func: Callable[[], T]) -> T:
        """Run an S3 call with transient-error retry, mapping failures to StorageError."""
        start = time.monotonic()
        try:
            result = _retry_transient(func)()
        except (BotoCoreError, ClientError) as e:
            logger.debug("S3 %s failed for s3://%s/%s: %s", operation, self.bucket, key, e)
            raise wrap_boto3_exception(e, operation, key) from e
        logger.debug(
            "S3 %s s3://%s/%s took %.3fs",
            operation,
            self.bucket,
            key,
            time.monotonic() - start,
        )
        return result

    def upload_data(self, data: bytes, key: str) -> None:
        key = key.lstrip("/")
        self._call(
            "upload_data",
            key,
            lambda: self.client.put_object(Bucket=self.bucket, Key=key, Body=data),
        )
        logger.debug("Uploaded %d bytes to s3://%s/%s", len(data), self.bucket, key)

    def upload(self, file_path: str, key: str) -> None:
        key = key.lstrip("/")
        self._call(
            "upload",
            key,
            lambda: self.client.upload_file(file_path, self.bucket, key),
        )
        logger.debug("Uploaded %s to s3://%s/%s", Path(file_path).name, self.bucket, key)

    def upload_from_reader(self, stream: BinaryIO, size: Optional[int], key: str) -> None:
        key = key.lstrip("/")
        # upload_fileobj consumes the stream, so it must not be retried
        try:
            self.client.upload_fileobj(stream, self.bucket, key)
        except (BotoCoreError, ClientError) as e:
            raise wrap_boto3_exception(e, "upload_from_reader", key) from e
        logger.debug("Uploaded stream (size hint %s) to s3://%s/%s", size, self.bucket, key)

    def _recycle(self, key: str) -> None:
        self.client.copy_object(
            Bucket=self.bucket,
            CopySource={"Bucket": self.bucket, "Key": key},
            Key=posixpath.join(RECYCLE_PREFIX, key),
        )
        self.client.delete_object(Bucket=self.bucket, Key=key)

    def delete_directory(self, dir_key: str) -> None:
        """Soft-delete every object under ``dir_key``."""
        prefix = _as_dir(dir_key.lstrip("/"))
        keys = self._list_keys("delete_directory", prefix)
        for key in keys:
            self._call("delete_directory", key, lambda key=key: self._recycle(key))
        logger.debug("Deleted %d objects under s3://%s/%s", len(keys), self.bucket, prefix)

    def delete(self, key: str) -> None:
        """Soft-delete ``key``; fails with ObjectNotFoundError if it is missing."""
        key = key.lstrip("/")
        self._call("delete", key, lambda: self._recycle(key))

    def exists(self, key: str) -> bool:
        key = key.lstrip("/")
        try:
            self._call(
                "exists", key, lambda: self.client.head_object(Bucket=self.bucket, Key=key)
            )
        except ObjectNotFoundError:
            return False
        return True

    def stat(self, key: str) -> FileStat:
        key = key.lstrip("/")
        response = self._call(
            "stat", key, lambda: self.client.head_object(Bucket=self.bucket, Key=key)
        )
        return FileStat(size=int(response.get("ContentLength", 0)))

    def _get_body(self, operation: str, key: str, byte_range: Optional[str] = None) -> Any:
        key = key.lstrip("/")
        kwargs = {"Bucket": self.bucket, "Key": key}
        if byte_range:
            kwargs["Range"] = byte_range
        response = self._call(operation, key, lambda: self.client.get_object(**kwargs))
        return response["Body"]

    def download_bytes(self, key: str) -> bytes:
        body = self._get_body("download_bytes", key)
        try:
            return body.read()
        finally:
            body.close()

    def download_reader(self, key: str) -> BinaryIO:
        return self._get_body("download_reader", key)

    def download_range_bytes(self, key: str, offset: int, length: int) -> bytes:
        byte_range = http_range("s3", "download_range_bytes", key, offset, length)
        if byte_range is None:
            return b""
        body = self._get_body("download_range_bytes", key, byte_range)
        try:
            return body.read()
        finally:
            body.close()

    def download_range_reader(self, key: str, offset: int, length: int) -> BinaryIO:
        byte_range = http_range("s3", "download_range_reader", key, offset, length)
        if byte_range is None:
            return io.BytesIO(b"")
        return self._get_body("download_range_reader", key, byte_range)

    def _list_keys(self, operation: str, prefix: str) -> List[str]:
        def _collect() -> List[str]:
            paginator = self.client.get_paginator("list_objects_v2")
            keys: List[str] = []
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
            return keys

        return self._call(operation, prefix, _collect)

    def list_prefix(self, prefix: str) -> List[str]:
        """Recursively list the keys starting with ``prefix``."""
        keys = self._list_keys("list_prefix", prefix.lstrip("/"))
        logger.debug("Listed %d keys with prefix '%s'", len(keys), prefix)
        return keys
