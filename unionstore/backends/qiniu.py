"""Qiniu Kodo storage backend for union-store.

Uploads, stat, delete and listing go through the qiniu SDK; downloads are
plain HTTP(S) GETs against the bucket's download domain, signed when the
bucket is private.
"""

from __future__ import annotations

import io
import logging
import time
from pathlib import Path
from typing import Any, BinaryIO, Iterator, List, Optional, Union
from urllib.parse import quote

import requests
from qiniu import Auth, BucketManager, build_batch_delete, put_data, put_file, put_stream

from unionstore.backends.base import FileStat, StorageBackend, http_range
from unionstore.config import QiniuConfig, load_config
from unionstore.error_wrapper import (
    QINIU_NOT_FOUND_STATUS,
    wrap_qiniu_response,
    wrap_requests_exception,
    wrap_storage_error,
)
from unionstore.exceptions import ObjectNotFoundError

logger = logging.getLogger(__name__)

__all__ = ["QiniuStorage"]

LIST_PAGE_SIZE = 1000
DOWNLOAD_URL_EXPIRES = 3600
DEFAULT_TIMEOUT = (10, 300)


def _as_dir(key: str) -> str:
    return key if key.endswith("/") else key + "/"


class QiniuStorage(StorageBackend):
    """Qiniu Kodo backend.

    Uploads overwrite existing objects and deletes are immediate.

    Example:
        >>> storage = QiniuStorage.from_file("/etc/union-store/qiniu.toml")
        >>> storage.upload_data(b"hello", "datasets/hello.txt")
        >>> storage.stat("datasets/hello.txt").size
        5
    """

    def __init__(
        self,
        config: QiniuConfig,
        auth: Any = None,
        bucket_manager: Any = None,
        session: Optional[requests.Session] = None,
        timeout: Any = DEFAULT_TIMEOUT,
    ):
        """Initialize Qiniu storage backend.

        Args:
            config: Bucket, credential and domain settings
            auth: Pre-built ``qiniu.Auth`` (built from ``config`` if omitted)
            bucket_manager: Pre-built ``qiniu.BucketManager``
            session: requests session used for downloads
            timeout: requests timeout for downloads
        """
        self.config = config
        self.bucket = config.bucket
        self.auth = auth or Auth(config.access_key, config.secret_key)
        self.bucket_manager = bucket_manager or BucketManager(self.auth)
        self.session = session or requests.Session()
        self.timeout = timeout

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "QiniuStorage":
        """Build a backend from a JSON/TOML/YAML config file."""
        return cls(load_config(path, QiniuConfig))

    @property
    def scheme(self) -> str:
        return "qiniu"

    def __repr__(self) -> str:
        return f"QiniuStorage(bucket={self.bucket!r})"

    def _upload_token(self, key: str) -> str:
        # A key-scoped token allows overwriting an existing object
        return self.auth.upload_token(self.bucket, key)

    def _check(self, ret: Any, info: Any, operation: str, key: str) -> Any:
        if ret is None or getattr(info, "status_code", None) != 200:
            raise wrap_qiniu_response(info, operation, key)
        return ret

    @wrap_storage_error("qiniu", "upload_data")
    def upload_data(self, data: bytes, key: str) -> None:
        key = key.lstrip("/")
        start = time.monotonic()
        ret, info = put_data(self._upload_token(key), key, data)
        self._check(ret, info, "upload_data", key)
        logger.debug(
            "Uploaded %d bytes to qiniu://%s/%s in %.3fs",
            len(data),
            self.bucket,
            key,
            time.monotonic() - start,
        )

    @wrap_storage_error("qiniu", "upload")
    def upload(self, file_path: str, key: str) -> None:
        key = key.lstrip("/")
        start = time.monotonic()
        ret, info = put_file(self._upload_token(key), key, file_path)
        self._check(ret, info, "upload", key)
        logger.debug(
            "Uploaded %s to qiniu://%s/%s in %.3fs",
            file_path,
            self.bucket,
            key,
            time.monotonic() - start,
        )

    @wrap_storage_error("qiniu", "upload_from_reader")
    def upload_from_reader(self, stream: BinaryIO, size: Optional[int], key: str) -> None:
        key = key.lstrip("/")
        token = self._upload_token(key)
        if size is not None and size >= 0:
            ret, info = put_stream(token, key, stream, key, size)
        else:
            ret, info = put_data(token, key, stream.read())
        self._check(ret, info, "upload_from_reader", key)
        logger.debug("Uploaded stream (size hint %s) to qiniu://%s/%s", size, self.bucket, key)

    def _iter_keys(self, prefix: str) -> Iterator[str]:
        marker = None
        while True:
            ret, eof, info = self.bucket_manager.list(
                self.bucket, prefix=prefix, marker=marker, limit=LIST_PAGE_SIZE
            )
            self._check(ret, info, "list_prefix", prefix)
            for item in ret.get("items", []):
                yield item["key"]
            marker = ret.get("marker")
            if eof or not marker:
                return

    @wrap_storage_error("qiniu", "delete_directory")
    def delete_directory(self, dir_key: str) -> None:
        prefix = _as_dir(dir_key.lstrip("/"))
        keys = list(self._iter_keys(prefix))
        for i in range(0, len(keys), LIST_PAGE_SIZE):
            batch = keys[i : i + LIST_PAGE_SIZE]
            ret, info = self.bucket_manager.batch(build_batch_delete(self.bucket, batch))
            if ret is None:
                raise wrap_qiniu_response(info, "delete_directory", prefix)
            for key, result in zip(batch, ret):
                code = result.get("code")
                # Objects removed concurrently are fine
                if code != 200 and code not in QINIU_NOT_FOUND_STATUS:
                    raise wrap_qiniu_response(
                        _BatchResult(code, result.get("data", {}).get("error")),
                        "delete_directory",
                        key,
                    )
        logger.debug("Deleted %d objects under qiniu://%s/%s", len(keys), self.bucket, prefix)

    @wrap_storage_error("qiniu", "delete")
    def delete(self, key: str) -> None:
        key = key.lstrip("/")
        ret, info = self.bucket_manager.delete(self.bucket, key)
        if getattr(info, "status_code", None) != 200:
            raise wrap_qiniu_response(info, "delete", key)
        logger.debug("Deleted qiniu://%s/%s", self.bucket, key)

    @wrap_storage_error("qiniu", "stat")
    def stat(self, key: str) -> FileStat:
        key = key.lstrip("/")
        ret, info = self.bucket_manager.stat(self.bucket, key)
        ret = self._check(ret, info, "stat", key)
        return FileStat(size=int(ret.get("fsize", 0)))

    def exists(self, key: str) -> bool:
        try:
            self.stat(key)
        except ObjectNotFoundError:
            return False
        return True

    def download_url(self, key: str) -> str:
        """Return the (signed, for private buckets) download URL of ``key``."""
        url = f"{self.config.download_host()}/{quote(key.lstrip('/'))}"
        if self.config.private:
            url = self.auth.private_download_url(url, expires=DOWNLOAD_URL_EXPIRES)
        return url

    def _get(self, operation: str, key: str, headers: Optional[dict] = None) -> requests.Response:
        key = key.lstrip("/")
        start = time.monotonic()
        try:
            response = self.session.get(
                self.download_url(key), headers=headers or {}, stream=True, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as exc:
            raise wrap_requests_exception(exc, operation, key) from exc
        logger.debug(
            "GET qiniu://%s/%s (%s) answered in %.3fs",
            self.bucket,
            key,
            operation,
            time.monotonic() - start,
        )
        return response

    @staticmethod
    def _content(response: requests.Response, operation: str, key: str) -> bytes:
        # The body is streamed, so transfer errors surface while reading it
        try:
            return response.content
        except requests.exceptions.RequestException as exc:
            raise wrap_requests_exception(exc, operation, key) from exc

    @staticmethod
    def _body(response: requests.Response) -> BinaryIO:
        response.raw.decode_content = True
        return response.raw

    def download_bytes(self, key: str) -> bytes:
        with self._get("download_bytes", key) as response:
            return self._content(response, "download_bytes", key)

    def download_reader(self, key: str) -> BinaryIO:
        return self._body(self._get("download_reader", key))

    def download_range_bytes(self, key: str, offset: int, length: int) -> bytes:
        byte_range = http_range("qiniu", "download_range_bytes", key, offset, length)
        if byte_range is None:
            return b""
        with self._get("download_range_bytes", key, {"Range": byte_range}) as response:
            data = self._content(response, "download_range_bytes", key)
            # A server ignoring Range answers 200 with the whole object
            if response.status_code == 200:
                data = data[offset : offset + length]
        return data

    def download_range_reader(self, key: str, offset: int, length: int) -> BinaryIO:
        byte_range = http_range("qiniu", "download_range_reader", key, offset, length)
        if byte_range is None:
            return io.BytesIO(b"")
        return self._body(self._get("download_range_reader", key, {"Range": byte_range}))

    @wrap_storage_error("qiniu", "list_prefix")
    def list_prefix(self, prefix: str) -> List[str]:
        """Recursively list the keys starting with ``prefix``."""
        keys = list(self._iter_keys(prefix.lstrip("/")))
        logger.debug("Listed %d keys with prefix '%s'", len(keys), prefix)
        return keys


class _BatchResult:
    """Per-key outcome of a batch call, shaped like a ``ResponseInfo``."""

    def __init__(self, status_code: Any, error: Optional[str]):
        self.status_code = status_code
        self.error = error
