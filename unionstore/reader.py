"""Lazily opened read-only stream over a union path."""

from __future__ import annotations

import io
import logging
import os
from typing import BinaryIO, Optional

from unionstore.backends.base import StorageBackend
from unionstore.store import new_store

logger = logging.getLogger(__name__)

__all__ = ["StoreReader"]


class StoreReader(io.RawIOBase):
    """Binary stream over ``key`` that starts downloading on the first read.

    With ``offset`` set, only ``length`` bytes starting at ``offset`` are
    read. Without a store, one is built on first read with the reader
    configs (``QINIU_READER_CONFIG``/``S3_READER_CONFIG``) as primaries.

    Example:
        >>> with StoreReader(store, "s3:/datasets/part-0001.bin", offset=128, length=64) as r:
        ...     header = r.read()
    """

    def __init__(
        self,
        store: Optional[StorageBackend],
        key: str,
        offset: Optional[int] = None,
        length: Optional[int] = None,
    ):
        super().__init__()
        if offset is not None and length is None:
            raise ValueError("length is required when offset is given")
        self.store = store
        self.key = key
        self.offset = offset
        self.length = length
        self._body: Optional[BinaryIO] = None

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def _resolve_store(self) -> StorageBackend:
        return new_store(
            qiniu_config_path=os.environ.get("QINIU_READER_CONFIG"),
            s3_config_path=os.environ.get("S3_READER_CONFIG"),
        )

    def _open(self) -> BinaryIO:
        if self.store is None:
            self.store = self._resolve_store()
        if self.offset is None:
            body = self.store.download_reader(self.key)
        else:
            body = self.store.download_range_reader(self.key, self.offset, self.length)
        logger.debug("Opened %s (offset=%s, length=%s)", self.key, self.offset, self.length)
        return body

    def readinto(self, buffer) -> int:  # type: ignore[override]
        if self.closed:
            raise ValueError("file reader closed")
        if self._body is None:
            self._body = self._open()
        view = memoryview(buffer)
        data = self._body.read(len(view))
        n = len(data)
        view[:n] = data
        return n

    def close(self) -> None:
        if not self.closed:
            try:
                if self._body is not None:
                    self._body.close()
            finally:
                super().close()
