"""Abstract base class for storage backends.

Defines the interface that every backend (local filesystem, S3, Qiniu) and
the routing store itself implement. Keys handed to a backend are already
normalized: absolute paths for the local filesystem, slash-less object keys
for object stores.
"""

from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, List, Optional

from unionstore.exceptions import StorageError

logger = logging.getLogger(__name__)

__all__ = ["BoundedReader", "FileStat", "StorageBackend", "http_range"]


@dataclass(frozen=True)
class FileStat:
    """Information about a stored object."""

    size: int


class StorageBackend(ABC):
    """Abstract base class for storage backends.

    Failures are raised as :class:`unionstore.exceptions.StorageError`
    (or a subclass such as ``ObjectNotFoundError``).
    """

    @property
    @abstractmethod
    def scheme(self) -> str:
        """Return the backend type identifier (e.g., 'os', 's3', 'qiniu')."""

    @abstractmethod
    def stat(self, key: str) -> FileStat:
        """Return size information for ``key``."""

    @abstractmethod
    def upload_data(self, data: bytes, key: str) -> None:
        """Store ``data`` under ``key``.

        The local filesystem refuses to replace an existing key; object
        stores overwrite it.
        """

    @abstractmethod
    def upload(self, file_path: str, key: str) -> None:
        """Store the contents of the local file ``file_path`` under ``key``."""

    @abstractmethod
    def upload_from_reader(self, stream: BinaryIO, size: Optional[int], key: str) -> None:
        """Store everything read from ``stream`` under ``key``.

        Args:
            stream: Binary file-like object to read from
            size: Expected number of bytes, or None/-1 when unknown
            key: Destination key
        """

    @abstractmethod
    def delete_directory(self, dir_key: str) -> None:
        """Remove ``dir_key`` and everything below it.

        Succeeds when the directory does not exist.
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``; fails if it does not exist."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Return True if ``key`` exists."""

    @abstractmethod
    def download_bytes(self, key: str) -> bytes:
        """Return the full contents of ``key``."""

    @abstractmethod
    def download_reader(self, key: str) -> BinaryIO:
        """Return a stream over ``key``. The caller must close it."""

    @abstractmethod
    def download_range_bytes(self, key: str, offset: int, length: int) -> bytes:
        """Return ``length`` bytes of ``key`` starting at ``offset``."""

    @abstractmethod
    def download_range_reader(self, key: str, offset: int, length: int) -> BinaryIO:
        """Return a stream over a byte range of ``key``. The caller must close it."""

    @abstractmethod
    def list_prefix(self, prefix: str) -> List[str]:
        """Return the keys found under ``prefix``."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class BoundedReader(io.RawIOBase):
    """Read at most ``limit`` bytes from an underlying stream.

    Closing the reader closes the underlying stream.
    """

    def __init__(self, raw: BinaryIO, limit: int) -> None:
        super().__init__()
        self._raw = raw
        self._remaining = max(limit, 0)

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # type: ignore[override]
        if self._remaining <= 0:
            return 0
        view = memoryview(buffer)[: self._remaining]
        data = self._raw.read(len(view))
        if not data:
            return 0
        n = len(data)
        view[:n] = data
        self._remaining -= n
        return n

    def close(self) -> None:
        if not self.closed:
            try:
                self._raw.close()
            finally:
                super().close()


def http_range(
    backend_type: str, operation: str, key: str, offset: int, length: int
) -> Optional[str]:
    """Return the ``Range`` header value for a byte range read.

    An empty range has no valid header, so None is returned and the caller
    answers with no bytes without a request.

    Raises:
        StorageError: If ``offset`` or ``length`` is negative
    """
    if offset < 0 or length < 0:
        raise StorageError(
            f"invalid byte range: offset={offset}, length={length}",
            backend_type=backend_type,
            operation=operation,
            key=key,
        )
    if length == 0:
        return None
    return f"bytes={offset}-{offset + length - 1}"
