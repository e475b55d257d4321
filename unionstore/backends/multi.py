"""Multi-tenant backend routing each key to a per-prefix backend."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional, Union

from unionstore.backends.base import FileStat, StorageBackend
from unionstore.selector import PrefixConfigSelector

logger = logging.getLogger(__name__)

__all__ = ["PrefixRoutedStorage"]


class PrefixRoutedStorage(StorageBackend):
    """Backend that resolves a concrete backend per key by prefix.

    Keys are forwarded unchanged, so a tenant prefix stays part of the
    object key in the tenant's bucket.

    Example:
        >>> storage = PrefixRoutedStorage.from_file("tenants.toml", S3Config, S3Storage)
        >>> storage.upload_data(b"x", "tenant-a/data.bin")
    """

    def __init__(self, selector: PrefixConfigSelector, scheme: str = "multi"):
        self.selector = selector
        self._scheme = scheme

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        model: type,
        factory: Callable[..., StorageBackend],
        scheme: str = "multi",
        cache_clients: bool = False,
    ) -> "PrefixRoutedStorage":
        selector = PrefixConfigSelector.from_file(
            path, model, factory, cache_clients=cache_clients
        )
        return cls(selector, scheme=scheme)

    @property
    def scheme(self) -> str:
        return self._scheme

    def __repr__(self) -> str:
        prefixes = list(self.selector.prefixes)
        return f"PrefixRoutedStorage(scheme={self._scheme!r}, prefixes={prefixes!r})"

    def _backend(self, key: str) -> StorageBackend:
        return self.selector.select_and_build(key.lstrip("/"))

    def stat(self, key: str) -> FileStat:
        return self._backend(key).stat(key)

    def upload_data(self, data: bytes, key: str) -> None:
        self._backend(key).upload_data(data, key)

    def upload(self, file_path: str, key: str) -> None:
        self._backend(key).upload(file_path, key)

    def upload_from_reader(self, stream: BinaryIO, size: Optional[int], key: str) -> None:
        self._backend(key).upload_from_reader(stream, size, key)

    def delete_directory(self, dir_key: str) -> None:
        self._backend(dir_key).delete_directory(dir_key)

    def delete(self, key: str) -> None:
        self._backend(key).delete(key)

    def exists(self, key: str) -> bool:
        return self._backend(key).exists(key)

    def download_bytes(self, key: str) -> bytes:
        return self._backend(key).download_bytes(key)

    def download_reader(self, key: str) -> BinaryIO:
        return self._backend(key).download_reader(key)

    def download_range_bytes(self, key: str, offset: int, length: int) -> bytes:
        return self._backend(key).download_range_bytes(key, offset, length)

    def download_range_reader(self, key: str, offset: int, length: int) -> BinaryIO:
        return self._backend(key).download_range_reader(key, offset, length)

    def list_prefix(self, prefix: str) -> List[str]:
        return self._backend(prefix).list_prefix(prefix)
