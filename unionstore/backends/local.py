"""Local filesystem storage backend."""

from __future__ import annotations

import logging
import os
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional

from unionstore.backends.base import BoundedReader, FileStat, StorageBackend
from unionstore.error_wrapper import wrap_os_error
from unionstore.exceptions import ObjectExistsError, StorageError

logger = logging.getLogger(__name__)

__all__ = ["LocalStorage"]


@contextmanager
def _os_errors(operation: str, key: str) -> Iterator[None]:
    try:
        yield
    except OSError as exc:
        raise wrap_os_error(exc, operation, key) from exc


class LocalStorage(StorageBackend):
    """Filesystem backend addressed by absolute paths.

    Writes never replace an existing file.

    Example:
        >>> storage = LocalStorage()
        >>> storage.upload_data(b"hello", "/tmp/union/hello.txt")
        >>> storage.download_range_bytes("/tmp/union/hello.txt", 1, 3)
        b'ell'
    """

    @property
    def scheme(self) -> str:
        return "os"

    def _refuse_existing(self, path: Path, operation: str) -> None:
        if path.exists():
            raise ObjectExistsError(
                f"file {path} already exists",
                backend_type="os",
                operation=operation,
                key=str(path),
            )

    def list_prefix(self, prefix: str) -> List[str]:
        """List the entries of a directory, or the path itself for a file."""
        path = Path(prefix)
        with _os_errors("list_prefix", prefix):
            if not path.is_dir():
                path.stat()
                return [prefix]
            return [os.path.join(prefix, entry.name) for entry in os.scandir(path)]

    def stat(self, key: str) -> FileStat:
        with _os_errors("stat", key):
            return FileStat(size=Path(key).stat().st_size)

    def upload_data(self, data: bytes, key: str) -> None:
        path = Path(key)
        with _os_errors("upload_data", key):
            path.parent.mkdir(parents=True, exist_ok=True)
            self._refuse_existing(path, "upload_data")
            # "xb" also fails if the file appeared after the check
            with open(path, "xb") as handle:
                handle.write(data)
        logger.debug("Wrote %d bytes to %s", len(data), key)

    def upload(self, file_path: str, key: str) -> None:
        """Copy a local file to ``key``."""
        path = Path(key)
        with _os_errors("upload", key):
            path.parent.mkdir(parents=True, exist_ok=True)
            self._refuse_existing(path, "upload")
            with open(file_path, "rb") as src, open(path, "xb") as dest:
                shutil.copyfileobj(src, dest)
        logger.debug("Copied %s to %s", file_path, key)

    def upload_from_reader(self, stream: BinaryIO, size: Optional[int], key: str) -> None:
        path = Path(key)
        with _os_errors("upload_from_reader", key):
            path.parent.mkdir(parents=True, exist_ok=True)
            self._refuse_existing(path, "upload_from_reader")
            with open(path, "xb") as dest:
                shutil.copyfileobj(stream, dest)
        logger.debug("Wrote stream to %s", key)

    def delete_directory(self, dir_key: str) -> None:
        path = Path(dir_key)
        if not path.exists():
            return
        if not path.is_dir():
            raise StorageError(
                f"{dir_key} is not a directory",
                backend_type="os",
                operation="delete_directory",
                key=dir_key,
            )
        with _os_errors("delete_directory", dir_key):
            shutil.rmtree(path)
        logger.debug("Removed directory %s", dir_key)

    def delete(self, key: str) -> None:
        with _os_errors("delete", key):
            os.remove(key)
        logger.debug("Removed %s", key)

    def exists(self, key: str) -> bool:
        try:
            os.stat(key)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise wrap_os_error(exc, "exists", key) from exc
        return True

    def download_bytes(self, key: str) -> bytes:
        with _os_errors("download_bytes", key):
            return Path(key).read_bytes()

    def download_reader(self, key: str) -> BinaryIO:
        with _os_errors("download_reader", key):
            return open(key, "rb")

    def download_range_bytes(self, key: str, offset: int, length: int) -> bytes:
        with _os_errors("download_range_bytes", key):
            with open(key, "rb") as handle:
                handle.seek(offset)
                data = handle.read(length)
        if len(data) != length:
            raise StorageError(
                f"read size not matched, expected {length}, got {len(data)}",
                backend_type="os",
                operation="download_range_bytes",
                key=key,
            )
        return data

    def download_range_reader(self, key: str, offset: int, length: int) -> BinaryIO:
        with _os_errors("download_range_reader", key):
            handle = open(key, "rb")
            try:
                handle.seek(offset)
            except OSError:
                handle.close()
                raise
        return BoundedReader(handle, length)  # type: ignore[return-value]
