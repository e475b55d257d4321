"""Storage backends for union-store.

Every backend implements :class:`StorageBackend` over backend-local keys:
absolute paths for the local filesystem, object keys for S3 and Qiniu.

Usage:
    from unionstore.backends import LocalStorage, S3Storage

    local = LocalStorage()
    s3 = S3Storage.from_file("/etc/union-store/s3.toml")
"""

from unionstore.backends.base import BoundedReader, FileStat, StorageBackend
from unionstore.backends.local import LocalStorage
from unionstore.backends.multi import PrefixRoutedStorage
from unionstore.backends.qiniu import QiniuStorage
from unionstore.backends.s3 import S3Storage

__all__ = [
    "BoundedReader",
    "FileStat",
    "StorageBackend",
    "LocalStorage",
    "PrefixRoutedStorage",
    "QiniuStorage",
    "S3Storage",
]
