"""union-store: one storage interface over the local filesystem, Qiniu and S3.

Union paths pick the backend: ``qiniu:/key``, ``s3:/key`` or an absolute
local path.

Usage:
    from unionstore import new_store

    store = new_store(s3_config_path="/etc/union-store/s3.toml")
    store.upload_data(b"hello", "s3:/datasets/hello.txt")
    assert store.exists("s3:/datasets/hello.txt")
"""

from unionstore.backends import (
    FileStat,
    LocalStorage,
    PrefixRoutedStorage,
    QiniuStorage,
    S3Storage,
    StorageBackend,
)
from unionstore.config import QiniuConfig, S3Config
from unionstore.exceptions import (
    ConfigNotFoundError,
    ConfigurationError,
    NotConfiguredError,
    ObjectExistsError,
    ObjectNotFoundError,
    PathProtocolError,
    RoutingError,
    StorageError,
    UnionStoreError,
)
from unionstore.protocol import PathProtocol, UnionPath, get_path_protocol, is_union_path
from unionstore.reader import StoreReader
from unionstore.selector import PrefixConfigSelector, is_key_starts_with_prefix
from unionstore.store import Store, new_store

__version__ = "0.3.0"

__all__ = [
    "FileStat",
    "LocalStorage",
    "PrefixRoutedStorage",
    "QiniuStorage",
    "S3Storage",
    "StorageBackend",
    "QiniuConfig",
    "S3Config",
    "ConfigNotFoundError",
    "ConfigurationError",
    "NotConfiguredError",
    "ObjectExistsError",
    "ObjectNotFoundError",
    "PathProtocolError",
    "RoutingError",
    "StorageError",
    "UnionStoreError",
    "PathProtocol",
    "UnionPath",
    "get_path_protocol",
    "is_union_path",
    "StoreReader",
    "PrefixConfigSelector",
    "is_key_starts_with_prefix",
    "Store",
    "new_store",
]
