"""Union store: routes union paths to the backend owning their protocol.

Each object-store protocol has a primary ("store") backend and an optional
fallback ("reader") backend. Writes go to the primary only. Reads try the
primary first and retry on the fallback when the primary fails.

Usage:
    from unionstore import new_store

    store = new_store()
    store.upload_data(b"hello", "qiniu:/datasets/hello.txt")
    store.download_range_bytes("qiniu:/datasets/hello.txt", 1, 3)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import (
    Any,
    BinaryIO,
    Callable,
    List,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from unionstore.backends.base import FileStat, StorageBackend
from unionstore.backends.local import LocalStorage
from unionstore.backends.multi import PrefixRoutedStorage
from unionstore.backends.qiniu import QiniuStorage
from unionstore.backends.s3 import S3Storage
from unionstore.config import (
    QiniuConfig,
    S3Config,
    is_prefix_table,
    parse_config,
    parse_config_table,
    read_config_file,
)
from unionstore.env import (
    QINIU_READER_ENVS,
    QINIU_STORE_ENVS,
    S3_READER_ENVS,
    S3_STORE_ENVS,
    lookup_env,
)
from unionstore.error_wrapper import routing_guard
from unionstore.exceptions import NotConfiguredError, PathProtocolError
from unionstore.protocol import PathProtocol, UnionPath
from unionstore.selector import PrefixConfigSelector

logger = logging.getLogger(__name__)

__all__ = ["Store", "new_store", "storage_from_config_file"]

T = TypeVar("T")

# Config model and backend class per object-store protocol
BACKEND_FAMILIES = {
    PathProtocol.QINIU: (QiniuConfig, QiniuStorage),
    PathProtocol.S3: (S3Config, S3Storage),
}


class Store(StorageBackend):
    """Routing façade over the local filesystem, Qiniu and S3 backends.

    Every method takes a union path (``qiniu:/key``, ``s3:/key`` or an
    absolute local path). The backend set is fixed at construction.

    Failures are raised as :class:`unionstore.exceptions.UnionStoreError`
    subclasses; anything else escaping a call is converted to
    ``RoutingError``.
    """

    def __init__(
        self,
        local: Optional[StorageBackend] = None,
        qiniu: Optional[StorageBackend] = None,
        qiniu_reader: Optional[StorageBackend] = None,
        s3: Optional[StorageBackend] = None,
        s3_reader: Optional[StorageBackend] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._backends = {
            PathProtocol.OS: (local or LocalStorage(), None),
            PathProtocol.QINIU: (qiniu, qiniu_reader),
            PathProtocol.S3: (s3, s3_reader),
        }
        self.logger = logger if logger is not None else logging.getLogger(__name__)

    @property
    def scheme(self) -> str:
        return "union"

    def __repr__(self) -> str:
        configured = {
            protocol.value or "os": [b for b in pair if b is not None]
            for protocol, pair in self._backends.items()
        }
        return f"Store({configured!r})"

    def backends_for(
        self, protocol: PathProtocol
    ) -> Tuple[Optional[StorageBackend], Optional[StorageBackend]]:
        """Return the ``(primary, fallback)`` pair registered for ``protocol``."""
        return self._backends.get(protocol, (None, None))

    def _route(
        self, path: str
    ) -> Tuple[UnionPath, Optional[StorageBackend], Optional[StorageBackend]]:
        parsed = UnionPath.parse(path)
        if parsed.protocol not in self._backends:
            raise PathProtocolError(
                f"unsupported file path protocol: {parsed.protocol}, {path}",
                path=path,
                protocol=parsed.protocol,
            )
        primary, fallback = self._backends[parsed.protocol]
        if primary is None and fallback is None:
            raise NotConfiguredError(parsed.protocol)
        return parsed, primary, fallback

    def _write(self, path: str, call: Callable[[StorageBackend, str], T]) -> T:
        parsed, primary, _ = self._route(path)
        if primary is None:
            raise NotConfiguredError(parsed.protocol, role="store")
        return call(primary, parsed.key)

    def _read(self, operation: str, path: str, call: Callable[[StorageBackend, str], T]) -> T:
        parsed, primary, fallback = self._route(path)
        key = parsed.key
        if primary is None:
            return call(fallback, key)  # type: ignore[arg-type]
        if fallback is None:
            return call(primary, key)
        try:
            return call(primary, key)
        except Exception as exc:
            self.logger.debug(
                "%s %s failed on %r, retrying on %r: %s",
                operation,
                path,
                primary,
                fallback,
                exc,
            )
        return call(fallback, key)

    @routing_guard("stat")
    def stat(self, key: str) -> FileStat:
        return self._read("stat", key, lambda b, k: b.stat(k))

    @routing_guard("upload_data")
    def upload_data(self, data: bytes, key: str) -> None:
        self._write(key, lambda b, k: b.upload_data(data, k))

    @routing_guard("upload")
    def upload(self, file_path: str, key: str) -> None:
        self._write(key, lambda b, k: b.upload(file_path, k))

    @routing_guard("upload_from_reader")
    def upload_from_reader(self, stream: BinaryIO, size: Optional[int], key: str) -> None:
        self._write(key, lambda b, k: b.upload_from_reader(stream, size, k))

    @routing_guard("delete_directory")
    def delete_directory(self, dir_key: str) -> None:
        self._write(dir_key, lambda b, k: b.delete_directory(k))

    @routing_guard("delete")
    def delete(self, key: str) -> None:
        self._write(key, lambda b, k: b.delete(k))

    @routing_guard("exists")
    def exists(self, key: str) -> bool:
        """Return True if ``key`` exists on the primary or, failing that, the fallback."""
        parsed, primary, fallback = self._route(key)
        normalized = parsed.key
        if primary is not None:
            try:
                if primary.exists(normalized):
                    return True
            except Exception as exc:
                if fallback is None:
                    raise
                self.logger.debug("exists %s failed on %r: %s", key, primary, exc)
            if fallback is None:
                return False
        return fallback.exists(normalized)  # type: ignore[union-attr]

    @routing_guard("download_bytes")
    def download_bytes(self, key: str) -> bytes:
        return self._read("download_bytes", key, lambda b, k: b.download_bytes(k))

    @routing_guard("download_reader")
    def download_reader(self, key: str) -> BinaryIO:
        return self._read("download_reader", key, lambda b, k: b.download_reader(k))

    @routing_guard("download_range_bytes")
    def download_range_bytes(self, key: str, offset: int, length: int) -> bytes:
        return self._read(
            "download_range_bytes",
            key,
            lambda b, k: b.download_range_bytes(k, offset, length),
        )

    @routing_guard("download_range_reader")
    def download_range_reader(self, key: str, offset: int, length: int) -> BinaryIO:
        return self._read(
            "download_range_reader",
            key,
            lambda b, k: b.download_range_reader(k, offset, length),
        )

    @routing_guard("list_prefix")
    def list_prefix(self, prefix: str) -> List[str]:
        return self._read("list_prefix", prefix, lambda b, k: b.list_prefix(k))


def storage_from_config_file(
    protocol: PathProtocol,
    path: Union[str, Path],
    cache_clients: bool = False,
) -> StorageBackend:
    """Build the backend described by a config file.

    A prefix table yields a :class:`PrefixRoutedStorage` selecting one
    backend per tenant prefix; a single record yields a plain backend.

    Raises:
        ConfigurationError: If the file cannot be loaded or validated
    """
    model, backend_cls = BACKEND_FAMILIES[protocol]
    source = str(path)
    data = read_config_file(path)
    if is_prefix_table(data):
        table = parse_config_table(model, data, source)
        selector = PrefixConfigSelector(
            table, backend_cls, cache_clients=cache_clients, source=source
        )
        logger.debug("Loaded %d %s prefix configs from %s", len(table), protocol, source)
        return PrefixRoutedStorage(selector, scheme=protocol.value)
    return backend_cls(parse_config(model, data, source))


def _from_env(
    protocol: PathProtocol,
    role: str,
    names: Tuple[str, ...],
    environ: Optional[Mapping[str, str]],
    cache_clients: bool,
) -> Optional[StorageBackend]:
    found = lookup_env(names, environ)
    if found is None:
        logger.debug("No %s %s configured (checked %s)", protocol, role, ", ".join(names))
        return None
    name, path = found
    logger.debug("Configuring %s %s from %s=%s", protocol, role, name, path)
    return storage_from_config_file(protocol, path, cache_clients=cache_clients)


def new_store(
    qiniu_config_path: Optional[str] = None,
    s3_config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    cache_clients: bool = False,
    **kwargs: Any,
) -> Store:
    """Build a :class:`Store` from explicit config paths and the environment.

    An explicit path wins over the environment for the primary role.
    Fallback readers come from the environment only. Roles with nothing
    configured are left empty and fail at call time.

    Args:
        qiniu_config_path: Config file for the primary Qiniu backend
        s3_config_path: Config file for the primary S3 backend
        environ: Environment to read (defaults to ``os.environ``)
        cache_clients: Reuse one client per prefix in multi-tenant configs
        **kwargs: Passed through to :class:`Store` (``local``, ``logger``)

    Raises:
        ConfigurationError: If a named config file cannot be loaded
    """
    if qiniu_config_path:
        qiniu = storage_from_config_file(
            PathProtocol.QINIU, qiniu_config_path, cache_clients=cache_clients
        )
    else:
        qiniu = _from_env(PathProtocol.QINIU, "store", QINIU_STORE_ENVS, environ, cache_clients)
    qiniu_reader = _from_env(
        PathProtocol.QINIU, "reader", QINIU_READER_ENVS, environ, cache_clients
    )

    if s3_config_path:
        s3 = storage_from_config_file(
            PathProtocol.S3, s3_config_path, cache_clients=cache_clients
        )
    else:
        s3 = _from_env(PathProtocol.S3, "store", S3_STORE_ENVS, environ, cache_clients)
    s3_reader = _from_env(PathProtocol.S3, "reader", S3_READER_ENVS, environ, cache_clients)

    return Store(qiniu=qiniu, qiniu_reader=qiniu_reader, s3=s3, s3_reader=s3_reader, **kwargs)
