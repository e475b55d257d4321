"""Prefix-based selection of backend configurations.

A prefix table maps key prefixes to backend configs (one bucket and set of
credentials per tenant). For each key the selector picks the config whose
prefix is a directory-style ancestor of the key and builds a backend from it.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import (
    TYPE_CHECKING,
    Callable,
    Dict,
    Generic,
    Iterator,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from unionstore.config import load_config_table
from unionstore.exceptions import ConfigNotFoundError, ConfigurationError, UnionStoreError

if TYPE_CHECKING:
    from unionstore.backends.base import StorageBackend

logger = logging.getLogger(__name__)

__all__ = [
    "PrefixConfigSelector",
    "ReadWriteLock",
    "is_key_starts_with_prefix",
    "select_first_match",
]

ConfigT = TypeVar("ConfigT")
SelectFunc = Callable[[Mapping[str, ConfigT], str], Optional[Tuple[str, ConfigT]]]


def is_key_starts_with_prefix(key: str, prefix: str) -> bool:
    """Return True if ``prefix`` names ``key`` or one of its parent directories.

    Both sides are compared as directories, so ``"a"`` covers ``"a/x"`` and
    ``"a/"`` but not ``"ab/x"``.
    """
    if not key.endswith("/"):
        key += "/"
    if not prefix.endswith("/"):
        prefix += "/"
    return key.startswith(prefix)


def select_first_match(
    table: Mapping[str, ConfigT], key: str
) -> Optional[Tuple[str, ConfigT]]:
    """Return the first ``(prefix, config)`` entry covering ``key``, in table order."""
    for prefix, config in table.items():
        if is_key_starts_with_prefix(key, prefix):
            return prefix, config
    return None


class ReadWriteLock:
    """Many concurrent readers or one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class PrefixConfigSelector(Generic[ConfigT]):
    """Pick a backend config by key prefix and build a backend from it.

    The table is fixed after construction. By default a fresh backend is
    built on every resolution; with ``cache_clients=True`` one backend per
    prefix is built and reused.

    Example:
        >>> selector = PrefixConfigSelector.from_file("tenants.toml", S3Config, S3Storage)
        >>> backend = selector.select_and_build("tenant-a/2024/report.csv")
    """

    def __init__(
        self,
        table: Mapping[str, ConfigT],
        factory: Callable[[ConfigT], StorageBackend],
        *,
        select: SelectFunc = select_first_match,
        cache_clients: bool = False,
        source: Optional[str] = None,
    ) -> None:
        self._table: Dict[str, ConfigT] = dict(table)
        self._factory = factory
        self._select = select
        self._cache_clients = cache_clients
        self._clients: Dict[str, StorageBackend] = {}
        self._lock = ReadWriteLock()
        self.source = source

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        model: type,
        factory: Callable[[ConfigT], StorageBackend],
        **kwargs,
    ) -> "PrefixConfigSelector[ConfigT]":
        """Load the prefix table from a JSON/TOML/YAML file."""
        table = load_config_table(path, model)
        logger.debug("Loaded %d prefix configs from %s", len(table), path)
        return cls(table, factory, source=str(path), **kwargs)

    @property
    def prefixes(self) -> Tuple[str, ...]:
        return tuple(self._table)

    def select(self, key: str) -> Tuple[str, ConfigT]:
        """Return the ``(prefix, config)`` entry covering ``key``.

        Raises:
            ConfigNotFoundError: If no prefix covers ``key``
        """
        with self._lock.read():
            match = self._select(self._table, key)
        if match is None:
            raise ConfigNotFoundError(key, config_path=self.source)
        return match

    def select_and_build(self, key: str) -> StorageBackend:
        """Return a backend for the config covering ``key``.

        Raises:
            ConfigNotFoundError: If no prefix covers ``key``
            ConfigurationError: If the backend cannot be built
        """
        prefix, config = self.select(key)

        if self._cache_clients:
            with self._lock.read():
                cached = self._clients.get(prefix)
            if cached is not None:
                return cached

        backend = self._build(prefix, config)

        if self._cache_clients:
            with self._lock.write():
                # Another caller may have built one first
                backend = self._clients.setdefault(prefix, backend)
        return backend

    def _build(self, prefix: str, config: ConfigT) -> StorageBackend:
        try:
            backend = self._factory(config)
        except UnionStoreError:
            raise
        except Exception as exc:
            raise ConfigurationError(
                f"build backend for prefix {prefix!r}: {exc}",
                config_path=self.source,
                key=prefix,
            ) from exc
        logger.debug("Built %r for prefix %r", backend, prefix)
        return backend
