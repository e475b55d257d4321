"""Tests for prefix-based config selection and the prefix-routed backend."""

import threading
from pathlib import Path
from typing import Dict

import pytest

from unionstore.backends.multi import PrefixRoutedStorage
from unionstore.config import S3Config
from unionstore.exceptions import ConfigNotFoundError, ConfigurationError
from unionstore.selector import (
    PrefixConfigSelector,
    ReadWriteLock,
    is_key_starts_with_prefix,
)
from tests.doubles import MemoryStorage
from tests.storage_suite import StorageContract


@pytest.mark.parametrize(
    "key, prefix, expected",
    [
        ("prefix1/x", "prefix1", True),
        ("prefix1/", "prefix1", True),
        ("prefix1", "prefix1", True),
        ("prefix1/deep/er", "prefix1/", True),
        ("prefix12/x", "prefix1", False),
        ("other/prefix1/x", "prefix1", False),
    ],
)
def test_is_key_starts_with_prefix(key: str, prefix: str, expected: bool) -> None:
    assert is_key_starts_with_prefix(key, prefix) is expected


def build_selector(table: Dict[str, str], **kwargs) -> PrefixConfigSelector:
    return PrefixConfigSelector(table, MemoryStorage, **kwargs)


class TestPrefixConfigSelector:
    def test_selects_config_for_matching_prefix(self) -> None:
        selector = build_selector({"prefix1": "one", "prefix12": "twelve"})

        assert selector.select("prefix1/x") == ("prefix1", "one")
        assert selector.select("prefix1/") == ("prefix1", "one")
        assert selector.select("prefix12/x") == ("prefix12", "twelve")

    def test_first_declared_prefix_wins(self) -> None:
        selector = build_selector({"tenant": "outer", "tenant/special": "inner"})
        assert selector.select("tenant/special/file") == ("tenant", "outer")

    def test_no_match_raises_config_not_found(self) -> None:
        selector = build_selector({"prefix1": "one"}, source="tenants.toml")

        with pytest.raises(ConfigNotFoundError) as exc_info:
            selector.select_and_build("prefix12/x")

        assert "no configuration found for key: prefix12/x" in str(exc_info.value)
        assert exc_info.value.key == "prefix12/x"
        assert exc_info.value.config_path == "tenants.toml"

    def test_builds_fresh_backend_by_default(self) -> None:
        selector = build_selector({"a": "cfg"})
        first = selector.select_and_build("a/1")
        second = selector.select_and_build("a/2")

        assert isinstance(first, MemoryStorage)
        assert first is not second
        assert first.name == "cfg"

    def test_cache_clients_reuses_backend_per_prefix(self) -> None:
        built = []

        def factory(config: str) -> MemoryStorage:
            built.append(config)
            return MemoryStorage(config)

        selector = PrefixConfigSelector({"a": "cfg-a", "b": "cfg-b"}, factory, cache_clients=True)

        assert selector.select_and_build("a/1") is selector.select_and_build("a/2")
        assert selector.select_and_build("b/1") is not selector.select_and_build("a/1")
        assert built == ["cfg-a", "cfg-b"]

    def test_concurrent_lookups_share_cached_backend(self) -> None:
        selector = build_selector({"shared": "cfg"}, cache_clients=True)
        results = []
        lock = threading.Lock()

        def resolve() -> None:
            backend = selector.select_and_build("shared/key")
            with lock:
                results.append(backend)

        threads = [threading.Thread(target=resolve) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 16
        assert all(backend is results[0] for backend in results)

    def test_factory_failure_becomes_configuration_error(self) -> None:
        def factory(config: str) -> MemoryStorage:
            raise ValueError("bad credentials")

        selector = PrefixConfigSelector({"a": "cfg"}, factory)

        with pytest.raises(ConfigurationError, match="bad credentials"):
            selector.select_and_build("a/key")

    def test_from_file_keeps_declaration_order(self, tmp_path: Path) -> None:
        config_file = tmp_path / "tenants.yaml"
        config_file.write_text(
            "zeta:\n  bucket: bucket-z\n"
            "alpha:\n  bucket: bucket-a\n",
            encoding="utf-8",
        )

        selector = PrefixConfigSelector.from_file(
            config_file, S3Config, lambda cfg: MemoryStorage(cfg.bucket)
        )

        assert selector.prefixes == ("zeta", "alpha")
        assert selector.select_and_build("alpha/x").name == "bucket-a"


class TestReadWriteLock:
    def test_writer_waits_for_readers(self) -> None:
        rw = ReadWriteLock()
        writer_done = threading.Event()

        def write() -> None:
            with rw.write():
                writer_done.set()

        with rw.read():
            thread = threading.Thread(target=write)
            thread.start()
            assert not writer_done.wait(0.1)

        assert writer_done.wait(2)
        thread.join()

    def test_readers_share_the_lock(self) -> None:
        rw = ReadWriteLock()
        inner_acquired = threading.Event()

        def read() -> None:
            with rw.read():
                inner_acquired.set()

        with rw.read():
            thread = threading.Thread(target=read)
            thread.start()
            assert inner_acquired.wait(2)
        thread.join()


class TestPrefixRoutedStorage:
    @pytest.fixture
    def tenants(self) -> Dict[str, MemoryStorage]:
        return {"bucket-a": MemoryStorage("bucket-a"), "bucket-b": MemoryStorage("bucket-b")}

    @pytest.fixture
    def routed(self, tenants) -> PrefixRoutedStorage:
        table = {"tenant-a": "bucket-a", "tenant-b": "bucket-b"}
        return PrefixRoutedStorage(PrefixConfigSelector(table, tenants.__getitem__))

    def test_full_key_is_forwarded_to_tenant_backend(self, routed, tenants) -> None:
        routed.upload_data(b"a-data", "tenant-a/report.csv")
        routed.upload_data(b"b-data", "tenant-b/report.csv")

        assert tenants["bucket-a"].objects == {"tenant-a/report.csv": b"a-data"}
        assert tenants["bucket-b"].objects == {"tenant-b/report.csv": b"b-data"}
        assert routed.download_bytes("tenant-b/report.csv") == b"b-data"

    def test_unmatched_key_fails(self, routed) -> None:
        with pytest.raises(ConfigNotFoundError):
            routed.exists("tenant-c/report.csv")


class TestPrefixRoutedStorageContract(StorageContract):
    @pytest.fixture
    def storage(self) -> PrefixRoutedStorage:
        backend = MemoryStorage("only")
        return PrefixRoutedStorage(PrefixConfigSelector({"tenant": "cfg"}, lambda cfg: backend))

    @pytest.fixture
    def make_key(self):
        return lambda name: f"tenant/{name}"

    @pytest.fixture
    def listed(self):
        return lambda key: key
