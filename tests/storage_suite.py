"""Behaviour shared by every backend and by the union store.

Test classes inherit from :class:`StorageContract` and provide three
fixtures: ``storage`` (the backend under test), ``make_key`` (turns a
relative name into a key for that backend) and ``listed`` (the form in
which ``list_prefix`` reports a key).
"""

import io
from pathlib import Path

import pytest

from unionstore.exceptions import UnionStoreError


class StorageContract:
    def test_round_trip(self, storage, make_key) -> None:
        """Upload, download, delete; a second delete fails."""
        key = make_key("roundtrip/hello.txt")
        storage.upload_data(b"hello union", key)

        assert storage.download_bytes(key) == b"hello union"
        assert storage.exists(key) is True

        storage.delete(key)
        assert storage.exists(key) is False
        with pytest.raises(UnionStoreError):
            storage.delete(key)

    def test_download_range_bytes(self, storage, make_key) -> None:
        key = make_key("range/data.txt")
        storage.upload_data(b"download-range-bytes", key)
        assert storage.download_range_bytes(key, 9, 5) == b"range"

    def test_download_range_reader(self, storage, make_key) -> None:
        key = make_key("range/reader.txt")
        storage.upload_data(b"download-range-bytes", key)
        reader = storage.download_range_reader(key, 9, 5)
        try:
            assert reader.read() == b"range"
        finally:
            reader.close()

    def test_download_reader(self, storage, make_key) -> None:
        key = make_key("reader/full.txt")
        storage.upload_data(b"full contents", key)
        reader = storage.download_reader(key)
        try:
            assert reader.read() == b"full contents"
        finally:
            reader.close()

    def test_stat_reports_size(self, storage, make_key) -> None:
        key = make_key("stat/sized.bin")
        storage.upload_data(b"x" * 42, key)
        assert storage.stat(key).size == 42

    def test_missing_key_fails_reads(self, storage, make_key) -> None:
        key = make_key("missing/nothing.bin")
        assert storage.exists(key) is False
        with pytest.raises(UnionStoreError):
            storage.stat(key)
        with pytest.raises(UnionStoreError):
            storage.download_bytes(key)

    def test_upload_file(self, storage, make_key, tmp_path: Path) -> None:
        src = tmp_path / "source.csv"
        src.write_bytes(b"id,name\n1,alpha\n")
        key = make_key("files/source.csv")

        storage.upload(str(src), key)

        assert storage.download_bytes(key) == b"id,name\n1,alpha\n"

    def test_upload_from_reader(self, storage, make_key) -> None:
        key = make_key("streams/payload.bin")
        payload = b"streamed" * 100
        storage.upload_from_reader(io.BytesIO(payload), len(payload), key)
        assert storage.download_bytes(key) == payload

    def test_list_prefix_returns_uploaded_keys(self, storage, make_key, listed) -> None:
        keys = [make_key(f"listing/{name}") for name in ("a.txt", "b.txt", "c.txt")]
        for key in keys:
            storage.upload_data(b"listed", key)

        result = storage.list_prefix(make_key("listing") + "/")

        assert set(result) == {listed(key) for key in keys}

    def test_delete_directory(self, storage, make_key) -> None:
        keys = [make_key("trash/one.txt"), make_key("trash/two.txt")]
        for key in keys:
            storage.upload_data(b"bye", key)

        storage.delete_directory(make_key("trash"))

        assert not any(storage.exists(key) for key in keys)
        # Removing it again is not an error
        storage.delete_directory(make_key("trash"))
