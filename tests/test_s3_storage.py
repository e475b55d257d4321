"""Unit tests for `unionstore.backends.S3Storage` using a mock boto3 client."""

import io
from typing import Any, Dict, List, Optional

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from unionstore.backends.s3 import RECYCLE_PREFIX, S3Storage, _is_transient
from unionstore.config import S3Config
from unionstore.exceptions import ObjectNotFoundError, StorageError
from tests.storage_suite import StorageContract

AWS_BUCKET = "test-bucket"


def client_error(code: str, status: int, operation: str = "HeadObject") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class DummyPaginator:
    """Mock paginator for list_objects_v2, two keys per page."""

    def __init__(self, objects: Dict[str, bytes]):
        self.objects = objects

    def paginate(self, Bucket: str, Prefix: str = "", **kwargs) -> List[Dict[str, Any]]:
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        pages = [keys[i : i + 2] for i in range(0, len(keys), 2)] or [[]]
        return [
            {"Contents": [{"Key": k, "Size": len(self.objects[k])} for k in page]}
            if page
            else {"KeyCount": 0}
            for page in pages
        ]


class DummyS3Client:
    """In-memory approximation of boto3 S3 client for testing."""

    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.ranges: List[Optional[str]] = []

    def put_object(self, Bucket: str, Key: str, Body: bytes, **kwargs) -> Dict[str, Any]:
        self.objects[Key] = Body
        return {}

    def upload_file(self, Filename: str, Bucket: str, Key: str) -> None:
        with open(Filename, "rb") as handle:
            self.objects[Key] = handle.read()

    def upload_fileobj(self, Fileobj, Bucket: str, Key: str) -> None:
        self.objects[Key] = Fileobj.read()

    def get_object(self, Bucket: str, Key: str, Range: Optional[str] = None) -> Dict[str, Any]:
        if Key not in self.objects:
            raise client_error("NoSuchKey", 404, "GetObject")
        self.ranges.append(Range)
        data = self.objects[Key]
        if Range:
            start, end = Range[len("bytes=") :].split("-")
            data = data[int(start) : int(end) + 1]
        return {"Body": io.BytesIO(data), "ContentLength": len(data)}

    def head_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        if Key not in self.objects:
            raise client_error("404", 404)
        return {"ContentLength": len(self.objects[Key])}

    def copy_object(self, Bucket: str, CopySource: Dict[str, str], Key: str) -> Dict[str, Any]:
        src_key = CopySource["Key"]
        if src_key not in self.objects:
            raise client_error("NoSuchKey", 404, "CopyObject")
        self.objects[Key] = self.objects[src_key]
        return {}

    def delete_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        self.objects.pop(Key, None)
        return {}

    def get_paginator(self, operation: str) -> DummyPaginator:
        return DummyPaginator(self.objects)


@pytest.fixture
def s3_client() -> DummyS3Client:
    return DummyS3Client()


@pytest.fixture
def s3_storage(s3_client: DummyS3Client) -> S3Storage:
    return S3Storage(S3Config(bucket=AWS_BUCKET), client=s3_client)


class TestS3StorageContract(StorageContract):
    @pytest.fixture
    def storage(self, s3_storage: S3Storage) -> S3Storage:
        return s3_storage

    @pytest.fixture
    def make_key(self):
        return lambda name: name

    @pytest.fixture
    def listed(self):
        return lambda key: key


def test_delete_moves_object_to_recycle(s3_storage: S3Storage, s3_client: DummyS3Client):
    s3_storage.upload_data(b"keep me", "reports/q1.csv")
    s3_storage.delete("reports/q1.csv")

    assert "reports/q1.csv" not in s3_client.objects
    assert s3_client.objects[RECYCLE_PREFIX + "reports/q1.csv"] == b"keep me"


def test_delete_directory_recycles_every_child(s3_storage: S3Storage, s3_client: DummyS3Client):
    for name in ("a", "b", "c"):
        s3_storage.upload_data(name.encode(), f"dir/{name}")
    s3_storage.upload_data(b"sibling", "dir2/x")

    s3_storage.delete_directory("dir")

    assert sorted(s3_client.objects) == [
        "_recycle/dir/a",
        "_recycle/dir/b",
        "_recycle/dir/c",
        "dir2/x",
    ]


def test_upload_overwrites(s3_storage: S3Storage):
    s3_storage.upload_data(b"v1", "data/file")
    s3_storage.upload_data(b"v2", "data/file")
    assert s3_storage.download_bytes("data/file") == b"v2"


def test_leading_slash_is_stripped(s3_storage: S3Storage, s3_client: DummyS3Client):
    s3_storage.upload_data(b"x", "/rooted/key")
    assert "rooted/key" in s3_client.objects


def test_range_request_uses_http_range_header(s3_storage: S3Storage, s3_client: DummyS3Client):
    s3_storage.upload_data(b"0123456789", "digits")
    assert s3_storage.download_range_bytes("digits", 3, 4) == b"3456"
    assert s3_client.ranges[-1] == "bytes=3-6"


def test_empty_range_is_not_requested(s3_storage: S3Storage, s3_client: DummyS3Client):
    s3_storage.upload_data(b"0123456789", "digits")

    assert s3_storage.download_range_bytes("digits", 3, 0) == b""
    assert s3_storage.download_range_reader("digits", 3, 0).read() == b""
    assert s3_client.ranges == []


def test_negative_range_is_rejected(s3_storage: S3Storage, s3_client: DummyS3Client):
    s3_storage.upload_data(b"0123456789", "digits")
    with pytest.raises(StorageError, match="invalid byte range"):
        s3_storage.download_range_reader("digits", -1, 4)
    assert s3_client.ranges == []


def test_list_prefix_follows_pagination(s3_storage: S3Storage):
    keys = [f"paged/{i}" for i in range(5)]
    for key in keys:
        s3_storage.upload_data(b"1", key)
    assert sorted(s3_storage.list_prefix("paged/")) == keys


def test_missing_object_maps_to_not_found(s3_storage: S3Storage):
    with pytest.raises(ObjectNotFoundError) as exc_info:
        s3_storage.download_bytes("missing")
    assert isinstance(exc_info.value.original_error, ClientError)
    assert exc_info.value.backend_type == "s3"


def test_access_denied_is_a_storage_error(s3_storage: S3Storage, s3_client: DummyS3Client):
    def denied(**kwargs):
        raise client_error("AccessDenied", 403, "PutObject")

    s3_client.put_object = denied

    with pytest.raises(StorageError) as exc_info:
        s3_storage.upload_data(b"x", "locked")
    assert not isinstance(exc_info.value, ObjectNotFoundError)
    assert "AccessDenied" in str(exc_info.value)


def test_transient_errors_are_retried(
    s3_storage: S3Storage, s3_client: DummyS3Client, monkeypatch: pytest.MonkeyPatch
):
    monkeypatch.setattr("time.sleep", lambda seconds: None)
    attempts = []
    original = s3_client.put_object

    def flaky(**kwargs):
        attempts.append(1)
        if len(attempts) < 3:
            raise client_error("SlowDown", 503, "PutObject")
        return original(**kwargs)

    s3_client.put_object = flaky

    s3_storage.upload_data(b"eventually", "flaky/key")

    assert len(attempts) == 3
    assert s3_storage.download_bytes("flaky/key") == b"eventually"


@pytest.mark.parametrize(
    "exc, expected",
    [
        (client_error("SlowDown", 503), True),
        (client_error("InternalError", 500), True),
        (client_error("Throttling", 429), True),
        (client_error("NoSuchKey", 404), False),
        (client_error("AccessDenied", 403), False),
        (EndpointConnectionError(endpoint_url="http://localhost:9000"), True),
        (ValueError("nope"), False),
    ],
)
def test_is_transient(exc, expected):
    assert _is_transient(exc) is expected


def test_client_built_from_config():
    config = S3Config(
        endpoint="localhost:9000",
        region="us-east-1",
        bucket=AWS_BUCKET,
        accessKey="minio",
        secretKey="minio123",
    )
    storage = S3Storage(config)
    assert storage.client.meta.endpoint_url == "http://localhost:9000"
    assert storage.scheme == "s3"
    assert "test-bucket" in repr(storage)
