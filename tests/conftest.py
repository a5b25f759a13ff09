"""Shared fixtures for pys3sync tests."""

import hashlib
from typing import Any, Optional
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from pys3sync.output import OutputFormatter


def make_client_error(
    code: str, message: str = "", operation: str = "Operation"
) -> ClientError:
    """Build a botocore ClientError with the given error code."""
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


class FakePaginator:
    def __init__(self, client: "FakeS3Client"):
        self.client = client

    def paginate(self, Bucket: str, Prefix: str = "") -> list[dict[str, Any]]:
        self.client.list_calls += 1
        keys = sorted(k for k in self.client.objects if k.startswith(Prefix))
        pages = []
        for start in range(0, max(len(keys), 1), 1000):
            contents = [
                {
                    "Key": key,
                    "ETag": f'"{self.client.objects[key]["ETag"]}"',
                    "Size": len(self.client.objects[key]["Body"]),
                }
                for key in keys[start : start + 1000]
            ]
            pages.append({"Contents": contents} if contents else {})
        return pages


class FakeS3Client:
    """In-memory stand-in for a boto3 S3 client.

    Keeps objects in a dict and records the calls the sync makes.
    """

    def __init__(self, bucket_exists: bool = True, acl_supported: bool = True):
        self.bucket_exists = bucket_exists
        self.acl_supported = acl_supported
        self.objects: dict[str, dict[str, Any]] = {}
        self.list_calls = 0
        self.head_calls: list[str] = []
        self.put_calls: list[dict[str, Any]] = []
        self.delete_calls: list[list[str]] = []
        self.put_bucket_versioning = Mock()
        self.put_bucket_website = Mock()

    def add_object(
        self,
        key: str,
        body: bytes,
        metadata: Optional[dict[str, str]] = None,
        etag: Optional[str] = None,
        **headers: Any,
    ) -> None:
        self.objects[key] = {
            "Body": body,
            "ETag": etag or hashlib.md5(body).hexdigest(),
            "Metadata": metadata or {},
            **headers,
        }

    def head_bucket(self, Bucket: str) -> dict[str, Any]:
        if not self.bucket_exists:
            raise make_client_error("404", "Not Found", "HeadBucket")
        return {}

    def get_paginator(self, name: str) -> FakePaginator:
        assert name == "list_objects_v2"
        return FakePaginator(self)

    def head_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        self.head_calls.append(Key)
        if Key not in self.objects:
            raise make_client_error("404", "Not Found", "HeadObject")
        stored = self.objects[Key]
        response = {
            "ETag": f'"{stored["ETag"]}"',
            "ContentLength": len(stored["Body"]),
            "Metadata": dict(stored["Metadata"]),
        }
        for header in ("CacheControl", "ContentEncoding", "WebsiteRedirectLocation"):
            if header in stored:
                response[header] = stored[header]
        return response

    def put_object(self, Bucket: str, Key: str, Body: Any, **kwargs: Any) -> dict:
        self.put_calls.append({"Bucket": Bucket, "Key": Key, **kwargs})
        if "ACL" in kwargs and not self.acl_supported:
            raise make_client_error(
                "AccessControlListNotSupported",
                "The bucket does not allow ACLs",
                "PutObject",
            )
        data = Body.read()
        headers = {
            k: v
            for k, v in kwargs.items()
            if k in ("CacheControl", "ContentEncoding", "WebsiteRedirectLocation")
        }
        self.add_object(Key, data, metadata=kwargs.get("Metadata"), **headers)
        return {"ETag": f'"{self.objects[Key]["ETag"]}"'}

    def delete_objects(self, Bucket: str, Delete: dict[str, Any]) -> dict:
        keys = [item["Key"] for item in Delete["Objects"]]
        self.delete_calls.append(keys)
        for key in keys:
            self.objects.pop(key, None)
        return {"Deleted": [{"Key": key} for key in keys]}


@pytest.fixture
def s3_client():
    """Provide an empty in-memory S3 client."""
    return FakeS3Client()


@pytest.fixture
def cloudfront_client():
    """Provide a mock CloudFront client."""
    client = Mock()
    client.create_invalidation.return_value = {"Invalidation": {"Id": "I123"}}
    return client


@pytest.fixture
def mock_output():
    """Create a mock output formatter."""
    output = Mock(spec=OutputFormatter)
    output.quiet = True
    return output


@pytest.fixture
def build_dir(tmp_path):
    """Provide an empty build directory."""
    path = tmp_path / "build"
    path.mkdir()
    return path


@pytest.fixture
def client_error():
    """Provide a factory for botocore ClientErrors."""
    return make_client_error
