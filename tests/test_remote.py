"""Tests for the remote object index."""

from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from pys3sync.sync.remote import RemoteObject, RemoteObjectIndex


class TestRemoteObject:
    """Tests for RemoteObject construction."""

    def test_from_listing(self):
        remote = RemoteObject.from_listing(
            {"Key": "site/a.html", "ETag": '"ABC"', "Size": 3}
        )
        assert remote.key == "site/a.html"
        assert remote.etag == "abc"
        assert remote.size == 3
        assert not remote.has_metadata

    def test_from_head(self):
        """Test metadata keys are read case-insensitively."""
        remote = RemoteObject.from_head(
            "a.html",
            {
                "ETag": '"abc"',
                "ContentLength": 3,
                "Metadata": {"Content-MD5": "def"},
                "CacheControl": "max-age=60",
                "ContentEncoding": "gzip",
                "WebsiteRedirectLocation": "/b.html",
            },
        )
        assert remote.content_hash_tag == "def"
        assert remote.cache_control == "max-age=60"
        assert remote.content_encoding == "gzip"
        assert remote.is_redirect
        assert remote.has_metadata


class TestRemoteObjectIndex:
    """Tests for listing and HEAD caching."""

    def test_listing_strips_prefix(self, s3_client):
        s3_client.add_object("site/", b"")
        s3_client.add_object("site/a.html", b"a")
        s3_client.add_object("site/css/b.css", b"b")
        s3_client.add_object("other/c.html", b"c")
        index = RemoteObjectIndex(s3_client, "bucket", "site/")
        assert set(index.objects) == {"a.html", "css/b.css"}
        assert index.objects["a.html"].key == "site/a.html"

    def test_listing_is_memoized(self, s3_client):
        s3_client.add_object("a.html", b"a")
        index = RemoteObjectIndex(s3_client, "bucket")
        index.objects
        index.objects
        assert s3_client.list_calls == 1

    def test_listing_paginates(self, s3_client):
        for i in range(1500):
            s3_client.add_object(f"f{i:04d}.txt", b"x")
        index = RemoteObjectIndex(s3_client, "bucket")
        assert len(index.objects) == 1500

    def test_head_not_found(self, s3_client):
        """Test a 404 on HEAD means no remote object."""
        index = RemoteObjectIndex(s3_client, "bucket")
        assert index.head("missing.html") is None

    def test_head_cached(self, s3_client):
        s3_client.add_object("a.html", b"a", metadata={"content-md5": "x"})
        index = RemoteObjectIndex(s3_client, "bucket")
        first = index.head("a.html")
        second = index.head("a.html")
        assert first is second
        assert first.content_hash_tag == "x"
        assert s3_client.head_calls == ["a.html"]

    def test_head_other_error_raised(self, client_error):
        client = Mock()
        client.head_object.side_effect = client_error("AccessDenied", "no")
        index = RemoteObjectIndex(client, "bucket")
        with pytest.raises(ClientError):
            index.head("a.html")

    def test_metadata_for_skips_head_when_loaded(self, s3_client):
        index = RemoteObjectIndex(s3_client, "bucket")
        remote = RemoteObject(key="a.html", has_metadata=True)
        assert index.metadata_for(remote) is remote
        assert s3_client.head_calls == []
