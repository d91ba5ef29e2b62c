"""
Unit tests for the object storage gateway.

These run the real ObjectStorageService against the in-memory
MockStorageClient, so they exercise path handling, search order, ACL
metadata and streaming without a bucket.
"""

import asyncio
import re

import pytest

from bizops.core.storage.acl import (
    ACL_POLICY_METADATA_KEY,
    ObjectAclPolicy,
    ObjectPermission,
    ObjectVisibility,
)
from bizops.core.storage.paths import ObjectNotFoundError, StoredObject, parse_object_path
from bizops.infrastructure.storage.client import (
    MockStorageClient,
    StorageConfigurationError,
    StorageError,
)
from bizops.infrastructure.storage.service import ObjectStorageService

PRIVATE_DIR = "/private-bucket/.private"


@pytest.fixture
def client():
    return MockStorageClient()


@pytest.fixture
def service(client):
    return ObjectStorageService(
        client=client,
        public_search_paths=["/assets-bucket/a", "/assets-bucket/b"],
        private_object_dir=PRIVATE_DIR,
    )


def private_object(object_path: str) -> StoredObject:
    """Backend handle for a /objects/... path under PRIVATE_DIR."""
    return parse_object_path(f"{PRIVATE_DIR}/{object_path[len('/objects/'):]}")


def public_policy(owner="user-1"):
    return ObjectAclPolicy(owner=owner, visibility=ObjectVisibility.PUBLIC)


def private_policy(owner="user-1"):
    return ObjectAclPolicy(owner=owner, visibility=ObjectVisibility.PRIVATE)


async def read_body(response) -> bytes:
    chunks = []
    async for chunk in response.body_iterator:
        chunks.append(chunk)
    return b"".join(chunks)


# ---------------------------------------------------------------------------
# Path Parsing Tests
# ---------------------------------------------------------------------------

class TestParseObjectPath:

    def test_splits_bucket_and_object(self):
        obj = parse_object_path("/bucket/dir/file.png")

        assert obj.bucket_name == "bucket"
        assert obj.object_name == "dir/file.png"
        assert obj.storage_path == "/bucket/dir/file.png"

    def test_leading_slash_is_optional(self):
        assert parse_object_path("bucket/file.png") == StoredObject("bucket", "file.png")

    def test_bucket_only_is_rejected(self):
        with pytest.raises(ValueError):
            parse_object_path("/bucket")


# ---------------------------------------------------------------------------
# Public Object Tests
# ---------------------------------------------------------------------------

class TestLocatePublicObject:

    def test_first_search_path_wins(self, service, client):
        """When both prefixes have the file, the earlier one is returned."""
        client.put_object(StoredObject("assets-bucket", "a/foo.txt"), b"from a")
        client.put_object(StoredObject("assets-bucket", "b/foo.txt"), b"from b")

        found = asyncio.run(service.locate_public_object("foo.txt"))

        assert found == StoredObject("assets-bucket", "a/foo.txt")

    def test_falls_through_to_later_paths(self, service, client):
        client.put_object(StoredObject("assets-bucket", "b/logo.svg"), b"<svg/>")

        found = asyncio.run(service.locate_public_object("logo.svg"))

        assert found == StoredObject("assets-bucket", "b/logo.svg")

    def test_missing_everywhere_returns_none(self, service):
        assert asyncio.run(service.locate_public_object("nope.txt")) is None

    def test_no_search_paths_returns_none(self, client):
        service = ObjectStorageService(client, public_search_paths=[], private_object_dir=PRIVATE_DIR)

        assert asyncio.run(service.locate_public_object("foo.txt")) is None


# ---------------------------------------------------------------------------
# Private Object Tests
# ---------------------------------------------------------------------------

class TestResolvePrivateObject:

    def test_wrong_prefix_and_missing_object_look_the_same(self, service):
        """Malformed paths and absent objects both raise ObjectNotFoundError."""
        with pytest.raises(ObjectNotFoundError):
            asyncio.run(service.resolve_private_object("/wrong-prefix/x"))

        with pytest.raises(ObjectNotFoundError):
            asyncio.run(service.resolve_private_object("/objects/does-not-exist"))

    def test_bare_prefix_is_not_found(self, service):
        with pytest.raises(ObjectNotFoundError):
            asyncio.run(service.resolve_private_object("/objects/"))

    def test_existing_object_resolves_under_private_root(self, service, client):
        client.put_object(StoredObject("private-bucket", ".private/uploads/abc.pdf"), b"%PDF")

        obj = asyncio.run(service.resolve_private_object("/objects/uploads/abc.pdf"))

        assert obj == StoredObject("private-bucket", ".private/uploads/abc.pdf")

    def test_trailing_slash_on_private_root_is_ignored(self, client):
        service = ObjectStorageService(client, [], private_object_dir=PRIVATE_DIR + "/")
        client.put_object(StoredObject("private-bucket", ".private/uploads/abc.pdf"), b"%PDF")

        obj = asyncio.run(service.resolve_private_object("/objects/uploads/abc.pdf"))

        assert obj.object_name == ".private/uploads/abc.pdf"

    def test_unconfigured_private_root_is_a_storage_error(self, client):
        service = ObjectStorageService(client, [], private_object_dir="")

        with pytest.raises(StorageConfigurationError):
            asyncio.run(service.resolve_private_object("/objects/uploads/abc.pdf"))


class TestCreateUploadTarget:

    UUID_PATTERN = r"[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}"

    def test_logical_path_has_uuid_and_extension(self, service):
        target = asyncio.run(service.create_upload_target("png"))

        assert re.fullmatch(rf"/objects/uploads/{self.UUID_PATTERN}\.png", target.object_path)

    def test_upload_url_is_a_signed_put(self, service):
        target = asyncio.run(service.create_upload_target("png"))

        assert "X-Method=PUT" in target.upload_url
        assert "X-Signature=" in target.upload_url
        assert target.object_path[len("/objects/"):] in target.upload_url

    def test_extension_is_optional(self, service):
        target = asyncio.run(service.create_upload_target())

        assert re.fullmatch(rf"/objects/uploads/{self.UUID_PATTERN}", target.object_path)

    def test_leading_dot_is_tolerated(self, service):
        target = asyncio.run(service.create_upload_target(".jpg"))

        assert target.object_path.endswith(".jpg")
        assert ".." not in target.object_path

    def test_every_call_reserves_a_new_object(self, service):
        first = asyncio.run(service.create_upload_target("png"))
        second = asyncio.run(service.create_upload_target("png"))

        assert first.object_path != second.object_path

    def test_uploaded_object_can_be_resolved(self, service, client):
        """Once bytes land at the reserved key, the logical path resolves."""
        target = asyncio.run(service.create_upload_target("png"))
        client.put_object(private_object(target.object_path), b"\x89PNG")

        obj = asyncio.run(service.resolve_private_object(target.object_path))

        assert obj == private_object(target.object_path)


class TestMintReadUrl:

    def test_each_call_mints_a_fresh_url(self, service, client):
        client.put_object(private_object("/objects/uploads/doc.pdf"), b"%PDF")

        first = asyncio.run(service.mint_read_url("/objects/uploads/doc.pdf"))
        second = asyncio.run(service.mint_read_url("/objects/uploads/doc.pdf"))

        assert first != second
        assert "X-Method=GET" in first

    def test_missing_object_is_not_found(self, service):
        with pytest.raises(ObjectNotFoundError):
            asyncio.run(service.mint_read_url("/objects/uploads/missing.pdf"))


# ---------------------------------------------------------------------------
# ACL Tests
# ---------------------------------------------------------------------------

class TestObjectAcl:

    def test_policy_is_stored_in_object_metadata(self, service, client):
        obj = private_object("/objects/uploads/a.png")
        client.put_object(obj, b"img")

        path = asyncio.run(service.try_set_object_acl_policy("/objects/uploads/a.png", public_policy()))
        metadata = asyncio.run(client.get_metadata(obj))

        assert path == "/objects/uploads/a.png"
        assert ACL_POLICY_METADATA_KEY in metadata.custom
        assert asyncio.run(service.get_acl_policy(obj)) == public_policy()

    def test_gcs_url_is_normalized_to_logical_path(self, service, client):
        obj = private_object("/objects/uploads/b.png")
        client.put_object(obj, b"img")
        raw = "https://storage.googleapis.com/private-bucket/.private/uploads/b.png?X-Goog-Signature=abc"

        path = asyncio.run(service.try_set_object_acl_policy(raw, private_policy()))

        assert path == "/objects/uploads/b.png"
        assert asyncio.run(service.get_acl_policy(obj)).visibility == ObjectVisibility.PRIVATE

    def test_paths_outside_objects_are_returned_untouched(self, service):
        path = asyncio.run(service.try_set_object_acl_policy("/somewhere/else.png", public_policy()))

        assert path == "/somewhere/else.png"

    def test_can_access_object_entity_uses_policy(self, service, client):
        obj = private_object("/objects/uploads/c.png")
        client.put_object(obj, b"img", custom={ACL_POLICY_METADATA_KEY: private_policy("owner").model_dump_json()})

        assert asyncio.run(service.can_access_object_entity(obj, "owner", ObjectPermission.READ))
        assert not asyncio.run(service.can_access_object_entity(obj, "someone-else", ObjectPermission.READ))
        assert not asyncio.run(service.can_access_object_entity(obj, None, ObjectPermission.READ))

    def test_delete_object(self, service, client):
        obj = private_object("/objects/uploads/d.png")
        client.put_object(obj, b"img")

        asyncio.run(service.delete_object("/objects/uploads/d.png"))

        assert not asyncio.run(client.exists(obj))


# ---------------------------------------------------------------------------
# Download Tests
# ---------------------------------------------------------------------------

class TestStreamDownload:

    def test_public_object_gets_public_cache_header(self, service, client):
        obj = private_object("/objects/uploads/pub.png")
        client.put_object(
            obj, b"public bytes", content_type="image/png",
            custom={ACL_POLICY_METADATA_KEY: public_policy().model_dump_json()},
        )

        response = asyncio.run(service.stream_download(obj, cache_ttl_seconds=120))

        assert response.status_code == 200
        assert response.headers["cache-control"] == "public, max-age=120"
        assert response.headers["content-type"] == "image/png"
        assert response.headers["content-length"] == str(len(b"public bytes"))
        assert asyncio.run(read_body(response)) == b"public bytes"

    def test_private_object_gets_private_cache_header(self, service, client):
        obj = private_object("/objects/uploads/priv.pdf")
        client.put_object(
            obj, b"secret", content_type="application/pdf",
            custom={ACL_POLICY_METADATA_KEY: private_policy().model_dump_json()},
        )

        response = asyncio.run(service.stream_download(obj))

        assert response.headers["cache-control"] == "private, max-age=3600"

    def test_object_without_policy_is_treated_as_private(self, service, client):
        obj = private_object("/objects/uploads/nopolicy.bin")
        client.put_object(obj, b"data")

        response = asyncio.run(service.stream_download(obj))

        assert response.headers["cache-control"].startswith("private")
        assert response.headers["content-type"] == "application/octet-stream"

    def test_failure_before_headers_is_a_generic_500(self, service):
        response = asyncio.run(service.stream_download(StoredObject("private-bucket", "gone.png")))

        assert response.status_code == 500
        assert response.body == b'{"error":"Error downloading file"}'

    def test_reader_is_released_when_client_stops_reading(self, service, client):
        """Abandoning the stream after one chunk still closes the backend reader."""
        obj = private_object("/objects/uploads/big.bin")
        client.put_object(obj, b"x" * (3 * 256 * 1024))

        async def read_one_chunk_then_disconnect():
            response = await service.stream_download(obj)
            body = response.body_iterator
            first = await body.__anext__()
            assert client.open_readers == 1
            await body.aclose()
            return first

        first = asyncio.run(read_one_chunk_then_disconnect())

        assert len(first) == 256 * 1024
        assert client.open_readers == 0

    def test_failure_mid_stream_aborts(self, service, client):
        class FlakyClient(MockStorageClient):
            async def iter_chunks(self, obj, chunk_size=256 * 1024):
                yield b"partial"
                raise StorageError("connection reset")

        flaky = FlakyClient()
        obj = private_object("/objects/uploads/flaky.bin")
        flaky.put_object(obj, b"partial and more")
        service = ObjectStorageService(flaky, [], PRIVATE_DIR)

        response = asyncio.run(service.stream_download(obj))

        assert response.status_code == 200
        with pytest.raises(StorageError):
            asyncio.run(read_body(response))
