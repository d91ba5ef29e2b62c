"""
Object storage client for uploaded files.

Wraps Google Cloud Storage behind a small protocol, with a mock mode
for local development.

The protocol only has the primitives the gateway needs: existence
checks, metadata, signed URLs, and chunked reads. Anything smarter
(search paths, logical paths, ACLs) lives in service.py so it can be
tested against the mock.

Mock mode stores objects in memory and hands out mock:// URLs that are
still unique per call, so code that relies on fresh URLs behaves the
same way it does against GCS.
"""

import asyncio
import hashlib
import hmac
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import AsyncIterator, Literal, Optional, Protocol
from urllib.parse import quote, urlencode

from google.api_core import exceptions as google_exceptions
from google.cloud import storage as gcs

from ...core.storage.paths import ObjectNotFoundError, StoredObject
from .credentials import GCSCredentials, build_gcs_client

logger = logging.getLogger(__name__)

SignedUrlMethod = Literal["GET", "PUT"]

DEFAULT_CHUNK_SIZE = 256 * 1024


class StorageError(Exception):
    """Raised when storage operations fail."""
    pass


class StorageConfigurationError(StorageError):
    """Raised when storage is used without the configuration it needs."""
    pass


@dataclass
class ObjectMetadata:
    """The subset of backend metadata the application reads."""
    content_type: Optional[str] = None
    size: Optional[int] = None
    custom: dict[str, str] = field(default_factory=dict)


class StorageClient(Protocol):
    """
    Object operations the gateway needs from a backend.

    Every method raises StorageError for backend failures; the ones
    that address a single object raise ObjectNotFoundError if it's gone.
    """

    async def exists(self, obj: StoredObject) -> bool:
        """Check whether the object exists."""
        ...

    async def get_metadata(self, obj: StoredObject) -> ObjectMetadata:
        """Fetch content type, size and custom metadata."""
        ...

    async def update_metadata(self, obj: StoredObject, custom: dict[str, str]) -> None:
        """Merge custom metadata keys into the object."""
        ...

    async def generate_signed_url(
        self,
        obj: StoredObject,
        method: SignedUrlMethod,
        expires_in_seconds: int,
        content_type: Optional[str] = None,
    ) -> str:
        """Mint a time-limited URL for one GET or PUT."""
        ...

    def iter_chunks(
        self,
        obj: StoredObject,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        """Stream the object's bytes. Closing the iterator releases the reader."""
        ...

    async def delete(self, obj: StoredObject) -> None:
        """Delete the object."""
        ...


class GCSStorageClient:
    """
    Google Cloud Storage client.

    The google-cloud-storage library is synchronous, so every call is
    pushed onto a worker thread with asyncio.to_thread to keep the event
    loop free while waiting on the network.
    """

    def __init__(self, client: gcs.Client) -> None:
        self._client = client

        logger.info(
            "Initialized GCS storage client",
            extra={"project": client.project}
        )

    @classmethod
    def from_credentials(cls, credentials: GCSCredentials) -> "GCSStorageClient":
        return cls(build_gcs_client(credentials))

    def _blob(self, obj: StoredObject) -> gcs.Blob:
        return self._client.bucket(obj.bucket_name).blob(obj.object_name)

    async def exists(self, obj: StoredObject) -> bool:
        try:
            return await asyncio.to_thread(self._blob(obj).exists)
        except google_exceptions.GoogleAPIError as e:
            logger.error(
                "Failed to check object existence",
                extra={"storage_path": obj.storage_path, "error": str(e)}
            )
            raise StorageError(f"Existence check failed: {e}")

    async def get_metadata(self, obj: StoredObject) -> ObjectMetadata:
        blob = self._blob(obj)
        try:
            await asyncio.to_thread(blob.reload)
        except google_exceptions.NotFound:
            raise ObjectNotFoundError()
        except google_exceptions.GoogleAPIError as e:
            logger.error(
                "Failed to fetch object metadata",
                extra={"storage_path": obj.storage_path, "error": str(e)}
            )
            raise StorageError(f"Metadata fetch failed: {e}")

        return ObjectMetadata(
            content_type=blob.content_type,
            size=blob.size,
            custom=dict(blob.metadata or {}),
        )

    async def update_metadata(self, obj: StoredObject, custom: dict[str, str]) -> None:
        blob = self._blob(obj)
        try:
            await asyncio.to_thread(blob.reload)
            merged = dict(blob.metadata or {})
            merged.update(custom)
            blob.metadata = merged
            await asyncio.to_thread(blob.patch)
        except google_exceptions.NotFound:
            raise ObjectNotFoundError()
        except google_exceptions.GoogleAPIError as e:
            logger.error(
                "Failed to update object metadata",
                extra={"storage_path": obj.storage_path, "error": str(e)}
            )
            raise StorageError(f"Metadata update failed: {e}")

    async def generate_signed_url(
        self,
        obj: StoredObject,
        method: SignedUrlMethod,
        expires_in_seconds: int,
        content_type: Optional[str] = None,
    ) -> str:
        """
        Generate a V4 signed URL.

        Signing needs a service account key (or IAM signBlob access when
        running on GCP with default credentials).
        """
        blob = self._blob(obj)
        try:
            return await asyncio.to_thread(
                blob.generate_signed_url,
                version="v4",
                method=method,
                expiration=timedelta(seconds=expires_in_seconds),
                content_type=content_type,
            )
        except (google_exceptions.GoogleAPIError, ValueError, AttributeError) as e:
            # ValueError/AttributeError: credentials can't sign
            logger.error(
                "Failed to generate signed URL",
                extra={"storage_path": obj.storage_path, "method": method, "error": str(e)}
            )
            raise StorageError(f"Signed URL generation failed: {e}")

    async def iter_chunks(
        self,
        obj: StoredObject,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        blob = self._blob(obj)
        try:
            reader = await asyncio.to_thread(blob.open, "rb", chunk_size=chunk_size)
        except google_exceptions.NotFound:
            raise ObjectNotFoundError()
        except google_exceptions.GoogleAPIError as e:
            raise StorageError(f"Download failed: {e}")

        try:
            while True:
                try:
                    chunk = await asyncio.to_thread(reader.read, chunk_size)
                except google_exceptions.NotFound:
                    raise ObjectNotFoundError()
                except google_exceptions.GoogleAPIError as e:
                    raise StorageError(f"Download failed: {e}")
                if not chunk:
                    break
                yield chunk
        finally:
            reader.close()
            logger.debug("Closed object reader", extra={"storage_path": obj.storage_path})

    async def delete(self, obj: StoredObject) -> None:
        try:
            await asyncio.to_thread(self._blob(obj).delete)
        except google_exceptions.NotFound:
            raise ObjectNotFoundError()
        except google_exceptions.GoogleAPIError as e:
            logger.error(
                "Failed to delete object",
                extra={"storage_path": obj.storage_path, "error": str(e)}
            )
            raise StorageError(f"Delete failed: {e}")


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

@dataclass
class _MockObject:
    data: bytes
    content_type: Optional[str] = None
    custom: dict[str, str] = field(default_factory=dict)


class MockStorageClient:
    """
    In-memory backend keyed by storage path.

    This mock enables testing the full API flow without provisioning a
    bucket. Objects are stored in a dictionary keyed by storage path and
    "signed URLs" are mock URIs carrying an expiry, a nonce and an HMAC,
    so no two are alike.

    Selected by GCS_MOCK_MODE and used throughout the test suite.
    """

    def __init__(self) -> None:
        self._objects: dict[str, _MockObject] = {}
        self._signing_key = secrets.token_bytes(32)
        # Number of streams currently open, for leak checks in tests
        self.open_readers = 0
        logger.info("Initialized mock storage client (in-memory)")

    def put_object(
        self,
        obj: StoredObject,
        data: bytes,
        content_type: Optional[str] = None,
        custom: Optional[dict[str, str]] = None,
    ) -> None:
        """Store bytes directly, standing in for a client PUT to a signed URL."""
        self._objects[obj.storage_path] = _MockObject(
            data=data,
            content_type=content_type,
            custom=dict(custom or {}),
        )

    def _get(self, obj: StoredObject) -> _MockObject:
        stored = self._objects.get(obj.storage_path)
        if stored is None:
            raise ObjectNotFoundError()
        return stored

    async def exists(self, obj: StoredObject) -> bool:
        return obj.storage_path in self._objects

    async def get_metadata(self, obj: StoredObject) -> ObjectMetadata:
        stored = self._get(obj)
        return ObjectMetadata(
            content_type=stored.content_type,
            size=len(stored.data),
            custom=dict(stored.custom),
        )

    async def update_metadata(self, obj: StoredObject, custom: dict[str, str]) -> None:
        self._get(obj).custom.update(custom)

    async def generate_signed_url(
        self,
        obj: StoredObject,
        method: SignedUrlMethod,
        expires_in_seconds: int,
        content_type: Optional[str] = None,
    ) -> str:
        expires_at = int(time.time()) + expires_in_seconds
        nonce = secrets.token_hex(8)
        payload = f"{method}\n{obj.storage_path}\n{expires_at}\n{nonce}".encode()
        signature = hmac.new(self._signing_key, payload, hashlib.sha256).hexdigest()

        params = {
            "X-Method": method,
            "X-Expires": expires_at,
            "X-Nonce": nonce,
            "X-Signature": signature,
        }
        if content_type:
            params["X-Content-Type"] = content_type

        return f"mock://storage{quote(obj.storage_path)}?{urlencode(params)}"

    async def iter_chunks(
        self,
        obj: StoredObject,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        data = self._get(obj).data
        self.open_readers += 1
        try:
            for offset in range(0, len(data), chunk_size):
                yield data[offset:offset + chunk_size]
        finally:
            self.open_readers -= 1

    async def delete(self, obj: StoredObject) -> None:
        self._get(obj)
        del self._objects[obj.storage_path]

        logger.debug(
            "Deleted object from mock storage",
            extra={"storage_path": obj.storage_path}
        )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_storage_client(
    credentials: Optional[GCSCredentials] = None,
    mock_mode: bool = False,
) -> StorageClient:
    """
    Build the in-memory client or a GCS client for the resolved credentials.

    Args:
        credentials: Output of resolve_gcs_credentials; required unless mock_mode
        mock_mode: Return a MockStorageClient
    """
    if mock_mode:
        return MockStorageClient()

    if credentials is None:
        raise ValueError("credentials are required when not in mock mode")

    return GCSStorageClient.from_credentials(credentials)
