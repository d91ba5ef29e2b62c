"""
Object storage gateway.

Request handlers go through ObjectStorageService rather than the raw
storage client. It owns the rules that make stored files usable from
the application:

- Public assets are looked up under an ordered list of search prefixes.
- Private uploads live under one private root and are addressed by
  logical paths (/objects/uploads/<uuid>.<ext>) that never expire.
- Signed URLs are minted per request and never stored or reused.
- Downloads honour the object's ACL policy for cache headers.

Configuration is read once in __init__ and never changes, so a single
instance can serve concurrent requests.
"""

import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Optional
from urllib.parse import urlsplit
from uuid import uuid4

from fastapi.responses import JSONResponse, Response, StreamingResponse

from ...core.storage.acl import (
    ACL_POLICY_METADATA_KEY,
    ObjectAclPolicy,
    ObjectPermission,
    can_access_object,
)
from ...core.storage.paths import (
    OBJECT_PATH_PREFIX,
    ObjectNotFoundError,
    StoredObject,
    entity_id_from_object_path,
    parse_object_path,
)
from .client import ObjectMetadata, StorageClient, StorageConfigurationError, StorageError

logger = logging.getLogger(__name__)

UPLOAD_URL_TTL_SECONDS = 15 * 60
DEFAULT_READ_URL_TTL_SECONDS = 300
DEFAULT_CACHE_TTL_SECONDS = 3600
UPLOAD_CONTENT_TYPE = "application/octet-stream"

GCS_PUBLIC_HOST = "storage.googleapis.com"


@dataclass(frozen=True)
class UploadTarget:
    """
    Where to PUT a new file, and what to remember it by.

    upload_url expires after 15 minutes and must not be stored.
    object_path is the durable reference.
    """
    upload_url: str
    object_path: str


class ObjectStorageService:
    """Gateway over a StorageClient for public assets and private uploads."""

    def __init__(
        self,
        client: StorageClient,
        public_search_paths: list[str],
        private_object_dir: str,
    ) -> None:
        self._client = client
        self._public_search_paths = tuple(public_search_paths)
        self._private_object_dir = private_object_dir.rstrip("/")

    @property
    def public_search_paths(self) -> tuple[str, ...]:
        return self._public_search_paths

    @property
    def private_object_dir(self) -> str:
        if not self._private_object_dir:
            raise StorageConfigurationError(
                "PRIVATE_OBJECT_DIR not set. Point it at /<bucket>/<prefix> for private uploads."
            )
        return self._private_object_dir

    # -----------------------------------------------------------------------
    # Lookup
    # -----------------------------------------------------------------------

    async def locate_public_object(self, relative_path: str) -> Optional[StoredObject]:
        """
        Find a public asset by scanning search paths in order.

        The first prefix that holds the object wins. Returns None when
        none do; absence is a normal outcome here.
        """
        for search_path in self._public_search_paths:
            full_path = f"{search_path.rstrip('/')}/{relative_path.lstrip('/')}"
            try:
                candidate = parse_object_path(full_path)
            except ValueError:
                logger.warning(
                    "Skipping malformed public search path",
                    extra={"search_path": search_path}
                )
                continue

            if await self._client.exists(candidate):
                return candidate

        return None

    async def resolve_private_object(self, object_path: str) -> StoredObject:
        """
        Turn a /objects/... logical path into a handle.

        Raises ObjectNotFoundError for a wrong prefix and for an object
        the backend doesn't have; the two cases are indistinguishable.
        """
        entity_id = entity_id_from_object_path(object_path)
        obj = parse_object_path(f"{self.private_object_dir}/{entity_id}")

        if not await self._client.exists(obj):
            raise ObjectNotFoundError()
        return obj

    # -----------------------------------------------------------------------
    # Signed URLs
    # -----------------------------------------------------------------------

    async def create_upload_target(self, extension: Optional[str] = None) -> UploadTarget:
        """
        Reserve a new private object and mint a 15-minute upload URL.

        Each call uses a fresh UUID, so concurrent uploads never collide.
        """
        object_id = str(uuid4())
        suffix = f".{extension.lstrip('.')}" if extension and extension.lstrip(".") else ""
        entity_id = f"uploads/{object_id}{suffix}"

        obj = parse_object_path(f"{self.private_object_dir}/{entity_id}")
        upload_url = await self._client.generate_signed_url(
            obj,
            method="PUT",
            expires_in_seconds=UPLOAD_URL_TTL_SECONDS,
            content_type=UPLOAD_CONTENT_TYPE,
        )

        logger.info(
            "Issued upload URL",
            extra={"object_path": f"{OBJECT_PATH_PREFIX}{entity_id}"}
        )
        return UploadTarget(upload_url=upload_url, object_path=f"{OBJECT_PATH_PREFIX}{entity_id}")

    async def mint_read_url(
        self,
        object_path: str,
        ttl_seconds: int = DEFAULT_READ_URL_TTL_SECONDS,
    ) -> str:
        """Mint a signed GET URL for a private object. Never cached."""
        obj = await self.resolve_private_object(object_path)
        return await self._client.generate_signed_url(
            obj,
            method="GET",
            expires_in_seconds=ttl_seconds,
        )

    # -----------------------------------------------------------------------
    # ACL
    # -----------------------------------------------------------------------

    async def get_object_metadata(self, obj: StoredObject) -> ObjectMetadata:
        return await self._client.get_metadata(obj)

    @staticmethod
    def acl_policy_of(metadata: ObjectMetadata) -> Optional[ObjectAclPolicy]:
        """Policy stored in already-fetched metadata, or None."""
        return ObjectAclPolicy.from_metadata_value(metadata.custom.get(ACL_POLICY_METADATA_KEY))

    async def get_acl_policy(self, obj: StoredObject) -> Optional[ObjectAclPolicy]:
        return self.acl_policy_of(await self._client.get_metadata(obj))

    async def set_acl_policy(self, obj: StoredObject, policy: ObjectAclPolicy) -> None:
        await self._client.update_metadata(
            obj, {ACL_POLICY_METADATA_KEY: policy.to_metadata_value()}
        )

    async def can_access_object_entity(
        self,
        obj: StoredObject,
        user_id: Optional[str],
        requested_permission: ObjectPermission = ObjectPermission.READ,
    ) -> bool:
        policy = await self.get_acl_policy(obj)
        return can_access_object(user_id, policy, requested_permission)

    def normalize_object_path(self, raw_path: str) -> str:
        """
        Convert a raw GCS URL for a private object into a logical path.

        Upload clients only know the signed URL they PUT to; this maps
        https://storage.googleapis.com/<private root>/<id>?... back to
        /objects/<id>. Anything else is returned unchanged.
        """
        if not raw_path.startswith(f"https://{GCS_PUBLIC_HOST}/"):
            return raw_path

        object_entity_path = urlsplit(raw_path).path
        entity_dir = f"/{self.private_object_dir.lstrip('/')}/"
        if not object_entity_path.startswith(entity_dir):
            return object_entity_path

        return f"{OBJECT_PATH_PREFIX}{object_entity_path[len(entity_dir):]}"

    async def try_set_object_acl_policy(self, raw_path: str, policy: ObjectAclPolicy) -> str:
        """
        Attach policy to an uploaded object and return its logical path.

        Paths that don't normalize to /objects/... are returned as-is
        without touching storage.
        """
        object_path = self.normalize_object_path(raw_path)
        if not object_path.startswith(OBJECT_PATH_PREFIX):
            return object_path

        obj = await self.resolve_private_object(object_path)
        await self.set_acl_policy(obj, policy)

        logger.info(
            "Set object ACL policy",
            extra={
                "object_path": object_path,
                "visibility": policy.visibility.value,
            }
        )
        return object_path

    async def delete_object(self, object_path: str) -> None:
        obj = await self.resolve_private_object(object_path)
        await self._client.delete(obj)
        logger.info("Deleted object", extra={"object_path": object_path})

    # -----------------------------------------------------------------------
    # Download
    # -----------------------------------------------------------------------

    async def stream_download(
        self,
        obj: StoredObject,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        metadata: Optional[ObjectMetadata] = None,
    ) -> Response:
        """
        Build a streaming response for the object.

        Cache-Control scope follows the ACL policy: public objects may be
        cached by shared caches, everything else only by the browser.
        Pass metadata when the caller has already fetched it for an
        access check. Errors before headers go out become a generic 500;
        errors after that abort the stream.
        """
        try:
            if metadata is None:
                metadata = await self._client.get_metadata(obj)
            policy = self.acl_policy_of(metadata)
        except (StorageError, ObjectNotFoundError, ValueError) as e:
            logger.error(
                "Error downloading file",
                extra={"storage_path": obj.storage_path, "error": str(e)}
            )
            return JSONResponse(status_code=500, content={"error": "Error downloading file"})

        is_public = policy is not None and policy.is_public
        headers = {
            "Cache-Control": f"{'public' if is_public else 'private'}, max-age={cache_ttl_seconds}",
        }
        if metadata.size is not None:
            headers["Content-Length"] = str(metadata.size)

        return StreamingResponse(
            self._stream_body(obj),
            media_type=metadata.content_type or "application/octet-stream",
            headers=headers,
        )

    async def _stream_body(self, obj: StoredObject) -> AsyncIterator[bytes]:
        # aclosing releases the backend reader even if the client disconnects
        async with aclosing(self._client.iter_chunks(obj)) as chunks:
            try:
                async for chunk in chunks:
                    yield chunk
            except (StorageError, ObjectNotFoundError) as e:
                logger.error(
                    "Download aborted mid-stream",
                    extra={"storage_path": obj.storage_path, "error": str(e)}
                )
                raise
