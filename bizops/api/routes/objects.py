"""
Object storage API endpoints.

Upload flow:
1. Client asks for an upload target: POST /api/objects/upload
2. Client PUTs the file straight to the signed URL (never through us)
3. Client attaches an ACL: PUT /api/objects/acl
4. The logical /objects/... path is stored wherever the file is referenced

Serving:
- GET /objects/{path}: private uploads, streamed through the API so
  the ACL is checked on every request
- GET /public-objects/{path}: static assets from the public search paths
- GET /api/objects/download-url: a short-lived signed URL, for large
  files the browser should fetch from storage directly
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import Response
from pydantic import BaseModel, Field

from ...core.storage.acl import (
    ObjectAclPolicy,
    ObjectPermission,
    ObjectVisibility,
    can_access_object,
)
from ...core.storage.paths import OBJECT_PATH_PREFIX, ObjectNotFoundError
from ...infrastructure.storage.client import StorageError
from ..dependencies import (
    AuthenticatedClient,
    CurrentUserId,
    ObjectStorageDep,
    RequiredUserId,
    SettingsDep,
)

logger = logging.getLogger(__name__)

# API endpoints (X-API-Key required)
router = APIRouter()

# Browser-facing endpoints used directly in <img src>, no API key
public_router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class UploadRequest(BaseModel):
    """Request for a signed upload URL."""
    file_extension: Optional[str] = Field(
        default=None,
        max_length=16,
        description="Extension of the file to upload, e.g. 'png'"
    )
    file_size: Optional[int] = Field(
        default=None,
        ge=0,
        description="Size in bytes, checked against the upload limit when given"
    )


class UploadResponse(BaseModel):
    """Signed upload URL plus the durable path to store."""
    upload_url: str = Field(description="Signed PUT URL, valid for 15 minutes")
    object_path: str = Field(description="Logical path to persist, e.g. /objects/uploads/<id>.png")


class AclRequest(BaseModel):
    """Attach an ACL policy to an uploaded object."""
    object_path: str = Field(
        min_length=1,
        description="Logical /objects/... path or the raw storage URL that was uploaded to"
    )
    visibility: ObjectVisibility = Field(
        default=ObjectVisibility.PRIVATE,
        description="public objects can be read by anyone"
    )


class AclResponse(BaseModel):
    object_path: str = Field(description="Normalized logical path")


class DownloadUrlResponse(BaseModel):
    download_url: str = Field(description="Signed GET URL")
    expires_in: int = Field(description="Seconds until the URL expires")


# ---------------------------------------------------------------------------
# API Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a signed upload URL",
)
async def request_upload_url(
    request: UploadRequest,
    api_key: AuthenticatedClient,
    settings: SettingsDep,
    storage: ObjectStorageDep,
) -> UploadResponse:
    """
    Issue a 15-minute signed URL for a new private object.

    The extension is validated against the allow-list and the declared
    size against the upload limit before anything is signed.
    """
    extension = None
    if request.file_extension:
        extension = request.file_extension.strip().lower().lstrip(".")
        if extension not in settings.allowed_upload_extensions_list:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="File type not allowed",
            )

    if request.file_size is not None and request.file_size > settings.max_upload_size_bytes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File too large. Maximum size is {settings.max_upload_size_mb}MB",
        )

    try:
        target = await storage.create_upload_target(extension)
    except StorageError as e:
        logger.error("Failed to get upload URL", extra={"error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get upload URL",
        )

    return UploadResponse(upload_url=target.upload_url, object_path=target.object_path)


@router.put(
    "/acl",
    response_model=AclResponse,
    status_code=status.HTTP_200_OK,
    summary="Set visibility of an uploaded object",
)
async def set_object_acl(
    request: AclRequest,
    api_key: AuthenticatedClient,
    user_id: RequiredUserId,
    storage: ObjectStorageDep,
) -> AclResponse:
    """
    Make the caller the owner of an uploaded object and set its visibility.

    Objects that already have a different owner can't be claimed.
    """
    try:
        object_path = storage.normalize_object_path(request.object_path)
        obj = await storage.resolve_private_object(object_path)

        existing = await storage.get_acl_policy(obj)
        if existing is not None and existing.owner != user_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not authorized to modify this object",
            )

        policy = ObjectAclPolicy(owner=user_id, visibility=request.visibility)
        final_path = await storage.try_set_object_acl_policy(object_path, policy)

    except ObjectNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Object not found",
        )
    except StorageError as e:
        logger.error(
            "Error setting object ACL",
            extra={"object_path": request.object_path, "error": str(e)}
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )

    return AclResponse(object_path=final_path)


@router.get(
    "/download-url",
    response_model=DownloadUrlResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a signed download URL",
)
async def get_download_url(
    api_key: AuthenticatedClient,
    user_id: RequiredUserId,
    storage: ObjectStorageDep,
    object_path: str = Query(min_length=1, description="Logical /objects/... path"),
    ttl_seconds: int = Query(default=300, ge=1, le=7 * 24 * 3600),
) -> DownloadUrlResponse:
    """
    Mint a signed GET URL for a private object the caller can read.

    A new URL is minted on every call.
    """
    try:
        obj = await storage.resolve_private_object(object_path)
        if not await storage.can_access_object_entity(obj, user_id, ObjectPermission.READ):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Forbidden",
            )
        url = await storage.mint_read_url(object_path, ttl_seconds=ttl_seconds)

    except ObjectNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Object not found",
        )
    except StorageError as e:
        logger.error(
            "Error minting download URL",
            extra={"object_path": object_path, "error": str(e)}
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get download URL",
        )

    return DownloadUrlResponse(download_url=url, expires_in=ttl_seconds)


# ---------------------------------------------------------------------------
# Browser-facing Endpoints
# ---------------------------------------------------------------------------

@public_router.get(
    "/objects/{object_path:path}",
    summary="Serve an uploaded object",
    responses={404: {"description": "Object not found"}},
)
async def serve_object(
    object_path: str,
    user_id: CurrentUserId,
    storage: ObjectStorageDep,
) -> Response:
    """
    Stream a private upload, checking its ACL first.

    Public objects are served to anyone. Private ones need an
    identified caller with read access. Metadata is fetched once and
    reused for the download headers.
    """
    logical_path = f"{OBJECT_PATH_PREFIX}{object_path}"
    try:
        obj = await storage.resolve_private_object(logical_path)
        metadata = await storage.get_object_metadata(obj)
        policy = storage.acl_policy_of(metadata)

        if not can_access_object(None, policy, ObjectPermission.READ):
            if not user_id:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Unauthorized",
                )
            if not can_access_object(user_id, policy, ObjectPermission.READ):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="Forbidden",
                )

    except ObjectNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Object not found",
        )
    except (StorageError, ValueError) as e:
        logger.error(
            "Error serving object",
            extra={"object_path": logical_path, "error": str(e)}
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to serve object",
        )

    return await storage.stream_download(obj, metadata=metadata)


@public_router.get(
    "/public-objects/{file_path:path}",
    summary="Serve a public asset",
    responses={404: {"description": "File not found"}},
)
async def serve_public_object(
    file_path: str,
    storage: ObjectStorageDep,
) -> Response:
    """Serve a static asset from the first search path that has it."""
    try:
        obj = await storage.locate_public_object(file_path)
    except StorageError as e:
        logger.error(
            "Error searching for public object",
            extra={"file_path": file_path, "error": str(e)}
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )

    if obj is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found",
        )

    return await storage.stream_download(obj)
