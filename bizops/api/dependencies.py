"""
Request-scoped dependencies for the route handlers.

Identity comes from two headers: X-API-Key authenticates the calling
application, X-User-Id names the end user (absent for anonymous
browser requests). Storage and database handles are shared across
requests; tests replace them through app.dependency_overrides.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader
from sqlalchemy.engine import Engine

from ..config.settings import Settings, get_settings
from ..infrastructure.storage.client import StorageClient, create_storage_client
from ..infrastructure.storage.credentials import resolve_gcs_credentials
from ..infrastructure.storage.service import ObjectStorageService

logger = logging.getLogger(__name__)

# Application-level credential for /api/* routes
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

# Storage clients are reused across requests: the GCS client holds an
# HTTP session, and the mock has to keep uploaded objects around.
_storage_client: Optional[StorageClient] = None


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def verify_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    api_key: str = Security(api_key_header),
) -> str:
    """
    Check X-API-Key against the configured keys.

    Missing and unknown keys both get a 403.
    """
    if not api_key:
        logger.warning("Rejected request without API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API key required. Provide X-API-Key header.",
        )

    if api_key not in settings.api_keys_list:
        logger.warning(
            "Rejected unknown API key",
            extra={"key_prefix": api_key[:8] if api_key else ""}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key


async def get_current_user_id(
    x_user_id: Annotated[Optional[str], Header()] = None,
) -> Optional[str]:
    """
    Identify the caller, if any.

    User identity is established upstream (the auth proxy sets
    X-User-Id); here we only read it. None means anonymous.
    """
    if x_user_id is None:
        return None
    return x_user_id.strip() or None


async def require_user_id(
    user_id: Annotated[Optional[str], Depends(get_current_user_id)],
) -> str:
    """Like get_current_user_id, but anonymous callers get a 401."""
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return user_id


# ---------------------------------------------------------------------------
# Service Dependencies
# ---------------------------------------------------------------------------

def get_storage_client(
    settings: Annotated[Settings, Depends(get_settings)],
) -> StorageClient:
    """
    Provide the shared storage client.

    Returns either a GCS client or the mock client based on settings.
    Created on first use and reused for the life of the process.
    """
    global _storage_client

    if _storage_client is None:
        if settings.gcs_mock_mode:
            _storage_client = create_storage_client(mock_mode=True)
            logger.info("Created shared mock storage client")
        else:
            _storage_client = create_storage_client(
                credentials=resolve_gcs_credentials(settings)
            )
            logger.info("Created shared GCS storage client")

    return _storage_client


def get_object_storage_service(
    settings: Annotated[Settings, Depends(get_settings)],
    client: Annotated[StorageClient, Depends(get_storage_client)],
) -> ObjectStorageService:
    """
    Provide the object storage gateway.

    Cheap to build: it only captures the client and the configured
    search paths, so a new one per request is fine.
    """
    return ObjectStorageService(
        client=client,
        public_search_paths=settings.public_object_search_paths_list,
        private_object_dir=settings.private_object_dir,
    )


def get_database_engine(request: Request) -> Optional[Engine]:
    """
    Provide the engine created during startup.

    None when the database is optional and not configured.
    """
    return getattr(request.app.state, "db_engine", None)


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# Annotated shorthands for route signatures
AuthenticatedClient = Annotated[str, Depends(verify_api_key)]
CurrentUserId = Annotated[Optional[str], Depends(get_current_user_id)]
RequiredUserId = Annotated[str, Depends(require_user_id)]
ObjectStorageDep = Annotated[ObjectStorageService, Depends(get_object_storage_service)]
DatabaseEngineDep = Annotated[Optional[Engine], Depends(get_database_engine)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
