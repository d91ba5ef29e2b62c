"""
Storage domain types: object paths and access control policies.

Nothing here talks to a bucket. The infrastructure layer reads and
writes these records; this package only decides what they mean.
"""

from .acl import (
    ACL_POLICY_METADATA_KEY,
    ObjectAclPolicy,
    ObjectAclRule,
    ObjectPermission,
    ObjectVisibility,
    can_access_object,
)
from .paths import (
    OBJECT_PATH_PREFIX,
    ObjectNotFoundError,
    StoredObject,
    parse_object_path,
)

__all__ = [
    "ACL_POLICY_METADATA_KEY",
    "OBJECT_PATH_PREFIX",
    "ObjectAclPolicy",
    "ObjectAclRule",
    "ObjectNotFoundError",
    "ObjectPermission",
    "ObjectVisibility",
    "StoredObject",
    "can_access_object",
    "parse_object_path",
]
