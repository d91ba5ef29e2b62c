"""
Access control policies for stored objects.

A policy is attached to each uploaded object as JSON in its custom
metadata. It says who owns the object, whether anyone may read it, and
which other principals have been granted access.

The gateway reads the policy on every download to pick cache headers,
and routes call can_access_object() before serving private bytes.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

# Metadata key under which the policy JSON is stored
ACL_POLICY_METADATA_KEY = "custom:aclPolicy"


class ObjectVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class ObjectPermission(str, Enum):
    READ = "read"
    WRITE = "write"


class ObjectAclRule(BaseModel):
    """A grant of one permission to one principal (usually a user id)."""
    principal: str = Field(min_length=1)
    permission: ObjectPermission


class ObjectAclPolicy(BaseModel):
    """
    Visibility plus optional per-principal grants.

    Public objects are readable by anyone; writes always need the owner
    or an explicit write grant.
    """
    owner: str = Field(min_length=1)
    visibility: ObjectVisibility
    acl_rules: list[ObjectAclRule] = Field(default_factory=list)

    @property
    def is_public(self) -> bool:
        return self.visibility == ObjectVisibility.PUBLIC

    def to_metadata_value(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_metadata_value(cls, raw: Optional[str]) -> Optional["ObjectAclPolicy"]:
        """Parse a stored policy. Missing metadata means no policy."""
        if not raw:
            return None
        return cls.model_validate_json(raw)


def _permission_allows(granted: ObjectPermission, requested: ObjectPermission) -> bool:
    # write implies read
    if requested == ObjectPermission.READ:
        return True
    return granted == ObjectPermission.WRITE


def can_access_object(
    user_id: Optional[str],
    policy: Optional[ObjectAclPolicy],
    requested_permission: ObjectPermission,
) -> bool:
    """
    Decide whether user_id may perform requested_permission.

    Objects without a policy are never accessible; anonymous callers
    only get read access to public objects.
    """
    if policy is None:
        return False

    if policy.is_public and requested_permission == ObjectPermission.READ:
        return True

    if not user_id:
        return False

    if policy.owner == user_id:
        return True

    return any(
        rule.principal == user_id and _permission_allows(rule.permission, requested_permission)
        for rule in policy.acl_rules
    )
