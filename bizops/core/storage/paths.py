"""
Object addressing.

Three kinds of path show up in this codebase:

- Storage paths: "/<bucket>/<object name>", the backend's own address.
- Logical paths: "/objects/<id>[.<ext>]", what the application stores
  in its database. These never mention a bucket, so the private root
  can move without rewriting rows.
- Public relative paths: "logo.png", looked up under each configured
  public search prefix in turn.
"""

from dataclasses import dataclass

# Every logical path for a private object starts with this
OBJECT_PATH_PREFIX = "/objects/"


class ObjectNotFoundError(Exception):
    """
    Raised when an object can't be located.

    Deliberately covers malformed logical paths as well as missing
    objects, so a caller can't probe which paths are well-formed.
    """

    def __init__(self, message: str = "Object not found") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class StoredObject:
    """
    Handle to one object in the backend.

    Holding a handle doesn't guarantee the object still exists; it only
    says where to look.
    """
    bucket_name: str
    object_name: str

    def __post_init__(self) -> None:
        if not self.bucket_name:
            raise ValueError("bucket_name cannot be empty")
        if not self.object_name:
            raise ValueError("object_name cannot be empty")

    @property
    def storage_path(self) -> str:
        return f"/{self.bucket_name}/{self.object_name}"


def parse_object_path(path: str) -> StoredObject:
    """
    Split "/bucket/dir/file.png" into bucket and object name.

    The leading slash is optional. A path with no object part raises
    ValueError.
    """
    parts = path[1:].split("/") if path.startswith("/") else path.split("/")
    if len(parts) < 2:
        raise ValueError(f"Invalid path: must contain at least a bucket name: {path!r}")

    return StoredObject(bucket_name=parts[0], object_name="/".join(parts[1:]))


def entity_id_from_object_path(object_path: str) -> str:
    """
    Strip the /objects/ prefix from a logical path.

    Anything that isn't a logical path is reported as not found.
    """
    if not object_path.startswith(OBJECT_PATH_PREFIX):
        raise ObjectNotFoundError()

    entity_id = object_path[len(OBJECT_PATH_PREFIX):]
    if not entity_id:
        raise ObjectNotFoundError()
    return entity_id
