"""Namespace prefixing and key validation for bucket operations.

Every bucket resolves relative object names beneath its namespace prefix,
and strips that prefix again from listing results before they reach the
caller.

Key features:
- Prefix normalization (no leading separator, exactly one trailing one)
- Traversal-safe joining: ``..`` segments can never climb above the prefix
- Name validation (empty names, control characters, key length)
- Canonical metadata key casing shared by all backends

Example:
    ```python
    ns = Namespace("tenants/acme")
    ns.prefix                       # "tenants/acme/"
    ns.with_prefix("a/b.txt")       # "tenants/acme/a/b.txt"
    ns.with_prefix("../../etc/pw")  # "tenants/acme/etc/pw"
    ns.strip_prefix("tenants/acme/a/b.txt")  # "a/b.txt"
    ```
"""

from __future__ import annotations

from collections.abc import Mapping
import posixpath

from .exceptions import StorageValidationError

SEPARATOR = "/"

# S3 key limit is 1024 bytes
MAX_KEY_LENGTH = 1024


def normalize_prefix(prefix: str | None) -> str:
    """Normalize a configured namespace prefix.

    Collapses dot segments, strips leading separators and ensures exactly
    one trailing separator when the prefix is not empty.

    Example:
        ```python
        normalize_prefix("/a/b//")  # "a/b/"
        normalize_prefix("")        # ""
        normalize_prefix("/")       # ""
        normalize_prefix("a/../b")  # "b/"
        ```
    """
    prefix = clean_name(prefix or "")
    if not prefix:
        return ""
    return prefix + SEPARATOR


def validate_name(name: str) -> None:
    """Validate a relative object name.

    Validation checks:
    - Reject empty names
    - Reject null bytes and control characters
    - Enforce maximum length (1024 characters)

    Args:
        name: Relative object name supplied by the caller.

    Raises:
        StorageValidationError: If the name fails any check.
    """
    if not name or not name.strip():
        raise StorageValidationError("Object name cannot be empty", metadata={"name": name})

    if any(ord(c) < 32 for c in name):
        raise StorageValidationError(
            "Object name contains null bytes or control characters",
            metadata={"name": name},
        )

    if len(name) > MAX_KEY_LENGTH:
        msg = f"Object name exceeds maximum length of {MAX_KEY_LENGTH} characters (got {len(name)})"
        raise StorageValidationError(msg, metadata={"name": name[:64]})


def clean_name(name: str) -> str:
    """Collapse a relative name against a virtual root.

    ``.`` and ``..`` segments are resolved as if the name were rooted at
    ``/``, so the result never points above its starting directory.

    Example:
        ```python
        clean_name("a/./b/../c.txt")   # "a/c.txt"
        clean_name("../../etc/passwd") # "etc/passwd"
        clean_name("/abs//path/")      # "abs/path"
        ```
    """
    return posixpath.normpath(SEPARATOR + name).lstrip(SEPARATOR)


def canonical_metadata_key(key: str) -> str:
    """Return the MIME-header canonical form of a metadata key.

    Example:
        ```python
        canonical_metadata_key("x-amz-meta-foo")  # "X-Amz-Meta-Foo"
        canonical_metadata_key("CONTENT_owner")   # "Content_owner"
        ```
    """
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


def normalize_metadata(metadata: Mapping[str, str] | None) -> dict[str, str]:
    """Canonicalize metadata keys so lookups behave the same on every backend."""
    if not metadata:
        return {}
    return {canonical_metadata_key(k): v for k, v in metadata.items()}


class Namespace:
    """Maps relative object names to backend keys under a prefix.

    Attributes:
        prefix: Normalized prefix, empty or ending in exactly one ``/``.
    """

    __slots__ = ("prefix",)

    def __init__(self, prefix: str | None = "") -> None:
        self.prefix = normalize_prefix(prefix)

    def __repr__(self) -> str:
        return f"Namespace(prefix={self.prefix!r})"

    def with_prefix(self, name: str) -> str:
        """Resolve a relative name to its backend key.

        Args:
            name: Relative object name.

        Returns:
            ``prefix + cleaned name``; never outside the prefix subtree.

        Raises:
            StorageValidationError: If the name is invalid or collapses to nothing.
        """
        validate_name(name)
        cleaned = clean_name(name)
        if not cleaned:
            raise StorageValidationError(
                "Object name resolves to the namespace root",
                metadata={"name": name, "prefix": self.prefix},
            )
        return self.prefix + cleaned

    def strip_prefix(self, key: str) -> str:
        """Remove the prefix (and one following separator) from a backend key.

        Keys that do not start with the prefix are returned unchanged.
        """
        if not self.prefix or not key.startswith(self.prefix):
            return key
        name = key[len(self.prefix) :]
        return name.removeprefix(SEPARATOR)

    def contains(self, key: str) -> bool:
        """Whether a backend key lies inside this namespace."""
        return key.startswith(self.prefix)
