"""Physical name generation from a resource's instance token."""

from __future__ import annotations

import base64
import re


def physical_name(
    *,
    stack: str,
    stage: str,
    resource_id: str,
    instance_id: str,
    prefix: str | None = None,
    suffix_length: int = 16,
    max_length: int = 64,
    delimiter: str = "-",
    lowercase: bool = False,
) -> str:
    """Build a DNS-compatible physical name that is unique per instance token.

    The default prefix is ``{stack}-{resource_id}-{stage}-``. The suffix is the
    base32 encoding of ``instance_id`` (16 characters = 80 bits of entropy), so
    the name is stable across updates and changes only when the resource is
    replaced. If the name exceeds ``max_length`` the human-friendly prefix is
    truncated, never the suffix.
    """
    if prefix is None:
        prefix = f"{stack}{delimiter}{resource_id}{delimiter}{stage}{delimiter}"
    suffix = base64.b32encode(bytes.fromhex(instance_id)).decode("ascii").rstrip("=").lower()
    suffix = suffix[:suffix_length]
    name = f"{prefix}{suffix}"
    if max_length and len(name) > max_length:
        name = f"{prefix[: max(max_length - len(suffix), 0)]}{suffix}"
    return _sanitize(name, delimiter=delimiter, lowercase=lowercase)


def _sanitize(name: str, *, delimiter: str, lowercase: bool) -> str:
    if lowercase:
        return re.sub(r"[^a-z0-9-]", delimiter, name.lower())
    return re.sub(r"[^a-zA-Z0-9-]", delimiter, name)
