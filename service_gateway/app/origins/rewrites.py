"""
Header and path rewrites applied before a request reaches its origin.

Every function here returns new values and leaves its inputs untouched.
"""

import hashlib
from typing import Dict, Optional

CONTENT_SHA256_HEADER = "x-amz-content-sha256"
AUTHORIZATION_HEADER = "authorization"
DEFAULT_AUTHORIZATION_SIDECAR = "authorization2"


def content_sha256(body: bytes) -> str:
    """Lowercase hex SHA-256 of the exact bytes that will be forwarded."""
    return hashlib.sha256(body).hexdigest()


def sign_payload_headers(headers: Dict[str, str], body: bytes) -> Dict[str, str]:
    """Attach the payload digest a signed serverless origin validates against."""
    signed = dict(headers)
    signed[CONTENT_SHA256_HEADER] = content_sha256(body)
    return signed


def relocate_authorization(
    headers: Dict[str, str],
    sidecar: str = DEFAULT_AUTHORIZATION_SIDECAR,
) -> Dict[str, str]:
    """Move the caller's authorization value into a sidecar header.

    The serverless runtime in front of the origin writes its own
    ``authorization`` header, so the original value rides along under
    ``sidecar`` and is put back by ``restore_authorization`` on the trusted
    side. This avoids a header collision. It does not protect the value.
    """
    relocated = dict(headers)
    value = relocated.pop(AUTHORIZATION_HEADER, None)
    if value is not None:
        relocated[sidecar.lower()] = value
    return relocated


def restore_authorization(
    headers: Dict[str, str],
    sidecar: str = DEFAULT_AUTHORIZATION_SIDECAR,
) -> Dict[str, str]:
    """Inverse of ``relocate_authorization``; the sidecar value wins."""
    restored = {name.lower(): value for name, value in headers.items()}
    value = restored.pop(sidecar.lower(), None)
    if value is not None:
        restored[AUTHORIZATION_HEADER] = value
    return restored


def strip_path_prefix(path: str, prefix: Optional[str]) -> str:
    """Remove a leading prefix so the origin sees paths from its own root.

    Only whole segments are stripped: ``/SANDBOX`` is removed from
    ``/SANDBOX/run`` but not from ``/SANDBOXED``.
    """
    if not prefix:
        return path
    prefix = prefix.rstrip("/")
    if path == prefix:
        return "/"
    if path.startswith(prefix + "/"):
        return path[len(prefix):]
    return path


def body_preview(body: bytes, limit: int = 512) -> str:
    """Printable, truncated copy of a body for debug logs."""
    if limit <= 0:
        return ""
    snippet = body[:limit].decode("utf-8", errors="replace")
    if len(body) > limit:
        snippet += f"...[{len(body) - limit} more bytes]"
    return snippet
