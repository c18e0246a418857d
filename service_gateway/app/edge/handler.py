"""
Origin-request handler for the CDN edge in front of the sandbox function URL.

Applies the same rewrites as the in-process adapter to a CDN event: payload
digest, authorization relocation and prefix stripping. The body stays in the
encoding the edge delivered it in.
"""

from typing import Any, Dict, Optional

from shared.logging import get_logger

from ..origins.adapter import prepare_request
from ..origins.models import EdgeRequest, ServerlessOrigin
from ..origins.rewrites import DEFAULT_AUTHORIZATION_SIDECAR, body_preview

DEFAULT_SANDBOX_PREFIX = "/DIFY_SANDBOX"

logger = get_logger("gateway.edge")


def handle_origin_request(
    event: Dict[str, Any],
    sandbox_prefix: Optional[str] = DEFAULT_SANDBOX_PREFIX,
    sidecar: Optional[str] = DEFAULT_AUTHORIZATION_SIDECAR,
    debug_body_preview_bytes: int = 512,
) -> Dict[str, Any]:
    """Rewrite a CDN origin-request event and return the request record to forward."""
    record = event["Records"][0]["cf"]["request"] if "Records" in event else event
    request = EdgeRequest.from_edge_event(record)

    origin = ServerlessOrigin(
        function_url="",
        sign_payload=True,
        authorization_sidecar=sidecar,
        strip_prefix=sandbox_prefix,
    )
    prepared = prepare_request(request, origin)

    logger.debug(
        "Edge origin request",
        method=request.method,
        uri=request.path,
        rewritten_uri=prepared.path,
        body_preview=body_preview(prepared.body, debug_body_preview_bytes),
    )

    # Digest covers the decoded bytes; the CDN still expects its own encoding
    forwarded = prepared.replace(body=request.body, body_encoding=request.body_encoding)
    return forwarded.to_edge_event(template=record)


def handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    return handle_origin_request(event)
