"""
Origin adapter: turns a routed request into a call against a backend member.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

import httpx

from shared.errors import ExternalServiceError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .models import EdgeRequest, Origin, OriginResponse, ServerlessOrigin, StaticOrigin
from .rewrites import body_preview, relocate_authorization, sign_payload_headers, strip_path_prefix

if TYPE_CHECKING:
    from ..backends.target_group import BackendMember, BackendSet

# RFC 7230 section 6.1 plus headers the HTTP client recomputes
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
})
REQUEST_EXCLUDED_HEADERS = HOP_BY_HOP_HEADERS | {"host", "content-length"}
RESPONSE_EXCLUDED_HEADERS = HOP_BY_HOP_HEADERS | {"content-length"}


def prepare_request(request: EdgeRequest, origin: Origin) -> EdgeRequest:
    """Apply the origin's rewrites and return a new request.

    The digest is computed over ``request.raw_body()``, the same bytes that
    get forwarded, and the body is decoded exactly once here.
    """
    if not isinstance(origin, ServerlessOrigin):
        return request

    body = request.raw_body()
    headers = dict(request.headers)
    path = request.path

    if origin.sign_payload:
        headers = sign_payload_headers(headers, body)
    if origin.authorization_sidecar:
        headers = relocate_authorization(headers, origin.authorization_sidecar)
    if origin.strip_prefix:
        path = strip_path_prefix(path, origin.strip_prefix)

    return request.replace(path=path, headers=headers, body=body, body_encoding=None)


class OriginAdapter:
    """Forwards requests to container, serverless and static origins."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
        debug_body_preview_bytes: int = 512,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=False)
        self._owns_client = client is None
        self.debug_body_preview_bytes = debug_body_preview_bytes
        self.metrics = metrics
        self.logger = get_logger("gateway.origin_adapter")

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._owns_client:
            await self._client.aclose()

    async def forward(self, request: EdgeRequest, backend_set: "BackendSet") -> OriginResponse:
        """Send the request to a member of the set and return its response."""
        origin = backend_set.origin
        if isinstance(origin, StaticOrigin):
            return OriginResponse(
                status_code=origin.status_code,
                headers=[("content-type", origin.content_type)],
                body=origin.body,
                backend_set=backend_set.set_id,
            )

        member = backend_set.pick_member()
        prepared = prepare_request(request, origin)
        body = prepared.raw_body()

        # Logging works on a truncated copy; ``body`` is what goes on the wire
        self.logger.debug(
            "Forwarding request",
            backend_set=backend_set.set_id,
            member=member.member_id,
            method=prepared.method,
            path=prepared.path,
            body_preview=body_preview(body, self.debug_body_preview_bytes),
        )

        with member.track():
            return await self._send(prepared, body, backend_set, member)

    async def _send(
        self,
        request: EdgeRequest,
        body: bytes,
        backend_set: "BackendSet",
        member: "BackendMember",
    ) -> OriginResponse:
        url = self._build_url(member.base_url, request)
        outbound = self._client.build_request(
            request.method,
            url,
            headers=self._filter_headers(request.headers),
            content=body,
        )

        start_time = time.time()
        try:
            response = await self._client.send(outbound, stream=True)
            try:
                # Raw bytes so compressed bodies pass through untouched
                chunks = [chunk async for chunk in response.aiter_raw()]
            finally:
                await response.aclose()
        except httpx.HTTPError as exc:
            self.logger.error(
                "Origin request failed",
                backend_set=backend_set.set_id,
                member=member.member_id,
                url=url,
                error=str(exc),
            )
            raise ExternalServiceError(
                backend_set.set_id,
                "Origin unreachable",
                details={"member": member.member_id, "error": type(exc).__name__},
            ) from exc
        finally:
            if self.metrics is not None:
                self.metrics.observe_histogram(
                    "gateway_origin_duration_seconds",
                    time.time() - start_time,
                    backend_set=backend_set.set_id,
                )

        return OriginResponse(
            status_code=response.status_code,
            headers=self._response_headers(response.headers.multi_items()),
            body=b"".join(chunks),
            backend_set=backend_set.set_id,
            member=member.member_id,
        )

    @staticmethod
    def _build_url(base_url: str, request: EdgeRequest) -> str:
        url = f"{base_url}{request.path}"
        if request.query_string:
            url = f"{url}?{request.query_string}"
        return url

    @staticmethod
    def _filter_headers(headers: Dict[str, str]) -> Dict[str, str]:
        return {name: value for name, value in headers.items() if name.lower() not in REQUEST_EXCLUDED_HEADERS}

    @staticmethod
    def _response_headers(items: List[Tuple[str, str]]) -> List[Tuple[str, str]]:
        return [(name, value) for name, value in items if name.lower() not in RESPONSE_EXCLUDED_HEADERS]

