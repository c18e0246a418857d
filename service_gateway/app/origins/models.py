"""
Origin variants and the request/response shapes the adapter works on.
"""

import base64
import binascii
import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from shared.errors import ValidationError


class OriginKind(Enum):
    """Closed set of origin kinds a backend set can front."""
    CONTAINER = "container"
    SERVERLESS = "serverless"
    STATIC = "static"


@dataclass(frozen=True)
class ContainerOrigin:
    """Container service reached by discovery name and container port."""

    discovery_name: str
    port: int
    scheme: str = "http"
    kind: ClassVar[OriginKind] = OriginKind.CONTAINER

    def base_url(self, address: Optional[str] = None) -> str:
        return f"{self.scheme}://{address or self.discovery_name}:{self.port}"


@dataclass(frozen=True)
class ServerlessOrigin:
    """Serverless function behind an invocation URL.

    ``sign_payload`` injects a SHA-256 of the body for signed invocation.
    ``authorization_sidecar`` moves the caller's authorization header out of
    the way of a runtime that overwrites it. ``strip_prefix`` removes a shared
    path prefix before the function sees the request.
    """

    function_url: str
    sign_payload: bool = True
    authorization_sidecar: Optional[str] = "authorization2"
    strip_prefix: Optional[str] = None
    kind: ClassVar[OriginKind] = OriginKind.SERVERLESS

    def base_url(self, address: Optional[str] = None) -> str:
        return (address or self.function_url).rstrip("/")


@dataclass(frozen=True)
class StaticOrigin:
    """Fixed response served by the gateway itself."""

    status_code: int = 200
    body: bytes = b""
    content_type: str = "text/plain; charset=utf-8"
    kind: ClassVar[OriginKind] = OriginKind.STATIC


Origin = Union[ContainerOrigin, ServerlessOrigin, StaticOrigin]


def _first_header_values(raw_headers: Dict[str, List[Dict[str, str]]]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for name, entries in (raw_headers or {}).items():
        values = [entry.get("value", "") for entry in entries or []]
        if not values:
            continue
        separator = "; " if name.lower() == "cookie" else ", "
        headers[name.lower()] = separator.join(values)
    return headers


@dataclass(frozen=True)
class EdgeRequest:
    """Inbound request as seen by the gateway.

    ``body`` holds the bytes exactly as the transport delivered them. When the
    edge encodes bodies, ``body_encoding`` is ``"base64"`` and ``raw_body()``
    decodes them once.
    """

    method: str
    path: str
    query_string: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    body_encoding: Optional[str] = None
    source_address: Optional[str] = None

    def raw_body(self) -> bytes:
        if self.body_encoding is None:
            return self.body
        if self.body_encoding == "base64":
            try:
                return base64.b64decode(self.body, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ValidationError("Request body is not valid base64") from exc
        raise ValidationError(
            f"Unsupported body encoding: {self.body_encoding}",
            details={"encoding": self.body_encoding},
        )

    def replace(self, **changes: Any) -> "EdgeRequest":
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_edge_event(cls, event: Dict[str, Any]) -> "EdgeRequest":
        """Build a request from a CDN origin-request event or its request record."""
        record = event
        if "Records" in event:
            record = event["Records"][0]["cf"]["request"]

        body_info = record.get("body") or {}
        data = body_info.get("data", "") or ""
        encoding = body_info.get("encoding", "base64") if body_info else None
        if encoding == "text":
            body, body_encoding = data.encode("utf-8"), None
        elif encoding == "base64":
            body, body_encoding = data.encode("ascii"), "base64"
        else:
            body, body_encoding = b"", None

        return cls(
            method=record.get("method", "GET"),
            path=record.get("uri", "/"),
            query_string=record.get("querystring", "") or "",
            headers=_first_header_values(record.get("headers", {})),
            body=body,
            body_encoding=body_encoding,
            source_address=record.get("clientIp"),
        )

    def to_edge_event(self, template: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Serialize back into an origin-request record, keeping unknown fields."""
        record: Dict[str, Any] = dict(template or {})
        record["method"] = self.method
        record["uri"] = self.path
        record["querystring"] = self.query_string
        record["headers"] = {
            name: [{"key": name, "value": value}] for name, value in self.headers.items()
        }
        if self.source_address is not None:
            record["clientIp"] = self.source_address
        if self.body or "body" in record:
            body_info = dict(record.get("body") or {})
            if self.body_encoding == "base64":
                body_info.update({"encoding": "base64", "data": self.body.decode("ascii")})
            else:
                body_info.update({"encoding": "text", "data": self.body.decode("utf-8")})
            record["body"] = body_info
        return record


@dataclass
class OriginResponse:
    """Response returned by an origin, headers kept as an ordered list."""

    status_code: int
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: bytes = b""
    backend_set: Optional[str] = None
    member: Optional[str] = None

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None
