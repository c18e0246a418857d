"""
Test helper functions and factory methods for the Edge Gateway.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import httpx


@dataclass
class RecordedRequest:
    """What an origin saw."""
    method: str
    url: str
    path: str
    headers: Dict[str, str]
    body: bytes


@dataclass
class FakeOrigin:
    """In-memory origin served through ``httpx.MockTransport``.

    Answers every request with ``status_code`` and a JSON echo of the
    request, unless a ``handler`` is given. Hosts listed in ``down_hosts``
    raise a connection error.
    """

    status_code: int = 200
    handler: Optional[Callable[[httpx.Request], httpx.Response]] = None
    down_hosts: List[str] = field(default_factory=list)
    requests: List[RecordedRequest] = field(default_factory=list)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host in self.down_hosts:
            raise httpx.ConnectError("connection refused", request=request)
        body = request.read()
        self.requests.append(RecordedRequest(
            method=request.method,
            url=str(request.url),
            path=request.url.path,
            headers={name.lower(): value for name, value in request.headers.items()},
            body=body,
        ))
        if self.handler is not None:
            return self.handler(request)
        return httpx.Response(
            self.status_code,
            json={"host": request.url.host, "path": request.url.path, "method": request.method},
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def hosts(self) -> List[str]:
        return [httpx.URL(recorded.url).host for recorded in self.requests]


class ScriptedProbe:
    """Health probe whose answers are set per member id.

    Members without an entry pass. ``calls`` records every probe in order.
    """

    def __init__(self, results: Optional[Dict[str, bool]] = None):
        self.results: Dict[str, bool] = dict(results or {})
        self.calls: List[str] = []

    def set(self, member_id: str, passed: bool) -> None:
        self.results[member_id] = passed

    async def __call__(self, member: Any, policy: Any) -> bool:
        self.calls.append(member.member_id)
        return self.results.get(member.member_id, True)


class RecordingMetrics:
    """Minimal metrics collector stub."""

    def __init__(self):
        self.counters: List[Tuple[str, Dict[str, Any]]] = []
        self.gauges: List[Tuple[str, float, Dict[str, Any]]] = []
        self.histograms: List[Tuple[str, float, Dict[str, Any]]] = []

    def increment_counter(self, metric_name: str, **labels):
        self.counters.append((metric_name, labels))

    def set_gauge(self, metric_name: str, value: float, **labels):
        self.gauges.append((metric_name, value, labels))

    def observe_histogram(self, metric_name: str, value: float, **labels):
        self.histograms.append((metric_name, value, labels))

    def counted(self, metric_name: str, **labels) -> int:
        return sum(
            1 for name, recorded in self.counters
            if name == metric_name and all(recorded.get(k) == v for k, v in labels.items())
        )


def create_edge_event(
    uri: str,
    method: str = "POST",
    body: Optional[str] = None,
    encoding: str = "base64",
    headers: Optional[Dict[str, str]] = None,
    querystring: str = "",
    client_ip: str = "203.0.113.5",
) -> Dict[str, Any]:
    """Build a CDN origin-request event."""
    request: Dict[str, Any] = {
        "clientIp": client_ip,
        "method": method,
        "uri": uri,
        "querystring": querystring,
        "headers": {
            name.lower(): [{"key": name, "value": value}] for name, value in (headers or {}).items()
        },
        "origin": {"custom": {"domainName": "function.example.com", "port": 443, "protocol": "https"}},
    }
    if body is not None:
        request["body"] = {"action": "read-only", "encoding": encoding, "data": body, "inputTruncated": False}
    return {"Records": [{"cf": {"config": {"eventType": "origin-request"}, "request": request}}]}


def header_pairs(items: Iterable[Tuple[str, str]], name: str) -> List[str]:
    lowered = name.lower()
    return [value for key, value in items if key.lower() == lowered]
