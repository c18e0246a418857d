"""
Health-check policy and the default HTTP probe.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

import httpx

from shared.errors import ValidationError
from shared.logging import get_logger

if TYPE_CHECKING:
    from .target_group import BackendMember

DEFAULT_HEALTHY_HTTP_CODES = "200-299,307"


def parse_http_codes(spec: str) -> Tuple[Tuple[int, int], ...]:
    """Parse a matcher like ``"200-299,307"`` into inclusive ranges."""
    ranges = []
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            if "-" in part:
                low, high = (int(bound) for bound in part.split("-", 1))
            else:
                low = high = int(part)
        except ValueError as exc:
            raise ValidationError(f"Invalid HTTP code matcher: {spec!r}", details={"matcher": spec}) from exc
        if not 100 <= low <= high <= 599:
            raise ValidationError(f"Invalid HTTP code range: {part!r}", details={"matcher": spec})
        ranges.append((low, high))
    if not ranges:
        raise ValidationError("HTTP code matcher is empty", details={"matcher": spec})
    return tuple(ranges)


@dataclass(frozen=True)
class HealthCheckPolicy:
    """How a backend set decides whether a member may receive traffic."""

    path: str = "/health"
    interval: float = 15.0
    timeout: float = 5.0
    healthy_threshold: int = 2
    unhealthy_threshold: int = 6
    healthy_http_codes: str = DEFAULT_HEALTHY_HTTP_CODES
    _ranges: Tuple[Tuple[int, int], ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.healthy_threshold < 1 or self.unhealthy_threshold < 1:
            raise ValidationError("Health thresholds must be at least 1")
        if self.interval <= 0 or self.timeout <= 0:
            raise ValidationError("Health-check interval and timeout must be positive")
        object.__setattr__(self, "_ranges", parse_http_codes(self.healthy_http_codes))

    def accepts(self, status_code: int) -> bool:
        return any(low <= status_code <= high for low, high in self._ranges)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "interval": self.interval,
            "timeout": self.timeout,
            "healthy_threshold": self.healthy_threshold,
            "unhealthy_threshold": self.unhealthy_threshold,
            "healthy_http_codes": self.healthy_http_codes,
        }


class HttpHealthProbe:
    """GET the health path of a member and compare against the accepted codes."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client or httpx.AsyncClient(follow_redirects=False)
        self._owns_client = client is None
        self.logger = get_logger("gateway.health_probe")

    async def __call__(self, member: "BackendMember", policy: HealthCheckPolicy) -> bool:
        url = f"{member.base_url}{policy.path}"
        try:
            response = await self._client.get(url, timeout=policy.timeout)
        except httpx.HTTPError as exc:
            self.logger.debug("Health probe failed", member=member.member_id, url=url, error=str(exc))
            return False
        return policy.accepts(response.status_code)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
