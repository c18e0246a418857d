"""
Backend sets (target groups), their members and the bindings routes point at.
"""

import asyncio
import itertools
import random
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence

from shared.errors import BackendUnavailableError, ValidationError
from shared.logging import get_logger

from ..origins.models import ContainerOrigin, Origin, OriginKind, ServerlessOrigin
from .health import HealthCheckPolicy


class MemberState(Enum):
    """Lifecycle of a backend member."""
    REGISTERING = "registering"
    HEALTHY_PENDING = "healthy_pending"
    IN_SERVICE = "in_service"
    DRAINING = "draining"
    REMOVED = "removed"


_TERMINAL = (MemberState.DRAINING, MemberState.REMOVED)


class BackendMember:
    """One interchangeable instance of a backend."""

    def __init__(self, member_id: str, base_url: str):
        self.member_id = member_id
        self.base_url = base_url.rstrip("/")
        self.state = MemberState.REGISTERING
        self.consecutive_successes = 0
        self.consecutive_failures = 0
        self.in_flight = 0
        self._lock = threading.Lock()

    @property
    def eligible(self) -> bool:
        return self.state is MemberState.IN_SERVICE

    def begin_health_checks(self) -> None:
        if self.state is MemberState.REGISTERING:
            self.state = MemberState.HEALTHY_PENDING

    def mark_in_service(self) -> None:
        if self.state not in _TERMINAL:
            self.state = MemberState.IN_SERVICE

    def record_check(self, passed: bool, policy: HealthCheckPolicy) -> Optional[MemberState]:
        """Apply one health-check result; return the new state on a transition."""
        if self.state in _TERMINAL:
            return None

        if passed:
            self.consecutive_successes += 1
            self.consecutive_failures = 0
            if self.state is not MemberState.IN_SERVICE and self.consecutive_successes >= policy.healthy_threshold:
                self.state = MemberState.IN_SERVICE
                return self.state
        else:
            self.consecutive_failures += 1
            self.consecutive_successes = 0
            if self.state is MemberState.IN_SERVICE and self.consecutive_failures >= policy.unhealthy_threshold:
                self.state = MemberState.HEALTHY_PENDING
                return self.state
        return None

    @contextmanager
    def track(self) -> Iterator["BackendMember"]:
        """Count an in-flight request against this member."""
        with self._lock:
            self.in_flight += 1
        try:
            yield self
        finally:
            with self._lock:
                self.in_flight -= 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member": self.member_id,
            "url": self.base_url,
            "state": self.state.value,
            "consecutive_successes": self.consecutive_successes,
            "consecutive_failures": self.consecutive_failures,
            "in_flight": self.in_flight,
        }


def _default_members(set_id: str, origin: Origin) -> List[BackendMember]:
    if isinstance(origin, ContainerOrigin):
        return [BackendMember(f"{origin.discovery_name}:{origin.port}", origin.base_url())]
    if isinstance(origin, ServerlessOrigin):
        return [BackendMember(f"{set_id}-function", origin.base_url())]
    return []


class BackendSet:
    """Named, health-checked pool of members behind one or more routes.

    Without a health-check policy, members go straight into service on
    activation. Static origins have no members and are always serviceable.
    """

    def __init__(
        self,
        set_id: str,
        origin: Origin,
        members: Optional[Sequence[BackendMember]] = None,
        health_check: Optional[HealthCheckPolicy] = None,
        deregistration_delay: float = 10.0,
    ):
        if not set_id:
            raise ValidationError("Backend set id is required")
        self.set_id = set_id
        self.origin = origin
        self.health_check = health_check
        self.deregistration_delay = deregistration_delay
        self.members: List[BackendMember] = list(members) if members is not None else _default_members(set_id, origin)
        self.logger = get_logger("gateway.backend_set")

        self._activated = False
        self._lifecycle: Optional[MemberState] = None
        self._cursor = itertools.count()

    @property
    def is_static(self) -> bool:
        return self.origin.kind is OriginKind.STATIC

    @property
    def state(self) -> MemberState:
        if self._lifecycle is not None:
            return self._lifecycle
        if not self._activated:
            return MemberState.REGISTERING
        if self.is_static or any(member.eligible for member in self.members):
            return MemberState.IN_SERVICE
        return MemberState.HEALTHY_PENDING

    def activate(self) -> None:
        """Leave REGISTERING: start health checks or go straight into service."""
        if self._activated:
            return
        self._activated = True
        for member in self.members:
            if self.health_check is None:
                member.mark_in_service()
            else:
                member.begin_health_checks()
        self.logger.info(
            "Backend set activated",
            backend_set=self.set_id,
            origin=self.origin.kind.value,
            members=len(self.members),
            health_checked=self.health_check is not None,
        )

    def eligible_members(self) -> List[BackendMember]:
        return [member for member in self.members if member.eligible]

    @property
    def healthy_count(self) -> int:
        return len(self.eligible_members())

    def pick_member(self) -> BackendMember:
        """Round-robin over in-service members."""
        eligible = self.eligible_members()
        if not eligible:
            raise BackendUnavailableError(self.set_id, details={"state": self.state.value})
        return eligible[next(self._cursor) % len(eligible)]

    async def drain(self, delay: Optional[float] = None) -> None:
        """Stop new traffic, let in-flight requests finish within the delay, then remove."""
        if self._lifecycle is MemberState.REMOVED:
            return
        delay = self.deregistration_delay if delay is None else delay
        self._lifecycle = MemberState.DRAINING
        for member in self.members:
            if member.state is not MemberState.REMOVED:
                member.state = MemberState.DRAINING

        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay
        while any(member.in_flight for member in self.members) and loop.time() < deadline:
            await asyncio.sleep(min(0.05, max(0.0, deadline - loop.time())))

        abandoned = sum(member.in_flight for member in self.members)
        for member in self.members:
            member.state = MemberState.REMOVED
        self._lifecycle = MemberState.REMOVED
        self.logger.info("Backend set drained", backend_set=self.set_id, abandoned_requests=abandoned)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.set_id,
            "origin": self.origin.kind.value,
            "state": self.state.value,
            "healthy_members": self.healthy_count,
            "deregistration_delay": self.deregistration_delay,
            "health_check": self.health_check.to_dict() if self.health_check else None,
            "members": [member.to_dict() for member in self.members],
        }


class TargetBinding:
    """What a route target resolves to: a primary set plus an optional canary."""

    def __init__(self, target_id: str, primary: BackendSet, rng: Optional[random.Random] = None):
        self.target_id = target_id
        self.primary = primary
        self.canary: Optional[BackendSet] = None
        self.canary_weight = 0.0
        self._rng = rng or random.Random()

    def select(self) -> BackendSet:
        """Pick by canary weight; an unserviceable canary gets no traffic."""
        canary = self.canary
        if canary is not None and self.canary_weight > 0 and (canary.is_static or canary.healthy_count > 0):
            if self.canary_weight >= 100 or self._rng.random() * 100 < self.canary_weight:
                return canary
        return self.primary

    def begin_canary(self, canary: BackendSet, weight: float) -> None:
        if not 0 <= weight <= 100:
            raise ValidationError("Canary weight must be between 0 and 100", details={"weight": weight})
        self.canary = canary
        self.canary_weight = weight

    def promote(self) -> BackendSet:
        """Make the canary primary; return the set it replaced."""
        if self.canary is None:
            raise ValidationError("No canary to promote", details={"target": self.target_id})
        previous = self.primary
        self.primary = self.canary
        self.canary = None
        self.canary_weight = 0.0
        return previous

    def rollback(self) -> Optional[BackendSet]:
        """Send all traffic back to the primary; return the withdrawn canary."""
        withdrawn = self.canary
        self.canary = None
        self.canary_weight = 0.0
        return withdrawn

    def backend_sets(self) -> List[BackendSet]:
        return [self.primary] + ([self.canary] if self.canary is not None else [])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target_id,
            "primary": self.primary.set_id,
            "canary": self.canary.set_id if self.canary else None,
            "canary_weight": self.canary_weight,
        }
