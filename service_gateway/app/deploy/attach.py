"""
Attaching services to the gateway once their dependencies are ready.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Sequence

from shared.errors import DependencyNotReadyError, ValidationError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception

from ..backends.monitor import HealthProbe
from ..backends.target_group import BackendSet
from ..routing.patterns import PatternDialect
from ..routing.router import Route
from .dependencies import DependencyProbe

if TYPE_CHECKING:
    from ..gateway import GatewayFront


class StepState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class BootstrapStep:
    """A named async action that must finish before the next step starts."""

    name: str
    action: Callable[[], Awaitable[Any]]
    state: StepState = StepState.PENDING
    error: Optional[str] = None


class BootstrapSequence:
    """Explicit ordered task list with a completion barrier per step.

    Step N starts only after step N-1 completed. A failure marks every later
    step as skipped and stops the sequence.
    """

    def __init__(self, owner: str):
        self.owner = owner
        self.steps: List[BootstrapStep] = []
        self._barriers: Dict[str, asyncio.Event] = {}
        self.logger = get_logger("gateway.bootstrap")

    def add(self, name: str, action: Callable[[], Awaitable[Any]]) -> "BootstrapSequence":
        if name in self._barriers:
            raise ValidationError(f"Duplicate bootstrap step: {name}", details={"owner": self.owner})
        self.steps.append(BootstrapStep(name, action))
        self._barriers[name] = asyncio.Event()
        return self

    async def wait_for(self, name: str) -> None:
        """Block until the named step has completed."""
        await self._barriers[name].wait()

    def completed(self, name: str) -> bool:
        return self._barriers[name].is_set()

    async def run(self) -> None:
        for index, step in enumerate(self.steps):
            step.state = StepState.RUNNING
            try:
                await step.action()
            except Exception as exc:
                step.state = StepState.FAILED
                step.error = str(exc)
                for later in self.steps[index + 1:]:
                    later.state = StepState.SKIPPED
                self.logger.error("Bootstrap step failed", owner=self.owner, step=step.name, error=str(exc))
                if isinstance(exc, DependencyNotReadyError):
                    raise
                raise DependencyNotReadyError(self.owner, step.name, details={"error": str(exc)}) from exc
            step.state = StepState.COMPLETED
            self._barriers[step.name].set()
            self.logger.debug("Bootstrap step completed", owner=self.owner, step=step.name)

    def to_dict(self) -> List[Dict[str, Any]]:
        return [{"step": step.name, "state": step.state.value, "error": step.error} for step in self.steps]


@dataclass
class ServiceSpec:
    """Everything needed to put one service behind the gateway."""

    name: str
    backend_set: BackendSet
    patterns: List[str]
    dialect: PatternDialect = PatternDialect.WILDCARD
    dependencies: List[DependencyProbe] = field(default_factory=list)
    bootstrap: List[BootstrapStep] = field(default_factory=list)
    environment: Dict[str, str] = field(default_factory=dict)


@dataclass
class AttachResult:
    service: str
    attached: bool
    routes: List[Route] = field(default_factory=list)
    error: Optional[str] = None
    steps: List[Dict[str, Any]] = field(default_factory=list)


class ServiceAttacher:
    """Gates route registration on dependency readiness, per service."""

    def __init__(
        self,
        gateway: "GatewayFront",
        retry_config: Optional[RetryConfig] = None,
        probe: Optional[HealthProbe] = None,
    ):
        self.gateway = gateway
        self.retry_config = retry_config or RetryConfig(max_attempts=5, base_delay=1.0, max_delay=15.0)
        self.probe = probe
        self.logger = get_logger("gateway.attacher")

    def _sequence_for(self, spec: ServiceSpec) -> BootstrapSequence:
        sequence = BootstrapSequence(spec.name)
        for dependency in spec.dependencies:
            sequence.add(f"dependency:{dependency.name}", self._readiness_check(spec.name, dependency))
        for step in spec.bootstrap:
            sequence.add(step.name, step.action)
        return sequence

    def _readiness_check(self, service: str, dependency: DependencyProbe) -> Callable[[], Awaitable[None]]:
        checked = retry_on_exception(dependency.retryable, config=self.retry_config)(dependency.check)

        async def _check() -> None:
            try:
                await checked()
            except RetryError as exc:
                raise DependencyNotReadyError(
                    service,
                    dependency.name,
                    details={"target": dependency.describe(), "attempts": exc.attempts, "error": str(exc.last_exception)},
                ) from exc
            self.logger.info("Dependency ready", service=service, dependency=dependency.describe())

        return _check

    async def prepare(self, spec: ServiceSpec) -> BootstrapSequence:
        """Run dependency checks and bootstrap steps; raises if the service must stay detached."""
        sequence = self._sequence_for(spec)
        await sequence.run()
        return sequence

    def register(self, spec: ServiceSpec) -> List[Route]:
        """Expose a prepared service: start health checks, then publish its routes."""
        self.gateway.register_backend_set(spec.backend_set, target_id=spec.name, probe=self.probe)
        return self.gateway.add_route(spec.patterns, spec.name, spec.dialect)

    async def attach(self, spec: ServiceSpec) -> AttachResult:
        sequence = await self.prepare(spec)
        routes = self.register(spec)
        return AttachResult(spec.name, True, routes, steps=sequence.to_dict())

    async def attach_all(self, specs: Sequence[ServiceSpec]) -> List[AttachResult]:
        """Prepare services concurrently, then register them in declaration order.

        Route priorities follow the order of ``specs`` no matter which
        dependency becomes ready first. A blocked service is reported and
        skipped; the others are still attached.
        """
        outcomes = await asyncio.gather(*(self.prepare(spec) for spec in specs), return_exceptions=True)

        results: List[AttachResult] = []
        for spec, outcome in zip(specs, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                self.logger.error("Service not attached", service=spec.name, error=str(outcome))
                results.append(AttachResult(spec.name, False, error=str(outcome)))
                continue
            routes = self.register(spec)
            results.append(AttachResult(spec.name, True, routes, steps=outcome.to_dict()))
        return results
