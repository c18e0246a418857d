"""
Blue/green replacement of a backend set with canary traffic shifting.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from shared.errors import ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..backends.monitor import HealthMonitor
from ..backends.target_group import BackendSet, TargetBinding


class DeploymentStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class CutoverPolicy:
    """Canary-then-all traffic shift.

    Defaults: 10% of traffic for 5 minutes, then 100%, the whole deployment
    bounded by 60 minutes.
    """

    canary_percent: float = 10.0
    canary_interval: float = 300.0
    timeout: float = 3600.0
    poll_interval: float = 5.0
    min_healthy_members: int = 1

    def __post_init__(self):
        if not 0 < self.canary_percent <= 100:
            raise ValidationError("canary_percent must be in (0, 100]")
        if self.canary_interval < 0 or self.timeout <= 0 or self.poll_interval <= 0:
            raise ValidationError("Cutover durations must be positive")
        if self.min_healthy_members < 1:
            raise ValidationError("min_healthy_members must be at least 1")


class _HealthRegression(Exception):
    pass


class BlueGreenDeployment:
    """Supervised cutover from the binding's primary set to a green set.

    Green health regressing during the canary window, the overall timeout,
    or cancellation all roll traffic back to blue and end in FAILED. Blue is
    drained and removed only after green has taken all traffic. Once green is
    promoted the deployment no longer fails: the blue drain runs to
    completion even if the deployment is cancelled or times out.
    """

    def __init__(
        self,
        binding: TargetBinding,
        green: BackendSet,
        green_monitor: HealthMonitor,
        policy: Optional[CutoverPolicy] = None,
        blue_monitor: Optional[HealthMonitor] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        if green is binding.primary:
            raise ValidationError("Green set must differ from the live set", details={"set": green.set_id})
        self.binding = binding
        self.blue = binding.primary
        self.green = green
        self.green_monitor = green_monitor
        self.blue_monitor = blue_monitor
        self.policy = policy or CutoverPolicy()
        self.metrics = metrics
        self.logger = get_logger("gateway.blue_green")

        self.status = DeploymentStatus.PENDING
        self.reason: Optional[str] = None
        self.events: List[Dict[str, Any]] = []
        self._task: Optional[asyncio.Task] = None
        self._retiring: Optional[asyncio.Task] = None

    def _event(self, name: str, **fields: Any) -> None:
        self.events.append({"event": name, **fields})
        self.logger.info(
            "Deployment event",
            deployment_event=name,
            target=self.binding.target_id,
            blue=self.blue.set_id,
            green=self.green.set_id,
            **fields,
        )

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name=f"deploy:{self.binding.target_id}")
        return self._task

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> DeploymentStatus:
        """Wait for the supervised task; cancellation still yields a final status."""
        if self._task is None:
            self.start()
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
        return self.status

    async def run(self) -> DeploymentStatus:
        if self.status is not DeploymentStatus.PENDING:
            raise ValidationError("Deployment already started", details={"status": self.status.value})
        self.status = DeploymentStatus.IN_PROGRESS
        self._event("started", canary_percent=self.policy.canary_percent)
        try:
            await asyncio.wait_for(self._cutover(), timeout=self.policy.timeout)
        except asyncio.TimeoutError:
            await self._finish("timeout")
        except _HealthRegression as exc:
            await self._rollback(str(exc))
        except asyncio.CancelledError:
            await self._finish("cancelled")
            raise
        return self.status

    async def _finish(self, reason: str) -> None:
        if self._retiring is not None:
            # Green already owns all traffic
            await self._retiring
        else:
            await self._rollback(reason)

    async def _cutover(self) -> None:
        loop = asyncio.get_running_loop()
        self.green_monitor.start()

        # Green must be serviceable before it sees any traffic
        while self.green.healthy_count < self.policy.min_healthy_members:
            await asyncio.sleep(self.policy.poll_interval)
        self._event("green_healthy", healthy_members=self.green.healthy_count)

        self.binding.begin_canary(self.green, self.policy.canary_percent)
        self._event("canary_shifted", weight=self.policy.canary_percent)

        deadline = loop.time() + self.policy.canary_interval
        while True:
            self._assert_green_healthy()
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.policy.poll_interval, remaining))

        previous = self.binding.promote()
        self._event("traffic_shifted", weight=100)

        self._retiring = asyncio.create_task(self._retire(previous), name=f"retire:{previous.set_id}")
        await asyncio.shield(self._retiring)

    async def _retire(self, previous: BackendSet) -> None:
        if self.blue_monitor is not None:
            await self.blue_monitor.stop()
        await previous.drain()
        self.status = DeploymentStatus.SUCCEEDED
        self._event("succeeded", removed=previous.set_id)
        self._record()

    def _assert_green_healthy(self) -> None:
        if self.green.healthy_count < self.policy.min_healthy_members:
            raise _HealthRegression(
                f"green set {self.green.set_id} dropped to {self.green.healthy_count} healthy members"
            )

    async def _rollback(self, reason: str) -> None:
        withdrawn = self.binding.rollback()
        self.status = DeploymentStatus.FAILED
        self.reason = reason
        self.logger.warning(
            "Deployment rolled back",
            target=self.binding.target_id,
            green=self.green.set_id,
            reason=reason,
        )
        self._event("rolled_back", reason=reason, canary_withdrawn=withdrawn is not None)
        await self.green_monitor.stop()
        await self.green.drain()
        self._record()

    def _record(self) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("deployments_total", target=self.binding.target_id, status=self.status.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.binding.target_id,
            "blue": self.blue.set_id,
            "green": self.green.set_id,
            "status": self.status.value,
            "reason": self.reason,
            "events": list(self.events),
        }
