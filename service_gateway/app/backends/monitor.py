"""
Fixed-interval health polling for backend set members.
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .health import HealthCheckPolicy, HttpHealthProbe
from .target_group import BackendMember, BackendSet, MemberState

HealthProbe = Callable[[BackendMember, HealthCheckPolicy], Awaitable[bool]]


class HealthMonitor:
    """Runs one polling loop per member, independent of request handling.

    The router only reads ``member.eligible``; nothing on the request path
    waits for a check to finish.
    """

    def __init__(
        self,
        backend_set: BackendSet,
        probe: Optional[HealthProbe] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.backend_set = backend_set
        self.probe = probe or HttpHealthProbe()
        self.metrics = metrics
        self.logger = get_logger("gateway.health_monitor")
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    def start(self) -> None:
        """Activate the set and spawn the polling loops."""
        self.backend_set.activate()
        policy = self.backend_set.health_check
        if policy is None:
            for member in self.backend_set.members:
                self._publish(member)
            return
        for member in self.backend_set.members:
            if member.member_id not in self._tasks:
                self._tasks[member.member_id] = asyncio.create_task(
                    self._poll(member, policy),
                    name=f"health:{self.backend_set.set_id}:{member.member_id}",
                )

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def check_once(self) -> List[Optional[MemberState]]:
        """Run a single check round on every member."""
        self.backend_set.activate()
        policy = self.backend_set.health_check
        if policy is None:
            return []
        return list(await asyncio.gather(*(self._check(member, policy) for member in self.backend_set.members)))

    async def _poll(self, member: BackendMember, policy: HealthCheckPolicy) -> None:
        while member.state not in (MemberState.DRAINING, MemberState.REMOVED):
            await self._check(member, policy)
            await asyncio.sleep(policy.interval)

    async def _check(self, member: BackendMember, policy: HealthCheckPolicy) -> Optional[MemberState]:
        try:
            passed = await asyncio.wait_for(self.probe(member, policy), timeout=policy.timeout)
        except asyncio.TimeoutError:
            passed = False
        except Exception as exc:
            self.logger.warning(
                "Health probe raised, counting as failure",
                backend_set=self.backend_set.set_id,
                member=member.member_id,
                error=str(exc),
            )
            passed = False

        transition = member.record_check(bool(passed), policy)
        if transition is not None:
            log = self.logger.info if transition is MemberState.IN_SERVICE else self.logger.warning
            log(
                "Backend member state changed",
                backend_set=self.backend_set.set_id,
                member=member.member_id,
                state=transition.value,
                consecutive_failures=member.consecutive_failures,
            )
            self._publish(member)
        return transition

    def _publish(self, member: BackendMember) -> None:
        if self.metrics is not None:
            self.metrics.set_gauge(
                "backend_member_in_service",
                1.0 if member.eligible else 0.0,
                backend_set=self.backend_set.set_id,
                member=member.member_id,
            )
