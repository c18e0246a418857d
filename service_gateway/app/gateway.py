"""
Gateway front: allow-list, path routing and dispatch to backend sets.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from shared.errors import (
    AccessLayerException,
    DeploymentError,
    NoRouteError,
    RequestBlockedError,
    ValidationError,
)
from shared.logging import get_logger, set_request_context
from shared.metrics import MetricsCollector
from shared.tracing import get_tracer

from .access.allowlist import AccessDecision, AllowListFilter
from .backends.health import HttpHealthProbe
from .backends.monitor import HealthMonitor, HealthProbe
from .backends.target_group import BackendSet, MemberState, TargetBinding
from .config import GatewayConfig
from .deploy.blue_green import BlueGreenDeployment, CutoverPolicy, DeploymentStatus
from .origins.adapter import OriginAdapter
from .origins.models import EdgeRequest, OriginResponse
from .routing.patterns import DEFAULT_MAX_PATTERNS_PER_RULE, PatternDialect
from .routing.router import PathRouter, Route


class GatewayFront:
    """Single public entry point in front of every attached service.

    Each request is checked against the allow-list, matched against the
    route table and handed to the backend set its target currently selects.
    """

    def __init__(
        self,
        allowed_cidrs: Sequence[str],
        max_patterns_per_rule: int = DEFAULT_MAX_PATTERNS_PER_RULE,
        adapter: Optional[OriginAdapter] = None,
        metrics: Optional[MetricsCollector] = None,
        probe: Optional[HealthProbe] = None,
    ):
        self.allowlist = AllowListFilter(allowed_cidrs)
        self.router = PathRouter(max_patterns_per_rule)
        self.metrics = metrics
        self.adapter = adapter or OriginAdapter(metrics=metrics)
        self._owned_probe = None
        if probe is None:
            probe = self._owned_probe = HttpHealthProbe()
        self.probe = probe
        self.logger = get_logger("gateway.front")
        self.tracer = get_tracer("gateway.front")

        self._bindings: Dict[str, TargetBinding] = {}
        self._monitors: Dict[str, HealthMonitor] = {}
        self._deployments: Dict[str, BlueGreenDeployment] = {}

    @classmethod
    def from_config(
        cls,
        config: GatewayConfig,
        adapter: Optional[OriginAdapter] = None,
        metrics: Optional[MetricsCollector] = None,
        probe: Optional[HealthProbe] = None,
    ) -> "GatewayFront":
        adapter = adapter or OriginAdapter(
            timeout=config.origin_timeout_seconds,
            debug_body_preview_bytes=config.debug_body_preview_bytes,
            metrics=metrics,
        )
        return cls(
            config.allowed_cidrs,
            max_patterns_per_rule=config.max_patterns_per_rule,
            adapter=adapter,
            metrics=metrics,
            probe=probe,
        )

    @property
    def bindings(self) -> Dict[str, TargetBinding]:
        return dict(self._bindings)

    def binding(self, target_id: str) -> TargetBinding:
        try:
            return self._bindings[target_id]
        except KeyError:
            raise ValidationError(f"Unknown target: {target_id}", details={"target": target_id}) from None

    def deployment(self, target_id: str) -> Optional[BlueGreenDeployment]:
        return self._deployments.get(target_id)

    def register_backend_set(
        self,
        backend_set: BackendSet,
        target_id: Optional[str] = None,
        probe: Optional[HealthProbe] = None,
        start_health_checks: bool = True,
    ) -> TargetBinding:
        """Bind a backend set to a route target and start checking its members.

        Sets with a health-check policy need a running event loop when
        ``start_health_checks`` is true.
        """
        target_id = target_id or backend_set.set_id
        if target_id in self._bindings:
            raise ValidationError(f"Target already registered: {target_id}", details={"target": target_id})

        binding = TargetBinding(target_id, backend_set)
        monitor = HealthMonitor(backend_set, probe or self.probe, self.metrics)
        self._bindings[target_id] = binding
        self._monitors[backend_set.set_id] = monitor
        if start_health_checks:
            monitor.start()

        self.logger.info("Backend set registered", target=target_id, backend_set=backend_set.set_id)
        return binding

    def monitor(self, set_id: str) -> Optional[HealthMonitor]:
        return self._monitors.get(set_id)

    def add_route(
        self,
        patterns: Sequence[str],
        target_id: str,
        dialect: PatternDialect = PatternDialect.WILDCARD,
    ) -> List[Route]:
        self.binding(target_id)
        return self.router.add_route(patterns, target_id, dialect)

    def resolve(self, request: EdgeRequest) -> Tuple[Route, TargetBinding]:
        """Apply the allow-list, then the route table."""
        if self.allowlist.evaluate(request.source_address) is AccessDecision.DENY:
            self._reject("blocked")
            raise RequestBlockedError(details={"source": request.source_address})

        route = self.router.match(request.path)
        if route is None:
            self._reject("no_route")
            raise NoRouteError(details={"path": request.path})

        binding = self._bindings.get(route.target_id)
        if binding is None:
            # Target detached between match and lookup
            self._reject("no_route")
            raise NoRouteError(details={"path": request.path})

        set_request_context(source_ip=request.source_address, route=route.target_id)
        return route, binding

    async def dispatch(self, request: EdgeRequest, binding: TargetBinding) -> OriginResponse:
        """Forward to whichever set the binding selects for this request."""
        backend_set = binding.select()
        with self.tracer.start_as_current_span(
            "gateway.dispatch",
            attributes={"gateway.target": binding.target_id, "gateway.backend_set": backend_set.set_id},
        ):
            try:
                response = await self.adapter.forward(request, backend_set)
            except AccessLayerException as exc:
                self._routed(binding.target_id, backend_set.set_id, exc.status_code)
                raise
        self._routed(binding.target_id, backend_set.set_id, response.status_code)
        return response

    async def handle(self, request: EdgeRequest) -> OriginResponse:
        _, binding = self.resolve(request)
        return await self.dispatch(request, binding)

    async def detach_service(self, target_id: str) -> List[Route]:
        """Withdraw a service: routes first, then drain every set it owns."""
        binding = self.binding(target_id)
        removed = self.router.remove_target(target_id)
        deployment = self._deployments.get(target_id)
        if deployment is not None:
            deployment.cancel()
            await deployment.wait()

        del self._bindings[target_id]
        for backend_set in binding.backend_sets():
            await self._retire(backend_set)

        self.logger.info("Service detached", target=target_id, rules=len(removed))
        return removed

    async def _retire(self, backend_set: BackendSet) -> None:
        monitor = self._monitors.pop(backend_set.set_id, None)
        if monitor is not None:
            await monitor.stop()
        await backend_set.drain()

    def start_blue_green(
        self,
        target_id: str,
        green: BackendSet,
        policy: Optional[CutoverPolicy] = None,
        probe: Optional[HealthProbe] = None,
    ) -> BlueGreenDeployment:
        """Begin replacing the target's live set with ``green``; returns the running deployment."""
        binding = self.binding(target_id)
        current = self._deployments.get(target_id)
        if current is not None and current.status in (DeploymentStatus.PENDING, DeploymentStatus.IN_PROGRESS):
            raise DeploymentError(
                f"Deployment already running for {target_id}",
                details={"target": target_id, "green": current.green.set_id},
            )
        if green.set_id in self._monitors:
            raise ValidationError(f"Backend set already in use: {green.set_id}", details={"set": green.set_id})

        green_monitor = HealthMonitor(green, probe or self.probe, self.metrics)
        self._monitors[green.set_id] = green_monitor
        deployment = BlueGreenDeployment(
            binding,
            green,
            green_monitor,
            policy=policy,
            blue_monitor=self._monitors.get(binding.primary.set_id),
            metrics=self.metrics,
        )
        self._deployments[target_id] = deployment
        task = deployment.start()
        task.add_done_callback(lambda _: self._forget_removed(deployment))
        return deployment

    def _forget_removed(self, deployment: BlueGreenDeployment) -> None:
        for backend_set in (deployment.blue, deployment.green):
            if backend_set.state is MemberState.REMOVED:
                self._monitors.pop(backend_set.set_id, None)

    def describe_backends(self) -> List[Dict[str, Any]]:
        described = []
        for target_id, binding in self._bindings.items():
            deployment = self._deployments.get(target_id)
            described.append({
                **binding.to_dict(),
                "sets": [backend_set.to_dict() for backend_set in binding.backend_sets()],
                "deployment": deployment.to_dict() if deployment else None,
            })
        return described

    async def shutdown(self) -> None:
        """Cancel deployments, stop health polling and release HTTP clients."""
        for deployment in list(self._deployments.values()):
            deployment.cancel()
            await deployment.wait()
        for monitor in list(self._monitors.values()):
            await monitor.stop()
        await self.adapter.close()
        if self._owned_probe is not None:
            await self._owned_probe.close()
        self.logger.info("Gateway front stopped")

    def _reject(self, reason: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("gateway_rejections_total", reason=reason)

    def _routed(self, target_id: str, set_id: str, status_code: int) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter(
                "gateway_routed_requests_total",
                target=target_id,
                backend_set=set_id,
                status_code=str(status_code),
            )
