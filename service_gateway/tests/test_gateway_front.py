"""
Unit tests for the gateway front.
"""

import asyncio

import pytest

from service_gateway.app.backends import BackendSet, HealthCheckPolicy, MemberState
from service_gateway.app.deploy import CutoverPolicy, DeploymentStatus
from service_gateway.app.gateway import GatewayFront
from service_gateway.app.origins import ContainerOrigin, EdgeRequest, OriginAdapter, StaticOrigin
from service_gateway.app.routing import PatternDialect
from shared.errors import (
    BackendUnavailableError,
    DeploymentError,
    NoRouteError,
    RequestBlockedError,
    ValidationError,
)
from shared.test_helpers import FakeOrigin, RecordingMetrics, ScriptedProbe


def _request(path, source="203.0.113.5", method="GET"):
    return EdgeRequest(method=method, path=path, source_address=source)


class TestGatewayFront:
    """Test cases for GatewayFront."""

    @pytest.fixture
    def origin(self):
        return FakeOrigin()

    @pytest.fixture
    def metrics(self):
        return RecordingMetrics()

    @pytest.fixture
    def probe(self):
        return ScriptedProbe()

    @pytest.fixture
    def gateway(self, origin, metrics, probe):
        return GatewayFront(
            ["203.0.113.0/24"],
            adapter=OriginAdapter(client=origin.client(), metrics=metrics),
            metrics=metrics,
            probe=probe,
        )

    @pytest.mark.asyncio
    async def test_request_flows_to_bound_set(self, gateway, origin, metrics):
        gateway.register_backend_set(BackendSet("api", ContainerOrigin("api.local", 5001)))
        gateway.add_route(["/v1", "/v1/*"], "api")

        response = await gateway.handle(_request("/v1/messages"))

        assert response.status_code == 200
        assert origin.hosts() == ["api.local"]
        assert metrics.counted("gateway_routed_requests_total", target="api", backend_set="api", status_code="200") == 1

    @pytest.mark.asyncio
    async def test_blocked_request_never_reaches_origin(self, gateway, origin, metrics):
        gateway.register_backend_set(BackendSet("api", ContainerOrigin("api.local", 5001)))
        gateway.add_route(["/v1", "/v1/*"], "api")

        with pytest.raises(RequestBlockedError) as exc_info:
            await gateway.handle(_request("/v1/messages", source="198.51.100.7"))

        assert exc_info.value.status_code == 400
        assert origin.requests == []
        assert metrics.counted("gateway_rejections_total", reason="blocked") == 1

    @pytest.mark.asyncio
    async def test_unmatched_path_is_rejected(self, gateway, metrics):
        gateway.register_backend_set(BackendSet("api", ContainerOrigin("api.local", 5001)))
        gateway.add_route(["/v1", "/v1/*"], "api")

        with pytest.raises(NoRouteError):
            await gateway.handle(_request("/api/v1/foo"))
        assert metrics.counted("gateway_rejections_total", reason="no_route") == 1

    @pytest.mark.asyncio
    async def test_unhealthy_set_answers_unavailable(self, gateway, metrics):
        gateway.register_backend_set(
            BackendSet("api", ContainerOrigin("api.local", 5001), health_check=HealthCheckPolicy())
        )
        gateway.add_route(["/*"], "api")

        with pytest.raises(BackendUnavailableError):
            await gateway.handle(_request("/"))
        assert metrics.counted("gateway_routed_requests_total", target="api", status_code="503") == 1
        await gateway.shutdown()

    def test_route_requires_registered_target(self, gateway):
        with pytest.raises(ValidationError):
            gateway.add_route(["/v1"], "missing")

    @pytest.mark.asyncio
    async def test_duplicate_target_rejected(self, gateway):
        gateway.register_backend_set(BackendSet("api", StaticOrigin()))
        with pytest.raises(ValidationError):
            gateway.register_backend_set(BackendSet("api", StaticOrigin()))

    @pytest.mark.asyncio
    async def test_greedy_dialect_registration(self, gateway):
        gateway.register_backend_set(BackendSet("files", StaticOrigin(204)))
        gateway.add_route(["/files/{proxy+}"], "files", PatternDialect.GREEDY_PATH)

        response = await gateway.handle(_request("/files/a.png"))
        assert response.status_code == 204

    @pytest.mark.asyncio
    async def test_detach_service_removes_routes_then_drains(self, gateway):
        api = BackendSet("api", ContainerOrigin("api.local", 5001), deregistration_delay=0.0)
        gateway.register_backend_set(api)
        gateway.add_route(["/v1", "/v1/*"], "api")

        removed = await gateway.detach_service("api")

        assert len(removed) == 1
        assert gateway.router.rules == ()
        assert api.state is MemberState.REMOVED
        assert "api" not in gateway.bindings
        with pytest.raises(NoRouteError):
            gateway.resolve(_request("/v1/foo"))

    @pytest.mark.asyncio
    async def test_blue_green_through_the_front(self, gateway, origin):
        blue = BackendSet("web-blue", ContainerOrigin("blue.local", 3000), deregistration_delay=0.0)
        gateway.register_backend_set(blue, target_id="web")
        gateway.add_route(["/*"], "web")
        green = BackendSet(
            "web-green",
            ContainerOrigin("green.local", 3000),
            health_check=HealthCheckPolicy(interval=0.01, healthy_threshold=1),
            deregistration_delay=0.0,
        )

        deployment = gateway.start_blue_green(
            "web", green, CutoverPolicy(canary_interval=0.05, poll_interval=0.01, timeout=5)
        )
        with pytest.raises(DeploymentError):
            gateway.start_blue_green("web", BackendSet("web-other", StaticOrigin()))

        assert await deployment.wait() is DeploymentStatus.SUCCEEDED
        await asyncio.sleep(0)

        await gateway.handle(_request("/apps"))
        assert origin.hosts()[-1] == "green.local"
        assert gateway.monitor("web-blue") is None
        assert gateway.monitor("web-green") is not None

        described = gateway.describe_backends()
        assert described[0]["primary"] == "web-green"
        assert described[0]["deployment"]["status"] == "succeeded"
        await gateway.shutdown()
