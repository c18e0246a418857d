"""
Unit tests for the default service topology.
"""

import pytest

from service_gateway.app.config import load_gateway_config
from service_gateway.app.deploy import RedisDependency, TcpDependency
from service_gateway.app.origins import OriginKind
from service_gateway.app.routing import PathRouter
from service_gateway.app.topology import build_topology, describe_topology, service_environment


class TestTopology:
    """Test cases for build_topology and service_environment."""

    @pytest.fixture
    def config(self):
        return load_gateway_config(
            domain_name="example.com",
            hosted_zone_id="Z123",
            sandbox_function_url="https://fn.lambda-url.us-east-1.on.aws",
            database_host="db.local",
            redis_url="redis://cache.local:6379/0",
        )

    def test_services_in_registration_order(self, config):
        specs = build_topology(config)
        assert [spec.name for spec in specs] == ["api", "sandbox", "web"]

    def test_sandbox_is_optional(self):
        specs = build_topology(load_gateway_config())
        assert [spec.name for spec in specs] == ["api", "web"]

    def test_api_service(self, config):
        api = build_topology(config)[0]

        assert api.patterns == [
            "/console/api", "/api", "/v1", "/files",
            "/console/api/*", "/api/*", "/v1/*", "/files/*",
        ]
        assert api.backend_set.origin.port == 5001
        assert api.backend_set.health_check.path == "/health"
        assert api.backend_set.health_check.unhealthy_threshold == 4
        assert api.backend_set.health_check.healthy_http_codes == "200-299,307"
        assert [type(d) for d in api.dependencies] == [TcpDependency, RedisDependency]

    def test_sandbox_service(self, config):
        sandbox = build_topology(config)[1]

        assert sandbox.backend_set.origin.kind is OriginKind.SERVERLESS
        assert sandbox.backend_set.origin.strip_prefix == "/DIFY_SANDBOX"
        assert sandbox.backend_set.origin.sign_payload
        assert sandbox.backend_set.health_check is None
        assert sandbox.patterns == ["/DIFY_SANDBOX", "/DIFY_SANDBOX/*"]

    def test_web_service_catches_everything_else(self, config):
        specs = build_topology(config)
        web = specs[-1]
        assert web.backend_set.origin.port == 3000
        assert web.patterns == ["/*"]

        router = PathRouter()
        for spec in specs:
            router.add_route(spec.patterns, spec.name, spec.dialect)

        assert [route.target_id for route in router.rules] == ["api", "api", "sandbox", "web"]
        assert router.match("/console/api/apps").target_id == "api"
        assert router.match("/DIFY_SANDBOX/v1/sandbox/run").target_id == "sandbox"
        assert router.match("/signin").target_id == "web"

    def test_environment_follows_gateway_url(self, config):
        environment = service_environment(config)

        for key in ("CONSOLE_WEB_URL", "CONSOLE_API_URL", "SERVICE_API_URL", "APP_WEB_URL"):
            assert environment["api"][key] == "https://dify.example.com"
        assert environment["api"]["CODE_EXECUTION_ENDPOINT"] == "https://dify.example.com/DIFY_SANDBOX"
        assert environment["sandbox"]["WORKER_TIMEOUT"] == "850"
        assert environment["web"]["LOG_LEVEL"] == "ERROR"

    def test_debug_and_syscall_flags(self):
        config = load_gateway_config(debug=True, allow_any_syscalls=True)
        environment = service_environment(config)

        assert environment["api"]["LOG_LEVEL"] == "DEBUG"
        assert environment["web"]["DEBUG"] == "true"
        assert environment["sandbox"]["ALLOW_ANY_SYSCALLS"] == "true"
        assert environment["api"]["CODE_EXECUTION_ENDPOINT"] == "http://localhost:8194"

    def test_describe_topology(self, config):
        described = describe_topology(build_topology(config))
        assert described[0]["service"] == "api"
        assert described[0]["dependencies"] == ["database (tcp://db.local:5432)", "cache"]
