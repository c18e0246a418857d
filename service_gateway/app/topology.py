"""
Default service topology behind the gateway: API, sandbox and web.

Services are declared in registration order. The web catch-all comes last so
every more specific prefix wins over it.
"""

from typing import Dict, List

from .backends.health import HealthCheckPolicy
from .backends.target_group import BackendSet
from .config import GatewayConfig
from .deploy.attach import ServiceSpec
from .deploy.dependencies import DependencyProbe, RedisDependency, TcpDependency
from .origins.models import ContainerOrigin, ServerlessOrigin
from .routing.patterns import PatternDialect

API_PATH_PREFIXES = ("/console/api", "/api", "/v1", "/files")
API_UNHEALTHY_THRESHOLD = 4
WEB_HEALTH_PATH = "/apps"
SANDBOX_PORT = 8194


def with_wildcards(prefixes) -> List[str]:
    """``["/a"]`` -> ``["/a", "/a/*"]``; bare prefixes first, then wildcards."""
    return list(prefixes) + [f"{prefix}/*" for prefix in prefixes]


def _health_policy(config: GatewayConfig, path: str, unhealthy_threshold: int) -> HealthCheckPolicy:
    return HealthCheckPolicy(
        path=path,
        interval=config.health_check_interval_seconds,
        timeout=config.health_check_timeout_seconds,
        healthy_threshold=config.healthy_threshold,
        unhealthy_threshold=unhealthy_threshold,
        healthy_http_codes=config.healthy_http_codes,
    )


def _dependencies(config: GatewayConfig) -> List[DependencyProbe]:
    dependencies: List[DependencyProbe] = []
    if config.database_host:
        dependencies.append(TcpDependency("database", config.database_host, config.database_port))
    if config.redis_url:
        dependencies.append(RedisDependency("cache", config.redis_url))
    return dependencies


def service_environment(config: GatewayConfig) -> Dict[str, Dict[str, str]]:
    """Environment handed to each attached service, derived from the gateway URL."""
    url = config.gateway_url
    log_level = "DEBUG" if config.debug else "ERROR"
    debug = "true" if config.debug else "false"

    api = {
        "MODE": "api",
        "LOG_LEVEL": log_level,
        "DEBUG": debug,
        "CONSOLE_WEB_URL": url,
        "CONSOLE_API_URL": url,
        "SERVICE_API_URL": url,
        "APP_WEB_URL": url,
        "MIGRATION_ENABLED": "true",
        "IMAGE_TAG": config.app_image_tag,
    }
    if config.sandbox_function_url:
        api["CODE_EXECUTION_ENDPOINT"] = f"{url}{config.sandbox_path_prefix}"
    else:
        api["CODE_EXECUTION_ENDPOINT"] = f"http://localhost:{SANDBOX_PORT}"

    sandbox = {
        "GIN_MODE": "release",
        "WORKER_TIMEOUT": "850",
        "ENABLE_NETWORK": "true",
        "ALLOW_ANY_SYSCALLS": "true" if config.allow_any_syscalls else "false",
        "IMAGE_TAG": config.sandbox_image_tag,
    }

    web = {
        "LOG_LEVEL": log_level,
        "DEBUG": debug,
        # Empty means same origin as the page
        "CONSOLE_API_URL": "",
        "APP_API_URL": "",
        "PORT": str(config.web_port),
        "IMAGE_TAG": config.app_image_tag,
    }
    return {"api": api, "sandbox": sandbox, "web": web}


def build_topology(config: GatewayConfig) -> List[ServiceSpec]:
    """Service specs in the order their routes must be registered."""
    environment = service_environment(config)
    dependencies = _dependencies(config)
    specs: List[ServiceSpec] = []

    api_set = BackendSet(
        "api",
        ContainerOrigin(config.api_upstream, config.api_port),
        health_check=_health_policy(config, "/health", API_UNHEALTHY_THRESHOLD),
        deregistration_delay=config.deregistration_delay_seconds,
    )
    specs.append(ServiceSpec(
        name="api",
        backend_set=api_set,
        patterns=with_wildcards(API_PATH_PREFIXES),
        dependencies=list(dependencies),
        environment=environment["api"],
    ))

    if config.sandbox_function_url:
        prefix = config.sandbox_path_prefix
        sandbox_set = BackendSet(
            "sandbox",
            ServerlessOrigin(config.sandbox_function_url, strip_prefix=prefix),
            deregistration_delay=config.deregistration_delay_seconds,
        )
        specs.append(ServiceSpec(
            name="sandbox",
            backend_set=sandbox_set,
            patterns=with_wildcards([prefix]),
            environment=environment["sandbox"],
        ))

    web_set = BackendSet(
        "web",
        ContainerOrigin(config.web_upstream, config.web_port),
        health_check=_health_policy(config, WEB_HEALTH_PATH, config.unhealthy_threshold),
        deregistration_delay=config.deregistration_delay_seconds,
    )
    specs.append(ServiceSpec(
        name="web",
        backend_set=web_set,
        patterns=["/*"],
        dialect=PatternDialect.WILDCARD,
        environment=environment["web"],
    ))
    return specs


def describe_topology(specs: List[ServiceSpec]) -> List[Dict[str, object]]:
    return [
        {
            "service": spec.name,
            "backend_set": spec.backend_set.set_id,
            "origin": spec.backend_set.origin.kind.value,
            "patterns": list(spec.patterns),
            "dependencies": [dependency.describe() for dependency in spec.dependencies],
            "environment": dict(spec.environment),
        }
        for spec in specs
    ]
