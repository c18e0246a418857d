"""
Shared utilities for the Edge Gateway.

This package aggregates common building blocks consumed by the gateway:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- tracing: OpenTelemetry tracing config
- errors: Canonical error types and responses
- retry: Retry decorators for dependency readiness checks

Do not import from service_gateway into shared/.
"""
