"""
Gateway configuration and fail-fast validation.
"""

from typing import List, Optional

from pydantic import Field, ValidationError as PydanticValidationError, model_validator

from shared.config import ServiceConfig
from shared.errors import ConfigurationError


class GatewayConfig(ServiceConfig):
    """Settings for the gateway front and the services attached behind it."""

    # Access control
    allowed_cidrs: List[str] = Field(default_factory=list)
    trust_forwarded_for: bool = Field(default=False)

    # Custom domain; both or neither
    domain_name: Optional[str] = Field(default=None)
    hosted_zone_id: Optional[str] = Field(default=None)
    sub_domain: str = Field(default="dify")
    public_host: str = Field(default="localhost:8000")

    # Backend images and behaviour flags handed to attached services
    app_image_tag: str = Field(default="latest")
    sandbox_image_tag: str = Field(default="latest")
    debug: bool = Field(default=False)
    allow_any_syscalls: bool = Field(default=False)

    # Routing policy
    max_patterns_per_rule: int = Field(default=5)

    # Target group defaults
    health_check_interval_seconds: float = Field(default=15.0)
    health_check_timeout_seconds: float = Field(default=5.0)
    healthy_threshold: int = Field(default=2)
    unhealthy_threshold: int = Field(default=6)
    healthy_http_codes: str = Field(default="200-299,307")
    deregistration_delay_seconds: float = Field(default=10.0)

    # Blue/green cutover policy
    canary_percent: float = Field(default=10.0)
    canary_interval_seconds: float = Field(default=300.0)
    deployment_timeout_seconds: float = Field(default=3600.0)

    # Upstreams
    api_upstream: str = Field(default="api.dify.local")
    api_port: int = Field(default=5001)
    web_upstream: str = Field(default="web.dify.local")
    web_port: int = Field(default=3000)
    sandbox_function_url: Optional[str] = Field(default=None)
    sandbox_path_prefix: str = Field(default="/DIFY_SANDBOX")
    database_host: Optional[str] = Field(default=None)
    database_port: int = Field(default=5432)
    redis_url: Optional[str] = Field(default=None)

    origin_timeout_seconds: float = Field(default=60.0)
    debug_body_preview_bytes: int = Field(default=512)

    @model_validator(mode="after")
    def _check_domain_pair(self) -> "GatewayConfig":
        if (self.domain_name is None) != (self.hosted_zone_id is None):
            raise ValueError(
                "You have to set both hosted_zone_id and domain_name, or leave both blank"
            )
        if self.max_patterns_per_rule < 1:
            raise ValueError("max_patterns_per_rule must be at least 1")
        return self

    @property
    def custom_domain(self) -> Optional[str]:
        """Fully qualified custom hostname, if one is configured."""
        if self.domain_name is None:
            return None
        return f"{self.sub_domain}.{self.domain_name}"

    @property
    def gateway_url(self) -> str:
        """Public URL of the gateway; HTTPS only when a custom domain is set."""
        if self.custom_domain is not None:
            return f"https://{self.custom_domain}"
        return f"http://{self.public_host}"

    @property
    def effective_log_level(self) -> str:
        return "debug" if self.debug else self.log_level


def load_gateway_config(**overrides) -> GatewayConfig:
    """Build and validate the gateway configuration or fail before anything is wired."""
    try:
        return GatewayConfig(service_name="gateway", port=overrides.pop("port", 8000), **overrides)
    except PydanticValidationError as exc:
        messages = [error.get("msg", "") for error in exc.errors()]
        raise ConfigurationError(
            "; ".join(messages) or "Invalid gateway configuration",
            details={"errors": messages},
        ) from exc
