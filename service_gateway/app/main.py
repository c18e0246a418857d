"""
Edge gateway service: one public listener in front of the attached services.
"""

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.errors import AccessLayerException, NoRouteError, RequestBlockedError, ValidationError
from shared.logging import clear_context, set_request_id

from .access.allowlist import AccessDecision
from .backends.monitor import HealthProbe
from .config import GatewayConfig, load_gateway_config
from .deploy.attach import AttachResult, ServiceAttacher, ServiceSpec
from .gateway import GatewayFront
from .origins.adapter import OriginAdapter
from .origins.models import EdgeRequest
from .routing.patterns import PatternDialect
from .topology import build_topology, describe_topology

ADMIN_PREFIX = "/_gateway"
PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class GatewayService(BaseService):
    """Gateway service implementation."""

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        adapter: Optional[OriginAdapter] = None,
        probe: Optional[HealthProbe] = None,
        specs: Optional[List[ServiceSpec]] = None,
        attach_on_startup: bool = True,
    ):
        config = config or load_gateway_config()
        super().__init__("gateway", config.port, config=config, admin_prefix=ADMIN_PREFIX)

        self.gateway = GatewayFront.from_config(config, adapter=adapter, metrics=self.metrics, probe=probe)
        self.attacher = ServiceAttacher(self.gateway)
        self.specs = specs if specs is not None else build_topology(config)
        self.attach_results: List[AttachResult] = []

        @self.app.on_event("startup")
        async def _startup():
            if attach_on_startup:
                await self.attach_services()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.gateway.shutdown()

        self._setup_access_middleware()
        self._setup_admin_routes()
        self._setup_proxy_routes()

        self.logger.info(
            "Gateway configured",
            gateway_url=config.gateway_url,
            allowed_cidrs=len(config.allowed_cidrs),
            services=[spec.name for spec in self.specs],
        )

    async def attach_services(self) -> List[AttachResult]:
        self.attach_results = await self.attacher.attach_all(self.specs)
        attached = [result.service for result in self.attach_results if result.attached]
        blocked = [result.service for result in self.attach_results if not result.attached]
        self.logger.info("Services attached", attached=attached, blocked=blocked)
        return self.attach_results

    def _get_client_ip(self, request: Request) -> Optional[str]:
        """Socket peer, or the first forwarded hop behind a trusted proxy."""
        if self.config.trust_forwarded_for:
            forwarded = request.headers.get("x-forwarded-for")
            if forwarded:
                return forwarded.split(",")[0].strip()
        return request.client.host if request.client else None

    def _endpoint_label(self, request: Request) -> str:
        path = request.url.path
        if _is_admin_path(path):
            return path
        # One label per route target keeps cardinality bounded
        return getattr(request.state, "route_target", "unrouted")

    def _setup_access_middleware(self):
        """Allow-list and correlation context for gateway-owned endpoints."""

        @self.app.middleware("http")
        async def guard_admin_paths(request: Request, call_next):
            set_request_id(request.headers.get("x-request-id"))
            try:
                if _is_admin_path(request.url.path):
                    source = self._get_client_ip(request)
                    if self.gateway.allowlist.evaluate(source) is AccessDecision.DENY:
                        self.metrics.increment_counter("gateway_rejections_total", reason="blocked")
                        error = RequestBlockedError(details={"source": source})
                        return JSONResponse(status_code=error.status_code, content=error.to_response().model_dump())
                return await call_next(request)
            finally:
                clear_context()

    def _setup_admin_routes(self):
        """Gateway-owned introspection endpoints."""

        @self.app.get(f"{ADMIN_PREFIX}/routes")
        async def list_routes(dialect: str = Query("wildcard")):
            try:
                selected = PatternDialect[dialect.upper()]
            except KeyError:
                raise ValidationError(
                    f"Unknown dialect: {dialect}",
                    details={"supported": [d.name.lower() for d in PatternDialect]},
                ) from None
            return {
                "dialect": selected.name.lower(),
                "next_priority": self.gateway.router.next_priority,
                "rules": self.gateway.router.export(selected),
            }

        @self.app.get(f"{ADMIN_PREFIX}/backends")
        async def list_backends():
            return {"targets": self.gateway.describe_backends()}

        @self.app.get(f"{ADMIN_PREFIX}/topology")
        async def topology():
            results = {result.service: result for result in self.attach_results}
            services = []
            for entry in describe_topology(self.specs):
                result = results.get(entry["service"])
                entry["attached"] = bool(result and result.attached)
                entry["error"] = result.error if result else None
                entry["bootstrap"] = result.steps if result else []
                services.append(entry)
            return {"gateway_url": self.config.gateway_url, "services": services}

    def _setup_proxy_routes(self):
        """Every path outside the admin prefix goes through the gateway front."""

        @self.app.api_route("/{full_path:path}", methods=PROXY_METHODS, include_in_schema=False)
        async def proxy(request: Request, full_path: str):
            if _is_admin_path(request.url.path):
                raise NoRouteError(details={"path": request.url.path})

            edge_request = EdgeRequest(
                method=request.method,
                path=request.url.path,
                query_string=request.url.query,
                headers=_collect_headers(request),
                body=await request.body(),
                source_address=self._get_client_ip(request),
            )
            route, binding = self.gateway.resolve(edge_request)
            request.state.route_target = route.target_id

            origin_response = await self.gateway.dispatch(edge_request, binding)
            response = Response(content=origin_response.body, status_code=origin_response.status_code)
            # Raw list so repeated headers such as set-cookie survive
            response.raw_headers = [
                (name.lower().encode("latin-1"), value.encode("latin-1"))
                for name, value in origin_response.headers
            ] + [(b"content-length", str(len(origin_response.body)).encode("latin-1"))]
            return response

    async def _check_dependencies(self) -> Dict[str, str]:
        return {
            target_id: binding.primary.state.value
            for target_id, binding in self.gateway.bindings.items()
        }


def _is_admin_path(path: str) -> bool:
    return path == ADMIN_PREFIX or path.startswith(ADMIN_PREFIX + "/")


def _collect_headers(request: Request) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for name, value in request.headers.items():
        if name in headers:
            separator = "; " if name == "cookie" else ", "
            headers[name] = f"{headers[name]}{separator}{value}"
        else:
            headers[name] = value
    return headers


def create_app(
    config: Optional[GatewayConfig] = None,
    adapter: Optional[OriginAdapter] = None,
    probe: Optional[HealthProbe] = None,
    specs: Optional[List[ServiceSpec]] = None,
    attach_on_startup: bool = True,
) -> FastAPI:
    """Application factory, e.g. ``uvicorn --factory service_gateway.app.main:create_app``."""
    return GatewayService(config, adapter, probe, specs, attach_on_startup).app


def main(**overrides: Any) -> None:
    GatewayService(load_gateway_config(**overrides)).run()


if __name__ == "__main__":
    main()
