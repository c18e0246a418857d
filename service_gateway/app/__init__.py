"""
Edge gateway: a single public listener in front of the web, API and sandbox
backends.

The gateway filters callers by source CIDR, routes by path prefix and
forwards through origin adapters to health-checked backend sets.

Structure:
- app.main: FastAPI service, admin endpoints and the proxy catch-all.
- app.gateway: allow-list, route table and backend bindings.
- app.access: source-address allow-list.
- app.routing: path patterns, dialects and the priority router.
- app.origins: origin variants, rewrites and the forwarding adapter.
- app.backends: backend sets, health checks and polling.
- app.deploy: dependency-gated attachment and blue/green cutover.
- app.topology: default API, sandbox and web services.
- app.edge: CDN origin-request handler for the sandbox.
"""
