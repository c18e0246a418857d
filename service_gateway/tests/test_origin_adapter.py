"""
Unit tests for the origin adapter.
"""

import base64
import hashlib

import httpx
import pytest

from service_gateway.app.backends import BackendMember, BackendSet
from service_gateway.app.origins import ContainerOrigin, EdgeRequest, OriginAdapter, ServerlessOrigin, StaticOrigin
from shared.errors import BackendUnavailableError, ExternalServiceError
from shared.test_helpers import FakeOrigin, RecordingMetrics, header_pairs


def _active(backend_set: BackendSet) -> BackendSet:
    backend_set.activate()
    return backend_set


class TestOriginAdapter:
    """Test cases for OriginAdapter.forward."""

    @pytest.fixture
    def origin(self):
        return FakeOrigin()

    @pytest.fixture
    def metrics(self):
        return RecordingMetrics()

    @pytest.fixture
    def adapter(self, origin, metrics):
        return OriginAdapter(client=origin.client(), metrics=metrics)

    @pytest.mark.asyncio
    async def test_container_request_is_forwarded_unchanged(self, adapter, origin, metrics):
        api = _active(BackendSet("api", ContainerOrigin("api.local", 5001)))
        request = EdgeRequest(
            method="POST",
            path="/v1/chat-messages",
            query_string="stream=true",
            headers={"host": "dify.example.com", "connection": "keep-alive", "authorization": "Bearer k"},
            body=b'{"query": "hi"}',
        )

        response = await adapter.forward(request, api)

        assert response.status_code == 200
        assert response.backend_set == "api"
        assert response.member == "api.local:5001"
        (seen,) = origin.requests
        assert seen.url == "http://api.local:5001/v1/chat-messages?stream=true"
        assert seen.body == b'{"query": "hi"}'
        assert seen.headers["authorization"] == "Bearer k"
        assert seen.headers["host"] == "api.local:5001"
        assert "connection" not in OriginAdapter._filter_headers(request.headers)
        assert metrics.histograms[0][0] == "gateway_origin_duration_seconds"

    @pytest.mark.asyncio
    async def test_response_headers_pass_through_without_hop_by_hop(self, metrics):
        def handler(request):
            return httpx.Response(
                302,
                headers=[
                    ("location", "/signin"),
                    ("set-cookie", "a=1"),
                    ("set-cookie", "b=2"),
                    ("connection", "close"),
                ],
                content=b"redirect",
            )

        origin = FakeOrigin(handler=handler)
        adapter = OriginAdapter(client=origin.client(), metrics=metrics)
        web = _active(BackendSet("web", ContainerOrigin("web.local", 3000)))

        response = await adapter.forward(EdgeRequest("GET", "/apps"), web)

        assert response.status_code == 302
        assert response.body == b"redirect"
        assert response.header("location") == "/signin"
        assert header_pairs(response.headers, "set-cookie") == ["a=1", "b=2"]
        assert response.header("connection") is None
        assert response.header("content-length") is None

    @pytest.mark.asyncio
    async def test_serverless_request_is_signed_relocated_and_stripped(self, adapter, origin):
        sandbox = _active(BackendSet(
            "sandbox",
            ServerlessOrigin("https://fn.example.com", strip_prefix="/DIFY_SANDBOX"),
        ))
        raw = b'{"code": "print(1)"}'
        request = EdgeRequest(
            method="POST",
            path="/DIFY_SANDBOX/v1/sandbox/run",
            headers={"authorization": "Bearer key"},
            body=base64.b64encode(raw),
            body_encoding="base64",
        )

        await adapter.forward(request, sandbox)

        (seen,) = origin.requests
        assert seen.url == "https://fn.example.com/v1/sandbox/run"
        assert seen.body == raw
        assert seen.headers["x-amz-content-sha256"] == hashlib.sha256(raw).hexdigest()
        assert seen.headers["authorization2"] == "Bearer key"
        assert "authorization" not in seen.headers

    @pytest.mark.asyncio
    async def test_static_origin_makes_no_call(self, adapter, origin):
        fallback = _active(BackendSet("default", StaticOrigin(400, b"bad request")))

        response = await adapter.forward(EdgeRequest("GET", "/nowhere"), fallback)

        assert response.status_code == 400
        assert response.body == b"bad request"
        assert origin.requests == []

    @pytest.mark.asyncio
    async def test_no_eligible_member_raises_unavailable(self, adapter, origin):
        api = BackendSet("api", ContainerOrigin("api.local", 5001))

        with pytest.raises(BackendUnavailableError) as exc_info:
            await adapter.forward(EdgeRequest("GET", "/v1"), api)

        assert exc_info.value.status_code == 503
        assert origin.requests == []

    @pytest.mark.asyncio
    async def test_transport_error_raises_bad_gateway(self, metrics):
        origin = FakeOrigin(down_hosts=["api.local"])
        adapter = OriginAdapter(client=origin.client(), metrics=metrics)
        api = _active(BackendSet("api", ContainerOrigin("api.local", 5001)))

        with pytest.raises(ExternalServiceError) as exc_info:
            await adapter.forward(EdgeRequest("GET", "/v1"), api)

        assert exc_info.value.status_code == 502
        assert exc_info.value.code == "BAD_GATEWAY"
        assert api.members[0].in_flight == 0

    @pytest.mark.asyncio
    async def test_round_robin_over_members(self, adapter, origin):
        members = [BackendMember("a", "http://10.0.0.1:5001"), BackendMember("b", "http://10.0.0.2:5001")]
        api = _active(BackendSet("api", ContainerOrigin("api.local", 5001), members=members))

        for _ in range(4):
            await adapter.forward(EdgeRequest("GET", "/v1"), api)

        assert origin.hosts() == ["10.0.0.1", "10.0.0.2", "10.0.0.1", "10.0.0.2"]
