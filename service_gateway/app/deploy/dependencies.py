"""
Readiness probes for upstream dependencies of an attached service.
"""

import asyncio
from typing import Optional

import httpx
import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger


class DependencyCheckFailed(Exception):
    """A dependency answered but is not usable yet."""


class DependencyProbe:
    """Base class; ``check()`` returns when the dependency is reachable, raises otherwise."""

    retryable: tuple = (OSError, asyncio.TimeoutError, DependencyCheckFailed)

    def __init__(self, name: str):
        self.name = name
        self.logger = get_logger("gateway.dependency")

    async def check(self) -> None:
        raise NotImplementedError

    def describe(self) -> str:
        return self.name


class TcpDependency(DependencyProbe):
    """Reachable when a TCP connection can be opened (e.g. a database listener)."""

    def __init__(self, name: str, host: str, port: int, timeout: float = 3.0):
        super().__init__(name)
        self.host = host
        self.port = port
        self.timeout = timeout

    async def check(self) -> None:
        _, writer = await asyncio.wait_for(asyncio.open_connection(self.host, self.port), timeout=self.timeout)
        writer.close()
        await writer.wait_closed()

    def describe(self) -> str:
        return f"{self.name} (tcp://{self.host}:{self.port})"


class RedisDependency(DependencyProbe):
    """Reachable when the cache answers PING."""

    retryable = DependencyProbe.retryable + (RedisError,)

    def __init__(self, name: str, url: str, timeout: float = 3.0):
        super().__init__(name)
        self.url = url
        self.timeout = timeout

    async def check(self) -> None:
        client = redis.from_url(self.url, socket_connect_timeout=self.timeout, socket_timeout=self.timeout)
        try:
            if not await client.ping():
                raise DependencyCheckFailed(f"{self.name} did not answer PING")
        finally:
            await client.aclose()


class HttpDependency(DependencyProbe):
    """Reachable when the URL answers with a non-5xx status."""

    retryable = DependencyProbe.retryable + (httpx.HTTPError,)

    def __init__(self, name: str, url: str, timeout: float = 3.0, client: Optional[httpx.AsyncClient] = None):
        super().__init__(name)
        self.url = url
        self.timeout = timeout
        self._client = client

    async def check(self) -> None:
        if self._client is not None:
            response = await self._client.get(self.url, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.url)
        if response.status_code >= 500:
            raise DependencyCheckFailed(f"{self.name} answered {response.status_code}")

    def describe(self) -> str:
        return f"{self.name} ({self.url})"
