"""
Origin adapters for the gateway.

- models: tagged origin variants and request/response shapes
- rewrites: payload signing, authorization relocation, prefix stripping
- adapter: forwarding to the selected backend member
"""

from .adapter import OriginAdapter, prepare_request
from .models import (
    ContainerOrigin,
    EdgeRequest,
    Origin,
    OriginKind,
    OriginResponse,
    ServerlessOrigin,
    StaticOrigin,
)

__all__ = [
    "ContainerOrigin",
    "EdgeRequest",
    "Origin",
    "OriginAdapter",
    "OriginKind",
    "OriginResponse",
    "ServerlessOrigin",
    "StaticOrigin",
    "prepare_request",
]
