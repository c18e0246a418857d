"""
Edge-function entry points for requests that bypass the gateway process.
"""

from .handler import DEFAULT_SANDBOX_PREFIX, handle_origin_request, handler

__all__ = ["DEFAULT_SANDBOX_PREFIX", "handle_origin_request", "handler"]
