"""
Path routing for the gateway front.

- patterns: canonical pattern form, dialect translation and rule chunking
- router: priority-ordered first-match router
"""

from .patterns import (
    DEFAULT_MAX_PATTERNS_PER_RULE,
    PathPattern,
    PatternDialect,
    chunk_patterns,
    parse_pattern,
    render_pattern,
    translate_pattern,
)
from .router import PathRouter, Route

__all__ = [
    "DEFAULT_MAX_PATTERNS_PER_RULE",
    "PathPattern",
    "PatternDialect",
    "PathRouter",
    "Route",
    "chunk_patterns",
    "parse_pattern",
    "render_pattern",
    "translate_pattern",
]
