"""
Priority-ordered path router for the gateway front.
"""

import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from shared.errors import ValidationError
from shared.logging import get_logger

from .patterns import (
    DEFAULT_MAX_PATTERNS_PER_RULE,
    PathPattern,
    PatternDialect,
    chunk_patterns,
    parse_pattern,
)


@dataclass(frozen=True)
class Route:
    """One routing rule: a chunk of patterns bound to a target at a priority."""

    patterns: Tuple[PathPattern, ...]
    target_id: str
    priority: int

    def matches(self, path: str) -> bool:
        return any(pattern.matches(path) for pattern in self.patterns)

    def to_dict(self, dialect: PatternDialect = PatternDialect.WILDCARD) -> Dict[str, Any]:
        return {
            "priority": self.priority,
            "target": self.target_id,
            "patterns": [pattern.render(dialect) for pattern in self.patterns],
        }


class PathRouter:
    """First-match router over rules sorted by ascending priority.

    Priorities come from a counter owned by this instance. It starts at 1,
    advances once per registered chunk and is never reset or reused, so the
    final rule order depends only on registration order.
    """

    def __init__(self, max_patterns_per_rule: int = DEFAULT_MAX_PATTERNS_PER_RULE):
        if max_patterns_per_rule < 1:
            raise ValidationError("max_patterns_per_rule must be at least 1")
        self.max_patterns_per_rule = max_patterns_per_rule
        self.logger = get_logger("gateway.router")
        self._lock = threading.Lock()
        self._next_priority = 1
        # Readers take a reference to this tuple; writers replace it whole
        self._rules: Tuple[Route, ...] = ()

    @property
    def rules(self) -> Tuple[Route, ...]:
        return self._rules

    @property
    def next_priority(self) -> int:
        return self._next_priority

    def add_route(
        self,
        patterns: Sequence[str],
        target_id: str,
        dialect: PatternDialect = PatternDialect.WILDCARD,
    ) -> List[Route]:
        """Register patterns for a target, one rule per chunk.

        All chunks become visible together. Registering the same patterns
        again adds new rules at higher priorities rather than merging.
        """
        if isinstance(patterns, str):
            raise ValidationError("patterns must be a list of strings", details={"patterns": patterns})
        if not patterns:
            raise ValidationError("At least one path pattern is required", details={"target": target_id})

        # Translation happens here, never in match()
        parsed = [parse_pattern(raw, dialect) for raw in patterns]
        chunks = chunk_patterns(parsed, self.max_patterns_per_rule)

        with self._lock:
            new_routes = []
            priority = self._next_priority
            for chunk in chunks:
                new_routes.append(Route(tuple(chunk), target_id, priority))
                priority += 1
            self._rules = tuple(sorted(self._rules + tuple(new_routes), key=lambda r: r.priority))
            self._next_priority = priority

        self.logger.info(
            "Route registered",
            target=target_id,
            patterns=len(parsed),
            rules=len(new_routes),
            priorities=[route.priority for route in new_routes],
        )
        return new_routes

    def remove_target(self, target_id: str) -> List[Route]:
        """Drop every rule pointing at a target; freed priorities are not reused."""
        with self._lock:
            removed = [route for route in self._rules if route.target_id == target_id]
            self._rules = tuple(route for route in self._rules if route.target_id != target_id)

        if removed:
            self.logger.info("Routes removed", target=target_id, rules=len(removed))
        return removed

    def match(self, path: str) -> Optional[Route]:
        """Return the first rule, by ascending priority, matching the path."""
        for route in self._rules:
            if route.matches(path):
                return route
        return None

    def export(self, dialect: PatternDialect = PatternDialect.WILDCARD) -> List[Dict[str, Any]]:
        """Render the rule table in a gateway-specific syntax."""
        return [route.to_dict(dialect) for route in self._rules]
