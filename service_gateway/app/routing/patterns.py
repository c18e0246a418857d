"""
Path pattern parsing, matching and dialect translation.

Patterns are normalized into one canonical form when a route is registered,
so matching never has to know which gateway syntax a pattern came from.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, TypeVar

from shared.errors import ValidationError

T = TypeVar("T")

DEFAULT_MAX_PATTERNS_PER_RULE = 5


class PatternDialect(Enum):
    """Pattern syntaxes understood at registration time."""
    WILDCARD = "wildcard"        # load balancer rules: /prefix/*
    GREEDY_PATH = "greedy_path"  # HTTP API routes: /prefix/{proxy+}


_GREEDY_TOKENS = {
    PatternDialect.WILDCARD: "*",
    PatternDialect.GREEDY_PATH: "{proxy+}",
}


@dataclass(frozen=True)
class PathPattern:
    """Canonical pattern: an exact path, or a prefix followed by anything."""

    value: str
    greedy: bool = False

    def matches(self, path: str) -> bool:
        if self.greedy:
            return path.startswith(self.value)
        return path == self.value

    def render(self, dialect: PatternDialect = PatternDialect.WILDCARD) -> str:
        return render_pattern(self, dialect)

    def __str__(self) -> str:
        return self.render()


def parse_pattern(raw: str, dialect: PatternDialect = PatternDialect.WILDCARD) -> PathPattern:
    """Translate a dialect-specific pattern into its canonical form."""
    if not isinstance(raw, str) or not raw.startswith("/"):
        raise ValidationError("Path patterns must start with '/'", details={"pattern": raw})

    token = _GREEDY_TOKENS[dialect]
    if raw.endswith("/" + token):
        prefix = raw[: -len(token)]
        if token in prefix:
            raise ValidationError("Only a trailing wildcard segment is supported", details={"pattern": raw})
        return PathPattern(prefix, greedy=True)

    if token in raw:
        raise ValidationError("Only a trailing wildcard segment is supported", details={"pattern": raw})
    return PathPattern(raw, greedy=False)


def render_pattern(pattern: PathPattern, dialect: PatternDialect = PatternDialect.WILDCARD) -> str:
    """Render a canonical pattern in the given dialect."""
    if pattern.greedy:
        return pattern.value + _GREEDY_TOKENS[dialect]
    return pattern.value


def translate_pattern(raw: str, source: PatternDialect, target: PatternDialect) -> str:
    """Convert a pattern between gateway syntaxes, e.g. /v1/* to /v1/{proxy+}."""
    return render_pattern(parse_pattern(raw, source), target)


def chunk_patterns(patterns: Sequence[T], size: int = DEFAULT_MAX_PATTERNS_PER_RULE) -> List[List[T]]:
    """Split a pattern list into consecutive groups of at most ``size``.

    This is where a per-rule cardinality limit is enforced. Substrates without
    such a limit can pass ``len(patterns)`` to get a single rule. Order is kept
    and nothing is deduplicated, so the chunks concatenate back to the input.
    """
    if size < 1:
        raise ValidationError("Chunk size must be at least 1", details={"size": size})
    return [list(patterns[i:i + size]) for i in range(0, len(patterns), size)]
