"""
Unit tests for path patterns and the priority router.
"""

import math
import threading

import pytest

from service_gateway.app.routing import (
    PathPattern,
    PathRouter,
    PatternDialect,
    chunk_patterns,
    parse_pattern,
    translate_pattern,
)
from shared.errors import ValidationError

API_PATTERNS = [
    "/console/api", "/api", "/v1", "/files",
    "/console/api/*", "/api/*", "/v1/*", "/files/*",
]


class TestPatterns:
    """Test cases for pattern parsing and dialects."""

    def test_wildcard_suffix_becomes_prefix(self):
        pattern = parse_pattern("/v1/*")
        assert pattern == PathPattern("/v1/", greedy=True)
        assert pattern.matches("/v1/")
        assert pattern.matches("/v1/foo/bar")
        assert not pattern.matches("/v1")
        assert not pattern.matches("/v10/foo")

    def test_plain_pattern_is_exact(self):
        pattern = parse_pattern("/v1")
        assert pattern.matches("/v1")
        assert not pattern.matches("/v1/foo")

    def test_greedy_path_dialect(self):
        pattern = parse_pattern("/v1/{proxy+}", PatternDialect.GREEDY_PATH)
        assert pattern == parse_pattern("/v1/*")
        assert pattern.render(PatternDialect.GREEDY_PATH) == "/v1/{proxy+}"
        assert str(pattern) == "/v1/*"

    def test_translate_between_dialects(self):
        assert translate_pattern("/files/*", PatternDialect.WILDCARD, PatternDialect.GREEDY_PATH) == "/files/{proxy+}"
        assert translate_pattern("/files", PatternDialect.WILDCARD, PatternDialect.GREEDY_PATH) == "/files"

    def test_catch_all(self):
        pattern = parse_pattern("/*")
        assert pattern.matches("/")
        assert pattern.matches("/apps/123")

    @pytest.mark.parametrize("raw", ["v1/*", "/v1/*/x", "/v*", ""])
    def test_invalid_patterns_rejected(self, raw):
        with pytest.raises(ValidationError):
            parse_pattern(raw)


class TestChunking:
    """Test cases for chunk_patterns."""

    @pytest.mark.parametrize("count", [1, 4, 5, 6, 8, 10, 11, 23])
    def test_chunk_count_and_union(self, count):
        patterns = [f"/p{i}" for i in range(count)]
        chunks = chunk_patterns(patterns, 5)

        assert len(chunks) == math.ceil(count / 5)
        assert all(1 <= len(chunk) <= 5 for chunk in chunks)
        assert [p for chunk in chunks for p in chunk] == patterns

    def test_duplicates_are_kept(self):
        chunks = chunk_patterns(["/a", "/a", "/a"], 2)
        assert chunks == [["/a", "/a"], ["/a"]]

    def test_size_must_be_positive(self):
        with pytest.raises(ValidationError):
            chunk_patterns(["/a"], 0)


class TestPathRouter:
    """Test cases for PathRouter."""

    @pytest.fixture
    def router(self):
        return PathRouter()

    def test_eight_patterns_make_two_rules(self, router):
        routes = router.add_route(API_PATTERNS, "api")

        assert [route.priority for route in routes] == [1, 2]
        assert [len(route.patterns) for route in routes] == [5, 3]
        assert router.next_priority == 3

    def test_priorities_increase_across_registrations(self, router):
        first = router.add_route(API_PATTERNS, "api")
        second = router.add_route(["/DIFY_SANDBOX", "/DIFY_SANDBOX/*"], "sandbox")
        third = router.add_route(["/*"], "web")

        priorities = [route.priority for route in first + second + third]
        assert priorities == sorted(priorities)
        assert len(set(priorities)) == len(priorities)
        assert [route.priority for route in router.rules] == priorities

    def test_reregistration_gets_new_higher_priorities(self, router):
        first = router.add_route(["/v1", "/v1/*"], "api")
        again = router.add_route(["/v1", "/v1/*"], "api")

        assert again[0].priority > first[-1].priority
        assert len(router.rules) == 2

    def test_first_match_by_priority_wins(self, router):
        router.add_route(API_PATTERNS, "api")
        router.add_route(["/*"], "web")

        assert router.match("/v1/chat-messages").target_id == "api"
        assert router.match("/console/api").target_id == "api"
        assert router.match("/apps").target_id == "web"
        assert router.match("/").target_id == "web"

    def test_no_match_returns_none(self, router):
        router.add_route(["/v1", "/v1/*"], "api")
        assert router.match("/api/v1/foo") is None

    @pytest.mark.parametrize("patterns", [[], "/v1/*"])
    def test_invalid_pattern_lists_rejected(self, router, patterns):
        with pytest.raises(ValidationError):
            router.add_route(patterns, "api")
        assert router.rules == ()
        assert router.next_priority == 1

    def test_invalid_pattern_publishes_nothing(self, router):
        with pytest.raises(ValidationError):
            router.add_route(["/ok", "/ok/*", "broken"], "api")
        assert router.rules == ()

    def test_remove_target_does_not_reuse_priorities(self, router):
        router.add_route(["/v1", "/v1/*"], "api")
        router.add_route(["/*"], "web")

        removed = router.remove_target("api")
        assert [route.target_id for route in removed] == ["api"]
        assert router.match("/v1/foo").target_id == "web"

        (readded,) = router.add_route(["/v1", "/v1/*"], "api")
        assert readded.priority == 3

    def test_configurable_rule_size(self):
        router = PathRouter(max_patterns_per_rule=len(API_PATTERNS))
        routes = router.add_route(API_PATTERNS, "api")
        assert len(routes) == 1

    def test_export_in_both_dialects(self, router):
        router.add_route(["/v1", "/v1/*"], "api")

        assert router.export() == [{"priority": 1, "target": "api", "patterns": ["/v1", "/v1/*"]}]
        exported = router.export(PatternDialect.GREEDY_PATH)
        assert exported[0]["patterns"] == ["/v1", "/v1/{proxy+}"]

    def test_greedy_registration_matches_like_wildcard(self, router):
        router.add_route(["/files", "/files/{proxy+}"], "api", PatternDialect.GREEDY_PATH)
        assert router.match("/files/abc").target_id == "api"

    def test_concurrent_registration_keeps_priorities_unique(self, router):
        def register(index):
            router.add_route([f"/svc{index}/{i}" for i in range(7)], f"svc{index}")

        threads = [threading.Thread(target=register, args=(i,)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        priorities = [route.priority for route in router.rules]
        assert len(priorities) == 16
        assert priorities == list(range(1, 17))
        for index in range(8):
            owned = [route.priority for route in router.rules if route.target_id == f"svc{index}"]
            assert owned[1] == owned[0] + 1
