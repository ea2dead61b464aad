"""
Unit tests for cache key derivation and the TTL table.
"""

import pytest

from service_reporting.app.caching.keys import normalize_query, operation_cache_key, request_cache_key
from service_reporting.app.caching.policies import (LIVE_TTL, OPERATION_TTLS, REPORT_TTL, ROUTE_TTLS,
                                                    SHORT_TTL, operation_ttl, route_ttl)


class TestRequestCacheKey:
    """Keys for the HTTP response cache."""

    def test_parameter_order_does_not_matter(self):
        first = request_cache_key("/api/sales", [("startDate", "2024-01-01"), ("endDate", "2024-01-31")])
        second = request_cache_key("/api/sales", {"endDate": "2024-01-31", "startDate": "2024-01-01"})
        assert first == second

    def test_trailing_slash_is_normalized(self):
        assert request_cache_key("/api/sales/", {"a": "1"}) == request_cache_key("/api/sales", {"a": "1"})

    @pytest.mark.parametrize("other", [
        {"startDate": "2024-01-02", "endDate": "2024-01-31"},
        {"startDate": "2024-01-01", "endDate": "2024-01-30"},
        {"startDate": "2024-01-01", "endDate": "2024-01-31", "customerEmail": "a@example.com"},
        {"startDate": "2024-01-01"},
    ])
    def test_any_different_filter_changes_key(self, other):
        base = {"startDate": "2024-01-01", "endDate": "2024-01-31"}
        assert request_cache_key("/api/sales", base) != request_cache_key("/api/sales", other)

    def test_different_paths_differ(self):
        params = {"startDate": "2024-01-01", "endDate": "2024-01-31"}
        assert request_cache_key("/api/sales", params) != request_cache_key("/api/sales/summary", params)

    def test_separators_inside_values_cannot_collide(self):
        assert request_cache_key("/api/sales", [("a", "1&b=2")]) != \
            request_cache_key("/api/sales", [("a", "1"), ("b", "2")])

    def test_repeated_parameters_are_kept(self):
        assert request_cache_key("/x", [("tag", "a"), ("tag", "b")]) == \
            request_cache_key("/x", [("tag", "b"), ("tag", "a")])
        assert request_cache_key("/x", [("tag", "a"), ("tag", "b")]) != request_cache_key("/x", [("tag", "a")])

    def test_normalize_query(self):
        assert normalize_query({"b": "2", "a": "x y"}) == "a=x%20y&b=2"
        assert normalize_query(None) == ""


class TestOperationCacheKey:
    """Keys for the domain-level cache."""

    def test_identical_queries_collide(self):
        assert operation_cache_key("sales.records", "2024-01-01", "2024-01-31", minAmount=10) == \
            operation_cache_key("sales.records", "2024-01-01", "2024-01-31", minAmount=10)

    def test_filter_order_does_not_matter(self):
        assert operation_cache_key("sales.records", "2024-01-01", "2024-01-31", a="1", b="2") == \
            operation_cache_key("sales.records", "2024-01-01", "2024-01-31", b="2", a="1")

    def test_omitted_and_explicit_all_collide(self):
        omitted = operation_cache_key("appraisals.records", "2024-01-01", "2024-01-31", status=None)
        explicit = operation_cache_key("appraisals.records", "2024-01-01", "2024-01-31", status="all")
        empty = operation_cache_key("appraisals.records", "2024-01-01", "2024-01-31", status="")
        assert omitted == explicit == empty

    def test_omitted_dates_use_placeholder(self):
        assert operation_cache_key("errors.recent", limit=10) == \
            operation_cache_key("errors.recent", "all", "all", limit=10)

    @pytest.mark.parametrize("kwargs", [
        {"start_date": "2024-01-02", "end_date": "2024-01-31"},
        {"start_date": "2024-01-01", "end_date": "2024-02-01"},
        {"start_date": "2024-01-01", "end_date": "2024-01-31", "campaignId": "c2"},
    ])
    def test_different_parameters_differ(self, kwargs):
        base = operation_cache_key("ads.costs", "2024-01-01", "2024-01-31", campaignId="c1")
        kwargs.setdefault("campaignId", "c1")
        assert operation_cache_key("ads.costs", **kwargs) != base

    def test_operations_are_namespaced(self):
        assert operation_cache_key("ads.costs", "2024-01-01", "2024-01-31") != \
            operation_cache_key("ads.performance", "2024-01-01", "2024-01-31")

    def test_separator_in_value_cannot_collide(self):
        assert operation_cache_key("op", "2024-01-01", "2024-01-31", a="x:b=y") != \
            operation_cache_key("op", "2024-01-01", "2024-01-31", a="x", b="y")


class TestCachePolicies:
    """Declarative TTL table."""

    def test_fast_feeds_use_short_ttls(self):
        assert route_ttl("/api/errors/recent") == SHORT_TTL == 30
        assert route_ttl("/api/chat") == LIVE_TTL == 60
        assert route_ttl("/api/sales/summary") == REPORT_TTL == 300

    def test_unlisted_routes_are_not_cacheable(self):
        assert route_ttl("/api/auth/login") is None
        assert route_ttl("/health") is None

    def test_every_route_ttl_is_positive(self):
        assert all(ttl > 0 for ttl in ROUTE_TTLS.values())
        assert all(ttl > 0 for ttl in OPERATION_TTLS.values())

    def test_unknown_operation_raises(self):
        with pytest.raises(KeyError):
            operation_ttl("nope")
        assert operation_ttl("chat.records") == LIVE_TTL
