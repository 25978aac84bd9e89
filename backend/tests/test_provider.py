"""MetricsProvider のテスト。"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from custom_metrics.models.metrics import GroupResource, ResourceInstanceRef
from custom_metrics.services.discovery import StaticResourceMapper
from custom_metrics.services.errors import (
    AggregationError,
    ListError,
    ResolutionError,
    SelectorError,
)
from custom_metrics.services.listing import InMemoryResourceLister
from custom_metrics.services.provider import (
    QUERIES_TOTAL,
    MetricsProvider,
    build_aggregate,
    build_sample,
    normalize_identifier,
)
from custom_metrics.services.selectors import LabelSelector

PODS = GroupResource(group="", resource="pods")
NAMESPACES = GroupResource(group="", resource="namespaces")
FIXED_NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def counter_value(provider: MetricsProvider, group_resource: GroupResource = PODS, metric_name: str = "m") -> int:
    """名前空間付き識別子のカウンタ値を進めずに読む。"""
    identifier = normalize_identifier(provider.resolver, group_resource, metric_name, True)
    return provider.counters.peek(identifier)


class StubLister:
    """任意の値を返す、または例外を送出するリスタ。"""

    def __init__(self, result: Any = None, error: Optional[Exception] = None, delay: float = 0.0) -> None:
        self.result = result
        self.error = error
        self.delay = delay
        self.calls: list[tuple[GroupResource, Optional[str], str]] = []

    async def list_instances(self, group_resource, namespace, selector):
        self.calls.append((group_resource, namespace, str(selector)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class TestNormalizeIdentifier:
    def test_aliases_normalize_to_canonical_resource(self, resolver: StaticResourceMapper) -> None:
        """短縮名・単数形・種別名が同じ識別子に正規化されること。"""
        expected = normalize_identifier(resolver, PODS, "packets-per-second", True)
        for alias in ("po", "pod", "Pod", "PODS"):
            identifier = normalize_identifier(
                resolver, GroupResource(group="", resource=alias), "packets-per-second", True
            )
            assert identifier == expected
        assert expected.group_resource == PODS

    def test_normalization_is_idempotent(self, resolver: StaticResourceMapper) -> None:
        """正規化済みの識別子を再度正規化しても変わらないこと。"""
        first = normalize_identifier(resolver, GroupResource(resource="deploy"), "m", True)
        second = normalize_identifier(resolver, first.group_resource, first.metric_name, first.namespaced)
        assert first == second
        assert first.group_resource == GroupResource(group="apps", resource="deployments")

    def test_preserves_metric_name_and_scope(self, resolver: StaticResourceMapper) -> None:
        identifier = normalize_identifier(resolver, GroupResource(resource="svc"), "Latency", False)
        assert identifier.metric_name == "Latency"
        assert identifier.namespaced is False

    def test_unknown_resource_raises_resolution_error(self, resolver: StaticResourceMapper) -> None:
        with pytest.raises(ResolutionError):
            normalize_identifier(resolver, GroupResource(resource="widgets"), "m", True)

    def test_empty_resource_raises_resolution_error(self, resolver: StaticResourceMapper) -> None:
        with pytest.raises(ResolutionError):
            normalize_identifier(resolver, GroupResource(resource=""), "m", True)

    def test_namespaced_query_of_cluster_scoped_kind_warns(
        self, resolver: StaticResourceMapper, caplog: pytest.LogCaptureFixture
    ) -> None:
        """クラスタスコープの種別を名前空間付きで問い合わせると警告を残すこと。"""
        with caplog.at_level("WARNING", logger="custom_metrics.services.provider"):
            identifier = normalize_identifier(resolver, NAMESPACES, "m", True)
        assert identifier.namespaced is True
        assert "namespaces" in caplog.text

    def test_matching_scope_does_not_warn(
        self, resolver: StaticResourceMapper, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level("WARNING", logger="custom_metrics.services.provider"):
            normalize_identifier(resolver, PODS, "m", True)
            normalize_identifier(resolver, NAMESPACES, "m", False)
        assert caplog.records == []


class TestBuildSample:
    def test_quantity_is_raw_value_times_100_milli(self, resolver: StaticResourceMapper) -> None:
        sample = build_sample(resolver, 7, PODS, "default", "p1", "packets-per-second", FIXED_NOW)
        assert sample.value.milli_value == 700
        assert str(sample.value) == "700m"

    def test_described_object_uses_resolved_kind(self, resolver: StaticResourceMapper) -> None:
        sample = build_sample(resolver, 1, GroupResource(resource="deploy"), "default", "web", "m", FIXED_NOW)
        assert sample.described_object.kind == "Deployment"
        assert sample.described_object.api_version == "apps/v1"
        assert sample.described_object.namespace == "default"
        assert sample.described_object.name == "web"
        assert sample.metric_name == "m"
        assert sample.timestamp == FIXED_NOW

    def test_core_group_api_version_has_no_group_prefix(self, resolver: StaticResourceMapper) -> None:
        sample = build_sample(resolver, 1, NAMESPACES, None, "default", "queue-length")
        assert sample.described_object.api_version == "v1"
        assert sample.described_object.namespace is None

    def test_timestamp_defaults_to_now(self, resolver: StaticResourceMapper) -> None:
        before = datetime.now(timezone.utc)
        sample = build_sample(resolver, 1, PODS, "default", "p1", "m")
        after = datetime.now(timezone.utc)
        assert before <= sample.timestamp <= after

    def test_unknown_kind_propagates(self, resolver: StaticResourceMapper) -> None:
        with pytest.raises(ResolutionError):
            build_sample(resolver, 1, GroupResource(resource="widgets"), "default", "w", "m")


class TestBuildAggregate:
    def test_total_is_split_evenly_with_remainder_discarded(self, resolver: StaticResourceMapper) -> None:
        """合計 10 を 3 件に割ると各 333m（端数は切り捨て）になること。"""
        instances = [ResourceInstanceRef(namespace="default", name=f"p{i}") for i in range(3)]
        samples = build_aggregate(resolver, 10, PODS, "m", instances, FIXED_NOW)
        assert [s.value.milli_value for s in samples] == [333, 333, 333]

    def test_preserves_input_order(self, resolver: StaticResourceMapper) -> None:
        instances = [
            ResourceInstanceRef(namespace="b", name="zeta"),
            ResourceInstanceRef(namespace="a", name="alpha"),
            ResourceInstanceRef(namespace="c", name="mid"),
        ]
        samples = build_aggregate(resolver, 3, PODS, "m", instances)
        assert [(s.described_object.namespace, s.described_object.name) for s in samples] == [
            ("b", "zeta"),
            ("a", "alpha"),
            ("c", "mid"),
        ]

    def test_tuple_is_accepted(self, resolver: StaticResourceMapper) -> None:
        instances = (ResourceInstanceRef(namespace="default", name="p1"),)
        samples = build_aggregate(resolver, 2, PODS, "m", instances)
        assert samples[0].value.milli_value == 200

    def test_empty_selection_raises(self, resolver: StaticResourceMapper) -> None:
        with pytest.raises(AggregationError) as exc_info:
            build_aggregate(resolver, 5, PODS, "m", [])
        assert exc_info.value.message == "empty selection"

    @pytest.mark.parametrize("not_a_list", [None, {"items": []}, "p1,p2", 42, {ResourceInstanceRef(name="x")}])
    def test_non_list_raises(self, resolver: StaticResourceMapper, not_a_list: Any) -> None:
        with pytest.raises(AggregationError) as exc_info:
            build_aggregate(resolver, 5, PODS, "m", not_a_list)
        assert exc_info.value.message == "not a list"

    def test_namespace_name_pairs_are_accepted(self, resolver: StaticResourceMapper) -> None:
        """``(namespace, name)`` の組もインスタンスとして扱うこと。"""
        samples = build_aggregate(resolver, 2, PODS, "m", [("default", "p1"), (None, "p2")])
        assert [(s.described_object.namespace, s.described_object.name) for s in samples] == [
            ("default", "p1"),
            (None, "p2"),
        ]
        assert [s.value.milli_value for s in samples] == [100, 100]

    @pytest.mark.parametrize(
        "bad_item",
        [None, {"namespace": "default", "name": "p1"}, ("default",), ("default", "p1", "extra"), ("default", 7), "p1"],
    )
    def test_malformed_item_raises(self, resolver: StaticResourceMapper, bad_item: Any) -> None:
        instances = [ResourceInstanceRef(namespace="default", name="ok"), bad_item]
        with pytest.raises(AggregationError) as exc_info:
            build_aggregate(resolver, 5, PODS, "m", instances)
        assert exc_info.value.message == "malformed instance"


class TestMetricByName:
    def test_first_and_second_call_values(self, provider: MetricsProvider) -> None:
        """1 回目は 100m、2 回目は 200m を返すこと。"""
        first = provider.get_metric_by_name(PODS, "p1", "packets-per-second", namespace="default")
        second = provider.get_metric_by_name(PODS, "p1", "packets-per-second", namespace="default")
        assert first.value.milli_value == 100
        assert second.value.milli_value == 200

    def test_counter_is_shared_across_object_names(self, provider: MetricsProvider) -> None:
        """カウンタは識別子単位であり、オブジェクト名では分かれないこと。"""
        provider.get_metric_by_name(PODS, "p1", "m", namespace="default")
        sample = provider.get_metric_by_name(PODS, "p2", "m", namespace="other")
        assert sample.value.milli_value == 200

    def test_aliases_share_one_sequence(self, provider: MetricsProvider) -> None:
        values = [
            provider.get_metric_by_name(GroupResource(resource=alias), "p1", "m", namespace="default").value.milli_value
            for alias in ("pods", "po", "pod", "Pod")
        ]
        assert values == [100, 200, 300, 400]

    def test_scope_separates_counters(self, provider: MetricsProvider) -> None:
        provider.get_namespaced_metric_by_name(PODS, "default", "p1", "m")
        root = provider.get_root_scoped_metric_by_name(PODS, "p1", "m")
        assert root.value.milli_value == 100
        assert root.described_object.namespace is None

    def test_metric_names_separate_counters(self, provider: MetricsProvider) -> None:
        provider.get_metric_by_name(PODS, "p1", "a", namespace="default")
        sample = provider.get_metric_by_name(PODS, "p1", "b", namespace="default")
        assert sample.value.milli_value == 100

    def test_unknown_resource_is_recorded_as_failure(self, provider: MetricsProvider) -> None:
        with pytest.raises(ResolutionError):
            provider.get_metric_by_name(GroupResource(resource="widgets"), "w", "m", namespace="default")
        assert provider.metrics.get_counter(
            QUERIES_TOTAL, {"operation": "by_name", "result": "ResolutionError"}
        ) == 1

    def test_uses_injected_clock(self, resolver: StaticResourceMapper, lister: InMemoryResourceLister) -> None:
        provider = MetricsProvider(resolver, lister, clock=lambda: FIXED_NOW)
        sample = provider.get_metric_by_name(PODS, "p1", "m", namespace="default")
        assert sample.timestamp == FIXED_NOW


@pytest.mark.asyncio
class TestMetricBySelector:
    async def test_total_divided_across_matches(self, provider: MetricsProvider) -> None:
        """default の app=web は 3 件、合計 1 を割ると各 33m になること。"""
        samples = await provider.get_metric_by_selector(PODS, "app=web", "m", namespace="default")
        assert [s.described_object.name for s in samples] == ["web-1", "web-2", "web-3"]
        assert {s.value.milli_value for s in samples} == {33}

        samples = await provider.get_metric_by_selector(PODS, "app=web", "m", namespace="default")
        assert {s.value.milli_value for s in samples} == {66}

    async def test_root_scoped_selector_lists_every_namespace(self, provider: MetricsProvider) -> None:
        samples = await provider.get_root_scoped_metric_by_selector(PODS, LabelSelector.parse("app=web"), "m")
        assert len(samples) == 4
        assert {s.value.milli_value for s in samples} == {25}

    async def test_namespaced_wrapper(self, provider: MetricsProvider) -> None:
        samples = await provider.get_namespaced_metric_by_selector(PODS, "staging", None, "m")
        assert [(s.described_object.namespace, s.described_object.name) for s in samples] == [("staging", "web-1")]
        assert samples[0].value.milli_value == 100

    async def test_selector_and_name_queries_share_counter(self, provider: MetricsProvider) -> None:
        provider.get_metric_by_name(PODS, "web-1", "m", namespace="default")
        samples = await provider.get_metric_by_selector(PODS, "tier=backend", "m", namespace="default")
        assert samples[0].value.milli_value == 200

    async def test_empty_match_raises_aggregation_error(self, provider: MetricsProvider) -> None:
        with pytest.raises(AggregationError) as exc_info:
            await provider.get_metric_by_selector(PODS, "app=none", "m", namespace="default")
        assert exc_info.value.message == "empty selection"

    async def test_lister_passes_canonical_resource_and_namespace(self, resolver: StaticResourceMapper) -> None:
        lister = StubLister(result=[ResourceInstanceRef(namespace="default", name="p1")])
        provider = MetricsProvider(resolver, lister)
        await provider.get_metric_by_selector(GroupResource(resource="po"), "app in (a,b)", "m", namespace="default")
        await provider.get_metric_by_selector(GroupResource(resource="ns"), None, "m")
        assert lister.calls == [(PODS, "default", "app in (a,b)"), (NAMESPACES, None, "")]

    async def test_non_list_from_lister_raises(self, resolver: StaticResourceMapper) -> None:
        provider = MetricsProvider(resolver, StubLister(result={"kind": "Pod"}))
        with pytest.raises(AggregationError) as exc_info:
            await provider.get_metric_by_selector(PODS, None, "m", namespace="default")
        assert exc_info.value.message == "not a list"

    async def test_lister_failure_is_hidden(self, resolver: StaticResourceMapper, caplog: pytest.LogCaptureFixture) -> None:
        """リスタの内部エラーは汎用メッセージに包まれ、詳細はログのみに出ること。"""
        provider = MetricsProvider(resolver, StubLister(error=RuntimeError("etcd exploded at 10.0.0.7")))
        with pytest.raises(ListError) as exc_info:
            await provider.get_metric_by_selector(PODS, None, "m", namespace="default")
        assert exc_info.value.message == "unable to list matching resources"
        assert "etcd" not in str(exc_info.value)
        assert "etcd exploded" in caplog.text

    async def test_list_error_from_lister_is_rewrapped(self, resolver: StaticResourceMapper) -> None:
        provider = MetricsProvider(resolver, StubLister(error=ListError("GET /api/v1/pods returned 403")))
        with pytest.raises(ListError) as exc_info:
            await provider.get_metric_by_selector(PODS, None, "m", namespace="default")
        assert exc_info.value.message == "unable to list matching resources"

    async def test_lister_timeout_becomes_list_error(self, resolver: StaticResourceMapper) -> None:
        lister = StubLister(result=[ResourceInstanceRef(name="p1")], delay=0.5)
        provider = MetricsProvider(resolver, lister, list_timeout_seconds=0.01)
        with pytest.raises(ListError):
            await provider.get_metric_by_selector(PODS, None, "m", namespace="default")

    async def test_counter_advances_even_when_listing_fails(self, resolver: StaticResourceMapper) -> None:
        provider = MetricsProvider(resolver, StubLister(error=RuntimeError("boom")))
        with pytest.raises(ListError):
            await provider.get_metric_by_selector(PODS, None, "m", namespace="default")
        assert counter_value(provider) == 1

    async def test_invalid_selector_raises_before_counting(self, provider: MetricsProvider) -> None:
        with pytest.raises(SelectorError):
            await provider.get_metric_by_selector(PODS, "app in (", "m", namespace="default")
        assert counter_value(provider) == 0

    async def test_unknown_resource_raises_resolution_error(self, provider: MetricsProvider) -> None:
        with pytest.raises(ResolutionError):
            await provider.get_metric_by_selector(GroupResource(resource="widgets"), None, "m")

    async def test_records_query_results(self, provider: MetricsProvider) -> None:
        await provider.get_metric_by_selector(PODS, "app=web", "m", namespace="default")
        with pytest.raises(AggregationError):
            await provider.get_metric_by_selector(PODS, "app=none", "m", namespace="default")
        assert provider.metrics.get_counter(QUERIES_TOTAL, {"operation": "by_selector", "result": "success"}) == 1
        assert (
            provider.metrics.get_counter(QUERIES_TOTAL, {"operation": "by_selector", "result": "AggregationError"})
            == 1
        )


class TestListAllMetrics:
    def test_returns_three_static_entries_in_order(self, provider: MetricsProvider) -> None:
        entries = provider.list_all_metrics()
        assert [(str(e.group_resource), e.metric_name, e.namespaced) for e in entries] == [
            ("pods", "packets-per-second", True),
            ("services", "connections-per-second", True),
            ("namespaces", "queue-length", False),
        ]

    def test_unaffected_by_query_history(self, provider: MetricsProvider) -> None:
        before = provider.list_all_metrics()
        provider.get_metric_by_name(PODS, "p1", "something-else", namespace="default")
        after = provider.list_all_metrics()
        assert before == after
        after.clear()
        assert len(provider.list_all_metrics()) == 3
