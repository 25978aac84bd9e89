"""合成カスタムメトリクスを返すプロバイダ実装。

クエリのたびに識別子ごとのカウンタを進め、その値からメトリクスサンプルを
組み立てる。実測値ではなく、API 契約を検証するための決定的な値を返す。
"""

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from ..models.metrics import (
    GroupResource,
    MetricCatalogEntry,
    MetricIdentifier,
    MetricSample,
    ObjectReference,
    Quantity,
    ResourceInstanceRef,
)
from .counters import CounterStore
from .discovery import ResourceTypeResolver
from .errors import AggregationError, ListError, MetricsProviderError
from .listing import ResourceInstanceLister
from .metrics import MetricsRecorder
from .selectors import LabelSelector

logger = logging.getLogger(__name__)

# 出力形式の固定倍率: 生のカウンタ値 1 をミリ単位で 100 として報告する
VALUE_SCALE = 100

QUERIES_TOTAL = "custom_metrics_queries_total"

SUPPORTED_METRICS: tuple[MetricCatalogEntry, ...] = (
    MetricCatalogEntry(
        group_resource=GroupResource(group="", resource="pods"),
        metric_name="packets-per-second",
        namespaced=True,
    ),
    MetricCatalogEntry(
        group_resource=GroupResource(group="", resource="services"),
        metric_name="connections-per-second",
        namespaced=True,
    ),
    MetricCatalogEntry(
        group_resource=GroupResource(group="", resource="namespaces"),
        metric_name="queue-length",
        namespaced=False,
    ),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_identifier(
    resolver: ResourceTypeResolver,
    group_resource: GroupResource,
    metric_name: str,
    namespaced: bool,
) -> MetricIdentifier:
    """リゾルバで正規化した識別子を返す。

    Raises:
        ResolutionError: リソース種別を解決できない場合
    """
    kind = resolver.resolve(group_resource)
    if namespaced and not kind.namespaced:
        logger.warning("クラスタスコープのリソース %s が名前空間付きで問い合わせされました", kind.group_resource)
    return MetricIdentifier(
        group_resource=kind.group_resource,
        metric_name=metric_name,
        namespaced=namespaced,
    )


def build_sample(
    resolver: ResourceTypeResolver,
    raw_value: int,
    group_resource: GroupResource,
    namespace: Optional[str],
    name: str,
    metric_name: str,
    now: Optional[datetime] = None,
) -> MetricSample:
    """単一オブジェクトのサンプルを組み立てる。

    Raises:
        ResolutionError: リソース種別を解決できない場合
    """
    kind = resolver.resolve(group_resource)
    return MetricSample(
        described_object=ObjectReference(
            kind=kind.kind,
            namespace=namespace,
            name=name,
            api_version=kind.api_version,
        ),
        metric_name=metric_name,
        timestamp=now or _utcnow(),
        value=Quantity(milli_value=raw_value * VALUE_SCALE),
    )


def _as_instance_ref(item: Any) -> ResourceInstanceRef:
    """リスタの要素を ResourceInstanceRef に揃える（``(namespace, name)`` の組も受け付ける）。"""
    if isinstance(item, ResourceInstanceRef):
        return item
    if isinstance(item, (tuple, list)) and len(item) == 2:
        namespace, name = item
        if (namespace is None or isinstance(namespace, str)) and isinstance(name, str):
            return ResourceInstanceRef(namespace=namespace, name=name)
    raise AggregationError("malformed instance")


def build_aggregate(
    resolver: ResourceTypeResolver,
    total_value: int,
    group_resource: GroupResource,
    metric_name: str,
    instances: Any,
    now: Optional[datetime] = None,
) -> List[MetricSample]:
    """合計値を一致したインスタンスへ均等に割り振る。

    端数は切り捨て、全インスタンスに同じ値を割り当てる。順序は入力順を保つ。

    Raises:
        AggregationError: リストでない、要素が不正、または空の場合
        ResolutionError: リソース種別を解決できない場合
    """
    if not isinstance(instances, Sequence) or isinstance(instances, (str, bytes)):
        raise AggregationError("not a list")

    refs = [_as_instance_ref(item) for item in instances]
    timestamp = now or _utcnow()
    samples = [
        build_sample(resolver, 0, group_resource, ref.namespace, ref.name, metric_name, timestamp)
        for ref in refs
    ]
    if not samples:
        raise AggregationError("empty selection")

    share = Quantity(milli_value=VALUE_SCALE * total_value // len(samples))
    return [sample.model_copy(update={"value": share}) for sample in samples]


class MetricsProvider:
    """カウンタ状態を保持し、4 種類のメトリクスクエリに応答する。"""

    def __init__(
        self,
        resolver: ResourceTypeResolver,
        lister: ResourceInstanceLister,
        *,
        list_timeout_seconds: Optional[float] = None,
        metrics: Optional[MetricsRecorder] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._resolver = resolver
        self._lister = lister
        self._list_timeout = list_timeout_seconds
        self._counters = CounterStore()
        self._clock = clock
        self.metrics = metrics or MetricsRecorder()

    @property
    def resolver(self) -> ResourceTypeResolver:
        return self._resolver

    @property
    def counters(self) -> CounterStore:
        return self._counters

    def value_for(self, group_resource: GroupResource, metric_name: str, namespaced: bool) -> int:
        """識別子を正規化してカウンタを進める。"""
        identifier = normalize_identifier(self._resolver, group_resource, metric_name, namespaced)
        return self._counters.next_value(identifier)

    def get_metric_by_name(
        self,
        group_resource: GroupResource,
        name: str,
        metric_name: str,
        namespace: Optional[str] = None,
    ) -> MetricSample:
        """名前指定のオブジェクトについてサンプルを返す。

        ``namespace`` が None の場合はクラスタスコープとして扱う。
        """
        operation = "by_name"
        try:
            value = self.value_for(group_resource, metric_name, namespace is not None)
            sample = build_sample(
                self._resolver, value, group_resource, namespace, name, metric_name, self._clock()
            )
        except MetricsProviderError as exc:
            self._record(operation, type(exc).__name__)
            raise
        self._record(operation, "success")
        return sample

    async def get_metric_by_selector(
        self,
        group_resource: GroupResource,
        selector: LabelSelector | str | None,
        metric_name: str,
        namespace: Optional[str] = None,
    ) -> List[MetricSample]:
        """ラベルセレクタに一致したオブジェクト群へ合計値を分配して返す。

        Raises:
            SelectorError: セレクタが不正な場合
            ResolutionError: リソース種別を解決できない場合
            ListError: インスタンス一覧の取得に失敗した場合（詳細はログのみ）
            AggregationError: 一致なし、または一覧がリストでない場合
        """
        operation = "by_selector"
        try:
            parsed = selector if isinstance(selector, LabelSelector) else LabelSelector.parse(selector)
            identifier = normalize_identifier(
                self._resolver, group_resource, metric_name, namespace is not None
            )
            total = self._counters.next_value(identifier)
            instances = await self._list_instances(identifier.group_resource, namespace, parsed)
            samples = build_aggregate(
                self._resolver, total, group_resource, metric_name, instances, self._clock()
            )
        except MetricsProviderError as exc:
            self._record(operation, type(exc).__name__)
            raise
        self._record(operation, "success")
        return samples

    def get_root_scoped_metric_by_name(
        self, group_resource: GroupResource, name: str, metric_name: str
    ) -> MetricSample:
        return self.get_metric_by_name(group_resource, name, metric_name)

    def get_namespaced_metric_by_name(
        self, group_resource: GroupResource, namespace: str, name: str, metric_name: str
    ) -> MetricSample:
        return self.get_metric_by_name(group_resource, name, metric_name, namespace=namespace)

    async def get_root_scoped_metric_by_selector(
        self, group_resource: GroupResource, selector: LabelSelector | str | None, metric_name: str
    ) -> List[MetricSample]:
        return await self.get_metric_by_selector(group_resource, selector, metric_name)

    async def get_namespaced_metric_by_selector(
        self,
        group_resource: GroupResource,
        namespace: str,
        selector: LabelSelector | str | None,
        metric_name: str,
    ) -> List[MetricSample]:
        return await self.get_metric_by_selector(group_resource, selector, metric_name, namespace=namespace)

    def list_all_metrics(self) -> List[MetricCatalogEntry]:
        """サポートするメトリクスの静的一覧を返す。"""
        self._record("list_all", "success")
        return list(SUPPORTED_METRICS)

    async def _list_instances(
        self, group_resource: GroupResource, namespace: Optional[str], selector: LabelSelector
    ) -> Any:
        """リスタを呼び出し、失敗を汎用エラーに包む（内部詳細は呼び出し元へ出さない）。"""
        try:
            return await asyncio.wait_for(
                self._lister.list_instances(group_resource, namespace, selector),
                timeout=self._list_timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error(
                "一致リソースの一覧取得がタイムアウトしました (%s, namespace=%s, %ss)",
                group_resource,
                namespace,
                self._list_timeout,
            )
            raise ListError("unable to list matching resources") from exc
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "一致リソースの一覧取得に失敗しました (%s, namespace=%s): %s",
                group_resource,
                namespace,
                exc,
            )
            raise ListError("unable to list matching resources") from exc

    def _record(self, operation: str, result: str) -> None:
        self.metrics.increment(QUERIES_TOTAL, {"operation": operation, "result": result})
