"""Custom metrics API endpoints."""

import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query, Request

from ..config import Settings, settings
from ..models.metrics import (
    CUSTOM_METRICS_API_VERSION,
    APIResource,
    APIResourceList,
    GroupResource,
    ListMeta,
    MetricSample,
    MetricValueList,
)
from ..services.discovery import KubernetesDiscoveryMapper, StaticResourceMapper
from ..services.kubernetes import KubernetesClient
from ..services.listing import InMemoryResourceLister, KubernetesResourceLister
from ..services.provider import MetricsProvider

logger = logging.getLogger(__name__)

API_PREFIX = f"/apis/{CUSTOM_METRICS_API_VERSION}"
# Object name that turns a query into a label selector query
SELECT_ALL = "*"

router = APIRouter(prefix=API_PREFIX, tags=["custom-metrics"])

_metrics_provider: MetricsProvider | None = None
_discovery_mapper: KubernetesDiscoveryMapper | None = None
_kubernetes_client: KubernetesClient | None = None


def build_metrics_provider(settings_obj: Settings | None = None) -> MetricsProvider:
    """Wire the provider to the configured resource backend."""
    global _discovery_mapper, _kubernetes_client
    use_settings = settings_obj or settings

    if use_settings.resource_backend == "kubernetes":
        client = KubernetesClient(use_settings)
        _kubernetes_client = client
        mapper = KubernetesDiscoveryMapper(client)
        _discovery_mapper = mapper
        return MetricsProvider(
            mapper,
            KubernetesResourceLister(client, mapper),
            list_timeout_seconds=use_settings.resource_list_timeout_seconds,
        )

    static_mapper = StaticResourceMapper()
    if use_settings.inventory_path:
        lister = InMemoryResourceLister.from_yaml(use_settings.inventory_path, static_mapper)
    else:
        logger.info("No inventory configured; selector queries will match nothing")
        lister = InMemoryResourceLister()
    return MetricsProvider(
        static_mapper,
        lister,
        list_timeout_seconds=use_settings.resource_list_timeout_seconds,
    )


def get_metrics_provider() -> MetricsProvider:
    """MetricsProvider のシングルトンを返す。"""
    global _metrics_provider
    if _metrics_provider is None:
        _metrics_provider = build_metrics_provider()
    return _metrics_provider


async def refresh_discovery() -> None:
    """Load discovery documents when the Kubernetes backend is active."""
    get_metrics_provider()
    if _discovery_mapper is not None:
        await _discovery_mapper.refresh()


async def close_resources() -> None:
    """Close the API server connection pool opened for the Kubernetes backend."""
    global _kubernetes_client
    if _kubernetes_client is not None:
        await _kubernetes_client.aclose()
        _kubernetes_client = None


ProviderDep = Annotated[MetricsProvider, Depends(get_metrics_provider)]


async def _query(
    provider: MetricsProvider,
    request: Request,
    resource: str,
    name: str,
    metric: str,
    namespace: Optional[str],
    label_selector: Optional[str],
) -> MetricValueList:
    group_resource = GroupResource.parse(resource)
    items: List[MetricSample]
    if name == SELECT_ALL:
        items = await provider.get_metric_by_selector(group_resource, label_selector, metric, namespace=namespace)
    else:
        items = [provider.get_metric_by_name(group_resource, name, metric, namespace=namespace)]
    return MetricValueList(metadata=ListMeta(self_link=request.url.path), items=items)


@router.get("", response_model=APIResourceList)
async def list_metrics(provider: ProviderDep) -> APIResourceList:
    """Discovery document of every supported metric."""
    return APIResourceList(
        resources=[
            APIResource(name=f"{entry.group_resource}/{entry.metric_name}", namespaced=entry.namespaced)
            for entry in provider.list_all_metrics()
        ]
    )


@router.get(
    "/namespaces/{namespace}/metrics/{metric}",
    response_model=MetricValueList,
    response_model_exclude_none=True,
)
async def get_namespace_metric(
    provider: ProviderDep,
    request: Request,
    namespace: str,
    metric: str,
) -> MetricValueList:
    """Metric describing the namespace object itself."""
    return await _query(provider, request, "namespaces", namespace, metric, None, None)


@router.get(
    "/namespaces/{namespace}/{resource}/{name}/{metric}",
    response_model=MetricValueList,
    response_model_exclude_none=True,
)
async def get_namespaced_metric(
    provider: ProviderDep,
    request: Request,
    namespace: str,
    resource: str,
    name: str,
    metric: str,
    label_selector: Optional[str] = Query(default=None, alias="labelSelector"),
) -> MetricValueList:
    """Metric for a namespaced object, or for every match when name is ``*``."""
    return await _query(provider, request, resource, name, metric, namespace, label_selector)


@router.get(
    "/{resource}/{name}/{metric}",
    response_model=MetricValueList,
    response_model_exclude_none=True,
)
async def get_root_scoped_metric(
    provider: ProviderDep,
    request: Request,
    resource: str,
    name: str,
    metric: str,
    label_selector: Optional[str] = Query(default=None, alias="labelSelector"),
) -> MetricValueList:
    """Metric for a cluster-scoped object, or for every match when name is ``*``."""
    return await _query(provider, request, resource, name, metric, None, label_selector)
