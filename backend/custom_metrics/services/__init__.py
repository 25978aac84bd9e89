# Services package

from .counters import CounterStore
from .discovery import KubernetesDiscoveryMapper, ResourceTypeResolver, StaticResourceMapper
from .errors import (
    AggregationError,
    ListError,
    MetricsProviderError,
    ResolutionError,
    SelectorError,
)
from .listing import InMemoryResourceLister, KubernetesResourceLister, ResourceInstanceLister
from .provider import MetricsProvider
from .selectors import LabelSelector

__all__ = [
    "AggregationError",
    "CounterStore",
    "InMemoryResourceLister",
    "KubernetesDiscoveryMapper",
    "KubernetesResourceLister",
    "LabelSelector",
    "ListError",
    "MetricsProvider",
    "MetricsProviderError",
    "ResolutionError",
    "ResourceInstanceLister",
    "ResourceTypeResolver",
    "SelectorError",
    "StaticResourceMapper",
]
