# Data models package

from .metrics import (
    APIResource,
    APIResourceList,
    GroupResource,
    MetricCatalogEntry,
    MetricIdentifier,
    MetricSample,
    MetricValueList,
    ObjectReference,
    Quantity,
    ResourceInstanceRef,
    ResourceKind,
)

__all__ = [
    "APIResource",
    "APIResourceList",
    "GroupResource",
    "MetricCatalogEntry",
    "MetricIdentifier",
    "MetricSample",
    "MetricValueList",
    "ObjectReference",
    "Quantity",
    "ResourceInstanceRef",
    "ResourceKind",
]
