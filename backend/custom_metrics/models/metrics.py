"""Custom metrics models."""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

CUSTOM_METRICS_API_GROUP = "custom.metrics.k8s.io"
CUSTOM_METRICS_API_VERSION = f"{CUSTOM_METRICS_API_GROUP}/v1beta1"


class GroupResource(BaseModel):
    """An (API group, resource type) pair such as ("", "pods")."""

    model_config = ConfigDict(frozen=True)

    group: str = Field(default="", description="API group (empty for the core group)")
    resource: str = Field(..., description="Resource type name (e.g., 'pods')")

    @classmethod
    def parse(cls, value: str) -> "GroupResource":
        """Parse the ``resource[.group]`` form used in API paths."""
        resource, _, group = value.partition(".")
        return cls(group=group, resource=resource)

    def __str__(self) -> str:
        if self.group:
            return f"{self.resource}.{self.group}"
        return self.resource


class ResourceKind(BaseModel):
    """Canonical form of a resource type as resolved by a resource mapper."""

    model_config = ConfigDict(frozen=True)

    group: str = Field(default="", description="Canonical API group")
    resource: str = Field(..., description="Canonical plural resource name")
    kind: str = Field(..., description="Human readable kind (e.g., 'Pod')")
    version: str = Field(..., description="Preferred API version")
    namespaced: bool = Field(default=True, description="Whether instances live in a namespace")

    @property
    def group_resource(self) -> GroupResource:
        return GroupResource(group=self.group, resource=self.resource)

    @property
    def api_version(self) -> str:
        if self.group:
            return f"{self.group}/{self.version}"
        return self.version


class MetricIdentifier(BaseModel):
    """Key of a counter slot. Equal once normalized."""

    model_config = ConfigDict(frozen=True)

    group_resource: GroupResource
    metric_name: str
    namespaced: bool


class MetricCatalogEntry(BaseModel):
    """A metric the provider advertises."""

    model_config = ConfigDict(frozen=True)

    group_resource: GroupResource
    metric_name: str
    namespaced: bool


class ResourceInstanceRef(BaseModel):
    """Identity of a resource a metric is reported for."""

    model_config = ConfigDict(frozen=True)

    namespace: Optional[str] = Field(default=None, description="Namespace (None when cluster-scoped)")
    name: str = Field(..., description="Object name")


class Quantity(BaseModel):
    """Fixed-point quantity stored in milli-units.

    Rendered in the canonical DecimalSI form Kubernetes uses: ``"150m"``,
    ``"2"``, ``"3k"``. The same strings are accepted on input.
    """

    model_config = ConfigDict(frozen=True)

    milli_value: int

    @model_validator(mode="before")
    @classmethod
    def _parse_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"milli_value": _parse_decimal_si(data)}
        return data

    def __str__(self) -> str:
        if self.milli_value % 1000 != 0:
            return f"{self.milli_value}m"
        whole = self.milli_value // 1000
        if whole == 0:
            return "0"
        for suffix, exponent in reversed(_DECIMAL_SI_SUFFIXES):
            if whole % 10**exponent == 0:
                return f"{whole // 10**exponent}{suffix}"
        return str(whole)


_DECIMAL_SI_SUFFIXES = (("k", 3), ("M", 6), ("G", 9), ("T", 12), ("P", 15), ("E", 18))


def _parse_decimal_si(text: str) -> int:
    raw = text.strip()
    exponents = {"m": -3, **dict(_DECIMAL_SI_SUFFIXES)}
    exponent = 0
    if raw and raw[-1] in exponents:
        exponent = exponents[raw[-1]]
        raw = raw[:-1]
    try:
        milli = Decimal(raw).scaleb(exponent + 3)
    except InvalidOperation as exc:
        raise ValueError(f"invalid quantity {text!r}") from exc
    if not milli.is_finite() or milli != milli.to_integral_value():
        raise ValueError(f"quantity {text!r} is not a finite milli-unit value")
    return int(milli)


class ObjectReference(BaseModel):
    """Reference to the object a metric sample describes."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: str
    namespace: Optional[str] = None
    name: str
    api_version: str = Field(..., alias="apiVersion")


class MetricSample(BaseModel):
    """A single metric value for one object."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    described_object: ObjectReference = Field(..., alias="describedObject")
    metric_name: str = Field(..., alias="metricName")
    timestamp: datetime
    value: Quantity

    @field_serializer("value")
    def _serialize_value(self, value: Quantity) -> str:
        return str(value)


class ListMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    self_link: str = Field(default="", alias="selfLink")


class MetricValueList(BaseModel):
    """Response body for every metric query."""

    model_config = ConfigDict(populate_by_name=True)

    kind: str = "MetricValueList"
    api_version: str = Field(default=CUSTOM_METRICS_API_VERSION, alias="apiVersion")
    metadata: ListMeta = Field(default_factory=ListMeta)
    items: List[MetricSample] = Field(default_factory=list)


class APIResource(BaseModel):
    """One advertised metric in the discovery document."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    singular_name: str = Field(default="", alias="singularName")
    namespaced: bool
    kind: str = "MetricValueList"
    verbs: List[str] = Field(default_factory=lambda: ["get"])


class APIResourceList(BaseModel):
    """Discovery document listing every supported metric."""

    model_config = ConfigDict(populate_by_name=True)

    kind: str = "APIResourceList"
    api_version: str = Field(default="v1", alias="apiVersion")
    group_version: str = Field(default=CUSTOM_METRICS_API_VERSION, alias="groupVersion")
    resources: List[APIResource] = Field(default_factory=list)


class CounterSnapshot(BaseModel):
    """One recorded counter."""

    name: str = Field(..., description="Counter name")
    labels: Dict[str, str] = Field(default_factory=dict, description="Counter labels")
    value: int = Field(..., description="Current value")


class ProviderStats(BaseModel):
    """Query counters served at /internal/stats."""

    tracked_metrics: int = Field(default=0, description="Metric identifiers with a counter")
    counters: List[CounterSnapshot] = Field(default_factory=list, description="Recorded counters")
