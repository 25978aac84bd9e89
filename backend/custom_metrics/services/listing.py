"""Resource instance listing backends."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

import yaml

from ..models.metrics import GroupResource, ResourceInstanceRef
from .discovery import ResourceTypeResolver
from .errors import ListError
from .kubernetes import KubernetesAPIError, KubernetesClient
from .selectors import LabelSelector

logger = logging.getLogger(__name__)


class ResourceInstanceLister(Protocol):
    """Lists the instances of a resource type matching a label selector."""

    async def list_instances(
        self,
        group_resource: GroupResource,
        namespace: Optional[str],
        selector: LabelSelector,
    ) -> Sequence[ResourceInstanceRef]:
        ...


@dataclass
class InventoryObject:
    """An object known to the in-memory inventory."""

    name: str
    namespace: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)


class InMemoryResourceLister:
    """Lister over a fixed inventory, for local runs and tests."""

    def __init__(self) -> None:
        self._objects: Dict[GroupResource, List[InventoryObject]] = {}

    def add(
        self,
        group_resource: GroupResource,
        name: str,
        namespace: Optional[str] = None,
        labels: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._objects.setdefault(group_resource, []).append(
            InventoryObject(name=name, namespace=namespace, labels=dict(labels or {}))
        )

    async def list_instances(
        self,
        group_resource: GroupResource,
        namespace: Optional[str],
        selector: LabelSelector,
    ) -> List[ResourceInstanceRef]:
        return [
            ResourceInstanceRef(namespace=obj.namespace, name=obj.name)
            for obj in self._objects.get(group_resource, [])
            if (namespace is None or obj.namespace == namespace) and selector.matches(obj.labels)
        ]

    @classmethod
    def from_yaml(cls, path: str | Path, resolver: Optional[ResourceTypeResolver] = None) -> "InMemoryResourceLister":
        """Load an inventory file.

        Format::

            resources:
              - resource: pods          # or "deployments.apps"
                items:
                  - name: web-1
                    namespace: default
                    labels: {app: web}

        Resource names are canonicalized through ``resolver`` when given.

        Raises:
            ListError: the file cannot be read or is malformed
            ResolutionError: a resource type is unknown to ``resolver``
        """
        inventory_path = Path(path)
        try:
            data = yaml.safe_load(inventory_path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ListError(f"Failed to load inventory {inventory_path}: {exc}") from exc

        if not isinstance(data, dict) or not isinstance(data.get("resources", []), list):
            raise ListError(f"Inventory {inventory_path} must contain a 'resources' list")

        lister = cls()
        for entry in data.get("resources", []):
            if not isinstance(entry, dict) or not entry.get("resource"):
                raise ListError(f"Inventory {inventory_path} has an entry without 'resource'")
            group_resource = GroupResource.parse(str(entry["resource"]))
            if resolver is not None:
                group_resource = resolver.resolve(group_resource).group_resource
            for item in entry.get("items") or []:
                if not isinstance(item, dict) or not item.get("name"):
                    raise ListError(f"Inventory {inventory_path} has an item without 'name' under {group_resource}")
                labels = {str(key): str(value) for key, value in (item.get("labels") or {}).items()}
                lister.add(group_resource, str(item["name"]), item.get("namespace"), labels)

        logger.info("Loaded inventory from %s", inventory_path)
        return lister


class KubernetesResourceLister:
    """Lister backed by the API server's list endpoints."""

    def __init__(self, client: KubernetesClient, resolver: ResourceTypeResolver) -> None:
        self._client = client
        self._resolver = resolver

    async def list_instances(
        self,
        group_resource: GroupResource,
        namespace: Optional[str],
        selector: LabelSelector,
    ) -> Any:
        """List matching objects.

        When the response has no ``items`` list the raw value is passed
        through unchanged so callers can reject it.

        Raises:
            ListError: the API server request failed
        """
        kind = self._resolver.resolve(group_resource)
        prefix = f"/apis/{kind.group}/{kind.version}" if kind.group else f"/api/{kind.version}"
        if namespace is not None:
            path = f"{prefix}/namespaces/{namespace}/{kind.resource}"
        else:
            path = f"{prefix}/{kind.resource}"

        params = {"labelSelector": str(selector)} if not selector.is_empty() else None
        try:
            payload = await self._client.get_json(path, params=params)
        except KubernetesAPIError as exc:
            raise ListError(str(exc)) from exc

        items = payload.get("items") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            return items

        refs: List[ResourceInstanceRef] = []
        for item in items:
            metadata = item.get("metadata") or {}
            refs.append(ResourceInstanceRef(namespace=metadata.get("namespace"), name=metadata.get("name", "")))
        return refs
