"""Resource type resolution (group/resource aliases to canonical kinds)."""

import logging
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from ..models.metrics import GroupResource, ResourceKind
from .errors import ResolutionError
from .kubernetes import KubernetesAPIError, KubernetesClient

logger = logging.getLogger(__name__)


class ResourceTypeResolver(Protocol):
    """Maps a possibly aliased group/resource to its canonical kind."""

    def resolve(self, group_resource: GroupResource) -> ResourceKind:
        ...


# (group, resource, kind, version, namespaced, aliases)
_BUILTIN_RESOURCES: Tuple[Tuple[str, str, str, str, bool, Tuple[str, ...]], ...] = (
    ("", "pods", "Pod", "v1", True, ("pod", "po")),
    ("", "services", "Service", "v1", True, ("service", "svc")),
    ("", "namespaces", "Namespace", "v1", False, ("namespace", "ns")),
    ("", "nodes", "Node", "v1", False, ("node", "no")),
    ("", "configmaps", "ConfigMap", "v1", True, ("configmap", "cm")),
    ("", "endpoints", "Endpoints", "v1", True, ("ep",)),
    ("", "persistentvolumeclaims", "PersistentVolumeClaim", "v1", True, ("persistentvolumeclaim", "pvc")),
    ("", "persistentvolumes", "PersistentVolume", "v1", False, ("persistentvolume", "pv")),
    ("", "replicationcontrollers", "ReplicationController", "v1", True, ("replicationcontroller", "rc")),
    ("apps", "deployments", "Deployment", "v1", True, ("deployment", "deploy")),
    ("apps", "replicasets", "ReplicaSet", "v1", True, ("replicaset", "rs")),
    ("apps", "statefulsets", "StatefulSet", "v1", True, ("statefulset", "sts")),
    ("apps", "daemonsets", "DaemonSet", "v1", True, ("daemonset", "ds")),
    ("batch", "jobs", "Job", "v1", True, ("job",)),
    ("batch", "cronjobs", "CronJob", "v1", True, ("cronjob", "cj")),
    ("networking.k8s.io", "ingresses", "Ingress", "v1", True, ("ingress", "ing")),
    ("autoscaling", "horizontalpodautoscalers", "HorizontalPodAutoscaler", "v2", True, ("horizontalpodautoscaler", "hpa")),
)

# Legacy groups that served the same resources before they moved
_BUILTIN_GROUP_ALIASES: Dict[str, str] = {
    "extensions": "apps",
}


class ResourceMapper:
    """Alias index over a set of canonical resource kinds.

    A resource may be addressed by its plural name, singular name, any short
    name or its lower-cased kind. An empty group matches every group, with
    the core group and then registration order taking precedence.
    """

    def __init__(self, group_aliases: Optional[Dict[str, str]] = None) -> None:
        self._kinds: List[ResourceKind] = []
        self._index: Dict[Tuple[str, str], ResourceKind] = {}
        self._group_aliases: Dict[str, str] = dict(group_aliases or {})

    def register(self, kind: ResourceKind, aliases: Iterable[str] = ()) -> None:
        """Register a canonical kind and the names it may be reached by."""
        self._kinds.append(kind)
        names = {kind.resource, kind.kind.lower(), *(alias.lower() for alias in aliases)}
        for name in names:
            self._index.setdefault((kind.group, name), kind)

    def clear(self) -> None:
        self._kinds.clear()
        self._index.clear()

    def kinds(self) -> Sequence[ResourceKind]:
        return tuple(self._kinds)

    def resolve(self, group_resource: GroupResource) -> ResourceKind:
        resource = group_resource.resource.strip().lower()
        if not resource:
            raise ResolutionError("resource must not be empty")

        group = self._group_aliases.get(group_resource.group, group_resource.group)
        match = self._index.get((group, resource))
        if match is None and not group_resource.group:
            match = self._find_in_any_group(resource)
        if match is None:
            raise ResolutionError(f'no matches for resource "{group_resource}"')
        return match

    def _find_in_any_group(self, resource: str) -> Optional[ResourceKind]:
        for kind in self._kinds:
            found = self._index.get((kind.group, resource))
            if found is not None:
                return found
        return None


class StaticResourceMapper(ResourceMapper):
    """Mapper preloaded with the built-in Kubernetes resource types."""

    def __init__(self, extra: Iterable[Tuple[ResourceKind, Iterable[str]]] = ()) -> None:
        super().__init__(group_aliases=_BUILTIN_GROUP_ALIASES)
        for group, resource, kind, version, namespaced, aliases in _BUILTIN_RESOURCES:
            self.register(
                ResourceKind(group=group, resource=resource, kind=kind, version=version, namespaced=namespaced),
                aliases,
            )
        for kind, aliases in extra:
            self.register(kind, aliases)


class KubernetesDiscoveryMapper(ResourceMapper):
    """Mapper populated from the API server's discovery documents.

    ``refresh`` must complete before ``resolve`` can succeed.
    """

    def __init__(self, client: KubernetesClient) -> None:
        super().__init__()
        self._client = client
        self._loaded = False

    async def refresh(self) -> None:
        """Rebuild the index from ``/api/v1`` and every preferred group version.

        Raises:
            KubernetesAPIError: discovery request failed
        """
        discovered: List[Tuple[ResourceKind, List[str]]] = []

        core = await self._client.get_json("/api/v1")
        discovered.extend(self._parse_resource_list("", "v1", core))

        groups = await self._client.get_json("/apis")
        for group in groups.get("groups", []):
            preferred = group.get("preferredVersion") or {}
            version = preferred.get("version")
            name = group.get("name")
            if not name or not version:
                continue
            try:
                resource_list = await self._client.get_json(f"/apis/{name}/{version}")
            except KubernetesAPIError as exc:
                # aggregated APIs can be unavailable without breaking the rest of discovery
                logger.warning("Skipping API group %s/%s: %s", name, version, exc)
                continue
            discovered.extend(self._parse_resource_list(name, version, resource_list))

        self.clear()
        for kind, aliases in discovered:
            self.register(kind, aliases)
        self._loaded = True
        logger.info("Discovered %d resource types", len(discovered))

    @staticmethod
    def _parse_resource_list(group: str, version: str, payload: dict) -> List[Tuple[ResourceKind, List[str]]]:
        results: List[Tuple[ResourceKind, List[str]]] = []
        for resource in payload.get("resources", []):
            name = resource.get("name", "")
            # subresources such as pods/log
            if not name or "/" in name:
                continue
            aliases = list(resource.get("shortNames") or [])
            if resource.get("singularName"):
                aliases.append(resource["singularName"])
            results.append(
                (
                    ResourceKind(
                        group=group,
                        resource=name,
                        kind=resource.get("kind", ""),
                        version=version,
                        namespaced=bool(resource.get("namespaced", False)),
                    ),
                    aliases,
                )
            )
        return results

    def resolve(self, group_resource: GroupResource) -> ResourceKind:
        if not self._loaded:
            raise ResolutionError("resource discovery has not completed")
        return super().resolve(group_resource)
