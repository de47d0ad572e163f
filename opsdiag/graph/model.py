"""Typed resource-relationship graph parsed from a graph-producing tool's payload.

The payload is untyped at the boundary:

    {"nodes": [{"id", "kind", "name", "namespace", "group"?}],
     "edges": [{"from", "to", "relation"}],
     "warnings": ["..."]}

Parsing is best-effort: malformed entries are skipped (and surfaced as warnings),
edges may point at ids missing from the node set. Every neighbor query dedupes
by node id and returns nodes in discovery order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from opsdiag.tools.errors import InvalidPayloadError

WORKLOAD_KINDS = frozenset({"deployment", "statefulset", "daemonset", "replicaset"})
ENDPOINT_KINDS = ("Endpoints", "EndpointSlice")


def node_id(kind: str, namespace: str, name: str, group: str = "") -> str:
    kind = (kind or "").lower()
    group = (group or "").lower()
    prefix = f"{kind}.{group}" if group else kind
    if not namespace:
        return f"{prefix}/{name}"
    return f"{prefix}/{namespace}/{name}"


def is_workload_kind(kind: str) -> bool:
    return (kind or "").lower() in WORKLOAD_KINDS


def _same_kind(a: str, b: str) -> bool:
    return (a or "").lower() == (b or "").lower()


def _str(v: Any) -> str:
    if v is None:
        return ""
    return v if isinstance(v, str) else str(v)


@dataclass(frozen=True)
class GraphNode:
    id: str
    kind: str
    name: str = ""
    namespace: str = ""
    group: str = ""

    def ref(self) -> Dict[str, str]:
        return {"id": self.id, "kind": self.kind, "name": self.name, "namespace": self.namespace}


@dataclass(frozen=True)
class GraphEdge:
    source: str
    target: str
    relation: str = ""


@dataclass
class ResourceGraph:
    # Insertion-ordered (payload order); first occurrence wins on duplicate ids.
    nodes: Dict[str, GraphNode] = field(default_factory=dict)
    edges: List[GraphEdge] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def parse(cls, payload: Any) -> "ResourceGraph":
        if not isinstance(payload, Mapping):
            raise InvalidPayloadError(f"invalid graph payload: expected mapping, got {type(payload).__name__}")
        if "nodes" not in payload:
            raise InvalidPayloadError("invalid graph payload: missing 'nodes'")
        graph = cls()
        raw_nodes = graph._list_field(payload, "nodes")
        raw_edges = graph._list_field(payload, "edges")
        raw_warnings = graph._list_field(payload, "warnings")
        graph.warnings.extend(w for w in raw_warnings if isinstance(w, str))

        for i, item in enumerate(raw_nodes):
            if not isinstance(item, Mapping):
                graph.warnings.append(f"graph: skipped malformed node at index {i}")
                continue
            nid = _str(item.get("id"))
            if not nid:
                continue
            if nid in graph.nodes:
                continue
            graph.nodes[nid] = GraphNode(
                id=nid,
                kind=_str(item.get("kind")),
                name=_str(item.get("name")),
                namespace=_str(item.get("namespace")),
                group=_str(item.get("group")),
            )

        for i, item in enumerate(raw_edges):
            if not isinstance(item, Mapping):
                graph.warnings.append(f"graph: skipped malformed edge at index {i}")
                continue
            src, dst = _str(item.get("from")), _str(item.get("to"))
            if not src or not dst:
                graph.warnings.append(f"graph: skipped edge without endpoints at index {i}")
                continue
            graph.edges.append(GraphEdge(source=src, target=dst, relation=_str(item.get("relation"))))
        return graph

    def _list_field(self, payload: Mapping[str, Any], key: str) -> List[Any]:
        raw = payload.get(key)
        if raw is None:
            return []
        if not isinstance(raw, list):
            self.warnings.append(f"graph: ignored '{key}' of type {type(raw).__name__}, expected a list")
            return []
        return raw

    # --------------------
    # lookup
    # --------------------
    def node(self, nid: str) -> Optional[GraphNode]:
        return self.nodes.get(nid)

    def find_node(self, kind: str, namespace: str, name: str) -> Optional[str]:
        for nid, n in self.nodes.items():
            if _same_kind(n.kind, kind) and n.name == name and n.namespace == namespace:
                return nid
        return None

    def resolve_entry(self, kind: str, namespace: str, name: str) -> Optional[str]:
        """Exact id convention first, then a kind/namespace/name scan."""
        nid = node_id(kind, namespace, name)
        if nid in self.nodes:
            return nid
        return self.find_node(kind, namespace, name)

    def nodes_of_kind(self, kind: str) -> List[GraphNode]:
        return [n for n in self.nodes.values() if _same_kind(n.kind, kind)]

    def has_kind_group(self, kind: str, group: str) -> bool:
        group = group.lower()
        for n in self.nodes.values():
            if not _same_kind(n.kind, kind):
                continue
            if n.group.lower() == group or group in n.id.lower():
                return True
        return False

    # --------------------
    # neighbor queries
    # --------------------
    def related_by_kind(self, origin_ids: Iterable[str], kind: str) -> List[GraphNode]:
        """Nodes of `kind` reachable from any origin via one outgoing edge of any relation."""
        origins = set(origin_ids)
        out = _Collector()
        for e in self.edges:
            if e.source not in origins:
                continue
            n = self.nodes.get(e.target)
            if n is not None and _same_kind(n.kind, kind):
                out.add(n)
        return out.items

    def pods_for_services(self, services: Sequence[GraphNode]) -> List[GraphNode]:
        service_ids = [s.id for s in services]
        out = _Collector(self.related_by_kind(service_ids, "Pod"))
        for ep_kind in ENDPOINT_KINDS:
            for hop in self.related_by_kind(service_ids, ep_kind):
                out.extend(self.related_by_kind([hop.id], "Pod"))
        return out.items

    def workloads_for_pods(self, pods: Sequence[GraphNode]) -> List[GraphNode]:
        pod_ids = {p.id for p in pods}
        out = _Collector()
        for e in self.edges:
            if e.source not in pod_ids or e.relation != "owned-by":
                continue
            n = self.nodes.get(e.target)
            if n is not None and is_workload_kind(n.kind):
                out.add(n)
        return out.items

    def policies_for_pods(self, pods: Sequence[GraphNode]) -> List[GraphNode]:
        """
        NetworkPolicies related to the pods: pod -> policy edges whose relation contains
        'block' (blocked-by), and policy -> pod edges that block or select the pod.
        """
        pod_ids = {p.id for p in pods}
        out = _Collector()
        for e in self.edges:
            if e.source in pod_ids and "block" in e.relation:
                n = self.nodes.get(e.target)
                if n is not None and _same_kind(n.kind, "NetworkPolicy"):
                    out.add(n)
            if e.target in pod_ids and (e.relation == "selects" or "block" in e.relation):
                n = self.nodes.get(e.source)
                if n is not None and _same_kind(n.kind, "NetworkPolicy"):
                    out.add(n)
        return out.items

    def pods_from_entry(self, entry_id: Optional[str]) -> List[GraphNode]:
        """
        Pods relevant to an entry: itself if a pod, backends if a service, owned pods
        if a workload. Falls back to every pod in the graph when none are found.
        """
        entry = self.nodes.get(entry_id or "")
        if entry is None:
            return []
        if _same_kind(entry.kind, "Pod"):
            return [entry]
        if _same_kind(entry.kind, "Service"):
            return self.pods_for_services([entry])
        if is_workload_kind(entry.kind):
            pods = self.pods_for_workload(entry)
            if pods:
                return pods
        return _Collector(self.nodes_of_kind("Pod")).items

    def pods_for_workload(self, workload: GraphNode) -> List[GraphNode]:
        """
        Pods owned by a workload, in discovery order.

        Follows pod -owned-by-> workload edges, one intermediate owner hop
        (pod -> ReplicaSet -> Deployment), and workload -> pod edges.
        """
        owner_ids = {workload.id}
        for e in self.edges:
            if e.target == workload.id and e.relation == "owned-by":
                n = self.nodes.get(e.source)
                if n is not None and is_workload_kind(n.kind):
                    owner_ids.add(n.id)

        out = _Collector()
        for e in self.edges:
            if e.target in owner_ids and e.relation == "owned-by":
                n = self.nodes.get(e.source)
                if n is not None and _same_kind(n.kind, "Pod"):
                    out.add(n)
        out.extend(self.related_by_kind([workload.id], "Pod"))
        return out.items


class _Collector:
    """Ordered, id-deduplicated node list."""

    def __init__(self, initial: Iterable[GraphNode] = ()) -> None:
        self.items: List[GraphNode] = []
        self._seen: Set[str] = set()
        self.extend(initial)

    def add(self, node: GraphNode) -> None:
        if node.id in self._seen:
            return
        self._seen.add(node.id)
        self.items.append(node)

    def extend(self, nodes: Iterable[GraphNode]) -> None:
        for n in nodes:
            self.add(n)
