from .model import GraphEdge, GraphNode, ResourceGraph, is_workload_kind, node_id

__all__ = ["GraphEdge", "GraphNode", "ResourceGraph", "is_workload_kind", "node_id"]
