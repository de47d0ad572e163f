"""
Pytest config.

Local imports like `import opsdiag` rely on the repo root being on sys.path. When a
global `pytest` entrypoint is used without an editable install, that doesn't happen
reliably during collection, so we pin it here.

Also provides in-memory fake tools so flow tests never depend on a live cluster.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()


from opsdiag.authz.policy import Authorizer, ServerPolicy  # noqa: E402
from opsdiag.config import ServerConfig  # noqa: E402
from opsdiag.tools.invoker import ToolInvoker  # noqa: E402
from opsdiag.tools.registry import ToolRegistry  # noqa: E402
from opsdiag.tools.toolset import ToolsetContext  # noqa: E402
from opsdiag.tools.types import Safety, ToolRequest, ToolResult, ToolSpec  # noqa: E402


class FakeTool:
    """Records every request; returns canned data, raises `error`, or sleeps `delay` first."""

    def __init__(
        self,
        name: str,
        *,
        data: Any = None,
        error: Optional[BaseException] = None,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.data = data
        self.error = error
        self.delay = delay
        self.calls: List[ToolRequest] = []
        self.started = asyncio.Event() if delay else None
        self.cancelled = False

    async def execute(self, request: ToolRequest) -> ToolResult:
        self.calls.append(request)
        if self.delay:
            assert self.started is not None
            self.started.set()
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if self.error is not None:
            raise self.error
        data = self.data if self.data is not None else {"tool": self.name, "args": dict(request.arguments)}
        return ToolResult(data=data)


def fake_spec(name: str, handler: Any, safety: Safety = Safety.READ_ONLY, toolset_id: str = "fake") -> ToolSpec:
    return ToolSpec(name=name, toolset_id=toolset_id, handler=handler, safety=safety)


def checkout_graph(extra_pod: bool = False, shuffle_edges: bool = False) -> Dict[str, Any]:
    """shop/checkout: Service -exposes-> Endpoints -targets-> Pod -owned-by-> Deployment."""
    nodes = [
        {"id": "service/shop/checkout", "kind": "Service", "name": "checkout", "namespace": "shop"},
        {"id": "endpoints/shop/checkout", "kind": "Endpoints", "name": "checkout", "namespace": "shop"},
        {"id": "pod/shop/checkout-7d", "kind": "Pod", "name": "checkout-7d", "namespace": "shop"},
        {"id": "deployment/shop/checkout", "kind": "Deployment", "name": "checkout", "namespace": "shop"},
    ]
    edges = [
        {"from": "service/shop/checkout", "to": "endpoints/shop/checkout", "relation": "exposes"},
        {"from": "endpoints/shop/checkout", "to": "pod/shop/checkout-7d", "relation": "targets"},
        {"from": "pod/shop/checkout-7d", "to": "deployment/shop/checkout", "relation": "owned-by"},
    ]
    if extra_pod:
        nodes.append({"id": "pod/shop/checkout-9f", "kind": "Pod", "name": "checkout-9f", "namespace": "shop"})
        edges.append({"from": "endpoints/shop/checkout", "to": "pod/shop/checkout-9f", "relation": "targets"})
        edges.append({"from": "pod/shop/checkout-9f", "to": "deployment/shop/checkout", "relation": "owned-by"})
    if shuffle_edges:
        edges = list(reversed(edges))
    return {"nodes": nodes, "edges": edges}


FlowStack = Tuple[ToolInvoker, Dict[str, FakeTool]]


@pytest.fixture
def flow_stack() -> Callable[..., FlowStack]:
    """
    Factory for an invoker with the flow toolset, a fake graph tool, and fake leaf tools.

    `errors` / `delays` map leaf tool names to an exception / a sleep before answering.
    """
    from opsdiag.toolsets.flow import FlowToolset
    from opsdiag.toolsets.replay import LEAF_TOOLS

    def _build(
        graph: Any,
        *,
        errors: Optional[Dict[str, BaseException]] = None,
        delays: Optional[Dict[str, float]] = None,
        policy: Optional[ServerPolicy] = None,
        default_timeout: Optional[float] = None,
    ) -> FlowStack:
        registry = ToolRegistry()
        invoker = ToolInvoker(registry, policy=policy, default_timeout=default_timeout)
        cfg = ServerConfig(toolsets=["flow"])
        toolset = FlowToolset()
        toolset.init(ToolsetContext(config=cfg, authorizer=Authorizer(), invoker=invoker))
        toolset.register(registry)

        tools: Dict[str, FakeTool] = {"k8s.graph": FakeTool("k8s.graph", data=graph)}
        for name in LEAF_TOOLS:
            tools[name] = FakeTool(name, error=(errors or {}).get(name), delay=(delays or {}).get(name, 0.0))
        for name, tool in tools.items():
            registry.add(fake_spec(name, tool))
        return invoker, tools

    return _build
