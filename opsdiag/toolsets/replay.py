"""
Replay toolset: serve captured tool outputs from a fixture directory.

Instead of wiring live providers, the graph payload and each leaf diagnostic tool's
output are loaded from disk. This keeps flows deterministic for local runs and tests.

Fixture layout:

    <dir>/graph.json               payload served by the graph tool
    <dir>/responses/<tool>.json    captured output per leaf tool (optional)
    <dir>/errors.json              {"<tool>": "<message>"} replayed as failures (optional)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from opsdiag.authz.policy import Authorizer
from opsdiag.flows.planner import MESH_PROBES
from opsdiag.tools.errors import InvalidArgumentError, ToolError
from opsdiag.tools.registry import ToolRegistry
from opsdiag.tools.toolset import ToolsetContext
from opsdiag.tools.types import FunctionHandler, Safety, ToolMetadata, ToolRequest, ToolResult, ToolSpec

logger = logging.getLogger(__name__)

LEAF_TOOLS = (
    "k8s.describe",
    "k8s.network_debug",
    "k8s.scheduling_debug",
    "k8s.storage_debug",
    "k8s.crashloop_debug",
    "k8s.config_debug",
    "k8s.hpa_debug",
    "k8s.vpa_debug",
    "k8s.resource_usage",
) + tuple(p.tool for p in MESH_PROBES)


class ReplayedToolError(ToolError):
    code = "replayed_error"


def _read_json(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


class ReplayToolset:
    id = "replay"
    version = "1"

    def __init__(self) -> None:
        self._authorizer: Optional[Authorizer] = None
        self._graph_tool = "k8s.graph"
        self._graph: Any = None
        self._responses: Dict[str, Any] = {}
        self._errors: Dict[str, str] = {}

    def init(self, ctx: ToolsetContext) -> None:
        if not ctx.config.replay_dir:
            raise InvalidArgumentError("replay toolset requires replay_dir")
        fixture_dir = Path(ctx.config.replay_dir)
        graph_path = fixture_dir / "graph.json"
        if not graph_path.exists():
            raise FileNotFoundError(f"Replay fixture not found: {graph_path}")

        self._authorizer = ctx.authorizer
        self._graph_tool = ctx.config.graph_tool
        self._graph = _read_json(graph_path)

        responses_dir = fixture_dir / "responses"
        if responses_dir.is_dir():
            for p in sorted(responses_dir.glob("*.json")):
                self._responses[p.stem] = _read_json(p)

        errors_path = fixture_dir / "errors.json"
        if errors_path.exists():
            raw = _read_json(errors_path)
            if isinstance(raw, dict):
                self._errors = {str(k): str(v) for k, v in raw.items()}
        logger.info(
            "Replay fixture loaded: dir=%s responses=%d errors=%d", fixture_dir, len(self._responses), len(self._errors)
        )

    def register(self, registry: ToolRegistry) -> None:
        registry.add(
            ToolSpec(
                name=self._graph_tool,
                toolset_id=self.id,
                handler=FunctionHandler(self._handle_graph),
                description="Replay the captured resource graph.",
                input_schema={"type": "object", "required": ["kind", "name", "namespace"]},
                safety=Safety.READ_ONLY,
            )
        )
        for tool in LEAF_TOOLS:
            registry.add(
                ToolSpec(
                    name=tool,
                    toolset_id=self.id,
                    handler=_LeafHandler(self, tool),
                    description=f"Replay captured output of {tool}.",
                    safety=Safety.READ_ONLY,
                )
            )

    def _check_scope(self, request: ToolRequest) -> str:
        ns = str(request.arguments.get("namespace") or "")
        if self._authorizer is not None:
            self._authorizer.check_namespace(request.identity, ns, True)
        return ns

    async def _handle_graph(self, request: ToolRequest) -> ToolResult:
        ns = self._check_scope(request)
        return ToolResult(data=self._graph, metadata=ToolMetadata(namespaces=(ns,) if ns else ()))

    async def replay(self, tool: str, request: ToolRequest) -> ToolResult:
        ns = self._check_scope(request)
        if tool in self._errors:
            raise ReplayedToolError(f"{tool}: {self._errors[tool]}")
        data = self._responses.get(tool)
        if data is None:
            data = {"status": "not_captured", "tool": tool, "args": dict(request.arguments)}
        return ToolResult(data=data, metadata=ToolMetadata(namespaces=(ns,) if ns else ()))


class _LeafHandler:
    def __init__(self, toolset: ReplayToolset, tool: str) -> None:
        self._toolset = toolset
        self._tool = tool

    async def execute(self, request: ToolRequest) -> ToolResult:
        return await self._toolset.replay(self._tool, request)
