from __future__ import annotations

from typing import Any, Dict, Optional

from opsdiag.flows.models import DEFAULT_MAX_STEPS, Scenario
from opsdiag.flows.planner import FlowPlanner
from opsdiag.tools.registry import ToolRegistry
from opsdiag.tools.toolset import ToolsetContext
from opsdiag.tools.types import FunctionHandler, Safety, ToolMetadata, ToolRequest, ToolResult, ToolSpec


def schema_debug_flow() -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "namespace": {"type": "string"},
            "kind": {"type": "string"},
            "name": {"type": "string"},
            "scenario": {"type": "string", "enum": [s.value for s in Scenario]},
            "maxSteps": {"type": "integer", "default": DEFAULT_MAX_STEPS},
        },
        "required": ["namespace", "kind", "name", "scenario"],
    }


class FlowToolset:
    """Registers `k8s.debug_flow`, which chains graph-guided diagnostic tool calls."""

    id = "flow"
    version = "1"

    def __init__(self) -> None:
        self._planner: Optional[FlowPlanner] = None

    def init(self, ctx: ToolsetContext) -> None:
        self._planner = FlowPlanner(
            ctx.authorizer,
            graph_tool=ctx.config.graph_tool,
            default_max_steps=ctx.config.flow_max_steps,
        )

    def register(self, registry: ToolRegistry) -> None:
        registry.add(
            ToolSpec(
                name="k8s.debug_flow",
                toolset_id=self.id,
                handler=FunctionHandler(self._handle_debug_flow),
                description="Run a guided diagnostic flow (traffic, pending, crashloop, autoscaling, networkpolicy, mesh) "
                "anchored at one resource, walking its dependency graph.",
                input_schema=schema_debug_flow(),
                safety=Safety.READ_ONLY,
            )
        )

    async def _handle_debug_flow(self, request: ToolRequest) -> ToolResult:
        if self._planner is None:
            raise RuntimeError("flow toolset used before init")
        flow = await self._planner.run(request)
        return ToolResult(data=flow.model_dump(), metadata=ToolMetadata(namespaces=(flow.entry["namespace"],)))
