"""Guided diagnostic flows: explainable chains of tool calls anchored at one resource.

A flow fetches the resource graph through the invoker, resolves the entry node, and
runs one hand-authored traversal per scenario. Each step records the subject node,
tool, arguments and rationale. A failing step keeps its error and the flow goes on;
only setup failures (arguments, authorization, graph fetch/parse) abort the flow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from opsdiag.authz.policy import Authorizer
from opsdiag.flows.models import DEFAULT_MAX_STEPS, FlowArgs, FlowResult, FlowStep, Scenario
from opsdiag.graph.model import GraphNode, ResourceGraph, node_id
from opsdiag.tools.errors import DeadlineExceededError
from opsdiag.tools.types import ToolRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeshProbe:
    mesh: str
    # (kind, api group) pairs whose presence in the graph marks this mesh.
    markers: Tuple[Tuple[str, str], ...]
    tool: str
    namespaced: bool = True


MESH_PROBES: Tuple[MeshProbe, ...] = (
    MeshProbe(
        mesh="istio",
        markers=(("VirtualService", "networking.istio.io"), ("DestinationRule", "networking.istio.io")),
        tool="istio.service_mesh_hosts",
    ),
    MeshProbe(
        mesh="linkerd",
        markers=(("ServiceProfile", "linkerd.io"),),
        tool="linkerd.policy_debug",
        namespaced=False,
    ),
)


class FlowRun:
    """Per-invocation state: capped, append-only step list plus warnings."""

    def __init__(self, request: ToolRequest, *, entry: GraphNode, args: FlowArgs) -> None:
        self._request = request
        self.entry = entry
        self.args = args
        self.steps: List[FlowStep] = []
        self.warnings: List[str] = []

    @property
    def namespace(self) -> str:
        return self.args.namespace

    @property
    def exhausted(self) -> bool:
        return len(self.steps) >= self.args.max_steps

    def namespace_node(self) -> GraphNode:
        ns = self.namespace
        return GraphNode(id=ns, kind="Namespace", name=ns, namespace=ns)

    async def add_step(self, node: GraphNode, tool: str, args: Dict[str, Any], reason: str) -> Optional[FlowStep]:
        if self.exhausted:
            return None
        ctx = self._request.context
        if ctx.expired():
            raise DeadlineExceededError(tool or "flow step")

        result: Any = None
        error: Optional[str] = None
        if tool:
            try:
                res = await self._request.call_tool(tool, args)
                result = res.data
            except Exception as e:
                if ctx.expired():
                    raise
                error = str(e) or type(e).__name__
                logger.warning("Flow step failed: tool=%s node=%s error=%s", tool, node.id, error[:200])

        step = FlowStep(
            step=len(self.steps) + 1,
            node=node.ref(),
            tool=tool,
            args=dict(args),
            result=result,
            error=error,
            notes={"reason": reason},
        )
        self.steps.append(step)
        return step


class FlowPlanner:
    def __init__(
        self,
        authorizer: Authorizer,
        *,
        graph_tool: str = "k8s.graph",
        default_max_steps: int = DEFAULT_MAX_STEPS,
    ) -> None:
        self.authorizer = authorizer
        self.graph_tool = graph_tool
        self.default_max_steps = default_max_steps

    async def run(self, request: ToolRequest) -> FlowResult:
        args = FlowArgs.from_arguments(request.arguments, default_max_steps=self.default_max_steps)
        self.authorizer.check_namespace(request.identity, args.namespace, True)

        graph_result = await request.call_tool(
            self.graph_tool, {"kind": args.kind, "name": args.name, "namespace": args.namespace}
        )
        graph = ResourceGraph.parse(graph_result.data)

        entry_id = graph.resolve_entry(args.kind, args.namespace, args.name)
        entry = graph.node(entry_id) if entry_id else None
        warnings = list(graph.warnings)
        if entry is None:
            entry = GraphNode(
                id=node_id(args.kind, args.namespace, args.name),
                kind=args.kind,
                name=args.name,
                namespace=args.namespace,
            )
            warnings.append(f"entry not found in graph: {entry.id}")

        run = FlowRun(request, entry=entry, args=args)
        run.warnings.extend(warnings)
        logger.info(
            "Debug flow: scenario=%s entry=%s max_steps=%d nodes=%d edges=%d",
            args.scenario.value,
            entry.id,
            args.max_steps,
            len(graph.nodes),
            len(graph.edges),
        )
        await self._dispatch(graph, run)

        return FlowResult(
            entry={"kind": args.kind, "name": args.name, "namespace": args.namespace},
            scenario=args.scenario,
            graph=graph_result.data,
            steps=run.steps,
            warnings=run.warnings,
        )

    async def _dispatch(self, graph: ResourceGraph, run: FlowRun) -> None:
        scenario = run.args.scenario
        if scenario is Scenario.TRAFFIC:
            await self._traffic(graph, run)
        elif scenario is Scenario.PENDING:
            await self._pending(graph, run)
        elif scenario is Scenario.CRASHLOOP:
            await self._crashloop(graph, run)
        elif scenario is Scenario.AUTOSCALING:
            await self._autoscaling(graph, run)
        elif scenario is Scenario.NETWORK_POLICY:
            await self._network_policy(graph, run)
        elif scenario is Scenario.MESH:
            await self._mesh(graph, run)
        else:
            raise AssertionError(f"unhandled scenario: {scenario}")

    # --------------------
    # scenario builders
    # --------------------
    def _services(self, graph: ResourceGraph, entry: GraphNode) -> List[GraphNode]:
        services = graph.related_by_kind([entry.id], "Service")
        if not services and entry.kind.lower() == "service":
            services = [entry]
        return services

    async def _describe_entry(self, run: FlowRun, reason: str) -> None:
        e = run.entry
        await run.add_step(e, "k8s.describe", {"kind": e.kind, "name": e.name, "namespace": run.namespace}, reason)

    async def _traffic(self, graph: ResourceGraph, run: FlowRun) -> None:
        ns = run.namespace
        await self._describe_entry(run, "entry")

        services = self._services(graph, run.entry)
        for svc in services:
            await run.add_step(svc, "k8s.network_debug", {"namespace": ns, "service": svc.name}, "service path")

        pods = graph.pods_for_services(services)
        for pod in pods:
            await run.add_step(pod, "k8s.describe", {"kind": "Pod", "name": pod.name, "namespace": ns}, "backend pod")

        for wl in graph.workloads_for_pods(pods):
            await run.add_step(wl, "k8s.describe", {"kind": wl.kind, "name": wl.name, "namespace": ns}, "owner workload")

    async def _pending(self, graph: ResourceGraph, run: FlowRun) -> None:
        ns = run.namespace
        await run.add_step(run.namespace_node(), "k8s.scheduling_debug", {"namespace": ns}, "pending pods")
        for pod in graph.pods_from_entry(run.entry.id):
            await run.add_step(pod, "k8s.describe", {"kind": "Pod", "name": pod.name, "namespace": ns}, "pending pod")
            await run.add_step(pod, "k8s.storage_debug", {"namespace": ns, "pod": pod.name}, "pvc checks")

    async def _crashloop(self, graph: ResourceGraph, run: FlowRun) -> None:
        ns = run.namespace
        await run.add_step(run.namespace_node(), "k8s.crashloop_debug", {"namespace": ns}, "crashloop pods")
        for pod in graph.pods_from_entry(run.entry.id):
            await run.add_step(pod, "k8s.describe", {"kind": "Pod", "name": pod.name, "namespace": ns}, "crashloop pod")
            await run.add_step(pod, "k8s.config_debug", {"namespace": ns, "pod": pod.name}, "config refs")
            await run.add_step(pod, "k8s.storage_debug", {"namespace": ns, "pod": pod.name}, "volume checks")

    async def _autoscaling(self, graph: ResourceGraph, run: FlowRun) -> None:
        _ = graph
        ns = run.namespace
        await self._describe_entry(run, "workload")
        await run.add_step(run.namespace_node(), "k8s.hpa_debug", {"namespace": ns}, "HPA")
        await run.add_step(run.namespace_node(), "k8s.vpa_debug", {"namespace": ns}, "VPA")
        await run.add_step(run.namespace_node(), "k8s.resource_usage", {"namespace": ns}, "metrics-server")

    async def _network_policy(self, graph: ResourceGraph, run: FlowRun) -> None:
        ns = run.namespace
        await self._describe_entry(run, "entry")

        services = self._services(graph, run.entry)
        for svc in services:
            await run.add_step(svc, "k8s.network_debug", {"namespace": ns, "service": svc.name}, "network policy check")

        pods = graph.pods_for_services(services)
        for policy in graph.policies_for_pods(pods):
            await run.add_step(
                policy, "k8s.describe", {"kind": "NetworkPolicy", "name": policy.name, "namespace": ns}, "policy details"
            )

    async def _mesh(self, graph: ResourceGraph, run: FlowRun) -> None:
        ns = run.namespace
        await self._describe_entry(run, "entry")
        # Non-exclusive: every mesh with markers in the graph gets its own step.
        for probe in MESH_PROBES:
            if not any(graph.has_kind_group(kind, group) for kind, group in probe.markers):
                continue
            node = GraphNode(id=probe.mesh, kind=probe.mesh.capitalize(), name="mesh", namespace=ns)
            args: Dict[str, Any] = {"namespace": ns} if probe.namespaced else {}
            await run.add_step(node, probe.tool, args, f"{probe.mesh} mesh")
