"""Graph-driven diagnostic flows (traffic, pending, crashloop, autoscaling, networkpolicy, mesh)."""

from .models import FlowArgs, FlowResult, FlowStep, Scenario
from .planner import MESH_PROBES, FlowPlanner, FlowRun

__all__ = ["FlowArgs", "FlowPlanner", "FlowResult", "FlowRun", "FlowStep", "MESH_PROBES", "Scenario"]
