from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from opsdiag.tools.errors import InvalidArgumentError

DEFAULT_MAX_STEPS = 20


class Scenario(str, Enum):
    TRAFFIC = "traffic"
    PENDING = "pending"
    CRASHLOOP = "crashloop"
    AUTOSCALING = "autoscaling"
    NETWORK_POLICY = "networkpolicy"
    MESH = "mesh"

    @classmethod
    def parse(cls, raw: str) -> "Scenario":
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            raise InvalidArgumentError(f"unsupported scenario: {raw}") from None


class FlowStep(BaseModel):
    """One explainable step. Either `result` or `error` is set when a tool ran."""

    model_config = ConfigDict(frozen=True)

    step: int
    node: Dict[str, str]
    tool: str = ""
    args: Dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    error: Optional[str] = None
    notes: Dict[str, str] = Field(default_factory=dict)


class FlowResult(BaseModel):
    entry: Dict[str, str]
    scenario: Scenario
    # Raw graph payload, passed through for caller-side rendering.
    graph: Any = None
    steps: List[FlowStep] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def failed_steps(self) -> List[FlowStep]:
        return [s for s in self.steps if s.error]


def _to_int(v: Any, default: int) -> int:
    if v is None or isinstance(v, bool):
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class FlowArgs:
    namespace: str
    kind: str
    name: str
    scenario: Scenario
    max_steps: int = DEFAULT_MAX_STEPS

    @classmethod
    def from_arguments(cls, arguments: Mapping[str, Any], *, default_max_steps: int = DEFAULT_MAX_STEPS) -> "FlowArgs":
        namespace = str(arguments.get("namespace") or "").strip()
        kind = str(arguments.get("kind") or "").strip().lower()
        name = str(arguments.get("name") or "").strip()
        scenario_raw = str(arguments.get("scenario") or "").strip()
        if not namespace or not kind or not name or not scenario_raw:
            raise InvalidArgumentError("namespace, kind, name, and scenario are required")
        max_steps = _to_int(arguments.get("maxSteps"), default_max_steps)
        if max_steps <= 0:
            max_steps = default_max_steps
        return cls(
            namespace=namespace,
            kind=kind,
            name=name,
            scenario=Scenario.parse(scenario_raw),
            max_steps=max_steps,
        )
