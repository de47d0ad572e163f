from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple, TYPE_CHECKING, runtime_checkable

from pydantic import BaseModel, Field

from opsdiag.authz.policy import Identity
from opsdiag.tools.errors import ToolError

if TYPE_CHECKING:
    from opsdiag.tools.invoker import ToolInvoker


class Safety(str, Enum):
    READ_ONLY = "read_only"
    WRITE = "write"
    RISKY_WRITE = "risky_write"
    DESTRUCTIVE = "destructive"

    @property
    def requires_confirmation(self) -> bool:
        return self in (Safety.RISKY_WRITE, Safety.DESTRUCTIVE)


@dataclass(frozen=True)
class ToolMetadata:
    namespaces: Tuple[str, ...] = ()
    resources: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ToolResult:
    data: Any = None
    metadata: ToolMetadata = field(default_factory=ToolMetadata)


@dataclass(frozen=True)
class CallContext:
    """
    Ambient per-call context.

    `deadline` is an absolute event-loop time (loop.time()); None means no deadline.
    Child contexts inherit the tighter of the parent deadline and their own timeout.
    """

    invoker: Optional["ToolInvoker"] = None
    deadline: Optional[float] = None
    depth: int = 0

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - asyncio.get_running_loop().time()

    def expired(self) -> bool:
        left = self.remaining()
        return left is not None and left <= 0

    async def call_tool(self, name: str, identity: Identity, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        if self.invoker is None:
            raise ToolError("tool invoker not available")
        return await self.invoker.call(name, identity, arguments, parent=self)


@dataclass(frozen=True)
class ToolRequest:
    arguments: Dict[str, Any]
    identity: Identity
    context: CallContext = field(default_factory=CallContext)

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        """Nested call through the invoker with this request's identity and remaining deadline."""
        return await self.context.call_tool(name, self.identity, arguments)


@runtime_checkable
class ToolHandler(Protocol):
    async def execute(self, request: ToolRequest) -> ToolResult: ...


class FunctionHandler:
    """Adapts a coroutine function (often a bound toolset method) to ToolHandler."""

    def __init__(self, fn: Callable[[ToolRequest], Awaitable[ToolResult]]) -> None:
        self._fn = fn

    async def execute(self, request: ToolRequest) -> ToolResult:
        return await self._fn(request)

    def __repr__(self) -> str:
        return f"FunctionHandler({getattr(self._fn, '__qualname__', self._fn)!r})"


class ToolInfo(BaseModel):
    name: str
    toolset_id: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=dict)
    safety: Safety = Safety.READ_ONLY


@dataclass(frozen=True)
class ToolSpec:
    name: str
    toolset_id: str
    handler: ToolHandler
    description: str = ""
    # Advisory documentation only; arguments are not validated centrally.
    input_schema: Dict[str, Any] = field(default_factory=dict)
    safety: Safety = Safety.READ_ONLY

    def info(self) -> ToolInfo:
        return ToolInfo(
            name=self.name,
            toolset_id=self.toolset_id,
            description=self.description,
            input_schema=dict(self.input_schema),
            safety=self.safety,
        )
