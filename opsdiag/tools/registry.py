from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from opsdiag.tools.errors import DuplicateToolError, InvalidArgumentError
from opsdiag.tools.types import ToolInfo, ToolSpec


class ToolRegistry:
    """
    In-memory catalogue of tool specs.

    Registration happens before serving. `replace` swaps the whole mapping in one
    assignment, so concurrent readers see either the old set or the new one.
    """

    def __init__(self, specs: Iterable[ToolSpec] = ()) -> None:
        self._tools: Dict[str, ToolSpec] = {}
        for spec in specs:
            self.add(spec)

    def add(self, spec: ToolSpec) -> None:
        if not spec.name:
            raise InvalidArgumentError("tool name required")
        if spec.name in self._tools:
            raise DuplicateToolError(spec.name)
        self._tools[spec.name] = spec

    def get(self, name: str) -> Tuple[Optional[ToolSpec], bool]:
        spec = self._tools.get(name)
        return spec, spec is not None

    def list(self) -> List[ToolInfo]:
        return [spec.info() for spec in self.specs()]

    def specs(self) -> List[ToolSpec]:
        tools = self._tools
        return [tools[name] for name in sorted(tools)]

    def names(self) -> List[str]:
        return sorted(self._tools)

    def replace(self, specs: Iterable[ToolSpec]) -> None:
        fresh = ToolRegistry(specs)
        self._tools = fresh._tools

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
