from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Tuple, TYPE_CHECKING

from opsdiag.authz.policy import Authorizer
from opsdiag.tools.errors import DuplicateToolError, InvalidArgumentError
from opsdiag.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from opsdiag.config import ServerConfig
    from opsdiag.tools.invoker import ToolInvoker


@dataclass(frozen=True)
class ToolsetContext:
    config: "ServerConfig"
    authorizer: Authorizer
    invoker: "ToolInvoker"


class Toolset(Protocol):
    """
    A group of related tools sharing setup/configuration.

    Providers are independent: each registers its own specs and calls other
    providers' tools only through the invoker.
    """

    id: str
    version: str

    def init(self, ctx: ToolsetContext) -> None:
        """Capture shared collaborators. May raise if the toolset cannot run."""

    def register(self, registry: ToolRegistry) -> None:
        """Add this toolset's specs to the registry."""


ToolsetFactory = Callable[[], Toolset]

_factories: Dict[str, ToolsetFactory] = {}
_factories_lock = threading.Lock()


def register_toolset(toolset_id: str, factory: ToolsetFactory) -> None:
    if not toolset_id:
        raise InvalidArgumentError("toolset id required")
    if factory is None:
        raise InvalidArgumentError("toolset factory required")
    with _factories_lock:
        if toolset_id in _factories:
            raise DuplicateToolError(f"toolset:{toolset_id}")
        _factories[toolset_id] = factory


def toolset_factory_for(toolset_id: str) -> Tuple[Optional[ToolsetFactory], bool]:
    with _factories_lock:
        factory = _factories.get(toolset_id)
    return factory, factory is not None


def registered_toolsets() -> List[str]:
    with _factories_lock:
        return sorted(_factories)
