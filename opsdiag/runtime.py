from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from opsdiag.authz.policy import Authorizer, Identity
from opsdiag.config import ServerConfig
from opsdiag.tools.audit import AuditLogger
from opsdiag.tools.errors import InvalidArgumentError
from opsdiag.tools.invoker import ToolInvoker
from opsdiag.tools.registry import ToolRegistry
from opsdiag.tools.toolset import ToolsetContext, toolset_factory_for
from opsdiag.tools.types import ToolResult

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: ServerConfig
    authorizer: Authorizer
    registry: ToolRegistry
    invoker: ToolInvoker

    async def call(self, name: str, identity: Identity, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        return await self.invoker.call(name, identity, arguments)

    def reload(self, config: ServerConfig) -> None:
        """
        Rebuild toolsets from `config` and swap them in.

        The registry keeps its identity (held by the invoker and toolsets); its contents
        are replaced in one step. On failure the previous tool set stays in place.
        """
        staging = ToolRegistry()
        try:
            _load_toolsets(config, self.authorizer, self.invoker, staging)
        except Exception:
            logger.warning("Runtime reload failed; keeping previous toolsets", exc_info=True)
            raise
        self.registry.replace(staging.specs())
        self.invoker.policy = config.policy
        self.invoker.default_timeout = config.tool_timeout_seconds
        self.config = config
        logger.info("Runtime reloaded: toolsets=%s tools=%d", config.toolsets, len(self.registry))


def _load_toolsets(config: ServerConfig, authorizer: Authorizer, invoker: ToolInvoker, registry: ToolRegistry) -> None:
    # Built-in toolsets register themselves on import.
    import opsdiag.toolsets  # noqa: F401

    ctx = ToolsetContext(config=config, authorizer=authorizer, invoker=invoker)
    for toolset_id in config.toolsets:
        factory, ok = toolset_factory_for(toolset_id)
        if not ok or factory is None:
            raise InvalidArgumentError(f"unknown toolset: {toolset_id}")
        toolset = factory()
        toolset.init(ctx)
        toolset.register(registry)


def build_runtime(config: ServerConfig, *, audit: Optional[AuditLogger] = None) -> Runtime:
    authorizer = Authorizer()
    registry = ToolRegistry()
    invoker = ToolInvoker(
        registry,
        policy=config.policy,
        authorizer=authorizer,
        audit=audit,
        default_timeout=config.tool_timeout_seconds,
    )
    _load_toolsets(config, authorizer, invoker, registry)
    logger.info("Runtime ready: toolsets=%s tools=%d", config.toolsets, len(registry))
    return Runtime(config=config, authorizer=authorizer, registry=registry, invoker=invoker)
