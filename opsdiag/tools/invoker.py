from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Sequence

from opsdiag.authz.policy import Authorizer, Identity, ServerPolicy
from opsdiag.tools.audit import AuditEvent, AuditLogger
from opsdiag.tools.errors import (
    ConfirmationRequiredError,
    DeadlineExceededError,
    ForbiddenError,
    ToolNotFoundError,
)
from opsdiag.tools.registry import ToolRegistry
from opsdiag.tools.types import CallContext, Safety, ToolRequest, ToolResult, ToolSpec

logger = logging.getLogger(__name__)

_LOGGED_ARG_KEYS = ("namespace", "kind", "name", "pod", "service", "scenario", "maxSteps")


def confirmed(arguments: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Copy of `arguments` with confirm=True.

    Composite tools use this to re-assert confirmation for a nested risky/destructive
    call once their own call was confirmed. The invoker never forwards it implicitly.
    """
    out = dict(arguments or {})
    out["confirm"] = True
    return out


def is_confirmed(arguments: Optional[Dict[str, Any]]) -> bool:
    # Strict boolean: "true"/1 are not confirmation.
    return (arguments or {}).get("confirm") is True


class ToolInvoker:
    """
    Single choke point for executing registered tools, external or nested.

    Enforces, in order: lookup, confirmation, read-only mode, destructive-disabled mode.
    Handler results and exceptions are returned/raised unchanged.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        policy: Optional[ServerPolicy] = None,
        authorizer: Optional[Authorizer] = None,
        audit: Optional[AuditLogger] = None,
        default_timeout: Optional[float] = None,
    ) -> None:
        self.registry = registry
        self.policy = policy or ServerPolicy()
        self.authorizer = authorizer or Authorizer()
        self.audit = audit or AuditLogger()
        self.default_timeout = default_timeout

    def check_safety(self, spec: ToolSpec, arguments: Dict[str, Any]) -> None:
        if spec.safety.requires_confirmation and not is_confirmed(arguments):
            raise ConfirmationRequiredError(spec.name)
        if self.policy.read_only and spec.safety != Safety.READ_ONLY:
            raise ForbiddenError(f"server is read-only: {spec.name} ({spec.safety.value}) refused")
        if (
            self.policy.disable_destructive
            and spec.safety == Safety.DESTRUCTIVE
            and spec.name not in self.policy.allow_destructive_tools
        ):
            raise ForbiddenError(f"destructive tools are disabled: {spec.name} refused")

    def _child_context(self, parent: Optional[CallContext], timeout: Optional[float]) -> CallContext:
        if timeout is None and parent is None:
            timeout = self.default_timeout
        deadline = parent.deadline if parent is not None else None
        if timeout is not None:
            own = asyncio.get_running_loop().time() + timeout
            deadline = own if deadline is None else min(deadline, own)
        depth = parent.depth + 1 if parent is not None else 0
        return CallContext(invoker=self, deadline=deadline, depth=depth)

    async def call(
        self,
        name: str,
        identity: Identity,
        arguments: Optional[Dict[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
        parent: Optional[CallContext] = None,
    ) -> ToolResult:
        args = dict(arguments or {})
        spec, ok = self.registry.get(name)
        if not ok or spec is None:
            logger.warning("Tool call rejected: unknown tool %s user=%s", name, identity.id)
            raise ToolNotFoundError(name)

        ctx = self._child_context(parent, timeout)
        compact_args = {k: v for k, v in args.items() if k in _LOGGED_ARG_KEYS}
        logger.info("Tool call: %s args=%s user=%s depth=%d", name, compact_args, identity.id, ctx.depth)

        try:
            self.check_safety(spec, args)
            self.authorizer.authorize_tool(identity, spec)
        except Exception as e:
            logger.warning("Tool %s blocked by policy: %s", name, e)
            self._audit(spec, identity, ctx, None, "error", e)
            raise

        if ctx.expired():
            err = DeadlineExceededError(name)
            self._audit(spec, identity, ctx, None, "error", err)
            raise err

        request = ToolRequest(arguments=args, identity=identity, context=ctx)
        try:
            remaining = ctx.remaining()
            if remaining is None:
                result = await spec.handler.execute(request)
            else:
                result = await asyncio.wait_for(spec.handler.execute(request), timeout=remaining)
        except asyncio.CancelledError:
            self._audit(spec, identity, ctx, None, "canceled", None)
            raise
        except Exception as e:
            self._audit(spec, identity, ctx, None, "error", e)
            raise

        self._audit(spec, identity, ctx, result, "success", None)
        return result

    def _audit(
        self,
        spec: ToolSpec,
        identity: Identity,
        ctx: CallContext,
        result: Optional[ToolResult],
        outcome: str,
        err: Optional[BaseException],
    ) -> None:
        namespaces: Sequence[str] = ()
        resources: Sequence[str] = ()
        if result is not None and result.metadata is not None:
            namespaces = result.metadata.namespaces
            resources = result.metadata.resources
        self.audit.log(
            AuditEvent(
                user_id=identity.id,
                tool=spec.name,
                toolset=spec.toolset_id,
                depth=ctx.depth,
                namespaces=list(namespaces),
                resources=list(resources),
                outcome=outcome,  # type: ignore[arg-type]
                error=(str(err) or type(err).__name__) if err is not None else None,
            )
        )
