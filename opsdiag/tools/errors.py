from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional


class ToolError(Exception):
    """Base class for registry/invoker/flow errors. `code` is stable and machine-readable."""

    code = "internal"
    retryable = False
    hint = "Check server logs for details."


class ToolNotFoundError(ToolError):
    code = "not_found"
    hint = "List tools to see what is registered."

    def __init__(self, tool: str) -> None:
        super().__init__(f"tool not found: {tool}")
        self.tool = tool


class DuplicateToolError(ToolError):
    code = "duplicate_name"
    hint = "Tool names must be unique across toolsets."

    def __init__(self, tool: str) -> None:
        super().__init__(f"tool already registered: {tool}")
        self.tool = tool


class ConfirmationRequiredError(ToolError):
    code = "confirmation_required"
    hint = "Set confirm=true to proceed."

    def __init__(self, tool: str) -> None:
        super().__init__(f"confirmation required for {tool}: set confirm=true to proceed")
        self.tool = tool


class ForbiddenError(ToolError):
    code = "forbidden"
    hint = "Check permissions, namespace access, or server safety mode."


class InvalidArgumentError(ToolError):
    code = "invalid_argument"
    hint = "Fix request parameters."


class InvalidPayloadError(ToolError):
    code = "invalid_payload"
    hint = "The graph producer returned an unexpected shape."


class DeadlineExceededError(ToolError):
    code = "timeout"
    retryable = True
    hint = "Increase the timeout or check cluster/network latency."

    def __init__(self, tool: str) -> None:
        super().__init__(f"deadline exceeded before {tool} could run")
        self.tool = tool


def build_error_envelope(err: BaseException, details: Any = None) -> Dict[str, Any]:
    """
    Map any exception to a stable `{"error": {...}}` envelope for external callers.

    Policy errors are never retryable; timeouts and cancellation are.
    """
    out: Dict[str, Any] = {"error": _classify(err)}
    if details is not None:
        out["details"] = details
    return out


def _classify(err: BaseException) -> Dict[str, Any]:
    msg = str(err) or type(err).__name__
    if isinstance(err, ToolError):
        return {"code": err.code, "message": msg, "hint": err.hint, "retryable": err.retryable}
    if isinstance(err, (asyncio.TimeoutError, TimeoutError)):
        return {
            "code": "timeout",
            "message": msg,
            "hint": "Increase the timeout or check cluster/network latency.",
            "retryable": True,
        }
    if isinstance(err, asyncio.CancelledError):
        return {"code": "canceled", "message": msg, "hint": "Request was canceled before completion.", "retryable": True}
    if isinstance(err, PermissionError):
        return {"code": "forbidden", "message": msg, "hint": ForbiddenError.hint, "retryable": False}
    if _looks_like_invalid_request(msg):
        return {"code": "invalid_request", "message": msg, "hint": "Fix request parameters.", "retryable": False}
    return {"code": "internal", "message": msg, "hint": ToolError.hint, "retryable": False}


def _looks_like_invalid_request(msg: Optional[str]) -> bool:
    lower = (msg or "").lower()
    return any(w in lower for w in ("required", "invalid", "missing"))
