from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

AuditOutcome = Literal["success", "error", "canceled"]

audit_logger = logging.getLogger("opsdiag.audit")


class AuditEvent(BaseModel):
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str
    tool: str
    toolset: str
    depth: int = 0
    namespaces: List[str] = Field(default_factory=list)
    resources: List[str] = Field(default_factory=list)
    outcome: AuditOutcome
    error: Optional[str] = None


class AuditLogger:
    """One JSON line per tool call on the `opsdiag.audit` logger."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or audit_logger

    def log(self, event: AuditEvent) -> None:
        try:
            line = event.model_dump_json(exclude_none=True)
        except Exception:
            self._logger.warning("audit event serialization failed: tool=%s", event.tool, exc_info=True)
            return
        self._logger.info(line)
