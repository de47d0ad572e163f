from __future__ import annotations

import os
from dataclasses import dataclass, replace
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional, TYPE_CHECKING

from opsdiag.tools.errors import ForbiddenError

if TYPE_CHECKING:
    from opsdiag.tools.types import ToolSpec


def _split_csv(raw: str) -> List[str]:
    return [x.strip() for x in (raw or "").split(",") if x.strip()]


class Role(str, Enum):
    CLUSTER = "cluster"
    NAMESPACE = "namespace"


@dataclass(frozen=True)
class Identity:
    """Calling identity. Built once per request; nested calls reuse it unchanged."""

    id: str = "local"
    role: Role = Role.CLUSTER
    # Only meaningful for Role.NAMESPACE.
    allowed_namespaces: FrozenSet[str] = frozenset()
    # Empty means every toolset / tool.
    allowed_toolsets: FrozenSet[str] = frozenset()
    allowed_tools: FrozenSet[str] = frozenset()

    @classmethod
    def cluster(cls, id: str = "local") -> "Identity":
        return cls(id=id, role=Role.CLUSTER)

    @classmethod
    def namespaced(cls, namespaces: Iterable[str], id: str = "local") -> "Identity":
        return cls(id=id, role=Role.NAMESPACE, allowed_namespaces=frozenset(n for n in namespaces if n))


@dataclass(frozen=True)
class ServerPolicy:
    """
    Process-wide safety policy, injected into the invoker at construction.

    - read_only: only read_only tools may run
    - disable_destructive: destructive tools are refused even when confirmed,
      except for names listed in allow_destructive_tools
    """

    read_only: bool = False
    disable_destructive: bool = False
    allow_destructive_tools: FrozenSet[str] = frozenset()


def load_identity() -> Identity:
    """
    Build the local caller identity from env (CLI / single-tenant deployments).

    - OPSDIAG_USER=alice
    - OPSDIAG_ROLE=cluster|namespace
    - OPSDIAG_ALLOWED_NAMESPACES=shop,payments
    - OPSDIAG_ALLOWED_TOOLSETS=flow,replay
    - OPSDIAG_ALLOWED_TOOLS=k8s.debug_flow,k8s.graph
    """
    user = (os.getenv("OPSDIAG_USER") or "").strip() or "local"
    role_raw = (os.getenv("OPSDIAG_ROLE") or "").strip().lower()
    if role_raw == Role.NAMESPACE.value:
        ident = Identity.namespaced(_split_csv(os.getenv("OPSDIAG_ALLOWED_NAMESPACES", "")), id=user)
    else:
        ident = Identity.cluster(id=user)
    return replace(
        ident,
        allowed_toolsets=frozenset(_split_csv(os.getenv("OPSDIAG_ALLOWED_TOOLSETS", ""))),
        allowed_tools=frozenset(_split_csv(os.getenv("OPSDIAG_ALLOWED_TOOLS", ""))),
    )


class Authorizer:
    """
    Namespace/cluster scope checks.

    `check_namespace` is advisory: each handler calls it before touching state.
    The invoker calls `authorize_tool` on every call, after its safety checks.
    """

    def check_namespace(self, identity: Identity, namespace: Optional[str], namespaced: bool = True) -> None:
        if identity.role == Role.CLUSTER:
            return
        if not namespaced:
            raise ForbiddenError("cluster-scoped access denied for namespace role")
        if not namespace:
            # Caller enumerates only the allowed namespaces itself.
            if identity.allowed_namespaces:
                return
            raise ForbiddenError("namespace role has no allowed namespaces")
        if namespace in identity.allowed_namespaces:
            return
        raise ForbiddenError(f"namespace not allowed: {namespace}")

    def filter_namespaces(self, identity: Identity, namespaces: Iterable[str]) -> List[str]:
        if identity.role == Role.CLUSTER:
            return list(namespaces)
        return [ns for ns in namespaces if ns in identity.allowed_namespaces]

    def authorize_tool(self, identity: Identity, spec: "ToolSpec") -> None:
        """Refuse tools outside the identity's toolset / tool allowlists (empty allows all)."""
        if identity.allowed_toolsets and spec.toolset_id not in identity.allowed_toolsets:
            raise ForbiddenError(f"toolset not allowed for {identity.id}: {spec.toolset_id} ({spec.name})")
        if identity.allowed_tools and spec.name not in identity.allowed_tools:
            raise ForbiddenError(f"tool not allowed for {identity.id}: {spec.name}")
