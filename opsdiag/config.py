"""Server configuration: optional YAML file, then env overrides (ConfigMap/Secret friendly)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

import yaml

from opsdiag.authz.policy import ServerPolicy

logger = logging.getLogger(__name__)

DEFAULT_TOOLSETS = ("flow",)
DEFAULT_FLOW_MAX_STEPS = 20


_TRUTHY = ("1", "true", "yes", "y", "on")


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in _TRUTHY


def _as_bool(v: Any, default: bool = False) -> bool:
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in _TRUTHY


def _split_csv(raw: str) -> List[str]:
    return [x.strip() for x in (raw or "").split(",") if x.strip()]


def _env_float(name: str) -> Optional[float]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except Exception:
        return None


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


@dataclass(frozen=True)
class ServerConfig:
    toolsets: List[str] = field(default_factory=lambda: list(DEFAULT_TOOLSETS))
    policy: ServerPolicy = field(default_factory=ServerPolicy)
    log_level: str = "info"

    # Default timeout for top-level tool calls; nested calls inherit the remaining time.
    tool_timeout_seconds: Optional[float] = None

    # Flow planner
    flow_max_steps: int = DEFAULT_FLOW_MAX_STEPS
    graph_tool: str = "k8s.graph"

    # Replay toolset: fixture directory with graph.json + responses/<tool>.json
    replay_dir: Optional[str] = None


def _read_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"config file must contain a mapping: {path}")
    return raw


def _from_mapping(raw: Dict[str, Any]) -> ServerConfig:
    cfg = ServerConfig()
    safety = raw.get("safety") if isinstance(raw.get("safety"), dict) else {}
    toolsets = raw.get("toolsets")
    timeout = raw.get("tool_timeout_seconds")
    return replace(
        cfg,
        toolsets=[str(t) for t in toolsets] if isinstance(toolsets, list) and toolsets else cfg.toolsets,
        policy=ServerPolicy(
            read_only=_as_bool(raw.get("read_only")),
            disable_destructive=_as_bool(raw.get("disable_destructive")),
            allow_destructive_tools=frozenset(str(t) for t in (safety.get("allow_destructive_tools") or [])),
        ),
        log_level=str(raw.get("log_level") or cfg.log_level),
        tool_timeout_seconds=float(timeout) if timeout is not None else None,
        flow_max_steps=int(raw.get("flow_max_steps") or cfg.flow_max_steps),
        graph_tool=str(raw.get("graph_tool") or cfg.graph_tool),
        replay_dir=str(raw["replay_dir"]) if raw.get("replay_dir") else None,
    )


def _apply_env(cfg: ServerConfig) -> ServerConfig:
    toolsets = _split_csv(os.getenv("OPSDIAG_TOOLSETS", ""))
    allow = _split_csv(os.getenv("OPSDIAG_ALLOW_DESTRUCTIVE_TOOLS", ""))
    policy = ServerPolicy(
        read_only=_env_bool("OPSDIAG_READ_ONLY", cfg.policy.read_only),
        disable_destructive=_env_bool("OPSDIAG_DISABLE_DESTRUCTIVE", cfg.policy.disable_destructive),
        allow_destructive_tools=frozenset(allow) if allow else cfg.policy.allow_destructive_tools,
    )
    timeout = _env_float("OPSDIAG_TOOL_TIMEOUT_SECONDS")
    return replace(
        cfg,
        toolsets=toolsets or cfg.toolsets,
        policy=policy,
        log_level=(os.getenv("OPSDIAG_LOG_LEVEL") or "").strip() or cfg.log_level,
        tool_timeout_seconds=timeout if timeout is not None else cfg.tool_timeout_seconds,
        flow_max_steps=_env_int("OPSDIAG_FLOW_MAX_STEPS", cfg.flow_max_steps),
        graph_tool=(os.getenv("OPSDIAG_GRAPH_TOOL") or "").strip() or cfg.graph_tool,
        replay_dir=(os.getenv("OPSDIAG_REPLAY_DIR") or "").strip() or cfg.replay_dir,
    )


def load_config(path: Optional[str] = None) -> ServerConfig:
    """
    Load server config.

    Precedence: env vars > YAML file (`path` or OPSDIAG_CONFIG) > defaults.

    Recommended vars:
    - OPSDIAG_TOOLSETS=flow,replay
    - OPSDIAG_READ_ONLY=1
    - OPSDIAG_DISABLE_DESTRUCTIVE=1
    - OPSDIAG_ALLOW_DESTRUCTIVE_TOOLS=k8s.cleanup_pods
    - OPSDIAG_TOOL_TIMEOUT_SECONDS=30
    - OPSDIAG_FLOW_MAX_STEPS=20
    """
    path = path or (os.getenv("OPSDIAG_CONFIG") or "").strip() or None
    cfg = ServerConfig()
    if path:
        cfg = _from_mapping(_read_yaml(path))
        logger.info("Loaded config file %s", path)
    cfg = _apply_env(cfg)
    steps = cfg.flow_max_steps if cfg.flow_max_steps > 0 else DEFAULT_FLOW_MAX_STEPS
    return replace(cfg, flow_max_steps=max(1, min(steps, 100)))
