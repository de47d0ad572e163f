from __future__ import annotations

from pathlib import Path

import pytest

from opsdiag.config import ServerConfig, load_config

_ENV_VARS = (
    "OPSDIAG_CONFIG",
    "OPSDIAG_TOOLSETS",
    "OPSDIAG_READ_ONLY",
    "OPSDIAG_DISABLE_DESTRUCTIVE",
    "OPSDIAG_ALLOW_DESTRUCTIVE_TOOLS",
    "OPSDIAG_LOG_LEVEL",
    "OPSDIAG_TOOL_TIMEOUT_SECONDS",
    "OPSDIAG_FLOW_MAX_STEPS",
    "OPSDIAG_GRAPH_TOOL",
    "OPSDIAG_REPLAY_DIR",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    cfg = load_config()
    assert cfg == ServerConfig()
    assert cfg.toolsets == ["flow"]
    assert cfg.policy.read_only is False
    assert cfg.flow_max_steps == 20
    assert cfg.graph_tool == "k8s.graph"
    assert cfg.tool_timeout_seconds is None


def test_yaml_file(tmp_path: Path) -> None:
    path = tmp_path / "opsdiag.yaml"
    path.write_text(
        """
toolsets: [flow, replay]
read_only: true
disable_destructive: true
safety:
  allow_destructive_tools: [k8s.cleanup_pods]
log_level: debug
tool_timeout_seconds: 12
flow_max_steps: 8
replay_dir: /fixtures/checkout
""",
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    assert cfg.toolsets == ["flow", "replay"]
    assert cfg.policy.read_only is True
    assert cfg.policy.disable_destructive is True
    assert cfg.policy.allow_destructive_tools == frozenset({"k8s.cleanup_pods"})
    assert cfg.log_level == "debug"
    assert cfg.tool_timeout_seconds == 12.0
    assert cfg.flow_max_steps == 8
    assert cfg.replay_dir == "/fixtures/checkout"


@pytest.mark.parametrize(
    "value,expected",
    [('"false"', False), ('"no"', False), ('"0"', False), ('"true"', True), ("1", True), ("yes", True), ("off", False)],
)
def test_yaml_booleans_parse_quoted_strings(tmp_path: Path, value: str, expected: bool) -> None:
    path = tmp_path / "opsdiag.yaml"
    path.write_text(f"read_only: {value}\ndisable_destructive: {value}\n", encoding="utf-8")
    cfg = load_config(str(path))
    assert cfg.policy.read_only is expected
    assert cfg.policy.disable_destructive is expected


def test_yaml_path_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "cfg.yaml"
    path.write_text("graph_tool: graph.snapshot\n", encoding="utf-8")
    monkeypatch.setenv("OPSDIAG_CONFIG", str(path))
    assert load_config().graph_tool == "graph.snapshot"


def test_yaml_must_be_mapping(tmp_path: Path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("- flow\n- replay\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(str(path))


def test_env_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "opsdiag.yaml"
    path.write_text("read_only: true\nflow_max_steps: 8\n", encoding="utf-8")
    monkeypatch.setenv("OPSDIAG_READ_ONLY", "0")
    monkeypatch.setenv("OPSDIAG_FLOW_MAX_STEPS", "5")
    monkeypatch.setenv("OPSDIAG_TOOLSETS", "flow, replay")
    monkeypatch.setenv("OPSDIAG_ALLOW_DESTRUCTIVE_TOOLS", "k8s.cleanup_pods,k8s.delete")
    monkeypatch.setenv("OPSDIAG_TOOL_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("OPSDIAG_REPLAY_DIR", "/tmp/fixture")

    cfg = load_config(str(path))
    assert cfg.policy.read_only is False
    assert cfg.flow_max_steps == 5
    assert cfg.toolsets == ["flow", "replay"]
    assert cfg.policy.allow_destructive_tools == frozenset({"k8s.cleanup_pods", "k8s.delete"})
    assert cfg.tool_timeout_seconds == 2.5
    assert cfg.replay_dir == "/tmp/fixture"


@pytest.mark.parametrize("raw,expected", [("0", 20), ("-4", 20), ("500", 100), ("abc", 20), ("1", 1)])
def test_flow_max_steps_is_clamped(monkeypatch: pytest.MonkeyPatch, raw: str, expected: int) -> None:
    monkeypatch.setenv("OPSDIAG_FLOW_MAX_STEPS", raw)
    assert load_config().flow_max_steps == expected


def test_unparseable_timeout_is_ignored(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPSDIAG_TOOL_TIMEOUT_SECONDS", "soon")
    assert load_config().tool_timeout_seconds is None
