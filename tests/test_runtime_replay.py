from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional

import pytest

from conftest import checkout_graph
from opsdiag.authz.policy import Identity, ServerPolicy
from opsdiag.config import ServerConfig
from opsdiag.runtime import build_runtime
from opsdiag.tools.errors import DuplicateToolError, ForbiddenError, InvalidArgumentError
from opsdiag.tools.toolset import register_toolset, registered_toolsets, toolset_factory_for
from opsdiag.toolsets.replay import LEAF_TOOLS


def _write_fixture(
    root: Path,
    *,
    graph: Any = None,
    responses: Optional[Dict[str, Any]] = None,
    errors: Optional[Dict[str, str]] = None,
) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    (root / "graph.json").write_text(json.dumps(graph if graph is not None else checkout_graph()), encoding="utf-8")
    if responses:
        (root / "responses").mkdir()
        for tool, data in responses.items():
            (root / "responses" / f"{tool}.json").write_text(json.dumps(data), encoding="utf-8")
    if errors:
        (root / "errors.json").write_text(json.dumps(errors), encoding="utf-8")
    return root


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("OPSDIAG_ROLE", "OPSDIAG_USER", "OPSDIAG_ALLOWED_NAMESPACES", "OPSDIAG_CONFIG", "OPSDIAG_TOOLSETS"):
        monkeypatch.delenv(name, raising=False)


def _replay_config(fixture: Path, **overrides) -> ServerConfig:
    return replace(ServerConfig(toolsets=["flow", "replay"], replay_dir=str(fixture)), **overrides)


def test_builtin_toolsets_are_catalogued() -> None:
    import opsdiag.toolsets  # noqa: F401

    assert {"flow", "replay"} <= set(registered_toolsets())
    assert toolset_factory_for("nope") == (None, False)
    with pytest.raises(DuplicateToolError):
        register_toolset("flow", lambda: None)  # type: ignore[arg-type,return-value]
    with pytest.raises(InvalidArgumentError):
        register_toolset("", lambda: None)  # type: ignore[arg-type,return-value]


def test_build_runtime_registers_flow_and_replay_tools(tmp_path: Path) -> None:
    rt = build_runtime(_replay_config(_write_fixture(tmp_path / "fx")))
    names = rt.registry.names()
    assert "k8s.debug_flow" in names
    assert "k8s.graph" in names
    assert set(LEAF_TOOLS) <= set(names)
    assert {i.toolset_id for i in rt.registry.list() if i.name == "k8s.debug_flow"} == {"flow"}


def test_unknown_toolset_fails_fast(tmp_path: Path) -> None:
    with pytest.raises(InvalidArgumentError) as exc:
        build_runtime(ServerConfig(toolsets=["flow", "prometheus"]))
    assert "prometheus" in str(exc.value)


def test_replay_requires_fixture(tmp_path: Path) -> None:
    with pytest.raises(InvalidArgumentError):
        build_runtime(ServerConfig(toolsets=["replay"]))
    with pytest.raises(FileNotFoundError):
        build_runtime(ServerConfig(toolsets=["replay"], replay_dir=str(tmp_path / "missing")))


@pytest.mark.asyncio
async def test_flow_over_replayed_fixture(tmp_path: Path) -> None:
    fixture = _write_fixture(
        tmp_path / "fx",
        responses={"k8s.network_debug": {"endpoints": 0, "summary": "service has no ready endpoints"}},
        errors={"k8s.describe": "pods \"checkout-7d\" is forbidden"},
    )
    rt = build_runtime(_replay_config(fixture))
    res = await rt.call(
        "k8s.debug_flow",
        Identity.namespaced(["shop"]),
        {"namespace": "shop", "kind": "service", "name": "checkout", "scenario": "traffic"},
    )
    steps = res.data["steps"]
    assert [s["tool"] for s in steps] == ["k8s.describe", "k8s.network_debug", "k8s.describe", "k8s.describe"]
    assert steps[1]["result"] == {"endpoints": 0, "summary": "service has no ready endpoints"}
    assert steps[0]["error"] == 'k8s.describe: pods "checkout-7d" is forbidden'
    assert res.metadata.namespaces == ("shop",)


@pytest.mark.asyncio
async def test_uncaptured_tool_answers_not_captured(tmp_path: Path) -> None:
    rt = build_runtime(_replay_config(_write_fixture(tmp_path / "fx")))
    res = await rt.call("k8s.hpa_debug", Identity.cluster(), {"namespace": "shop"})
    assert res.data == {"status": "not_captured", "tool": "k8s.hpa_debug", "args": {"namespace": "shop"}}


@pytest.mark.asyncio
async def test_replayed_tools_enforce_namespace_scope(tmp_path: Path) -> None:
    rt = build_runtime(_replay_config(_write_fixture(tmp_path / "fx")))
    with pytest.raises(ForbiddenError):
        await rt.call("k8s.describe", Identity.namespaced(["payments"]), {"namespace": "shop"})


def test_reload_swaps_toolsets_and_policy(tmp_path: Path) -> None:
    rt = build_runtime(_replay_config(_write_fixture(tmp_path / "fx")))
    invoker, registry = rt.invoker, rt.registry

    rt.reload(ServerConfig(toolsets=["flow"], policy=ServerPolicy(read_only=True), tool_timeout_seconds=3.0))

    assert rt.registry is registry
    assert rt.invoker is invoker
    assert registry.names() == ["k8s.debug_flow"]
    assert invoker.policy.read_only is True
    assert invoker.default_timeout == 3.0
    assert rt.config.toolsets == ["flow"]


def test_failed_reload_keeps_previous_tools(tmp_path: Path) -> None:
    cfg = _replay_config(_write_fixture(tmp_path / "fx"))
    rt = build_runtime(cfg)
    before = rt.registry.names()

    with pytest.raises(InvalidArgumentError):
        rt.reload(ServerConfig(toolsets=["flow", "nope"], policy=ServerPolicy(read_only=True)))

    assert rt.registry.names() == before
    assert rt.invoker.policy.read_only is False
    assert rt.config is cfg


def test_cli_run_flow_and_list_tools(tmp_path: Path) -> None:
    import main

    fixture = _write_fixture(tmp_path / "fx")
    data = main.run_flow(
        scenario="autoscaling",
        namespace="shop",
        kind="deployment",
        name="checkout",
        max_steps=2,
        replay_dir=str(fixture),
    )
    assert [s["tool"] for s in data["steps"]] == ["k8s.describe", "k8s.hpa_debug"]

    tools = main.list_tools(replay_dir=str(fixture))
    names = [t["name"] for t in tools]
    assert names == sorted(names)
    assert "k8s.debug_flow" in names
    assert all(t["safety"] == "read_only" for t in tools)


def test_cli_main_prints_error_envelope(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
) -> None:
    import main

    fixture = _write_fixture(tmp_path / "fx")
    monkeypatch.setattr(
        "sys.argv",
        ["opsdiag", "--flow", "dns", "-n", "shop", "-k", "service", "--name", "checkout", "--replay-dir", str(fixture)],
    )
    assert main.main() == 1

    err = capsys.readouterr().err
    envelope = json.loads(err[err.rindex('{\n  "error"') :])
    assert envelope["error"]["code"] == "invalid_argument"
    assert "dns" in envelope["error"]["message"]
