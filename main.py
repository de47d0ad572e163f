#!/usr/bin/env python3
"""
opsdiag - guided Kubernetes diagnostics over a tool registry.
List registered tools or run a graph-driven debug flow from the command line.
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from typing import Any, Dict, List, Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep opsdiag imports lazy (inside functions) so `--help` stays fast.
#


def _apply_log_level(level: str) -> None:
    logging.getLogger().setLevel(getattr(logging, (level or "info").upper(), logging.INFO))


def list_tools(config_path: Optional[str] = None, replay_dir: Optional[str] = None) -> List[Dict[str, Any]]:
    """Build the runtime from config and return the tool catalogue as JSON-ready dicts."""
    from opsdiag.config import load_config
    from opsdiag.runtime import build_runtime

    cfg = load_config(config_path)
    if replay_dir:
        cfg = replace(cfg, replay_dir=replay_dir, toolsets=_with_replay(cfg.toolsets))
    _apply_log_level(cfg.log_level)
    rt = build_runtime(cfg)
    return [info.model_dump(mode="json") for info in rt.registry.list()]


def _with_replay(toolsets: List[str]) -> List[str]:
    return toolsets if "replay" in toolsets else [*toolsets, "replay"]


def run_flow(
    *,
    scenario: str,
    namespace: str,
    kind: str,
    name: str,
    max_steps: Optional[int] = None,
    config_path: Optional[str] = None,
    replay_dir: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Run `k8s.debug_flow` once and return its result data.

    Raises whatever the invoker raises (policy/argument/graph errors).
    """
    from opsdiag.authz.policy import load_identity
    from opsdiag.config import load_config
    from opsdiag.runtime import build_runtime

    cfg = load_config(config_path)
    if replay_dir:
        cfg = replace(cfg, replay_dir=replay_dir, toolsets=_with_replay(cfg.toolsets))
    _apply_log_level(cfg.log_level)
    rt = build_runtime(cfg)

    args: Dict[str, Any] = {"namespace": namespace, "kind": kind, "name": name, "scenario": scenario}
    if max_steps is not None:
        args["maxSteps"] = max_steps
    result = asyncio.run(rt.call("k8s.debug_flow", load_identity(), args))
    return result.data


def main() -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Guided diagnostics over a tool registry",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List registered tools
  python main.py --list-tools --replay-dir fixtures/checkout

  # Run a traffic flow against a captured fixture
  python main.py --flow traffic --namespace shop --kind service --name checkout --replay-dir fixtures/checkout
        """,
    )
    parser.add_argument("--list-tools", action="store_true", help="Print the registered tool catalogue as JSON")
    parser.add_argument(
        "--flow",
        metavar="SCENARIO",
        help="Run a debug flow (traffic, pending, crashloop, autoscaling, networkpolicy, mesh)",
    )
    parser.add_argument("--namespace", "-n", help="Namespace of the entry resource")
    parser.add_argument("--kind", "-k", help="Kind of the entry resource (e.g. service, deployment, pod)")
    parser.add_argument("--name", help="Name of the entry resource")
    parser.add_argument("--max-steps", type=int, help="Cap on flow steps (default: from config, 20)")
    parser.add_argument("--config", help="Path to a YAML config file (default: $OPSDIAG_CONFIG)")
    parser.add_argument(
        "--replay-dir", help="Fixture directory for the replay toolset (graph.json + responses/<tool>.json)"
    )

    args = parser.parse_args()

    from opsdiag.tools.errors import build_error_envelope

    try:
        if args.list_tools:
            print(json.dumps(list_tools(args.config, args.replay_dir), indent=2, sort_keys=False))
            return 0

        if args.flow:
            data = run_flow(
                scenario=args.flow,
                namespace=args.namespace or "",
                kind=args.kind or "",
                name=args.name or "",
                max_steps=args.max_steps,
                config_path=args.config,
                replay_dir=args.replay_dir,
            )
            print(json.dumps(data, indent=2, sort_keys=False, default=str))
            return 0

        parser.print_help()
        return 2
    except KeyboardInterrupt:
        print("\n\nInterrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        logging.getLogger(__name__).debug("command failed", exc_info=True)
        print(json.dumps(build_error_envelope(e), indent=2), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
