"""Diagnostic-orchestration core: tool registry, safety-gated invoker, graph-guided flows."""

__version__ = "0.1.0"
