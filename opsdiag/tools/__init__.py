"""Tool catalogue and dispatch.

- `types`: ToolSpec / ToolRequest / ToolResult and the handler contract
- `registry`: in-memory catalogue of tool specs
- `invoker`: single choke point that enforces safety + confirmation before running a handler
- `toolset`: provider contract and the toolset factory catalogue
"""
