"""Built-in toolsets.

Importing this package adds them to the toolset factory catalogue, so
`build_runtime` can instantiate them by id from config.
"""

from opsdiag.tools.toolset import register_toolset, toolset_factory_for

from .flow import FlowToolset
from .replay import ReplayToolset

DEFAULT_TOOLSET_CLASSES = (FlowToolset, ReplayToolset)

for _cls in DEFAULT_TOOLSET_CLASSES:
    if not toolset_factory_for(_cls.id)[1]:
        register_toolset(_cls.id, _cls)

__all__ = ["DEFAULT_TOOLSET_CLASSES", "FlowToolset", "ReplayToolset"]
