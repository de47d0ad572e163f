"""Authorization / policy layer (env/ConfigMap driven).

This package is intentionally lightweight so admins can control:
- which identity a request runs as (cluster vs namespace role)
- which namespaces a namespace-role identity may touch
- process-wide safety mode (read-only, destructive disabled)
"""

from .policy import Authorizer, Identity, Role, ServerPolicy, load_identity

__all__ = ["Authorizer", "Identity", "Role", "ServerPolicy", "load_identity"]
