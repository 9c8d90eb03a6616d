"""Request authentication for the Revive API"""

from .auth import require_api_token, security_scheme

__all__ = ["require_api_token", "security_scheme"]
