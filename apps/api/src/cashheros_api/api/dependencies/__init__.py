from .auth import get_current_claims, get_current_user, get_token_service, require_admin
from .security import require_admin_api_key, require_integration_api_key

__all__ = [
    "get_current_claims",
    "get_current_user",
    "get_token_service",
    "require_admin",
    "require_admin_api_key",
    "require_integration_api_key",
]
