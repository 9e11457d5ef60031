import secrets

from fastapi import Header

from cashheros_api.core.errors import AuthenticationError
from cashheros_api.core.settings import settings


def _check_key(presented: str, expected: str) -> None:
    # An unset key locks the route rather than opening it.
    if not expected or not secrets.compare_digest(presented.encode(), expected.encode()):
        raise AuthenticationError("Invalid API key")


async def require_admin_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    _check_key(x_api_key, settings.admin_api_key)


async def require_integration_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    _check_key(x_api_key, settings.integration_api_key)
