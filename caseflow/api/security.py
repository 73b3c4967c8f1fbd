"""API key guard for the caseflow REST surface.

Keys come from ``Settings`` (CASEFLOW_AUTH_ENABLED, CASEFLOW_API_KEYS). The
settings are read per request so a running app picks up rotated keys.
"""

import logging
import secrets
from typing import List, Optional

from fastapi import Header, HTTPException

from caseflow.config import Settings

logger = logging.getLogger(__name__)


class ApiKeyGuard:
    """Checks a presented API key against the configured key set."""

    def __init__(self, enabled: bool, api_keys: List[str]):
        self.enabled = enabled
        self.api_keys = list(api_keys)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ApiKeyGuard":
        return cls(settings.auth_enabled, settings.api_keys)

    def check(self, presented: Optional[str]) -> None:
        """
        Raise unless the key is acceptable.

        Raises:
            HTTPException: 500 when auth is on without keys (fail closed),
                401 when the key is missing or unknown
        """
        if not self.enabled:
            return
        if not self.api_keys:
            logger.error("CASEFLOW_AUTH_ENABLED is set but CASEFLOW_API_KEYS is empty")
            raise HTTPException(
                status_code=500,
                detail="Authentication is enabled but no API keys are configured",
            )
        if not presented:
            raise HTTPException(status_code=401, detail="Unauthorized")
        # Compare against every key so timing does not reveal which one matched
        matches = [secrets.compare_digest(presented, key) for key in self.api_keys]
        if not any(matches):
            logger.warning("Rejected request with an unknown API key")
            raise HTTPException(status_code=401, detail="Unauthorized")


def presented_api_key(x_api_key: Optional[str], authorization: Optional[str]) -> Optional[str]:
    """The key from ``X-API-Key``, else from an ``Authorization: Bearer`` header."""
    if x_api_key and x_api_key.strip():
        return x_api_key.strip()
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


async def require_api_key(
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
    """FastAPI dependency guarding the /api/v1 routers."""
    guard = ApiKeyGuard.from_settings(Settings.from_env())
    guard.check(presented_api_key(x_api_key, authorization))
