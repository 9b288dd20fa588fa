"""
Shared-secret bearer authentication for administrative cache endpoints.

The cleanup endpoint is called by a cron job or an administrator that
presents ``Authorization: Bearer <CRON_SECRET>``.
"""

import logging
import secrets
from typing import Optional

from fastapi import Request

from flowforge.exceptions import UnauthorizedError

logger = logging.getLogger(__name__)

_BEARER_PREFIX = "bearer "


def extract_bearer_token(header_value: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization`` header, or None."""
    if not header_value:
        return None
    if not header_value.lower().startswith(_BEARER_PREFIX):
        return None
    token = header_value[len(_BEARER_PREFIX):].strip()
    return token or None


def verify_bearer(header_value: Optional[str], secret: str) -> bool:
    """Check a presented ``Authorization`` header against the server secret.

    An empty server secret never authenticates anyone.
    """
    if not secret:
        return False
    token = extract_bearer_token(header_value)
    if token is None:
        return False
    return secrets.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))


async def require_cron_secret(request: Request) -> None:
    """FastAPI dependency guarding administrative endpoints.

    Raises:
        UnauthorizedError: If the credential is missing or wrong.
    """
    secret = request.app.state.settings.auth.cron_secret
    if not secret:
        logger.warning(
            "Cron secret is not configured; rejecting admin request",
            extra={"path": request.url.path},
        )
        raise UnauthorizedError("Unauthorized")
    if not verify_bearer(request.headers.get("authorization"), secret):
        logger.info(
            "Rejected admin request with invalid credential",
            extra={"path": request.url.path},
        )
        raise UnauthorizedError("Unauthorized")
