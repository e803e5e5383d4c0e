"""
Basic security implementation for the sync service.

Two schemes live here:
- HTTP Basic Auth for the interactive management API
- A shared-secret header for calls coming from an external scheduler
"""

import logging
import secrets
from typing import Mapping, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from app.core.config import SCHEDULER_AUTH_BYPASS_ENVIRONMENTS, Settings, get_settings

logger = logging.getLogger(__name__)

security = HTTPBasic()

SCHEDULER_SECRET_HEADER = "x-scheduler-secret"


def get_current_username(
    credentials: HTTPBasicCredentials = Depends(security),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Simple HTTP Basic Auth - checks username/password from settings
    """
    correct_username = settings.BASIC_AUTH_USERNAME
    correct_password = settings.BASIC_AUTH_PASSWORD

    # If no password is set in production, refuse to serve
    if not correct_password and settings.is_production:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Basic auth password not configured"
        )

    # In development, allow a default password
    if not correct_password:
        correct_password = "changeme"

    is_correct_username = secrets.compare_digest(
        credentials.username.encode("utf8"),
        correct_username.encode("utf8")
    )
    is_correct_password = secrets.compare_digest(
        credentials.password.encode("utf8"),
        correct_password.encode("utf8")
    )

    if not (is_correct_username and is_correct_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username


def require_auth():
    """
    Dependency to require authentication
    Usage: app.include_router(router, dependencies=[require_auth()])
    """
    return Depends(get_current_username)


def scheduler_auth_bypassed(settings: Settings) -> bool:
    """True only for an explicitly opted-in development environment."""
    return (
        settings.SKIP_SCHEDULER_AUTH is True
        and settings.ENVIRONMENT in SCHEDULER_AUTH_BYPASS_ENVIRONMENTS
    )


def validate_scheduler_headers(headers: Mapping[str, str], settings: Settings) -> bool:
    """
    Check the shared secret sent by an external scheduler.

    Header lookup is case-insensitive so both plain dicts and Starlette
    header objects work. An unconfigured secret rejects every call.
    """
    if scheduler_auth_bypassed(settings):
        logger.debug("Scheduler auth bypassed in %s environment", settings.ENVIRONMENT)
        return True

    provided: Optional[str] = None
    for key, value in headers.items():
        if key.lower() == SCHEDULER_SECRET_HEADER:
            provided = value
            break

    if not provided:
        logger.warning("Scheduler request missing secret header")
        return False

    if not settings.SCHEDULER_SECRET:
        logger.error("Scheduler request received but SCHEDULER_SECRET is not configured")
        return False

    return secrets.compare_digest(
        provided.encode("utf8"),
        settings.SCHEDULER_SECRET.encode("utf8"),
    )
