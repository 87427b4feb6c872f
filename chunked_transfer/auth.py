"""Authorization collaborator: every transfer call passes through here first."""
import logging
import secrets
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from chunked_transfer.core.exceptions import AuthenticationException
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

security: HTTPBasic = HTTPBasic(auto_error=False)


def authenticate_user(
    request: Request,
    credentials: Optional[HTTPBasicCredentials] = Depends(security)
) -> str:
    """Authenticate the caller using HTTP Basic auth."""
    settings = request.app.state.services.settings
    if not settings.auth_enabled:
        return "anonymous"

    if credentials is None:
        raise AuthenticationException("Not authenticated")

    correct_username = secrets.compare_digest(credentials.username, settings.auth_username)
    correct_password = secrets.compare_digest(credentials.password, settings.auth_password)

    if not (correct_username and correct_password):
        logger.error(f"Failed authentication attempt for username: {credentials.username}")
        raise AuthenticationException(
            "Incorrect username or password", details={"username": credentials.username}
        )

    return credentials.username
