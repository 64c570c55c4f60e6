"""FastAPI dependency injection — principal identification."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from app.config import settings
from app.exceptions import PrincipalError
from app.utils.principal import normalize_principal_id

logger = logging.getLogger(__name__)

# Tokens are issued by the auth service; this only reads them
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{settings.api_prefix}/auth/login",
    auto_error=False,
)


async def get_current_principal(token: Optional[str] = Depends(oauth2_scheme)) -> int:
    """Validate the Bearer token and return the caller's user id."""
    if not token:
        raise PrincipalError("Unauthorized")

    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.token_algorithm],
        )
    except JWTError as exc:
        logger.debug("Rejected token: %s", exc)
        raise PrincipalError("Invalid or expired token") from exc

    if "user_id" not in payload:
        raise PrincipalError("Invalid token: no user_id claim")
    try:
        return normalize_principal_id(payload["user_id"])
    except PrincipalError as exc:
        logger.warning("Failed to parse user ID: %s", exc.message)
        raise PrincipalError("Failed to parse user ID") from exc
