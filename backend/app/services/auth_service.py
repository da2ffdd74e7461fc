from __future__ import annotations

import logging
from typing import Optional

import jwt

from app.services.errors import UnauthorizedError
from app.utils.config import get_settings

logger = logging.getLogger(__name__)


class AuthService:
    """Resolves the calling user from a bearer JWT."""

    def __init__(self, secret: Optional[str] = None, audience: Optional[str] = None, algorithm: str = "HS256") -> None:
        settings = get_settings()
        self.secret = secret if secret is not None else settings.jwt_secret
        self.audience = audience if audience is not None else settings.jwt_audience
        self.algorithm = algorithm

    def user_id_from_header(self, authorization: Optional[str]) -> str:
        if not authorization or not authorization.lower().startswith("bearer "):
            raise UnauthorizedError()
        return self.user_id_from_token(authorization[7:].strip())

    def user_id_from_token(self, token: str) -> str:
        if not self.secret:
            raise UnauthorizedError("Authentication is not configured")
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience or None,
                options={"require": ["sub", "exp"], "verify_aud": bool(self.audience)},
            )
        except jwt.PyJWTError as error:
            logger.info("Rejected bearer token", extra={"error": str(error)})
            raise UnauthorizedError() from error
        return str(claims["sub"])


def get_auth_service() -> AuthService:
    return AuthService()
