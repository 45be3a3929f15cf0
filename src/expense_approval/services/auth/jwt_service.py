"""JWT access tokens for API authentication."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from pydantic import BaseModel

from expense_approval.core.config import get_settings

logger = logging.getLogger(__name__)


class TokenPayload(BaseModel):
    """JWT token payload."""

    sub: str  # User ID
    company_id: str
    exp: datetime
    iat: datetime
    type: str = "access"
    roles: list[str] = []
    permissions: list[str] = []


class JWTService:
    """Service for creating and validating access tokens.

    Tokens are issued by the identity provider in production; creation is
    kept for tooling and tests.
    """

    def __init__(
        self,
        secret_key: str | None = None,
        algorithm: str | None = None,
        access_token_expire_minutes: int | None = None,
    ):
        """Initialize JWT service.

        Args:
            secret_key: Secret key for signing tokens
            algorithm: JWT algorithm (defaults to Settings.jwt_algorithm)
            access_token_expire_minutes: Access token expiration in minutes
        """
        settings = get_settings()
        self.secret_key = secret_key or settings.secret_key
        self.algorithm = algorithm or settings.jwt_algorithm
        self.access_token_expire_minutes = (
            access_token_expire_minutes or settings.access_token_expire_minutes
        )

    def create_access_token(
        self,
        user_id: str,
        company_id: str,
        roles: list[str] | None = None,
        permissions: list[str] | None = None,
        extra_claims: dict[str, Any] | None = None,
    ) -> str:
        """Create an access token.

        Args:
            user_id: Token subject
            company_id: Company the user acts for
            roles: User roles
            permissions: User permissions
            extra_claims: Additional claims to include

        Returns:
            Encoded JWT access token
        """
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "company_id": company_id,
            "exp": now + timedelta(minutes=self.access_token_expire_minutes),
            "iat": now,
            "type": "access",
            "roles": roles or [],
            "permissions": permissions or [],
        }
        if extra_claims:
            payload.update(extra_claims)

        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify_access_token(self, token: str) -> TokenPayload | None:
        """Verify and decode an access token.

        Args:
            token: JWT token to verify

        Returns:
            TokenPayload if valid, None otherwise
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
            decoded = TokenPayload(**payload)
        except (JWTError, ValueError) as e:
            logger.warning(f"JWT verification failed: {e}")
            return None

        if decoded.type != "access":
            return None
        return decoded


# Singleton instance
_jwt_service: JWTService | None = None


def get_jwt_service() -> JWTService:
    """Get or create JWT service singleton."""
    global _jwt_service
    if _jwt_service is None:
        _jwt_service = JWTService()
    return _jwt_service
