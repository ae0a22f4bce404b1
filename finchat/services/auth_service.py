import logging
from datetime import UTC, datetime, timedelta

import jwt

from finchat.api.schemas.auth import Principal
from finchat.core.settings import Settings
from finchat.services.contracts import SessionStoreProtocol

logger = logging.getLogger(__name__)


class JwtTokenValidator:
    """Default JWT implementation; replaceable for OIDC integrations later."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def issue_access_token(self, principal: Principal, ttl_seconds: int = 3600) -> str:
        now = datetime.now(UTC)
        payload = {
            "sub": principal.user_id,
            "email": principal.email,
            "name": principal.display_name,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        }
        return jwt.encode(payload, self._settings.auth_jwt_secret, algorithm=self._settings.auth_jwt_algorithm)

    def decode(self, token: str) -> Principal:
        payload = jwt.decode(
            token,
            self._settings.auth_jwt_secret,
            algorithms=[self._settings.auth_jwt_algorithm],
        )
        return Principal(
            user_id=payload["sub"],
            email=payload.get("email"),
            display_name=payload.get("name"),
        )


class AuthService:
    """Resolves the calling user from a bearer token or a cookie-backed session."""

    def __init__(self, settings: Settings, session_store: SessionStoreProtocol) -> None:
        self._settings = settings
        self._session_store = session_store
        self._token_validator = JwtTokenValidator(settings)

    def principal_from_bearer(self, bearer_token: str | None) -> Principal | None:
        if not bearer_token:
            return None
        try:
            return self._token_validator.decode(bearer_token)
        except (jwt.PyJWTError, KeyError):
            logger.info("bearer token validation failed")
            return None

    async def principal_from_session(self, session_id: str | None) -> Principal | None:
        if not session_id:
            return None
        user_id = await self._session_store.get_user_id(session_id)
        if user_id is None:
            logger.debug("session missing or expired")
            return None
        return Principal(user_id=user_id)
