import datetime

import jwt
import structlog

from kataba.config import settings
from kataba.core.principal import Authenticated

logger = structlog.get_logger()


class IdentityTokenService:
    """Verify identity-provider JWTs and, for development, issue them."""

    def __init__(
        self,
        secret_key: str | None = None,
        algorithm: str | None = None,
        expiry_seconds: int | None = None,
        audience: str | None = None,
        issuer: str | None = None,
    ):
        self._secret_key = secret_key or settings.kataba_identity_secret
        self._algorithm = algorithm or settings.kataba_identity_algorithm
        self._expiry_seconds = expiry_seconds or settings.kataba_token_expiry_seconds
        self._audience = audience if audience is not None else settings.kataba_identity_audience
        self._issuer = issuer if issuer is not None else settings.kataba_identity_issuer

    def create_token(
        self,
        user_id: str,
        email: str = "",
        name: str = "",
        picture: str | None = None,
    ) -> str:
        """Create a signed JWT carrying the standard profile claims."""
        now = datetime.datetime.now(datetime.timezone.utc)
        payload = {
            "sub": user_id,
            "email": email,
            "name": name,
            "iat": now,
            "exp": now + datetime.timedelta(seconds=self._expiry_seconds),
        }
        if picture:
            payload["picture"] = picture
        if self._audience:
            payload["aud"] = self._audience
        if self._issuer:
            payload["iss"] = self._issuer
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def decode_token(self, token: str) -> dict | None:
        """Decode and validate a JWT. Returns claims dict or None if invalid/expired."""
        options = {"require": ["sub", "exp"]}
        try:
            return jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
                options=options,
            )
        except jwt.ExpiredSignatureError:
            logger.debug("identity_token_expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.debug("identity_token_invalid", error=str(e))
            return None

    def principal_from_token(self, token: str) -> Authenticated | None:
        claims = self.decode_token(token)
        if claims is None or not claims.get("sub"):
            return None
        return Authenticated(
            user_id=str(claims["sub"]),
            email=claims.get("email") or "",
            name=claims.get("name") or "",
            image_url=claims.get("picture"),
        )
