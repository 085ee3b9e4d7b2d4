"""
Access tokens for credential verification links

Compact HS256 JWTs binding (userId, vcId). Stateless: a token stays valid
until it expires, there is no revocation list.
"""

import logging
import time
from typing import Optional, Dict, Any

import jwt

from .config import settings
from .exceptions import InvalidTokenError, MalformedPayloadError, TokenExpiredError

logger = logging.getLogger(__name__)

TOKEN_TYPE = "vc_access"
ALGORITHM = "HS256"


class AccessTokenService:
    """Mints and validates vc_access tokens with a shared secret"""

    def __init__(self, secret: Optional[str] = None, default_ttl: Optional[int] = None):
        self.secret = secret or settings.JWT_SECRET
        self.default_ttl = default_ttl or settings.TOKEN_TTL_SECONDS

    def mint(
        self,
        user_id: str,
        vc_id: str,
        ttl_seconds: Optional[int] = None,
        issued_at: Optional[int] = None
    ) -> str:
        """
        Create a signed access token

        Args:
            user_id: Owner of the stored credential
            vc_id: Stored record id
            ttl_seconds: Lifetime, defaults to TOKEN_TTL_SECONDS (3600)
            issued_at: Unix time of issuance, defaults to now

        Returns:
            Encoded JWT
        """
        iat = int(issued_at if issued_at is not None else time.time())
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        payload = {
            "userId": user_id,
            "vcId": vc_id,
            "type": TOKEN_TYPE,
            "iat": iat,
            "exp": iat + int(ttl),
        }
        return jwt.encode(payload, self.secret, algorithm=ALGORITHM)

    def validate(self, token: str) -> Dict[str, Any]:
        """
        Decode a token and check its signature and expiry

        Returns:
            The decoded payload

        Raises:
            InvalidTokenError: bad signature, malformed token or expired
                (TokenExpiredError for the latter; both surface as 401)
            MalformedPayloadError: payload lacks userId or vcId
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[ALGORITHM],
                options={"require": ["exp", "iat"]},
            )
        except jwt.ExpiredSignatureError as e:
            logger.info("Rejected expired access token")
            raise TokenExpiredError() from e
        except jwt.InvalidTokenError as e:
            logger.info("Rejected access token: %s", e.__class__.__name__)
            raise InvalidTokenError() from e

        if not payload.get("userId") or not payload.get("vcId"):
            raise MalformedPayloadError()

        if payload.get("type") != TOKEN_TYPE:
            logger.info("Rejected token of type %r", payload.get("type"))
            raise InvalidTokenError()

        return payload
