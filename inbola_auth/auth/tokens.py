import secrets
from datetime import timedelta
from typing import Any, Callable, Dict
from jose import jwt, JWTError
from inbola_auth.auth.errors import InvalidSignature, TokenExpired
from inbola_auth.common.utils import now


class TokenSigner:
    """Signs and verifies stateless access tokens (HS256 JWT by default)."""

    def __init__(self, secret: str, algorithm: str = "HS256", clock: Callable = now):
        self.secret = secret
        self.algorithm = algorithm
        self.clock = clock

    def sign(self, claims: Dict[str, Any], ttl: timedelta) -> str:
        issued = self.clock()
        payload = {
            **claims,
            "iat": int(issued.timestamp()),
            "exp": int((issued + ttl).timestamp()),
            "jti": secrets.token_hex(16),
        }
        return jwt.encode(claims=payload, key=self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Dict[str, Any]:
        """To verify the signature and expiration of a token"""
        try:
            claims = jwt.decode(token, key=self.secret, algorithms=[self.algorithm],
                                options={"verify_exp": False})
        except JWTError:
            raise InvalidSignature("Invalid access token")
        # expiry is checked against our own clock so it can be controlled
        if int(claims.get("exp", 0)) <= int(self.clock().timestamp()):
            raise TokenExpired("Access token expired")
        return claims
