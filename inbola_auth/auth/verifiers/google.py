from typing import Callable, Optional
import httpx
from inbola_auth.auth.constants import GOOGLE_ISSUERS, logger
from inbola_auth.auth.errors import InvalidToken, ProviderUnavailable
from inbola_auth.auth.models import GoogleLogin, ProfileSnapshot, VerifiedIdentity
from inbola_auth.auth.verifiers.base import Verifier
from inbola_auth.common.utils import now
from inbola_auth.schema.full_schema import AuthProvider


class GoogleVerifier(Verifier):
    """Google sign-in through the authorization code flow or a client obtained id_token.

    The id_token is checked by Google's tokeninfo endpoint, then its claims are
    matched against our client id.
    """
    provider = AuthProvider.GOOGLE

    def __init__(self, http_client: httpx.AsyncClient, *, client_id: str, client_secret: str = "",
                 redirect_uri: str = "", token_url: str, tokeninfo_url: str,
                 timeout: float = 5.0, clock: Callable = now):
        self.http = http_client
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.token_url = token_url
        self.tokeninfo_url = tokeninfo_url
        self.timeout = timeout
        self.clock = clock

    async def verify(self, proof: GoogleLogin) -> VerifiedIdentity:
        if not self.client_id:
            raise ProviderUnavailable("Google login is not configured")

        id_token = proof.id_token
        if proof.code:
            id_token = await self._exchange_code(proof.code, proof.redirect_uri or self.redirect_uri)

        claims = await self._call("GET", self.tokeninfo_url, params={"id_token": id_token})
        self._check_claims(claims)

        email = claims.get("email") if str(claims.get("email_verified", "")).lower() == "true" else None
        return VerifiedIdentity(
            provider=AuthProvider.GOOGLE,
            external_id=str(claims["sub"]),
            profile=ProfileSnapshot(name=claims.get("name"), image_url=claims.get("picture"), email=email),
        )

    async def _exchange_code(self, code: str, redirect_uri: Optional[str]) -> str:
        data = {
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }
        tokens = await self._call("POST", self.token_url, data=data)
        id_token = tokens.get("id_token")
        if not id_token:
            raise InvalidToken("Google did not return an id_token")
        return id_token

    def _check_claims(self, claims: dict) -> None:
        if claims.get("aud") != self.client_id:
            raise InvalidToken("Token was issued for another client")
        if claims.get("iss") not in GOOGLE_ISSUERS:
            raise InvalidToken("Unexpected token issuer")
        if not claims.get("sub"):
            raise InvalidToken("Token has no subject")
        try:
            exp = int(claims.get("exp", 0))
        except (TypeError, ValueError):
            raise InvalidToken("Malformed token expiry")
        if exp <= int(self.clock().timestamp()):
            raise InvalidToken("Token expired")

    async def _call(self, method: str, url: str, **kwargs) -> dict:
        try:
            resp = await self.http.request(method, url, timeout=self.timeout, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("auth.google.timeout", extra={"url": url, "error": str(e)})
            raise ProviderUnavailable("Google did not respond in time")
        except httpx.TransportError as e:
            logger.warning("auth.google.transport_error", extra={"url": url, "error": str(e)})
            raise ProviderUnavailable()

        if resp.status_code >= 500:
            logger.warning("auth.google.upstream_error", extra={"url": url, "status_code": resp.status_code})
            raise ProviderUnavailable()
        if resp.status_code >= 400:
            logger.info("auth.google.rejected", extra={"url": url, "status_code": resp.status_code})
            raise InvalidToken("Google rejected the token")
        try:
            body = resp.json()
        except ValueError:
            raise ProviderUnavailable("Unreadable response from Google")
        if not isinstance(body, dict):
            raise ProviderUnavailable("Unreadable response from Google")
        return body
