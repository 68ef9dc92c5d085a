from typing import Optional
from fastapi import Body, Cookie, Header, Request
from fastapi.security import HTTPBearer, http
from inbola_auth.auth.constants import COOKIE_NAME, REFRESH_HEADER
from inbola_auth.auth.errors import InvalidToken, NotFound
from inbola_auth.auth.models import RefreshIn
from inbola_auth.auth.services import AuthOrchestrator
from inbola_auth.schema.full_schema import Users


def get_orchestrator(request: Request) -> AuthOrchestrator:
    return request.app.state.orchestrator


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()[:64]
    return request.client.host if request.client else None


def user_agent(request: Request) -> Optional[str]:
    ua = request.headers.get("user-agent")
    return ua[:512] if ua else None


def refresh_token(refresh_header: Optional[str] = Header(None, alias=REFRESH_HEADER),
                  refresh_cookie: Optional[str] = Cookie(None, alias=COOKIE_NAME),
                  body: Optional[RefreshIn] = Body(None)) -> str:
    token = refresh_header or refresh_cookie or (body.refresh_token if body else None)
    if not token:
        raise NotFound("Missing refresh token", reason="missing_refresh_token")
    return token


class Authentication(HTTPBearer):
    """Bearer access token -> active account."""

    def __init__(self, auto_error=False):
        super().__init__(auto_error=auto_error)

    async def __call__(self, request: Request) -> Users:
        auth_creds: Optional[http.HTTPAuthorizationCredentials] = await super().__call__(request)
        if not auth_creds or not auth_creds.credentials:
            raise InvalidToken("Missing bearer token")
        return await get_orchestrator(request).current_account(auth_creds.credentials)


current_account = Authentication()
