from typing import Optional
from fastapi import APIRouter, Depends, status
from inbola_auth.auth.constants import COOKIE_NAME, REFRESH_TOKEN_TTL_SECONDS, logger
from inbola_auth.auth.dependencies import client_ip, current_account, get_orchestrator, refresh_token, user_agent
from inbola_auth.auth.models import (AuthResult, GoogleLogin, LoginBody, OtpSendIn, PasswordLogin,
                                     PasswordResetConfirmIn, PasswordResetRequestIn, PhoneOtpLogin,
                                     TelegramLogin)
from inbola_auth.auth.services import AuthOrchestrator
from inbola_auth.common.constants import VERSION_PREFIX, request_id_ctx
from inbola_auth.common.utils import success_response
from inbola_auth.config.admin_config import admin_config
from inbola_auth.schema.full_schema import AuthProvider, Users

current_env = admin_config.ENV
secure_flag = False if current_env == "dev" else True

REFRESH_COOKIE_PATH = f"{VERSION_PREFIX}/auth"

auth_router = APIRouter()


def _respond(data: dict, status_code: int = 200):
    return success_response(data, status_code, request_id=request_id_ctx.get(None))


def _token_response(result: AuthResult, status_code: int = 200):
    response = _respond(result.to_public(), status_code)
    response.set_cookie(COOKIE_NAME, result.tokens.refresh_token, httponly=True, secure=secure_flag,
                        path=REFRESH_COOKIE_PATH, max_age=int(REFRESH_TOKEN_TTL_SECONDS), samesite="Lax")
    return response


async def _login(payload, orchestrator: AuthOrchestrator, ip: Optional[str], ua: Optional[str]):
    result = await orchestrator.login(payload, client_ip=ip, user_agent=ua)
    return _token_response(result)


@auth_router.get("/providers")
async def list_providers(orchestrator: AuthOrchestrator = Depends(get_orchestrator)):
    return _respond(orchestrator.providers())


@auth_router.post("/otp/send")
async def send_otp(payload: OtpSendIn, orchestrator: AuthOrchestrator = Depends(get_orchestrator),
                   ip: Optional[str] = Depends(client_ip)):
    dispatch = await orchestrator.send_otp(payload.phone, payload.purpose, client_ip=ip)
    return _respond(dispatch.to_public())


@auth_router.post("/login/phone")
async def login_phone(payload: PhoneOtpLogin, orchestrator: AuthOrchestrator = Depends(get_orchestrator),
                      ip: Optional[str] = Depends(client_ip), ua: Optional[str] = Depends(user_agent)):
    return await _login(payload, orchestrator, ip, ua)


@auth_router.post("/login/telegram")
async def login_telegram(payload: TelegramLogin, orchestrator: AuthOrchestrator = Depends(get_orchestrator),
                         ip: Optional[str] = Depends(client_ip), ua: Optional[str] = Depends(user_agent)):
    return await _login(payload, orchestrator, ip, ua)


@auth_router.post("/login/google")
async def login_google(payload: GoogleLogin, orchestrator: AuthOrchestrator = Depends(get_orchestrator),
                       ip: Optional[str] = Depends(client_ip), ua: Optional[str] = Depends(user_agent)):
    return await _login(payload, orchestrator, ip, ua)


@auth_router.post("/login/password")
async def login_password(payload: PasswordLogin, orchestrator: AuthOrchestrator = Depends(get_orchestrator),
                         ip: Optional[str] = Depends(client_ip), ua: Optional[str] = Depends(user_agent)):
    return await _login(payload, orchestrator, ip, ua)


@auth_router.post("/refresh")
async def refresh_auth(token: str = Depends(refresh_token),
                       orchestrator: AuthOrchestrator = Depends(get_orchestrator),
                       ip: Optional[str] = Depends(client_ip), ua: Optional[str] = Depends(user_agent)):
    result = await orchestrator.refresh(token, client_ip=ip, user_agent=ua)
    return _token_response(result)


@auth_router.post("/logout")
async def logout(token: str = Depends(refresh_token), orchestrator: AuthOrchestrator = Depends(get_orchestrator)):
    await orchestrator.logout(token)
    response = _respond({"message": "Logged out successfully."})
    response.delete_cookie(key=COOKIE_NAME, path=REFRESH_COOKIE_PATH)
    return response


@auth_router.post("/logout-all")
async def logout_all(account: Users = Depends(current_account),
                     orchestrator: AuthOrchestrator = Depends(get_orchestrator)):
    count = await orchestrator.logout_all(account)
    logger.info("logout_all.success", extra={"account_public_id": str(account.public_id), "count": count})
    response = _respond({"message": "All sessions revoked.", "revoked": count})
    response.delete_cookie(key=COOKIE_NAME, path=REFRESH_COOKIE_PATH)
    return response


@auth_router.get("/me")
async def me(account: Users = Depends(current_account), orchestrator: AuthOrchestrator = Depends(get_orchestrator)):
    view = await orchestrator.account_view(account)
    return _respond({"account": view.to_public()})


@auth_router.post("/link")
async def link_provider(payload: LoginBody, account: Users = Depends(current_account),
                        orchestrator: AuthOrchestrator = Depends(get_orchestrator),
                        ip: Optional[str] = Depends(client_ip)):
    view = await orchestrator.link(account, payload.root, client_ip=ip)
    return _respond({"account": view.to_public()})


@auth_router.delete("/link/{provider}")
async def unlink_provider(provider: AuthProvider, account: Users = Depends(current_account),
                          orchestrator: AuthOrchestrator = Depends(get_orchestrator)):
    view = await orchestrator.unlink(account, provider)
    return _respond({"account": view.to_public()})


@auth_router.post("/password/reset/request", status_code=status.HTTP_202_ACCEPTED)
async def password_reset_request(payload: PasswordResetRequestIn,
                                 orchestrator: AuthOrchestrator = Depends(get_orchestrator),
                                 ip: Optional[str] = Depends(client_ip)):
    dispatch = await orchestrator.request_password_reset(payload.phone, client_ip=ip)
    return _respond(dispatch.to_public(), status.HTTP_202_ACCEPTED)


@auth_router.post("/password/reset/confirm")
async def password_reset_confirm(payload: PasswordResetConfirmIn,
                                 orchestrator: AuthOrchestrator = Depends(get_orchestrator)):
    await orchestrator.reset_password(payload.phone, payload.code, payload.new_password)
    response = _respond({"message": "Password updated, log in again."})
    response.delete_cookie(key=COOKIE_NAME, path=REFRESH_COOKIE_PATH)
    return response
