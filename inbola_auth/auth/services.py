import enum
from typing import Dict, Iterable, Optional
from inbola_auth.auth.constants import REVOKED_BY_LOGOUT_ALL, REVOKED_BY_PASSWORD_RESET, logger
from inbola_auth.auth.errors import AccountDisabled, AuthError, DeliveryFailed, InvalidRequest, NotFound
from inbola_auth.auth.identity import IdentityResolver
from inbola_auth.auth.models import (METHOD_PROVIDERS, AccountView, AuthResult, OtpDispatch,
                                     PasswordLogin, PhoneOtpLogin)
from inbola_auth.auth.otp_store import OtpStore
from inbola_auth.auth.sessions import SessionIssuer
from inbola_auth.auth.utils import normalize_identifier, normalize_phone
from inbola_auth.auth.verifiers.base import Verifier
from inbola_auth.notifications.sms import SmsSender
from inbola_auth.rate_limiting.constants import RateLimitPolicies
from inbola_auth.rate_limiting.rate_limit_fixed_window import RateLimiter
from inbola_auth.schema.full_schema import AuthProvider, OtpPurpose, Users

UNPARSEABLE_LIMIT_KEY = "unparseable"


class LoginState(str, enum.Enum):
    START = "start"
    VERIFYING = "verifying"
    RESOLVING = "resolving"
    ISSUING = "issuing"
    DONE = "done"
    FAILED = "failed"


class LoginAttempt:
    """Tracks one login through its states; only lives for the duration of the request."""

    def __init__(self, provider: AuthProvider, flow: str = "login"):
        self.provider = provider
        self.flow = flow
        self.state = LoginState.START

    def advance(self, state: LoginState) -> None:
        logger.debug("auth.login.state", extra={"flow": self.flow, "provider": self.provider.value,
                                                "from_state": self.state.value, "to_state": state.value})
        self.state = state

    def fail(self, error: AuthError) -> None:
        logger.info("auth.login.failed", extra={"flow": self.flow, "provider": self.provider.value,
                                                "at_state": self.state.value, "error_kind": error.kind,
                                                "reason": error.reason})
        self.state = LoginState.FAILED


class AuthOrchestrator:
    """Entry point for every login, link, refresh and OTP flow.

    Picks the verifier for the requested method, applies the rate limits of that
    method, then runs verifier -> identity resolver -> session issuer. Errors from
    each step propagate with their own kind; password login is the only place
    where failures are deliberately collapsed (inside the password verifier).
    """

    def __init__(self, *, verifiers: Dict[AuthProvider, Verifier], otp_store: OtpStore,
                 resolver: IdentityResolver, issuer: SessionIssuer, rate_limiter: RateLimiter,
                 policies: RateLimitPolicies, sms_sender: SmsSender,
                 enabled_providers: Iterable[str], phone_prefix: str = "",
                 expose_dev_code: bool = False, provider_config: Optional[dict] = None):
        self.verifiers = verifiers
        self.otp_store = otp_store
        self.resolver = resolver
        self.issuer = issuer
        self.rate_limiter = rate_limiter
        self.policies = policies
        self.sms_sender = sms_sender
        self.enabled = [AuthProvider(p) for p in enabled_providers]
        self.phone_prefix = phone_prefix
        self.expose_dev_code = expose_dev_code
        self.provider_config = provider_config or {}

    # -- login / link -------------------------------------------------------------

    async def login(self, request, *, client_ip: Optional[str] = None,
                    user_agent: Optional[str] = None) -> AuthResult:
        provider = METHOD_PROVIDERS[request.method]
        self._ensure_enabled(provider)
        if isinstance(request, PhoneOtpLogin) and request.purpose == OtpPurpose.PASSWORD_RESET:
            raise InvalidRequest("Password reset codes cannot be used to log in", reason="wrong_purpose")
        await self._limit_login(provider, request, client_ip)

        attempt = LoginAttempt(provider)
        try:
            attempt.advance(LoginState.VERIFYING)
            identity = await self.verifiers[provider].verify(request)

            attempt.advance(LoginState.RESOLVING)
            account = await self.resolver.resolve(identity)
            if not account.is_active:
                raise AccountDisabled()

            attempt.advance(LoginState.ISSUING)
            tokens = await self.issuer.issue_for(account, provider, user_agent=user_agent, ip=client_ip)
            providers = await self.resolver.providers_for(account.id)
        except AuthError as e:
            attempt.fail(e)
            raise

        attempt.advance(LoginState.DONE)
        logger.info("auth.login.succeeded", extra={"provider": provider.value,
                                                   "account_public_id": str(account.public_id)})
        return AuthResult(account=account, providers=providers, tokens=tokens)

    async def link(self, account: Users, request, *, client_ip: Optional[str] = None) -> AccountView:
        """Binds another provider identity to an already authenticated account."""
        provider = METHOD_PROVIDERS[request.method]
        self._ensure_enabled(provider)
        if isinstance(request, PhoneOtpLogin) and request.purpose == OtpPurpose.PASSWORD_RESET:
            raise InvalidRequest("Password reset codes cannot be used here", reason="wrong_purpose")
        await self._limit_login(provider, request, client_ip)

        attempt = LoginAttempt(provider, flow="link")
        try:
            if isinstance(request, PasswordLogin):
                attempt.advance(LoginState.RESOLVING)
                linked = await self.resolver.enroll_password(account.id, request.identifier, request.password)
            else:
                attempt.advance(LoginState.VERIFYING)
                identity = await self.verifiers[provider].verify(request)
                attempt.advance(LoginState.RESOLVING)
                linked = await self.resolver.resolve(identity, link_to_account_id=account.id)
        except AuthError as e:
            attempt.fail(e)
            raise

        attempt.advance(LoginState.DONE)
        return AccountView(account=linked, providers=await self.resolver.providers_for(account.id))

    async def unlink(self, account: Users, provider: AuthProvider) -> AccountView:
        await self.resolver.unlink(account.id, provider)
        return AccountView(account=account, providers=await self.resolver.providers_for(account.id))

    # -- otp delivery -------------------------------------------------------------

    async def send_otp(self, phone: str, purpose: OtpPurpose, *, client_ip: Optional[str] = None) -> OtpDispatch:
        if purpose == OtpPurpose.PASSWORD_RESET:
            return await self.request_password_reset(phone, client_ip=client_ip)
        self._ensure_enabled(AuthProvider.PHONE)
        phone = normalize_phone(phone, self.phone_prefix)

        await self.rate_limiter.check(self.policies.otp_send, phone)
        if purpose == OtpPurpose.REGISTRATION:
            await self.rate_limiter.check(self.policies.otp_send_registration, phone)

        return await self._issue_and_deliver(phone, purpose)

    async def request_password_reset(self, phone: str, *, client_ip: Optional[str] = None) -> OtpDispatch:
        """Sends a reset code whether or not the phone belongs to an account."""
        phone = normalize_phone(phone, self.phone_prefix)
        await self.rate_limiter.check(self.policies.password_reset, phone)
        return await self._issue_and_deliver(phone, OtpPurpose.PASSWORD_RESET)

    async def reset_password(self, phone: str, code: str, new_password: str) -> None:
        phone = normalize_phone(phone, self.phone_prefix)
        # reject a weak password before the code gets consumed
        self.resolver.check_password_policy(new_password)
        await self.otp_store.verify(phone, OtpPurpose.PASSWORD_RESET, code)

        account = (await self.resolver.account_for(AuthProvider.PHONE, phone)
                   or await self.resolver.account_for(AuthProvider.PASSWORD, phone))
        if account is None:
            raise NotFound("No account uses this phone number", reason="no_account")
        if not account.is_active:
            raise AccountDisabled()

        await self.resolver.set_password(account.id, new_password, identifier=phone)
        await self.issuer.revoke_all(account.id, REVOKED_BY_PASSWORD_RESET)
        logger.info("auth.password.reset", extra={"account_public_id": str(account.public_id)})

    async def _issue_and_deliver(self, phone: str, purpose: OtpPurpose) -> OtpDispatch:
        issued = await self.otp_store.issue(phone, purpose)
        try:
            await self.sms_sender.send(phone, issued.code)
        except DeliveryFailed:
            await self.otp_store.invalidate(phone, purpose)
            logger.warning("auth.otp.delivery_failed", extra={"phone": phone, "purpose": purpose.value})
            raise
        return OtpDispatch(expires_in=issued.expires_in, resend_after=issued.resend_after,
                           dev_code=issued.code if self.expose_dev_code else None)

    # -- sessions -----------------------------------------------------------------

    async def refresh(self, refresh_token: str, *, client_ip: Optional[str] = None,
                      user_agent: Optional[str] = None) -> AuthResult:
        account, tokens = await self.issuer.refresh(refresh_token, user_agent=user_agent, ip=client_ip)
        return AuthResult(account=account, providers=await self.resolver.providers_for(account.id), tokens=tokens)

    async def logout(self, refresh_token: str) -> bool:
        return await self.issuer.revoke(refresh_token)

    async def logout_all(self, account: Users) -> int:
        return await self.issuer.revoke_all(account.id, REVOKED_BY_LOGOUT_ALL)

    async def current_account(self, access_token: str) -> Users:
        claims = self.issuer.authenticate(access_token)
        account = await self.resolver.get_account(claims["sub"])
        if not account.is_active:
            raise AccountDisabled()
        return account

    async def account_view(self, account: Users) -> AccountView:
        return AccountView(account=account, providers=await self.resolver.providers_for(account.id))

    # -- config -------------------------------------------------------------------

    def providers(self) -> dict:
        enabled = [p.value for p in self.enabled]
        return {
            "providers": enabled,
            **{name: cfg for name, cfg in self.provider_config.items() if name in enabled},
        }

    def _ensure_enabled(self, provider: AuthProvider) -> None:
        if provider not in self.enabled:
            raise InvalidRequest(f"{provider.value} login is disabled", reason="provider_disabled")

    def _limit_key(self, normalize, value: str) -> str:
        # every spelling of one identifier shares a counter, unparseable input shares one too
        try:
            return normalize(value, self.phone_prefix)
        except InvalidRequest:
            return UNPARSEABLE_LIMIT_KEY

    async def _limit_login(self, provider: AuthProvider, request, client_ip: Optional[str]) -> None:
        if provider == AuthProvider.PASSWORD:
            key = self._limit_key(normalize_identifier, request.identifier)
            await self.rate_limiter.check(self.policies.password_login, key)
        elif provider == AuthProvider.PHONE:
            key = self._limit_key(normalize_phone, request.phone)
            await self.rate_limiter.check(self.policies.provider_login, f"{provider.value}:{key}")
        if client_ip:
            await self.rate_limiter.check(self.policies.provider_login, f"{provider.value}:{client_ip}")
