from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Callable, Optional
import httpx
from fastapi import FastAPI
from passlib.context import CryptContext
from inbola_auth import __version__
from inbola_auth.api.routers import public_routers
from inbola_auth.auth.identity import IdentityResolver
from inbola_auth.auth.otp_store import OtpStore
from inbola_auth.auth.services import AuthOrchestrator
from inbola_auth.auth.sessions import SessionIssuer
from inbola_auth.auth.tokens import TokenSigner
from inbola_auth.auth.utils import make_password_context
from inbola_auth.auth.verifiers.google import GoogleVerifier
from inbola_auth.auth.verifiers.password import PasswordVerifier
from inbola_auth.auth.verifiers.phone import PhoneOtpVerifier
from inbola_auth.auth.verifiers.telegram import TelegramVerifier
from inbola_auth.background_workers.reaper import Reaper
from inbola_auth.cache._cache import KeyValueCache, build_cache
from inbola_auth.common.custom_exceptions import register_all_exceptions
from inbola_auth.common.logging_setup import get_logger, setup_logging, shutdown_logging
from inbola_auth.common.utils import now
from inbola_auth.config.admin_config import Settings as AdminSettings, admin_config
from inbola_auth.config.settings import Settings, config_settings
from inbola_auth.db.connection import build_engine, build_session_maker, create_all_tables
from inbola_auth.middlewares.request_id_middleware import RequestIdMiddleware
from inbola_auth.notifications.sms import SmsSender, build_sms_sender
from inbola_auth.rate_limiting.constants import RateLimitPolicies
from inbola_auth.rate_limiting.rate_limit_fixed_window import RateLimiter
from inbola_auth.schema.full_schema import AuthProvider

logger = get_logger("inbola.app")


def build_orchestrator(settings: Settings, admin: AdminSettings, *, session_maker, cache: KeyValueCache,
                       http_client: httpx.AsyncClient, sms_sender: Optional[SmsSender] = None,
                       clock: Callable = now, password_context: Optional[CryptContext] = None) -> AuthOrchestrator:
    """Wires the auth core from settings. Every collaborator is explicit, nothing is module global."""
    context = password_context or make_password_context(settings.PASS_HASH_SCHEME, settings.PASS_HASH_ROUNDS)
    prefix = settings.PHONE_COUNTRY_PREFIX

    otp_store = OtpStore(session_maker, code_length=settings.OTP_LENGTH, ttl_seconds=settings.OTP_TTL_SECONDS,
                         resend_interval_seconds=settings.OTP_RESEND_INTERVAL_SECONDS,
                         max_attempts=settings.OTP_MAX_ATTEMPTS, clock=clock)
    verifiers = {
        AuthProvider.PHONE: PhoneOtpVerifier(otp_store, prefix),
        AuthProvider.TELEGRAM: TelegramVerifier(settings.TELEGRAM_BOT_TOKEN,
                                                settings.TELEGRAM_AUTH_MAX_AGE_SECONDS, clock=clock),
        AuthProvider.GOOGLE: GoogleVerifier(http_client, client_id=settings.GOOGLE_CLIENT_ID,
                                            client_secret=settings.GOOGLE_CLIENT_SECRET,
                                            redirect_uri=settings.GOOGLE_REDIRECT_URI,
                                            token_url=settings.GOOGLE_TOKEN_URL,
                                            tokeninfo_url=settings.GOOGLE_TOKENINFO_URL,
                                            timeout=settings.PROVIDER_TIMEOUT_SECONDS, clock=clock),
        AuthProvider.PASSWORD: PasswordVerifier(session_maker, context=context,
                                                admin_only=admin.PASSWORD_LOGIN_ADMIN_ONLY, phone_prefix=prefix),
    }
    signer = TokenSigner(settings.JWT_SECRET, settings.JWT_ALGO, clock=clock)
    issuer = SessionIssuer(session_maker, signer,
                           access_ttl_seconds=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
                           refresh_ttl_seconds=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 3600, clock=clock)
    provider_config = {
        "phone": {"countryPrefix": prefix, "codeLength": settings.OTP_LENGTH},
        "telegram": {"botUsername": settings.TELEGRAM_BOT_USERNAME},
        "google": {"clientId": settings.GOOGLE_CLIENT_ID, "redirectUri": settings.GOOGLE_REDIRECT_URI},
        "password": {"adminOnly": admin.PASSWORD_LOGIN_ADMIN_ONLY},
    }
    return AuthOrchestrator(
        verifiers=verifiers,
        otp_store=otp_store,
        resolver=IdentityResolver(session_maker, context=context, phone_prefix=prefix, clock=clock),
        issuer=issuer,
        rate_limiter=RateLimiter(cache),
        policies=RateLimitPolicies.from_settings(settings),
        sms_sender=sms_sender or build_sms_sender(settings, http_client, cache),
        enabled_providers=admin.ENABLED_PROVIDERS,
        phone_prefix=prefix,
        expose_dev_code=admin.ENV == "dev",
        provider_config=provider_config,
    )


def create_app(settings: Settings = config_settings, admin: AdminSettings = admin_config, *,
               engine=None, session_maker=None, cache: Optional[KeyValueCache] = None,
               http_client: Optional[httpx.AsyncClient] = None, sms_sender: Optional[SmsSender] = None,
               clock: Callable = now, password_context: Optional[CryptContext] = None,
               create_tables: Optional[bool] = None, configure_logging: bool = True) -> FastAPI:
    """Composition root. Anything passed in is used as is and left open on shutdown."""

    @asynccontextmanager
    async def app_lifespan(app: FastAPI):
        if configure_logging:
            setup_logging()

        db_engine = engine or build_engine(settings.DATABASE_URL, settings.DB_ECHO)
        sessions = session_maker or build_session_maker(db_engine)
        if (admin.ENV == "dev" if create_tables is None else create_tables):
            await create_all_tables(db_engine)
        kv = cache or build_cache(settings)
        http = http_client or httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS)

        app.state.session_maker = sessions
        app.state.cache = kv
        app.state.orchestrator = build_orchestrator(settings, admin, session_maker=sessions, cache=kv,
                                                    http_client=http, sms_sender=sms_sender, clock=clock,
                                                    password_context=password_context)

        reaper = None
        if settings.REAPER_INTERVAL_SECONDS > 0:
            reaper = Reaper(sessions, interval_seconds=settings.REAPER_INTERVAL_SECONDS,
                            grace=timedelta(hours=settings.REAPER_GRACE_HOURS), clock=clock)
            reaper.start()
        logger.info("app.started", extra={"env": admin.ENV, "providers": admin.ENABLED_PROVIDERS})

        try:
            yield
        finally:
            # new requests are no longer accepted at this point
            if reaper is not None:
                await reaper.shutdown()
            if http_client is None:
                await http.aclose()
            if cache is None:
                await kv.close()
            if engine is None:
                await db_engine.dispose()
            if configure_logging:
                shutdown_logging()

    app = FastAPI(
        title="Inbola Auth",
        version=__version__,
        lifespan=app_lifespan)

    app.include_router(public_routers)
    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)

    return app

app = create_app()
