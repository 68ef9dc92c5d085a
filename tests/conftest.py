from datetime import datetime, timedelta, timezone
import httpx
import pytest
from inbola_auth.auth.identity import IdentityResolver
from inbola_auth.auth.otp_store import OtpStore
from inbola_auth.auth.sessions import SessionIssuer
from inbola_auth.auth.tokens import TokenSigner
from inbola_auth.auth.utils import make_password_context
from inbola_auth.cache._cache import InMemoryCache
from inbola_auth.config.admin_config import Settings as AdminSettings
from inbola_auth.config.settings import Settings
from inbola_auth.db.connection import build_engine, build_session_maker, create_all_tables
from inbola_auth.notifications.sms import ConsoleSmsSender

PHONE = "+998901234567"
BOT_TOKEN = "123456:TEST-bot-token"
GOOGLE_CLIENT_ID = "inbola-web.apps.googleusercontent.com"
JWT_SECRET = "test-secret-key"


class FrozenClock:
    """Manually advanced clock shared by every collaborator in a test."""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class SequenceCodes:
    """Deterministic otp code generator: 111111, 222222, ..."""

    def __init__(self):
        self.issued = []

    def __call__(self, length: int) -> str:
        code = str(len(self.issued) + 1) * length
        self.issued.append(code)
        return code


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def codes():
    return SequenceCodes()


@pytest.fixture
async def engine(tmp_path):
    # file db: concurrent tests need real separate connections
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}", echo=False)
    await create_all_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture(scope="session")
def password_context():
    # cheap rounds keep the suite fast
    return make_password_context("bcrypt", 4)


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        JWT_SECRET=JWT_SECRET,
        TELEGRAM_BOT_TOKEN=BOT_TOKEN,
        TELEGRAM_BOT_USERNAME="inbola_test_bot",
        GOOGLE_CLIENT_ID=GOOGLE_CLIENT_ID,
        GOOGLE_CLIENT_SECRET="google-secret",
        GOOGLE_REDIRECT_URI="https://inbola.uz/auth/google/callback",
        PASS_HASH_ROUNDS=4,
        SMS_BACKEND="console",
        CACHE_BACKEND="memory",
        REAPER_INTERVAL_SECONDS=0,
    )


@pytest.fixture
def admin_settings():
    return AdminSettings(_env_file=None, ENV="dev")


@pytest.fixture
def sms():
    return ConsoleSmsSender()


@pytest.fixture
def otp_store(session_maker, clock, codes):
    return OtpStore(session_maker, clock=clock, code_generator=codes)


@pytest.fixture
def resolver(session_maker, clock, password_context):
    return IdentityResolver(session_maker, context=password_context, phone_prefix="+998", clock=clock)


@pytest.fixture
def signer(clock):
    return TokenSigner(JWT_SECRET, "HS256", clock=clock)


@pytest.fixture
def issuer(session_maker, signer, clock):
    return SessionIssuer(session_maker, signer, access_ttl_seconds=900,
                         refresh_ttl_seconds=7 * 24 * 3600, clock=clock)


def google_tokeninfo_handler(clock, *, sub="109876543210", aud=GOOGLE_CLIENT_ID, status_code=200):
    """httpx.MockTransport handler standing in for Google's token and tokeninfo endpoints."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/token"):
            return httpx.Response(200, json={"id_token": "exchanged-id-token", "access_token": "ya29.x"})
        if status_code != 200:
            return httpx.Response(status_code, json={"error": "invalid_token"})
        return httpx.Response(200, json={
            "iss": "https://accounts.google.com",
            "aud": aud,
            "sub": sub,
            "email": "aziza@example.com",
            "email_verified": "true",
            "name": "Aziza Karimova",
            "picture": "https://lh3.googleusercontent.com/a/photo",
            "exp": str(int(clock().timestamp()) + 3600),
        })

    return handler


@pytest.fixture
async def http_client(clock):
    client = httpx.AsyncClient(transport=httpx.MockTransport(google_tokeninfo_handler(clock)))
    yield client
    await client.aclose()
