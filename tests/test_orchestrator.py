import pytest
from inbola_auth.auth.errors import (AccountDisabled, DeliveryFailed, InvalidCredentials, InvalidProof,
                                     InvalidRequest, LastBinding, NotFound, RateLimited, SecurityViolation,
                                     TooSoon)
from inbola_auth.auth.models import GoogleLogin, PasswordLogin, PhoneOtpLogin, TelegramLogin
from inbola_auth.auth.verifiers.telegram import telegram_signature
from inbola_auth.main import build_orchestrator
from inbola_auth.notifications.sms import ConsoleSmsSender, SmsSender
from inbola_auth.schema.full_schema import AuthProvider, OtpPurpose
from conftest import BOT_TOKEN, PHONE
from test_password_verifier import set_account

NEW_PASSWORD = "Yangi#Parol9"


class BrokenSmsSender(SmsSender):
    async def send(self, phone: str, code: str) -> None:
        raise DeliveryFailed()


@pytest.fixture
def make_orchestrator(settings, admin_settings, session_maker, cache, http_client, sms, clock, password_context):
    def _make(settings=settings, admin=admin_settings, sms_sender=sms):
        return build_orchestrator(settings, admin, session_maker=session_maker, cache=cache,
                                  http_client=http_client, sms_sender=sms_sender, clock=clock,
                                  password_context=password_context)
    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


def wrong_code_for(code: str) -> str:
    return "000000" if code != "000000" else "999999"


def telegram_payload(clock, user_id=987654321) -> TelegramLogin:
    fields = {"id": user_id, "first_name": "Jasur", "auth_date": int(clock().timestamp())}
    return TelegramLogin(**fields, hash=telegram_signature(fields, BOT_TOKEN))


async def phone_login(orchestrator, clock, purpose=OtpPurpose.LOGIN, phone=PHONE):
    dispatch = await orchestrator.send_otp(phone, purpose, client_ip="10.0.0.1")
    return await orchestrator.login(PhoneOtpLogin(phone=phone, code=dispatch.dev_code, purpose=purpose),
                                    client_ip="10.0.0.1", user_agent="pytest")


@pytest.mark.asyncio
async def test_phone_registration_end_to_end(orchestrator, sms):
    dispatch = await orchestrator.send_otp("+998 90 123 45 67", OtpPurpose.REGISTRATION, client_ip="10.0.0.1")

    assert sms.sent == [(PHONE, dispatch.dev_code)]
    assert dispatch.expires_in == 300
    assert dispatch.resend_after == 60

    with pytest.raises(InvalidProof) as exc:
        await orchestrator.login(PhoneOtpLogin(phone=PHONE, code=wrong_code_for(dispatch.dev_code),
                                               purpose=OtpPurpose.REGISTRATION))
    assert exc.value.remaining_attempts == 4

    result = await orchestrator.login(PhoneOtpLogin(phone=PHONE, code=dispatch.dev_code,
                                                    purpose=OtpPurpose.REGISTRATION), client_ip="10.0.0.1")
    assert result.providers == [AuthProvider.PHONE]
    body = result.to_public()
    assert body["account"]["id"] == str(result.account.public_id)
    assert body["expiresIn"] == 900

    refreshed = await orchestrator.refresh(result.tokens.refresh_token)
    assert refreshed.account.id == result.account.id
    with pytest.raises(SecurityViolation):
        await orchestrator.refresh(result.tokens.refresh_token)


@pytest.mark.asyncio
async def test_returning_user_gets_same_account(orchestrator, clock):
    first = await phone_login(orchestrator, clock)
    clock.advance(seconds=61)
    second = await phone_login(orchestrator, clock)
    assert first.account.id == second.account.id


@pytest.mark.asyncio
async def test_code_cannot_be_used_twice(orchestrator):
    dispatch = await orchestrator.send_otp(PHONE, OtpPurpose.LOGIN)
    request = PhoneOtpLogin(phone=PHONE, code=dispatch.dev_code)
    await orchestrator.login(request)

    with pytest.raises(NotFound):
        await orchestrator.login(request)


@pytest.mark.asyncio
async def test_resend_too_soon(orchestrator, clock):
    await orchestrator.send_otp(PHONE, OtpPurpose.LOGIN)
    clock.advance(seconds=15)

    with pytest.raises(TooSoon) as exc:
        await orchestrator.send_otp(PHONE, OtpPurpose.LOGIN)
    assert exc.value.retry_after == 45


@pytest.mark.asyncio
async def test_registration_send_rate_limit(make_orchestrator, settings, clock):
    orchestrator = make_orchestrator(settings=settings.model_copy(update={"RL_OTP_REGISTRATION_LIMIT": 2}))
    for _ in range(2):
        await orchestrator.send_otp(PHONE, OtpPurpose.REGISTRATION)
        clock.advance(seconds=61)

    with pytest.raises(RateLimited) as exc:
        await orchestrator.send_otp(PHONE, OtpPurpose.REGISTRATION)
    assert exc.value.reason == "otp_send_registration"
    assert exc.value.retry_after > 0


@pytest.mark.asyncio
async def test_password_login_rate_limit(orchestrator, clock):
    account = (await phone_login(orchestrator, clock)).account
    await orchestrator.resolver.enroll_password(account.id, PHONE, NEW_PASSWORD)

    for _ in range(5):
        with pytest.raises(InvalidCredentials):
            await orchestrator.login(PasswordLogin(identifier=PHONE, password="Wrong#Pass1"))
    with pytest.raises(RateLimited) as exc:
        await orchestrator.login(PasswordLogin(identifier=PHONE, password=NEW_PASSWORD))
    assert exc.value.reason == "password_login"


@pytest.mark.asyncio
async def test_password_login_limit_counts_every_spelling_of_a_phone(orchestrator, clock):
    account = (await phone_login(orchestrator, clock)).account
    await orchestrator.resolver.enroll_password(account.id, PHONE, NEW_PASSWORD)
    spellings = ["+998901234567", "998901234567", "+998 90 123 45 67", "(+998) 90 123-45-67", "+998-90-123-45-67"]

    for identifier in spellings:
        with pytest.raises(InvalidCredentials):
            await orchestrator.login(PasswordLogin(identifier=identifier, password="Wrong#Pass1"))
    with pytest.raises(RateLimited) as exc:
        await orchestrator.login(PasswordLogin(identifier="+998 (90) 1234567", password=NEW_PASSWORD))
    assert exc.value.reason == "password_login"


@pytest.mark.asyncio
async def test_unparseable_identifiers_share_one_limit(orchestrator):
    for n in range(5):
        with pytest.raises(InvalidCredentials):
            await orchestrator.login(PasswordLogin(identifier=f"not-a-login-{n}", password="Wrong#Pass1"))
    with pytest.raises(RateLimited):
        await orchestrator.login(PasswordLogin(identifier="still-not-a-login", password="Wrong#Pass1"))


@pytest.mark.asyncio
async def test_phone_code_limit_counts_every_spelling(make_orchestrator, settings):
    orchestrator = make_orchestrator(settings=settings.model_copy(update={"RL_PROVIDER_LOGIN_LIMIT": 2}))
    for phone in ("+998901234567", "998 90 123 45 67"):
        with pytest.raises(NotFound):
            await orchestrator.login(PhoneOtpLogin(phone=phone, code="123456"))

    with pytest.raises(RateLimited) as exc:
        await orchestrator.login(PhoneOtpLogin(phone="+998-90-123-45-67", code="123456"))
    assert exc.value.reason == "provider_login"


@pytest.mark.asyncio
async def test_delivery_failure_releases_the_code(make_orchestrator):
    orchestrator = make_orchestrator(sms_sender=BrokenSmsSender())

    with pytest.raises(DeliveryFailed):
        await orchestrator.send_otp(PHONE, OtpPurpose.LOGIN)

    orchestrator.sms_sender = ConsoleSmsSender()
    dispatch = await orchestrator.send_otp(PHONE, OtpPurpose.LOGIN)
    assert dispatch.dev_code is not None


@pytest.mark.asyncio
async def test_dev_code_hidden_outside_dev(make_orchestrator, admin_settings, sms):
    orchestrator = make_orchestrator(admin=admin_settings.model_copy(update={"ENV": "prod"}))
    dispatch = await orchestrator.send_otp(PHONE, OtpPurpose.LOGIN)

    assert dispatch.dev_code is None
    assert "code" not in dispatch.to_public()
    assert len(sms.sent) == 1


@pytest.mark.asyncio
async def test_reset_code_cannot_log_in(orchestrator):
    dispatch = await orchestrator.send_otp(PHONE, OtpPurpose.PASSWORD_RESET)

    with pytest.raises(InvalidRequest) as exc:
        await orchestrator.login(PhoneOtpLogin(phone=PHONE, code=dispatch.dev_code,
                                               purpose=OtpPurpose.PASSWORD_RESET))
    assert exc.value.reason == "wrong_purpose"


@pytest.mark.asyncio
async def test_telegram_and_google_login(orchestrator, clock):
    by_telegram = await orchestrator.login(telegram_payload(clock))
    by_google = await orchestrator.login(GoogleLogin(code="4/0AX-code"))

    assert by_telegram.providers == [AuthProvider.TELEGRAM]
    assert by_telegram.account.name == "Jasur"
    assert by_google.account.name == "Aziza Karimova"
    assert by_google.account.id != by_telegram.account.id


@pytest.mark.asyncio
async def test_link_and_unlink(orchestrator, clock):
    account = (await orchestrator.login(telegram_payload(clock))).account
    dispatch = await orchestrator.send_otp(PHONE, OtpPurpose.LOGIN)

    view = await orchestrator.link(account, PhoneOtpLogin(phone=PHONE, code=dispatch.dev_code))
    assert sorted(p.value for p in view.providers) == ["phone", "telegram"]

    view = await orchestrator.link(account, PasswordLogin(identifier="998 90 123 45 67", password=NEW_PASSWORD))
    assert AuthProvider.PASSWORD in view.providers
    assert (await orchestrator.login(PasswordLogin(identifier=PHONE,
                                                   password=NEW_PASSWORD))).account.id == account.id

    await orchestrator.unlink(account, AuthProvider.TELEGRAM)
    await orchestrator.unlink(account, AuthProvider.PASSWORD)
    with pytest.raises(LastBinding):
        await orchestrator.unlink(account, AuthProvider.PHONE)


@pytest.mark.asyncio
async def test_disabled_provider(make_orchestrator, admin_settings, clock):
    orchestrator = make_orchestrator(admin=admin_settings.model_copy(update={"ENABLED_PROVIDERS": ["phone"]}))

    with pytest.raises(InvalidRequest) as exc:
        await orchestrator.login(telegram_payload(clock))
    assert exc.value.reason == "provider_disabled"
    assert orchestrator.providers() == {"providers": ["phone"],
                                        "phone": {"countryPrefix": "+998", "codeLength": 6}}


@pytest.mark.asyncio
async def test_disabled_account_cannot_log_in(orchestrator, clock, session_maker):
    first = await phone_login(orchestrator, clock)
    await set_account(session_maker, first.account.id, is_active=False)
    clock.advance(seconds=61)

    with pytest.raises(AccountDisabled):
        await phone_login(orchestrator, clock)
    with pytest.raises(AccountDisabled):
        await orchestrator.current_account(first.tokens.access_token)


@pytest.mark.asyncio
async def test_current_account_and_logout_all(orchestrator, clock):
    result = await phone_login(orchestrator, clock)
    account = await orchestrator.current_account(result.tokens.access_token)
    assert account.id == result.account.id

    assert await orchestrator.logout_all(account) == 1
    with pytest.raises(SecurityViolation):
        await orchestrator.refresh(result.tokens.refresh_token)


@pytest.mark.asyncio
async def test_password_reset(orchestrator, clock):
    result = await phone_login(orchestrator, clock)
    dispatch = await orchestrator.request_password_reset(PHONE, client_ip="10.0.0.1")

    await orchestrator.reset_password(PHONE, dispatch.dev_code, NEW_PASSWORD)

    with pytest.raises(SecurityViolation):
        await orchestrator.refresh(result.tokens.refresh_token)
    login = await orchestrator.login(PasswordLogin(identifier=PHONE, password=NEW_PASSWORD))
    assert login.account.id == result.account.id


@pytest.mark.asyncio
async def test_weak_reset_password_keeps_the_code(orchestrator, clock):
    await phone_login(orchestrator, clock)
    dispatch = await orchestrator.request_password_reset(PHONE)

    with pytest.raises(InvalidRequest):
        await orchestrator.reset_password(PHONE, dispatch.dev_code, "parol")
    await orchestrator.reset_password(PHONE, dispatch.dev_code, NEW_PASSWORD)


@pytest.mark.asyncio
async def test_reset_for_unknown_phone(orchestrator):
    dispatch = await orchestrator.request_password_reset("+998907654321")

    with pytest.raises(NotFound) as exc:
        await orchestrator.reset_password("+998907654321", dispatch.dev_code, NEW_PASSWORD)
    assert exc.value.reason == "no_account"


@pytest.mark.asyncio
async def test_unproven_phone_cannot_be_claimed_for_password(orchestrator, clock):
    other = (await orchestrator.login(telegram_payload(clock))).account
    with pytest.raises(InvalidRequest) as exc:
        await orchestrator.link(other, PasswordLogin(identifier=PHONE, password=NEW_PASSWORD))
    assert exc.value.reason == "unverified_identifier"

    owner = (await phone_login(orchestrator, clock)).account
    dispatch = await orchestrator.request_password_reset(PHONE)
    await orchestrator.reset_password(PHONE, dispatch.dev_code, NEW_PASSWORD)

    login = await orchestrator.login(PasswordLogin(identifier=PHONE, password=NEW_PASSWORD))
    assert login.account.id == owner.id
