import pytest
from inbola_auth.auth.errors import ExpiredProof, InvalidProof, ProviderUnavailable
from inbola_auth.auth.models import TelegramLogin
from inbola_auth.auth.verifiers.telegram import TelegramVerifier, data_check_string, telegram_signature
from inbola_auth.schema.full_schema import AuthProvider
from conftest import BOT_TOKEN


def widget_payload(clock, **overrides) -> dict:
    fields = {
        "id": 987654321,
        "first_name": "Jasur",
        "last_name": "Toshmatov",
        "username": "jasur_t",
        "photo_url": "https://t.me/i/userpic/320/jasur.jpg",
        "auth_date": int(clock().timestamp()),
    }
    fields.update(overrides)
    fields = {k: v for k, v in fields.items() if v is not None}
    fields["hash"] = telegram_signature(fields, BOT_TOKEN)
    return fields


@pytest.fixture
def verifier(clock):
    return TelegramVerifier(BOT_TOKEN, max_age_seconds=86400, clock=clock)


def test_data_check_string_is_sorted_and_newline_joined():
    assert data_check_string({"username": "a", "auth_date": 1, "id": 7}) == "auth_date=1\nid=7\nusername=a"


@pytest.mark.asyncio
async def test_valid_payload(verifier, clock):
    identity = await verifier.verify(TelegramLogin(**widget_payload(clock)))

    assert identity.provider == AuthProvider.TELEGRAM
    assert identity.external_id == "987654321"
    assert identity.profile.name == "Jasur Toshmatov"
    assert identity.profile.image_url.endswith("jasur.jpg")


@pytest.mark.asyncio
async def test_optional_fields_may_be_absent(verifier, clock):
    payload = widget_payload(clock, last_name=None, username=None, photo_url=None)
    identity = await verifier.verify(TelegramLogin(**payload))
    assert identity.profile.name == "Jasur"


@pytest.mark.asyncio
async def test_tampered_field_fails_signature(verifier, clock):
    payload = widget_payload(clock)
    payload["first_name"] = "Mallory"

    with pytest.raises(InvalidProof) as exc:
        await verifier.verify(TelegramLogin(**payload))
    assert exc.value.reason == "invalid_signature"


@pytest.mark.asyncio
async def test_signed_with_another_bot_fails(verifier, clock):
    payload = widget_payload(clock)
    payload["hash"] = telegram_signature({k: v for k, v in payload.items() if k != "hash"}, "999:other-bot")

    with pytest.raises(InvalidProof):
        await verifier.verify(TelegramLogin(**payload))


@pytest.mark.asyncio
async def test_stale_auth_date_is_expired(verifier, clock):
    payload = widget_payload(clock, auth_date=int(clock().timestamp()) - 25 * 3600)

    with pytest.raises(ExpiredProof) as exc:
        await verifier.verify(TelegramLogin(**payload))
    assert exc.value.reason == "stale_auth"


@pytest.mark.asyncio
async def test_auth_date_in_the_future_rejected(verifier, clock):
    payload = widget_payload(clock, auth_date=int(clock().timestamp()) + 3600)

    with pytest.raises(InvalidProof) as exc:
        await verifier.verify(TelegramLogin(**payload))
    assert exc.value.reason == "future_auth_date"


@pytest.mark.asyncio
async def test_unconfigured_bot_is_unavailable(clock):
    with pytest.raises(ProviderUnavailable):
        await TelegramVerifier("", clock=clock).verify(TelegramLogin(**widget_payload(clock)))
