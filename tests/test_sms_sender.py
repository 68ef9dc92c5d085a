import httpx
import pytest
from inbola_auth.auth.errors import DeliveryFailed
from inbola_auth.cache._cache import InMemoryCache
from inbola_auth.notifications.sms import ConsoleSmsSender, EskizSmsSender, build_sms_sender
from conftest import PHONE

BASE_URL = "https://notify.eskiz.uz/api"


class FakeEskiz:
    """Login hands out numbered tokens; sending accepts only ``valid_token``."""

    def __init__(self, valid_token="token-1", send_status=200):
        self.logins = 0
        self.messages = []
        self.valid_token = valid_token
        self.send_status = send_status

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/auth/login"):
            self.logins += 1
            return httpx.Response(200, json={"message": "token_generated",
                                             "data": {"token": f"token-{self.logins}"}})
        if request.headers["Authorization"] != f"Bearer {self.valid_token}":
            return httpx.Response(401, json={"message": "Expired"})
        self.messages.append(request.content.decode())
        return httpx.Response(self.send_status, json={"id": "sms-1", "status": "waiting"})


def make_sender(fake, cache=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    return EskizSmsSender(client, cache or InMemoryCache(), base_url=BASE_URL,
                          email="ops@inbola.uz", password="secret", sender="4546")


@pytest.mark.asyncio
async def test_sends_message_and_caches_token():
    fake = FakeEskiz()
    sender = make_sender(fake)

    await sender.send(PHONE, "123456")
    await sender.send(PHONE, "654321")

    assert fake.logins == 1
    assert len(fake.messages) == 2
    assert "mobile_phone=998901234567" in fake.messages[0]
    assert "123456" in fake.messages[0]


@pytest.mark.asyncio
async def test_expired_token_is_renewed_once():
    fake = FakeEskiz(valid_token="token-2")
    sender = make_sender(fake)

    await sender.send(PHONE, "123456")
    assert fake.logins == 2
    assert len(fake.messages) == 1


@pytest.mark.asyncio
async def test_rejected_message_is_delivery_failure():
    sender = make_sender(FakeEskiz(send_status=400))
    with pytest.raises(DeliveryFailed):
        await sender.send(PHONE, "123456")


@pytest.mark.asyncio
async def test_gateway_unreachable_is_delivery_failure():
    def handler(request):
        raise httpx.ConnectError("no route to host", request=request)

    with pytest.raises(DeliveryFailed):
        await make_sender(handler).send(PHONE, "123456")


@pytest.mark.asyncio
async def test_console_sender_records_codes():
    sender = ConsoleSmsSender()
    await sender.send(PHONE, "123456")
    assert sender.sent == [(PHONE, "123456")]


def test_build_sms_sender(settings):
    client = httpx.AsyncClient()
    assert isinstance(build_sms_sender(settings, client, InMemoryCache()), ConsoleSmsSender)
    eskiz = settings.model_copy(update={"SMS_BACKEND": "eskiz"})
    assert isinstance(build_sms_sender(eskiz, client, InMemoryCache()), EskizSmsSender)
