from typing import Optional
import httpx
from inbola_auth.auth.errors import DeliveryFailed
from inbola_auth.cache._cache import KeyValueCache
from inbola_auth.cache.utils import build_key
from inbola_auth.common.logging_setup import get_logger
from inbola_auth.config.settings import Settings

logger = get_logger("inbola.sms")

OTP_MESSAGE = "INBOLA tasdiqlash kodi: {code}. Kodni hech kimga bermang!"

# eskiz tokens live for 30 days, refresh a day early
ESKIZ_TOKEN_TTL_SECONDS = 29 * 24 * 3600


class SmsSender:
    """Delivers a one-time code. Raises DeliveryFailed when the message was not accepted."""

    async def send(self, phone: str, code: str) -> None:
        raise NotImplementedError


class ConsoleSmsSender(SmsSender):
    """Development sender, writes the code to the log instead of sending it."""

    def __init__(self):
        self.sent = []

    async def send(self, phone: str, code: str) -> None:
        self.sent.append((phone, code))
        logger.info("sms.console", extra={"phone": phone, "code": code})


class EskizSmsSender(SmsSender):
    """notify.eskiz.uz gateway. The bearer token is kept in the shared cache."""

    def __init__(self, http_client: httpx.AsyncClient, cache: KeyValueCache, *, base_url: str,
                 email: str, password: str, sender: str = "4546", timeout: float = 5.0):
        self.http = http_client
        self.cache = cache
        self.base_url = base_url.rstrip("/")
        self.email = email
        self.password = password
        self.sender = sender
        self.timeout = timeout
        self._token_key = build_key("eskiz", "token")

    async def send(self, phone: str, code: str) -> None:
        payload = {
            "mobile_phone": phone.lstrip("+"),
            "message": OTP_MESSAGE.format(code=code),
            "from": self.sender,
        }
        resp = await self._post_message(payload, await self._token())
        if resp.status_code == 401:
            # token revoked or expired on their side, log in again once
            await self.cache.invalidate(self._token_key)
            resp = await self._post_message(payload, await self._token())

        if resp.status_code >= 400:
            logger.error("sms.eskiz.rejected", extra={"phone": phone, "status_code": resp.status_code})
            raise DeliveryFailed()
        logger.info("sms.eskiz.sent", extra={"phone": phone})

    async def _token(self) -> str:
        token = await self.cache.get(self._token_key)
        if token:
            return token
        resp = await self._request("POST", f"{self.base_url}/auth/login",
                                   data={"email": self.email, "password": self.password})
        token = self._token_from(resp)
        if not token:
            logger.error("sms.eskiz.login_failed", extra={"status_code": resp.status_code})
            raise DeliveryFailed()
        await self.cache.set(self._token_key, token, ESKIZ_TOKEN_TTL_SECONDS)
        return token

    @staticmethod
    def _token_from(resp: httpx.Response) -> Optional[str]:
        if resp.status_code >= 400:
            return None
        try:
            return (resp.json().get("data") or {}).get("token")
        except (ValueError, AttributeError):
            return None

    async def _post_message(self, payload: dict, token: str) -> httpx.Response:
        return await self._request("POST", f"{self.base_url}/message/sms/send", data=payload,
                                   headers={"Authorization": f"Bearer {token}"})

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self.http.request(method, url, timeout=self.timeout, **kwargs)
        except httpx.HTTPError as e:
            logger.error("sms.eskiz.transport_error", extra={"url": url, "error": str(e)})
            raise DeliveryFailed()


def build_sms_sender(settings: Settings, http_client: httpx.AsyncClient, cache: KeyValueCache) -> SmsSender:
    if settings.SMS_BACKEND == "eskiz":
        return EskizSmsSender(http_client, cache, base_url=settings.ESKIZ_BASE_URL,
                              email=settings.ESKIZ_EMAIL, password=settings.ESKIZ_PASSWORD,
                              sender=settings.ESKIZ_SENDER, timeout=settings.PROVIDER_TIMEOUT_SECONDS)
    return ConsoleSmsSender()
