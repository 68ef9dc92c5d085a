import hashlib
import hmac
from typing import Callable
from inbola_auth.auth.constants import TELEGRAM_CLOCK_SKEW_SECONDS, logger
from inbola_auth.auth.errors import InvalidProof, InvalidSignature, ProviderUnavailable, StaleAuth
from inbola_auth.auth.models import ProfileSnapshot, TelegramLogin, VerifiedIdentity
from inbola_auth.auth.verifiers.base import Verifier
from inbola_auth.common.utils import now
from inbola_auth.schema.full_schema import AuthProvider


def data_check_string(fields: dict) -> str:
    return "\n".join(f"{k}={fields[k]}" for k in sorted(fields))


def telegram_signature(fields: dict, bot_token: str) -> str:
    """HMAC-SHA256 of the data-check-string keyed with SHA-256(bot_token), hex encoded."""
    secret = hashlib.sha256(bot_token.encode()).digest()
    return hmac.new(secret, data_check_string(fields).encode(), hashlib.sha256).hexdigest()


class TelegramVerifier(Verifier):
    """Verifies data sent by the Telegram login widget."""
    provider = AuthProvider.TELEGRAM

    def __init__(self, bot_token: str, max_age_seconds: int = 86400, clock: Callable = now):
        self.bot_token = bot_token
        self.max_age_seconds = max_age_seconds
        self.clock = clock

    async def verify(self, proof: TelegramLogin) -> VerifiedIdentity:
        if not self.bot_token:
            raise ProviderUnavailable("Telegram login is not configured")

        expected = telegram_signature(proof.signed_fields(), self.bot_token)
        if not hmac.compare_digest(expected, proof.hash.lower()):
            logger.warning("auth.telegram.bad_signature", extra={"external_id": str(proof.id)})
            raise InvalidSignature("Telegram data signature mismatch")

        age = int(self.clock().timestamp()) - proof.auth_date
        if age > self.max_age_seconds:
            raise StaleAuth()
        if age < -TELEGRAM_CLOCK_SKEW_SECONDS:
            raise InvalidProof("auth_date is in the future", reason="future_auth_date")

        name = " ".join(p for p in (proof.first_name, proof.last_name) if p) or proof.username
        return VerifiedIdentity(
            provider=AuthProvider.TELEGRAM,
            external_id=str(proof.id),
            profile=ProfileSnapshot(name=name, image_url=proof.photo_url),
        )
