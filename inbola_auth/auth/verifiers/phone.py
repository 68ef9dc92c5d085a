from inbola_auth.auth.models import PhoneOtpLogin, VerifiedIdentity
from inbola_auth.auth.otp_store import OtpStore
from inbola_auth.auth.utils import normalize_phone
from inbola_auth.auth.verifiers.base import Verifier
from inbola_auth.schema.full_schema import AuthProvider


class PhoneOtpVerifier(Verifier):
    provider = AuthProvider.PHONE

    def __init__(self, otp_store: OtpStore, phone_prefix: str):
        self.otp_store = otp_store
        self.phone_prefix = phone_prefix

    async def verify(self, proof: PhoneOtpLogin) -> VerifiedIdentity:
        phone = normalize_phone(proof.phone, self.phone_prefix)
        await self.otp_store.verify(phone, proof.purpose, proof.code)
        return VerifiedIdentity(provider=AuthProvider.PHONE, external_id=phone)
