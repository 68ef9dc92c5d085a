import asyncio
import secrets
from passlib.context import CryptContext
from inbola_auth.auth import repository as repo
from inbola_auth.auth.constants import logger
from inbola_auth.auth.errors import InvalidCredentials, InvalidRequest
from inbola_auth.auth.models import PasswordLogin, VerifiedIdentity
from inbola_auth.auth.utils import normalize_identifier, pwd_context
from inbola_auth.auth.verifiers.base import Verifier
from inbola_auth.schema.full_schema import AccountRole, AuthProvider


class PasswordVerifier(Verifier):
    """Identifier + password login.

    Unknown identifiers still pay for one hash verification against a throwaway
    hash, so both failure paths raise the same error after comparable work.
    """
    provider = AuthProvider.PASSWORD

    def __init__(self, session_maker, *, context: CryptContext = pwd_context,
                 admin_only: bool = False, phone_prefix: str = ""):
        self.session_maker = session_maker
        self.context = context
        self.admin_only = admin_only
        self.phone_prefix = phone_prefix
        self._dummy_hash = context.hash(secrets.token_urlsafe(16))

    async def verify(self, proof: PasswordLogin) -> VerifiedIdentity:
        try:
            identifier = normalize_identifier(proof.identifier, self.phone_prefix)
        except InvalidRequest:
            identifier = None

        found = None
        if identifier:
            async with self.session_maker() as session:
                found = await repo.binding_with_account(session, AuthProvider.PASSWORD, identifier)

        password_hash = found[0].password_hash if found and found[0].password_hash else self._dummy_hash
        # bcrypt is cpu bound
        matches = await asyncio.to_thread(self.context.verify, proof.password, password_hash)

        if not found or not matches:
            logger.info("auth.password.rejected", extra={"identifier": proof.identifier})
            raise InvalidCredentials()

        binding, account = found
        if not account.is_active:
            logger.warning("auth.password.disabled_account", extra={"account_public_id": str(account.public_id)})
            raise InvalidCredentials()
        if self.admin_only and account.role != AccountRole.ADMIN:
            logger.warning("auth.password.not_admin", extra={"account_public_id": str(account.public_id)})
            raise InvalidCredentials()

        return VerifiedIdentity(provider=AuthProvider.PASSWORD, external_id=binding.external_id)
