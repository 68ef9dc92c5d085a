import asyncio
import uuid
from typing import Callable, List, Optional
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from inbola_auth.auth import repository as repo
from inbola_auth.auth.constants import logger
from inbola_auth.auth.errors import (AlreadyLinkedElsewhere, InvalidRequest, LastBinding, NotFound,
                                     ProviderAlreadyLinked)
from inbola_auth.auth.models import ProfileSnapshot, VerifiedIdentity
from inbola_auth.auth.utils import hash_password, normalize_identifier, pwd_context, validate_password
from inbola_auth.common.utils import now
from inbola_auth.schema.full_schema import AuthProvider, IdentityBinding, Users


def _binding_from_identity(account_id: int, identity: VerifiedIdentity, at, password_hash: Optional[str] = None) -> IdentityBinding:
    return IdentityBinding(
        account_id=account_id,
        provider=identity.provider,
        external_id=identity.external_id,
        profile_name=identity.profile.name,
        profile_image_url=identity.profile.image_url,
        profile_email=identity.profile.email,
        password_hash=password_hash,
        verified_at=at,
        created_at=at,
    )


def _fill_if_empty(account: Users, profile: ProfileSnapshot) -> bool:
    changed = False
    if not account.name and profile.name:
        account.name = profile.name[:128]
        changed = True
    if not account.profile_image_url and profile.image_url:
        account.profile_image_url = profile.image_url
        changed = True
    return changed


def _verified_identifiers(bindings) -> set:
    verified = set()
    for b in bindings:
        if b.provider == AuthProvider.PHONE:
            verified.add(b.external_id)
        elif b.provider == AuthProvider.GOOGLE and b.profile_email:
            verified.add(b.profile_email.strip().lower())
    return verified


class IdentityResolver:
    """Maps verified provider identities onto accounts.

    One account per (provider, external_id) is enforced by the unique constraint on
    identity bindings. Accounts are never merged on matching email or phone; a second
    provider only joins an account through an explicit, authenticated link.
    """

    def __init__(self, session_maker, *, context: CryptContext = pwd_context,
                 phone_prefix: str = "", clock: Callable = now):
        self.session_maker = session_maker
        self.context = context
        self.phone_prefix = phone_prefix
        self.clock = clock

    async def resolve(self, identity: VerifiedIdentity, link_to_account_id: Optional[int] = None) -> Users:
        at = self.clock()
        async with self.session_maker() as session:
            found = await repo.binding_with_account(session, identity.provider, identity.external_id)
            if found:
                binding, account = found
                if link_to_account_id is not None and account.id != link_to_account_id:
                    logger.warning("auth.identity.linked_elsewhere",
                                   extra={"provider": identity.provider.value, "external_id": identity.external_id})
                    raise AlreadyLinkedElsewhere()
                await repo.touch_binding(session, binding.id, at)
                if _fill_if_empty(account, identity.profile):
                    account.updated_at = at
                await session.commit()
                return account

            if link_to_account_id is not None:
                return await self._attach(session, link_to_account_id, identity, at)

            return await self._create(session, identity, at)

    async def _create(self, session, identity: VerifiedIdentity, at) -> Users:
        name = identity.profile.name[:128] if identity.profile.name else None
        account = Users(name=name,
                        profile_image_url=identity.profile.image_url,
                        created_at=at, updated_at=at)
        try:
            session.add(account)
            await session.flush()
            session.add(_binding_from_identity(account.id, identity, at))
            await session.commit()
        except IntegrityError:
            # concurrent first login with the same identity won the insert
            await session.rollback()
            found = await repo.binding_with_account(session, identity.provider, identity.external_id)
            if not found:
                raise
            logger.info("auth.identity.create_race_lost",
                        extra={"provider": identity.provider.value, "external_id": identity.external_id})
            return found[1]

        logger.info("auth.identity.account_created", extra={"provider": identity.provider.value,
                                                             "account_public_id": str(account.public_id)})
        return account

    async def _attach(self, session, account_id: int, identity: VerifiedIdentity, at,
                      password_hash: Optional[str] = None) -> Users:
        account = await repo.lock_account(session, account_id)
        if account is None:
            raise NotFound("Account not found", reason="no_account")
        if await repo.binding_for_account_provider(session, account_id, identity.provider):
            raise ProviderAlreadyLinked()

        try:
            session.add(_binding_from_identity(account_id, identity, at, password_hash))
            if _fill_if_empty(account, identity.profile):
                account.updated_at = at
            await session.commit()
        except IntegrityError:
            await session.rollback()
            owner = await repo.binding_with_account(session, identity.provider, identity.external_id)
            if owner and owner[1].id != account_id:
                raise AlreadyLinkedElsewhere()
            raise ProviderAlreadyLinked()

        logger.info("auth.identity.linked", extra={"provider": identity.provider.value,
                                                    "account_public_id": str(account.public_id)})
        return account

    async def enroll_password(self, account_id: int, identifier: str, password: str) -> Users:
        """Adds a PASSWORD binding to an authenticated account.

        The identifier must be one the account already proved: the phone of its PHONE
        binding or the verified email of a GOOGLE binding.
        """
        self.check_password_policy(password)
        normalized = normalize_identifier(identifier, self.phone_prefix)
        password_hash = await asyncio.to_thread(hash_password, password, self.context)
        identity = VerifiedIdentity(provider=AuthProvider.PASSWORD, external_id=normalized)
        at = self.clock()
        async with self.session_maker() as session:
            if normalized not in _verified_identifiers(await repo.bindings_for_account(session, account_id)):
                logger.warning("auth.identity.unverified_identifier", extra={"account_id": account_id})
                raise InvalidRequest("Use a phone number or email already verified on this account",
                                     reason="unverified_identifier")
            owner = await repo.binding_with_account(session, AuthProvider.PASSWORD, normalized)
            if owner and owner[1].id != account_id:
                raise AlreadyLinkedElsewhere()
            return await self._attach(session, account_id, identity, at, password_hash)

    async def set_password(self, account_id: int, password: str, identifier: str) -> None:
        """Replaces the password hash, creating the binding under ``identifier`` when missing."""
        self.check_password_policy(password)
        password_hash = await asyncio.to_thread(hash_password, password, self.context)
        at = self.clock()
        async with self.session_maker() as session:
            binding = await repo.binding_for_account_provider(session, account_id, AuthProvider.PASSWORD)
            if binding is not None:
                binding.password_hash = password_hash
                binding.verified_at = at
                await session.commit()
                logger.info("auth.identity.password_changed", extra={"account_id": account_id})
                return
            identity = VerifiedIdentity(provider=AuthProvider.PASSWORD, external_id=identifier)
            await self._attach(session, account_id, identity, at, password_hash)

    async def unlink(self, account_id: int, provider: AuthProvider) -> None:
        async with self.session_maker() as session:
            account = await repo.lock_account(session, account_id)
            if account is None:
                raise NotFound("Account not found", reason="no_account")
            bindings = await repo.bindings_for_account(session, account_id)
            target = next((b for b in bindings if b.provider == provider), None)
            if target is None:
                raise NotFound("No login of this type is linked", reason="no_binding")
            if len(bindings) == 1:
                raise LastBinding()
            await repo.delete_binding(session, target.id)
            await session.commit()
        logger.info("auth.identity.unlinked", extra={"provider": provider.value,
                                                      "account_public_id": str(account.public_id)})

    async def get_account(self, public_id) -> Users:
        try:
            public_id = public_id if isinstance(public_id, uuid.UUID) else uuid.UUID(str(public_id))
        except ValueError:
            raise NotFound("Account not found", reason="no_account")
        async with self.session_maker() as session:
            account = await repo.account_by_public_id(session, public_id)
        if account is None:
            raise NotFound("Account not found", reason="no_account")
        return account

    async def account_for(self, provider: AuthProvider, external_id: str) -> Optional[Users]:
        async with self.session_maker() as session:
            found = await repo.binding_with_account(session, provider, external_id)
        return found[1] if found else None

    async def list_bindings(self, account_id: int) -> List[IdentityBinding]:
        async with self.session_maker() as session:
            return await repo.bindings_for_account(session, account_id)

    async def providers_for(self, account_id: int) -> List[AuthProvider]:
        return [b.provider for b in await self.list_bindings(account_id)]

    def check_password_policy(self, password: str) -> None:
        ok, msg = validate_password(password)
        if not ok:
            raise InvalidRequest(msg, reason="weak_password")
