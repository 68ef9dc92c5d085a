from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy import delete, func, or_, select, update
from inbola_auth.schema.full_schema import AuthProvider, AuthSession, IdentityBinding, OtpChallenge, OtpPurpose, Users


def otp_active_key(phone: str, purpose: OtpPurpose) -> str:
    return f"{phone}:{purpose.value}"


# -- otp challenges ---------------------------------------------------------------

async def latest_challenge_issued_at(session, phone: str, purpose: OtpPurpose) -> Optional[datetime]:
    stmt = select(func.max(OtpChallenge.issued_at)).where(OtpChallenge.phone == phone, OtpChallenge.purpose == purpose)
    return (await session.execute(stmt)).scalar_one_or_none()


async def active_challenge(session, phone: str, purpose: OtpPurpose) -> Optional[OtpChallenge]:
    stmt = select(OtpChallenge).where(OtpChallenge.active_key == otp_active_key(phone, purpose))
    return (await session.execute(stmt)).scalar_one_or_none()


async def latest_challenge(session, phone: str, purpose: OtpPurpose) -> Optional[OtpChallenge]:
    stmt = (
        select(OtpChallenge)
        .where(OtpChallenge.phone == phone, OtpChallenge.purpose == purpose)
        .order_by(OtpChallenge.issued_at.desc(), OtpChallenge.id.desc())
        .limit(1)
    )
    return (await session.execute(stmt)).scalars().first()


async def invalidate_active_challenge(session, phone: str, purpose: OtpPurpose, at: datetime) -> Optional[int]:
    stmt = (
        update(OtpChallenge)
        .where(OtpChallenge.active_key == otp_active_key(phone, purpose))
        .values(active_key=None, invalidated_at=at)
        .returning(OtpChallenge.id)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def delete_active_challenge(session, phone: str, purpose: OtpPurpose) -> None:
    await session.execute(delete(OtpChallenge).where(OtpChallenge.active_key == otp_active_key(phone, purpose)))


async def invalidate_challenge(session, challenge_id: int, at: datetime) -> None:
    stmt = (
        update(OtpChallenge)
        .where(OtpChallenge.id == challenge_id, OtpChallenge.active_key.is_not(None))
        .values(active_key=None, invalidated_at=at)
    )
    await session.execute(stmt)


async def increment_attempts(session, challenge_id: int) -> Optional[int]:
    """Returns the new attempt count, None if the challenge stopped being active meanwhile."""
    stmt = (
        update(OtpChallenge)
        .where(OtpChallenge.id == challenge_id, OtpChallenge.active_key.is_not(None))
        .values(attempts=OtpChallenge.attempts + 1)
        .returning(OtpChallenge.attempts)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def consume_challenge(session, challenge_id: int, at: datetime) -> bool:
    """Compare-and-swap on the active flag: exactly one caller can win."""
    stmt = (
        update(OtpChallenge)
        .where(OtpChallenge.id == challenge_id,
               OtpChallenge.active_key.is_not(None),
               OtpChallenge.consumed_at.is_(None))
        .values(active_key=None, consumed_at=at)
        .returning(OtpChallenge.id)
    )
    return (await session.execute(stmt)).scalar_one_or_none() is not None


async def superseded_code_hashes(session, phone: str, purpose: OtpPurpose, at: datetime) -> List[str]:
    stmt = select(OtpChallenge.code_hash).where(
        OtpChallenge.phone == phone,
        OtpChallenge.purpose == purpose,
        OtpChallenge.invalidated_at.is_not(None),
        OtpChallenge.consumed_at.is_(None),
        OtpChallenge.expires_at > at,
    )
    return list((await session.execute(stmt)).scalars().all())


# -- accounts and bindings --------------------------------------------------------

async def binding_with_account(session, provider: AuthProvider, external_id: str) -> Optional[Tuple[IdentityBinding, Users]]:
    stmt = (
        select(IdentityBinding, Users)
        .join(Users, Users.id == IdentityBinding.account_id)
        .where(IdentityBinding.provider == provider, IdentityBinding.external_id == external_id)
    )
    row = (await session.execute(stmt)).first()
    if not row:
        return None
    return row[0], row[1]


async def account_by_public_id(session, public_id) -> Optional[Users]:
    stmt = select(Users).where(Users.public_id == public_id)
    return (await session.execute(stmt)).scalar_one_or_none()


async def account_by_id(session, account_id: int) -> Optional[Users]:
    stmt = select(Users).where(Users.id == account_id)
    return (await session.execute(stmt)).scalar_one_or_none()


async def lock_account(session, account_id: int) -> Optional[Users]:
    """Row lock on the account for binding changes (no-op on sqlite)."""
    stmt = select(Users).where(Users.id == account_id).with_for_update()
    return (await session.execute(stmt)).scalar_one_or_none()


async def bindings_for_account(session, account_id: int) -> List[IdentityBinding]:
    stmt = select(IdentityBinding).where(IdentityBinding.account_id == account_id).order_by(IdentityBinding.id)
    return list((await session.execute(stmt)).scalars().all())


async def binding_for_account_provider(session, account_id: int, provider: AuthProvider) -> Optional[IdentityBinding]:
    stmt = select(IdentityBinding).where(IdentityBinding.account_id == account_id, IdentityBinding.provider == provider)
    return (await session.execute(stmt)).scalar_one_or_none()


async def touch_binding(session, binding_id: int, at: datetime) -> None:
    await session.execute(update(IdentityBinding).where(IdentityBinding.id == binding_id).values(verified_at=at))


async def delete_binding(session, binding_id: int) -> None:
    await session.execute(delete(IdentityBinding).where(IdentityBinding.id == binding_id))


# -- sessions ---------------------------------------------------------------------

async def session_by_token_hash(session, token_hash: str) -> Optional[AuthSession]:
    stmt = select(AuthSession).where(AuthSession.token_hash == token_hash)
    return (await session.execute(stmt)).scalar_one_or_none()


async def revoke_session_if_active(session, session_id: int, at: datetime, revoked_by: str) -> bool:
    stmt = (
        update(AuthSession)
        .where(AuthSession.id == session_id, AuthSession.revoked_at.is_(None))
        .values(revoked_at=at, revoked_by=revoked_by)
        .returning(AuthSession.id)
    )
    return (await session.execute(stmt)).scalar_one_or_none() is not None


async def link_rotated_session(session, old_id: int, new_id: int) -> None:
    await session.execute(update(AuthSession).where(AuthSession.id == old_id).values(rotated_to_id=new_id))


async def revoke_all_tokens_per_user(session, account_id: int, at: datetime, revoked_by: str) -> int:
    stmt = (
        update(AuthSession)
        .where(AuthSession.account_id == account_id, AuthSession.revoked_at.is_(None))
        .values(revoked_at=at, revoked_by=revoked_by)
        .returning(AuthSession.id)
    )
    return len((await session.execute(stmt)).scalars().all())


# -- housekeeping -----------------------------------------------------------------

async def delete_dead_challenges(session, before: datetime) -> int:
    stmt = (
        delete(OtpChallenge)
        .where(or_(OtpChallenge.expires_at < before,
                   OtpChallenge.consumed_at < before,
                   OtpChallenge.invalidated_at < before))
        .returning(OtpChallenge.id)
    )
    return len((await session.execute(stmt)).scalars().all())


async def delete_dead_sessions(session, before: datetime) -> int:
    stmt = (
        delete(AuthSession)
        # revoked rows stay until their natural expiry so reuse detection keeps working
        .where(AuthSession.expires_at < before)
        .returning(AuthSession.id)
    )
    return len((await session.execute(stmt)).scalars().all())
