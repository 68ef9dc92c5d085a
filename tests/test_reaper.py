import asyncio
from datetime import timedelta
import pytest
from sqlalchemy import func, select
from inbola_auth.auth.models import VerifiedIdentity
from inbola_auth.background_workers.reaper import Reaper, reap_expired
from inbola_auth.schema.full_schema import AuthProvider, AuthSession, OtpChallenge, OtpPurpose
from conftest import PHONE


async def count(session_maker, model) -> int:
    async with session_maker() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_reap_removes_only_long_dead_rows(session_maker, otp_store, resolver, issuer, clock):
    account = await resolver.resolve(VerifiedIdentity(AuthProvider.PHONE, PHONE))
    pair = await issuer.issue_for(account, AuthProvider.PHONE)
    await issuer.revoke(pair.refresh_token)
    await otp_store.issue(PHONE, OtpPurpose.LOGIN)

    assert await reap_expired(session_maker, grace=timedelta(hours=24), clock=clock) == (0, 0)

    clock.advance(days=2)
    await otp_store.issue(PHONE, OtpPurpose.REGISTRATION)
    await issuer.issue_for(account, AuthProvider.PHONE)
    # challenge is long dead; the revoked session is kept until it expires
    assert await reap_expired(session_maker, grace=timedelta(hours=24), clock=clock) == (1, 0)

    clock.advance(days=7)
    assert await reap_expired(session_maker, grace=timedelta(hours=24), clock=clock) == (1, 1)
    assert await count(session_maker, OtpChallenge) == 0
    assert await count(session_maker, AuthSession) == 1


@pytest.mark.asyncio
async def test_reaper_runs_until_shutdown(session_maker, otp_store, clock):
    await otp_store.issue(PHONE, OtpPurpose.LOGIN)
    clock.advance(days=3)

    reaper = Reaper(session_maker, interval_seconds=3600, grace=timedelta(hours=1), clock=clock)
    reaper.start()
    for _ in range(50):
        if await count(session_maker, OtpChallenge) == 0:
            break
        await asyncio.sleep(0.02)
    await reaper.shutdown()

    assert await count(session_maker, OtpChallenge) == 0
    assert reaper._task is None
