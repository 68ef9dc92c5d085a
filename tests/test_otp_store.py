import asyncio
import pytest
from sqlalchemy import select
from inbola_auth.auth.errors import ExpiredProof, InvalidProof, NotFound, RateLimited
from inbola_auth.auth.utils import generate_otp_code
from inbola_auth.schema.full_schema import OtpChallenge, OtpPurpose
from conftest import PHONE


async def active_rows(session_maker):
    async with session_maker() as session:
        rows = (await session.execute(select(OtpChallenge).where(OtpChallenge.active_key.is_not(None)))).scalars().all()
    return rows


@pytest.mark.asyncio
async def test_issue_returns_six_digit_code(otp_store):
    issued = await otp_store.issue(PHONE, OtpPurpose.LOGIN)
    assert issued.code == "111111"
    assert issued.expires_in == 300
    assert issued.resend_after == 60


def test_default_generator_is_zero_padded():
    codes = {generate_otp_code(6) for _ in range(200)}
    assert all(len(c) == 6 and c.isdigit() for c in codes)


@pytest.mark.asyncio
async def test_resend_too_soon_reports_wait(otp_store, clock):
    await otp_store.issue(PHONE, OtpPurpose.LOGIN)
    clock.advance(seconds=20)

    with pytest.raises(RateLimited) as exc:
        await otp_store.issue(PHONE, OtpPurpose.LOGIN)
    assert exc.value.reason == "too_soon"
    assert exc.value.retry_after == 40


@pytest.mark.asyncio
async def test_purposes_are_independent_keys(otp_store):
    await otp_store.issue(PHONE, OtpPurpose.LOGIN)
    issued = await otp_store.issue(PHONE, OtpPurpose.REGISTRATION)
    assert issued.code == "222222"


@pytest.mark.asyncio
async def test_new_issue_invalidates_prior(otp_store, session_maker, clock):
    first = await otp_store.issue(PHONE, OtpPurpose.LOGIN)
    clock.advance(seconds=61)
    second = await otp_store.issue(PHONE, OtpPurpose.LOGIN)

    rows = await active_rows(session_maker)
    assert len(rows) == 1

    with pytest.raises(ExpiredProof) as exc:
        await otp_store.verify(PHONE, OtpPurpose.LOGIN, first.code)
    assert exc.value.reason == "superseded"

    await otp_store.verify(PHONE, OtpPurpose.LOGIN, second.code)


@pytest.mark.asyncio
async def test_verify_without_challenge_is_not_found(otp_store):
    with pytest.raises(NotFound):
        await otp_store.verify(PHONE, OtpPurpose.LOGIN, "123456")


@pytest.mark.asyncio
async def test_expired_code(otp_store, clock):
    issued = await otp_store.issue(PHONE, OtpPurpose.LOGIN)
    clock.advance(seconds=301)

    with pytest.raises(ExpiredProof) as exc:
        await otp_store.verify(PHONE, OtpPurpose.LOGIN, issued.code)
    assert exc.value.reason == "expired"


@pytest.mark.asyncio
async def test_mismatch_counts_down_then_exhausts(otp_store):
    issued = await otp_store.issue(PHONE, OtpPurpose.LOGIN)

    for remaining in (4, 3, 2, 1):
        with pytest.raises(InvalidProof) as exc:
            await otp_store.verify(PHONE, OtpPurpose.LOGIN, "000000")
        assert exc.value.reason == "mismatch"
        assert exc.value.remaining_attempts == remaining

    with pytest.raises(InvalidProof) as exc:
        await otp_store.verify(PHONE, OtpPurpose.LOGIN, "000000")
    assert exc.value.reason == "exhausted"
    assert exc.value.remaining_attempts == 0

    # the challenge is gone, even the right code needs a new issue
    for code in ("000000", issued.code):
        with pytest.raises(InvalidProof) as exc:
            await otp_store.verify(PHONE, OtpPurpose.LOGIN, code)
        assert exc.value.reason == "exhausted"
        assert exc.value.remaining_attempts == 0


@pytest.mark.asyncio
async def test_exhausted_code_until_expiry_then_reissue(otp_store, clock):
    await otp_store.issue(PHONE, OtpPurpose.LOGIN)
    for _ in range(5):
        with pytest.raises(InvalidProof):
            await otp_store.verify(PHONE, OtpPurpose.LOGIN, "000000")

    clock.advance(seconds=301)
    with pytest.raises(NotFound) as exc:
        await otp_store.verify(PHONE, OtpPurpose.LOGIN, "000000")
    assert exc.value.reason == "no_challenge"

    fresh = await otp_store.issue(PHONE, OtpPurpose.LOGIN)
    await otp_store.verify(PHONE, OtpPurpose.LOGIN, fresh.code)


@pytest.mark.asyncio
async def test_code_verifies_only_once(otp_store):
    issued = await otp_store.issue(PHONE, OtpPurpose.LOGIN)
    await otp_store.verify(PHONE, OtpPurpose.LOGIN, issued.code)

    with pytest.raises(NotFound):
        await otp_store.verify(PHONE, OtpPurpose.LOGIN, issued.code)


@pytest.mark.asyncio
async def test_concurrent_verify_single_winner(otp_store):
    issued = await otp_store.issue(PHONE, OtpPurpose.LOGIN)

    results = await asyncio.gather(
        *(otp_store.verify(PHONE, OtpPurpose.LOGIN, issued.code) for _ in range(4)),
        return_exceptions=True,
    )

    succeeded = [r for r in results if r is None]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(succeeded) == 1
    assert len(failed) == 3
    assert all(isinstance(e, (NotFound, ExpiredProof)) for e in failed)


@pytest.mark.asyncio
async def test_invalidate_drops_challenge_and_allows_resend(otp_store, session_maker):
    await otp_store.issue(PHONE, OtpPurpose.LOGIN)
    await otp_store.invalidate(PHONE, OtpPurpose.LOGIN)

    assert await active_rows(session_maker) == []
    # delivery never happened, so no resend wait applies
    issued = await otp_store.issue(PHONE, OtpPurpose.LOGIN)
    assert issued.code == "222222"
