import hmac
import math
from datetime import timedelta
from typing import Callable
from sqlalchemy.exc import IntegrityError
from inbola_auth.auth import repository as repo
from inbola_auth.auth.constants import logger
from inbola_auth.auth.errors import ExpiredProof, NotFound, OtpExhausted, OtpMismatch, TooSoon
from inbola_auth.auth.models import IssuedOtp
from inbola_auth.auth.utils import generate_otp_code, hash_token
from inbola_auth.common.utils import now
from inbola_auth.schema.full_schema import OtpChallenge, OtpPurpose


class OtpStore:
    """Lifecycle of short-lived, single-use phone codes keyed by (phone, purpose).

    Every state change is a conditional UPDATE or guarded by the unique ``active_key``
    column, so concurrent callers on the same key cannot both win. No lock is held
    across SMS delivery; that happens in the orchestrator after ``issue`` returns.
    """

    def __init__(self, session_maker, *, code_length: int = 6, ttl_seconds: int = 300,
                 resend_interval_seconds: int = 60, max_attempts: int = 5,
                 clock: Callable = now, code_generator: Callable[[int], str] = generate_otp_code):
        self.session_maker = session_maker
        self.code_length = code_length
        self.ttl = timedelta(seconds=ttl_seconds)
        self.resend_interval = timedelta(seconds=resend_interval_seconds)
        self.max_attempts = max_attempts
        self.clock = clock
        self.code_generator = code_generator

    async def issue(self, phone: str, purpose: OtpPurpose) -> IssuedOtp:
        at = self.clock()
        code = self.code_generator(self.code_length)

        async with self.session_maker() as session:
            last_issued = await repo.latest_challenge_issued_at(session, phone, purpose)
            if last_issued is not None and at - last_issued < self.resend_interval:
                wait = math.ceil((self.resend_interval - (at - last_issued)).total_seconds())
                logger.info("auth.otp.too_soon", extra={"phone": phone, "purpose": purpose.value, "retry_after": wait})
                raise TooSoon(retry_after=max(1, wait))

            try:
                prior = await repo.invalidate_active_challenge(session, phone, purpose, at)
                session.add(OtpChallenge(
                    phone=phone,
                    purpose=purpose,
                    code_hash=hash_token(code),
                    active_key=repo.otp_active_key(phone, purpose),
                    issued_at=at,
                    expires_at=at + self.ttl,
                ))
                await session.commit()
            except IntegrityError:
                # a concurrent issue for the same key got in first
                await session.rollback()
                logger.warning("auth.otp.issue_conflict", extra={"phone": phone, "purpose": purpose.value})
                raise TooSoon(retry_after=int(self.resend_interval.total_seconds()))

        logger.info("auth.otp.issued", extra={"phone": phone, "purpose": purpose.value,
                                              "replaced_prior": prior is not None})
        return IssuedOtp(code=code, expires_in=int(self.ttl.total_seconds()),
                         resend_after=int(self.resend_interval.total_seconds()))

    async def verify(self, phone: str, purpose: OtpPurpose, code: str) -> None:
        """Check-and-consume. Returns only when this call consumed the challenge."""
        at = self.clock()
        submitted = hash_token(code)

        async with self.session_maker() as session:
            challenge = await repo.active_challenge(session, phone, purpose)
            if challenge is None:
                await self._raise_if_exhausted(session, phone, purpose, at)
                raise NotFound("No active verification code, request a new one", reason="no_challenge")

            if challenge.expires_at <= at:
                await repo.invalidate_challenge(session, challenge.id, at)
                await session.commit()
                logger.info("auth.otp.expired", extra={"phone": phone, "purpose": purpose.value})
                raise ExpiredProof("Verification code has expired", reason="expired")

            if challenge.attempts >= self.max_attempts:
                await repo.invalidate_challenge(session, challenge.id, at)
                await session.commit()
                raise OtpExhausted()

            if not hmac.compare_digest(challenge.code_hash, submitted):
                attempts = await repo.increment_attempts(session, challenge.id)
                if attempts is None:
                    await session.commit()
                    raise NotFound("Verification code is no longer valid", reason="not_active")
                if attempts >= self.max_attempts:
                    await repo.invalidate_challenge(session, challenge.id, at)
                    await session.commit()
                    logger.warning("auth.otp.exhausted", extra={"phone": phone, "purpose": purpose.value})
                    raise OtpExhausted()
                await session.commit()
                logger.info("auth.otp.mismatch", extra={"phone": phone, "purpose": purpose.value, "attempts": attempts})
                await self._raise_if_superseded(session, phone, purpose, submitted, at)
                raise OtpMismatch(remaining_attempts=self.max_attempts - attempts)

            consumed = await repo.consume_challenge(session, challenge.id, at)
            await session.commit()

        if not consumed:
            logger.warning("auth.otp.double_consume", extra={"phone": phone, "purpose": purpose.value})
            raise NotFound("Verification code was already used", reason="already_consumed")
        logger.info("auth.otp.consumed", extra={"phone": phone, "purpose": purpose.value})

    async def invalidate(self, phone: str, purpose: OtpPurpose) -> None:
        """Drops the active challenge of a code that never reached the user.

        The row is removed rather than marked, so it does not count against the resend interval.
        """
        async with self.session_maker() as session:
            await repo.delete_active_challenge(session, phone, purpose)
            await session.commit()
        logger.info("auth.otp.dropped", extra={"phone": phone, "purpose": purpose.value})

    async def _raise_if_exhausted(self, session, phone, purpose, at):
        # a code burnt by wrong guesses keeps answering "exhausted" until it would have expired
        last = await repo.latest_challenge(session, phone, purpose)
        if (last is not None and last.consumed_at is None and last.invalidated_at is not None
                and last.attempts >= self.max_attempts and last.expires_at > at):
            raise OtpExhausted()

    async def _raise_if_superseded(self, session, phone, purpose, submitted, at):
        for code_hash in await repo.superseded_code_hashes(session, phone, purpose, at):
            if hmac.compare_digest(code_hash, submitted):
                raise ExpiredProof("This code was replaced by a newer one", reason="superseded")

