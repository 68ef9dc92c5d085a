import asyncio
from datetime import timedelta
from typing import Callable, Optional, Tuple
from sqlalchemy.exc import SQLAlchemyError
from inbola_auth.auth import repository as repo
from inbola_auth.common.logging_setup import get_logger
from inbola_auth.common.utils import now

logger = get_logger("inbola.reaper")


async def reap_expired(session_maker, *, grace: timedelta, clock: Callable = now) -> Tuple[int, int]:
    """Deletes otp challenges and sessions that have been dead for longer than ``grace``.

    Read paths already ignore expired rows; this only bounds table growth.
    """
    cutoff = clock() - grace
    async with session_maker() as session:
        challenges = await repo.delete_dead_challenges(session, cutoff)
        sessions = await repo.delete_dead_sessions(session, cutoff)
        await session.commit()
    logger.info("reaper.pass", extra={"challenges_deleted": challenges, "sessions_deleted": sessions})
    return challenges, sessions


class Reaper:
    """Runs ``reap_expired`` every ``interval_seconds`` until shut down."""

    def __init__(self, session_maker, *, interval_seconds: int, grace: timedelta, clock: Callable = now):
        self.session_maker = session_maker
        self.interval_seconds = interval_seconds
        self.grace = grace
        self.clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop(), name="reaper")
            logger.info("reaper.started", extra={"interval_seconds": self.interval_seconds})

    async def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                await reap_expired(self.session_maker, grace=self.grace, clock=self.clock)
            except (SQLAlchemyError, OSError):
                logger.exception("reaper.pass_failed")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def shutdown(self, wait_timeout: float = 5.0) -> None:
        if self._task is None:
            return
        self._stop.set()
        try:
            await asyncio.wait_for(self._task, timeout=wait_timeout)
        except asyncio.TimeoutError:
            logger.warning("reaper.cancelled")
            self._task.cancel()
        self._task = None
