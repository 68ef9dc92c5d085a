from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Tuple
from inbola_auth.auth import repository as repo
from inbola_auth.auth.constants import (REVOKED_BY_LOGOUT, REVOKED_BY_LOGOUT_ALL, REVOKED_BY_REUSE,
                                        REVOKED_BY_ROTATION, logger)
from inbola_auth.auth.errors import AccountDisabled, ExpiredProof, InvalidToken, NotFound, SecurityViolation
from inbola_auth.auth.models import TokenPair
from inbola_auth.auth.tokens import TokenSigner
from inbola_auth.auth.utils import hash_token, make_refresh_plain
from inbola_auth.common.utils import now
from inbola_auth.schema.full_schema import AuthProvider, AuthSession, Users


class SessionIssuer:
    """Access/refresh token pairs.

    Access tokens are stateless JWTs. Refresh tokens are opaque, stored only as a
    hash, and rotated on every use: the presented session is revoked before its
    successor is inserted, in one transaction, so a crash leaves no usable token.
    Presenting a revoked refresh token revokes every session of the account.
    """

    def __init__(self, session_maker, signer: TokenSigner, *, access_ttl_seconds: int = 900,
                 refresh_ttl_seconds: int = 7 * 24 * 3600, clock: Callable = now):
        self.session_maker = session_maker
        self.signer = signer
        self.access_ttl = timedelta(seconds=access_ttl_seconds)
        self.refresh_ttl = timedelta(seconds=refresh_ttl_seconds)
        self.clock = clock

    async def issue_for(self, account: Users, auth_method: AuthProvider, *,
                        user_agent: Optional[str] = None, ip: Optional[str] = None) -> TokenPair:
        at = self.clock()
        plain = make_refresh_plain()
        async with self.session_maker() as session:
            row = self._new_session(account.id, plain, auth_method, at, user_agent, ip)
            session.add(row)
            await session.commit()
        logger.info("auth.session.issued", extra={"account_public_id": str(account.public_id),
                                                   "session_public_id": str(row.public_id),
                                                   "auth_method": auth_method.value})
        return self._pair(account, row, plain)

    async def refresh(self, refresh_token: str, *, user_agent: Optional[str] = None,
                      ip: Optional[str] = None) -> Tuple[Users, TokenPair]:
        """Rotates a refresh token. Returns the account with the new pair."""
        at = self.clock()
        async with self.session_maker() as session:
            row = await repo.session_by_token_hash(session, hash_token(refresh_token))
            if row is None:
                raise NotFound("Unknown refresh token", reason="unknown_refresh_token")
            account_id, session_public_id = row.account_id, str(row.public_id)
            if row.revoked_at is not None:
                await self._reuse_detected(session, account_id, session_public_id, at)
            if row.expires_at <= at:
                raise ExpiredProof("Refresh token expired, log in again", reason="refresh_expired")

            account = await repo.account_by_id(session, row.account_id)
            if account is None or not account.is_active:
                await repo.revoke_session_if_active(session, row.id, at, REVOKED_BY_LOGOUT)
                await session.commit()
                raise AccountDisabled()

            if not await repo.revoke_session_if_active(session, row.id, at, REVOKED_BY_ROTATION):
                # another request rotated this token first
                await session.rollback()
                await self._reuse_detected(session, account_id, session_public_id, at)

            plain = make_refresh_plain()
            new_row = self._new_session(account.id, plain, row.auth_method, at,
                                        user_agent or row.user_agent, ip or row.ip)
            session.add(new_row)
            await session.flush()
            await repo.link_rotated_session(session, row.id, new_row.id)
            await session.commit()

        logger.info("auth.session.rotated", extra={"account_public_id": str(account.public_id),
                                                    "session_public_id": str(new_row.public_id)})
        return account, self._pair(account, new_row, plain)

    async def revoke(self, refresh_token: str) -> bool:
        """Logout. Unknown or already revoked tokens are a no-op."""
        at = self.clock()
        async with self.session_maker() as session:
            row = await repo.session_by_token_hash(session, hash_token(refresh_token))
            if row is None or row.revoked_at is not None:
                return False
            revoked = await repo.revoke_session_if_active(session, row.id, at, REVOKED_BY_LOGOUT)
            await session.commit()
        if revoked:
            logger.info("auth.session.revoked", extra={"session_public_id": str(row.public_id)})
        return revoked

    async def revoke_all(self, account_id: int, revoked_by: str = REVOKED_BY_LOGOUT_ALL) -> int:
        async with self.session_maker() as session:
            count = await repo.revoke_all_tokens_per_user(session, account_id, self.clock(), revoked_by)
            await session.commit()
        logger.info("auth.session.revoked_all", extra={"account_id": account_id, "count": count,
                                                        "revoked_by": revoked_by})
        return count

    def authenticate(self, access_token: str) -> Dict[str, Any]:
        claims = self.signer.verify(access_token)
        if claims.get("typ") != "access" or not claims.get("sub"):
            raise InvalidToken("Not an access token")
        return claims

    async def _reuse_detected(self, session, account_id: int, session_public_id: str, at) -> None:
        count = await repo.revoke_all_tokens_per_user(session, account_id, at, REVOKED_BY_REUSE)
        await session.commit()
        logger.warning("auth.session.reuse_detected", extra={"account_id": account_id,
                                                             "session_public_id": session_public_id,
                                                             "revoked_count": count})
        raise SecurityViolation()

    def _new_session(self, account_id: int, plain: str, auth_method: AuthProvider, at,
                     user_agent: Optional[str], ip: Optional[str]) -> AuthSession:
        return AuthSession(
            account_id=account_id,
            token_hash=hash_token(plain),
            auth_method=auth_method,
            issued_at=at,
            expires_at=at + self.refresh_ttl,
            user_agent=user_agent[:512] if user_agent else None,
            ip=ip,
        )

    def _pair(self, account: Users, row: AuthSession, plain: str) -> TokenPair:
        claims = {
            "sub": str(account.public_id),
            "role": account.role.value,
            "sid": str(row.public_id),
            "typ": "access",
        }
        return TokenPair(
            access_token=self.signer.sign(claims, self.access_ttl),
            refresh_token=plain,
            access_expires_in=int(self.access_ttl.total_seconds()),
            refresh_expires_in=int(self.refresh_ttl.total_seconds()),
            session_public_id=str(row.public_id),
        )
