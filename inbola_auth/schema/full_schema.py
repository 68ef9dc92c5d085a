import enum
import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy import Boolean, Enum, ForeignKey, Index, Integer, Text, UniqueConstraint, Uuid
from uuid6 import uuid7
from sqlmodel import Column, SQLModel, Field, Relationship, String
from inbola_auth.schema.utils import UTCDateTime, now


class AuthProvider(str, enum.Enum):
    PHONE = "phone"
    TELEGRAM = "telegram"
    GOOGLE = "google"
    PASSWORD = "password"


class OtpPurpose(str, enum.Enum):
    REGISTRATION = "registration"
    LOGIN = "login"
    PASSWORD_RESET = "password_reset"


class AccountRole(str, enum.Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class Users(SQLModel, table=True):
    """The canonical account. ``public_id`` is the only id that leaves the service."""
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(
        default_factory=uuid7,
        sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False)
    )
    name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    profile_image_url: Optional[str] = Field(default=None, sa_column=Column(String(1024), nullable=True))
    role: AccountRole = Field(default=AccountRole.CUSTOMER,
        sa_column=Column(Enum(AccountRole, native_enum=False, length=16), nullable=False, default=AccountRole.CUSTOMER))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(UTCDateTime(), nullable=False,default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(UTCDateTime(), nullable=False,default=now, onupdate=now))

    bindings: List["IdentityBinding"] = Relationship(back_populates="account")
    sessions: List["AuthSession"] = Relationship(back_populates="account")


class IdentityBinding(SQLModel, table=True):
    """Links an account to one provider identity; at most one per provider per account."""
    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False))
    provider: AuthProvider = Field(
        sa_column=Column(Enum(AuthProvider, native_enum=False, length=16), nullable=False))
    # phone in E.164 / telegram numeric id / google subject / normalized login identifier
    external_id: str = Field(sa_column=Column(String(255), nullable=False))

    # provider supplied snapshot, informational only
    profile_name: Optional[str] = Field(default=None, sa_column=Column(String(256), nullable=True))
    profile_image_url: Optional[str] = Field(default=None, sa_column=Column(String(1024), nullable=True))
    profile_email: Optional[str] = Field(default=None, sa_column=Column(String(320), nullable=True))

    password_hash: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))

    verified_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now))
    created_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now))

    account: "Users" = Relationship(back_populates="bindings")

    __table_args__ = (
        UniqueConstraint("provider", "external_id", name="uq_identitybinding_provider_external_id"),
        UniqueConstraint("account_id", "provider", name="uq_identitybinding_account_id_provider"),
    )


class OtpChallenge(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    phone: str = Field(sa_column=Column(String(20), nullable=False))  # store E.164 normalized
    purpose: OtpPurpose = Field(
        sa_column=Column(Enum(OtpPurpose, native_enum=False, length=32), nullable=False))
    code_hash: str = Field(sa_column=Column(String(128), nullable=False))  # hashed otp, never store plaintext

    # "<phone>:<purpose>" while active, NULL once consumed or invalidated.
    # NULLs never collide, so the unique index allows one active challenge per key.
    active_key: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True, unique=True))

    attempts: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    issued_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now))
    expires_at: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False))
    consumed_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    invalidated_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))

    __table_args__ = (
        Index("ix_otpchallenge_phone_purpose_issued_at", "phone", "purpose", "issued_at"),
    )


class AuthSession(SQLModel, table=True):
    """One refresh token generation. Rotation revokes the row and points at its successor."""
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(
        default_factory=uuid7,
        sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False)
    )
    account_id: int = Field(sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False))

    # hashed refresh token
    token_hash: str = Field(sa_column=Column(String(200), nullable=False, unique=True, index=True))
    auth_method: AuthProvider = Field(
        sa_column=Column(Enum(AuthProvider, native_enum=False, length=16), nullable=False))

    issued_at: datetime = Field(default_factory=now, sa_column=Column(UTCDateTime(), nullable=False, default=now))
    expires_at: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False))
    revoked_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime(), nullable=True))
    revoked_by: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))  # 'rotation'|'logout'|'reuse_detected'|...
    rotated_to_id: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))

    user_agent: Optional[str] = Field(default=None, sa_column=Column(String(512), nullable=True))
    ip: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))

    account: "Users" = Relationship(back_populates="sessions")
