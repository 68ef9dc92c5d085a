from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, RootModel, model_validator
from inbola_auth.schema.full_schema import AccountRole, AuthProvider, OtpPurpose, Users


# -- core values ------------------------------------------------------------------

@dataclass(frozen=True)
class ProfileSnapshot:
    name: Optional[str] = None
    image_url: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class VerifiedIdentity:
    """What a verifier hands to the identity resolver once a proof checked out."""
    provider: AuthProvider
    external_id: str
    profile: ProfileSnapshot = field(default_factory=ProfileSnapshot)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_in: int
    session_public_id: str


# -- inbound payloads, validated at the boundary ----------------------------------

class OtpSendIn(BaseModel):
    phone: str = Field(..., examples=["+998901234567"])
    purpose: OtpPurpose = OtpPurpose.LOGIN


class PhoneOtpLogin(BaseModel):
    method: Literal["phone"] = "phone"
    phone: str = Field(..., examples=["+998901234567"])
    code: str = Field(..., min_length=4, max_length=8)
    purpose: OtpPurpose = OtpPurpose.LOGIN


class TelegramLogin(BaseModel):
    """Telegram login widget payload, field names as the widget sends them."""
    method: Literal["telegram"] = "telegram"
    id: int
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None
    photo_url: Optional[str] = None
    auth_date: int
    hash: str = Field(..., min_length=64, max_length=64)

    def signed_fields(self) -> dict:
        return self.model_dump(exclude={"method", "hash"}, exclude_none=True)


class GoogleLogin(BaseModel):
    method: Literal["google"] = "google"
    code: Optional[str] = None
    redirect_uri: Optional[str] = None
    id_token: Optional[str] = None

    @model_validator(mode="after")
    def _code_or_id_token(self):
        if not self.code and not self.id_token:
            raise ValueError("either code or id_token is required")
        return self


class PasswordLogin(BaseModel):
    method: Literal["password"] = "password"
    identifier: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1, max_length=256)


LoginRequest = Annotated[Union[PhoneOtpLogin, TelegramLogin, GoogleLogin, PasswordLogin],
                         Field(discriminator="method")]


class LoginBody(RootModel[LoginRequest]):
    """Any login payload, told apart by its ``method`` field."""

METHOD_PROVIDERS = {
    "phone": AuthProvider.PHONE,
    "telegram": AuthProvider.TELEGRAM,
    "google": AuthProvider.GOOGLE,
    "password": AuthProvider.PASSWORD,
}


class RefreshIn(BaseModel):
    refresh_token: Optional[str] = None


class PasswordResetRequestIn(BaseModel):
    phone: str


class PasswordResetConfirmIn(BaseModel):
    phone: str
    code: str = Field(..., min_length=4, max_length=8)
    new_password: str = Field(..., max_length=256)


# -- outbound views ---------------------------------------------------------------

class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: Optional[str] = None
    profile_image_url: Optional[str] = None
    role: AccountRole
    is_active: bool
    providers: list[AuthProvider] = []
    created_at: datetime

    @classmethod
    def from_account(cls, account: Users, providers: Optional[list[AuthProvider]] = None) -> "AccountOut":
        return cls(id=str(account.public_id), name=account.name, profile_image_url=account.profile_image_url,
                   role=account.role, is_active=account.is_active, providers=providers or [],
                   created_at=account.created_at)


@dataclass(frozen=True)
class AuthResult:
    account: Users
    providers: list
    tokens: TokenPair

    def to_public(self) -> dict:
        return {
            "accessToken": self.tokens.access_token,
            "refreshToken": self.tokens.refresh_token,
            "expiresIn": self.tokens.access_expires_in,
            "account": AccountOut.from_account(self.account, self.providers).model_dump(mode="json"),
        }


@dataclass(frozen=True)
class IssuedOtp:
    code: str
    expires_in: int
    resend_after: int


@dataclass(frozen=True)
class OtpDispatch:
    expires_in: int
    resend_after: int
    dev_code: Optional[str] = None

    def to_public(self) -> dict:
        body = {"expiresIn": self.expires_in, "resendAfter": self.resend_after}
        if self.dev_code is not None:
            body["code"] = self.dev_code
        return body


@dataclass(frozen=True)
class AccountView:
    account: Users
    providers: list

    def to_public(self) -> dict:
        return AccountOut.from_account(self.account, self.providers).model_dump(mode="json")
