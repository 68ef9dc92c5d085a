from dataclasses import dataclass
from inbola_auth.common.logging_setup import get_logger
from inbola_auth.config.settings import Settings

logger = get_logger("inbola.rate_limit")

RATE_LIMIT_PREFIX = "rl"    # cache key prefix
FAIL_OPEN = True                  # if redis is unavailable, allow requests (True) or deny (False)
USE_IN_MEMORY_FALLBACK = True     # allow simple local fallback when redis fails (not distributed)


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    limit: int
    window: int     # seconds


@dataclass(frozen=True)
class RateLimitPolicies:
    otp_send: RateLimitPolicy
    otp_send_registration: RateLimitPolicy
    password_login: RateLimitPolicy
    password_reset: RateLimitPolicy
    provider_login: RateLimitPolicy

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimitPolicies":
        return cls(
            otp_send=RateLimitPolicy("otp_send", settings.RL_OTP_SEND_LIMIT, settings.RL_OTP_SEND_WINDOW),
            otp_send_registration=RateLimitPolicy("otp_send_registration", settings.RL_OTP_REGISTRATION_LIMIT,
                                                  settings.RL_OTP_REGISTRATION_WINDOW),
            password_login=RateLimitPolicy("password_login", settings.RL_PASSWORD_LOGIN_LIMIT,
                                           settings.RL_PASSWORD_LOGIN_WINDOW),
            password_reset=RateLimitPolicy("password_reset", settings.RL_PASSWORD_RESET_LIMIT,
                                           settings.RL_PASSWORD_RESET_WINDOW),
            provider_login=RateLimitPolicy("provider_login", settings.RL_PROVIDER_LOGIN_LIMIT,
                                           settings.RL_PROVIDER_LOGIN_WINDOW),
        )
