from inbola_auth.config.settings import config_settings
from inbola_auth.common.logging_setup import get_logger

logger = get_logger("inbola.auth")

REFRESH_TOKEN_EXPIRE_DAYS = int(config_settings.REFRESH_TOKEN_EXPIRE_DAYS)

REFRESH_TOKEN_TTL_SECONDS = REFRESH_TOKEN_EXPIRE_DAYS * 24 * 3600


COOKIE_NAME = "__Secure-refresh_token"

REFRESH_HEADER = "X-Refresh-Token"

# sessions.revoked_by values
REVOKED_BY_ROTATION = "rotation"
REVOKED_BY_LOGOUT = "logout"
REVOKED_BY_LOGOUT_ALL = "logout_all"
REVOKED_BY_REUSE = "reuse_detected"
REVOKED_BY_PASSWORD_RESET = "password_reset"

# telegram login widget data may be signed a little ahead of our clock
TELEGRAM_CLOCK_SKEW_SECONDS = 60

GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")
