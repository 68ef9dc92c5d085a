from pydantic_settings import BaseSettings

class Settings(BaseSettings):

    DATABASE_URL : str = "sqlite+aiosqlite:///./inbola_auth.db"
    DB_ECHO : bool = False

    JWT_SECRET : str = "change-me-in-env"
    JWT_ALGO : str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES : int = 15
    REFRESH_TOKEN_EXPIRE_DAYS : int = 7
    TOKEN_HASH_ALGO : str = "sha256"
    PASS_HASH_SCHEME : str = "bcrypt"
    PASS_HASH_ROUNDS : int = 12

    OTP_LENGTH : int = 6
    OTP_TTL_SECONDS : int = 300
    OTP_RESEND_INTERVAL_SECONDS : int = 60
    OTP_MAX_ATTEMPTS : int = 5
    PHONE_COUNTRY_PREFIX : str = "+998"

    TELEGRAM_BOT_TOKEN : str = ""
    TELEGRAM_BOT_USERNAME : str = ""
    TELEGRAM_AUTH_MAX_AGE_SECONDS : int = 86400

    GOOGLE_CLIENT_ID : str = ""
    GOOGLE_CLIENT_SECRET : str = ""
    GOOGLE_REDIRECT_URI : str = ""
    GOOGLE_TOKEN_URL : str = "https://oauth2.googleapis.com/token"
    GOOGLE_TOKENINFO_URL : str = "https://oauth2.googleapis.com/tokeninfo"

    PROVIDER_TIMEOUT_SECONDS : float = 5.0

    SMS_BACKEND : str = "console"       # "console" / "eskiz"
    ESKIZ_BASE_URL : str = "https://notify.eskiz.uz/api"
    ESKIZ_EMAIL : str = ""
    ESKIZ_PASSWORD : str = ""
    ESKIZ_SENDER : str = "4546"

    CACHE_BACKEND : str = "memory"      # "memory" / "redis"
    REDIS_HOST : str = "localhost"
    REDIS_PORT : int = 6379
    REDIS_DB : int = 0

    # rate limit policy: (max attempts, window seconds)
    RL_OTP_SEND_LIMIT : int = 5
    RL_OTP_SEND_WINDOW : int = 300
    RL_OTP_REGISTRATION_LIMIT : int = 3
    RL_OTP_REGISTRATION_WINDOW : int = 3600
    RL_PASSWORD_LOGIN_LIMIT : int = 5
    RL_PASSWORD_LOGIN_WINDOW : int = 300
    RL_PASSWORD_RESET_LIMIT : int = 3
    RL_PASSWORD_RESET_WINDOW : int = 3600
    RL_PROVIDER_LOGIN_LIMIT : int = 20
    RL_PROVIDER_LOGIN_WINDOW : int = 300

    REAPER_INTERVAL_SECONDS : int = 0   # 0 disables the background reaper
    REAPER_GRACE_HOURS : int = 24

    class Config:
        env_file = ".env"
        extra="ignore"

config_settings = Settings()
