from typing import List, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "dev"                # "dev" / "staging" / "prod"
    SERVICE_NAME: str = "inbola-auth"

    # login methods exposed by /auth/providers and accepted by the orchestrator
    ENABLED_PROVIDERS: List[str] = ["phone", "telegram", "google", "password"]

    PASSWORD_LOGIN_ADMIN_ONLY: bool = False
    ADMIN_IDENTIFIER: Optional[str] = None
    ADMIN_PASSWORD: Optional[str] = None
    ADMIN_NAME: str = "Admin"

    class Config:
        env_file = ".env"
        extra="ignore"

admin_config = Settings()
