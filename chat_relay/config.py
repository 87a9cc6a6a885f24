"""Runtime settings loaded from the environment."""

from functools import lru_cache
from typing import List, Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):

    mongo_url: str = "mongodb://localhost:27017"
    mongo_db_name: str = "chat_relay"
    redis_url: Optional[str] = None

    jwt_secret: SecretStr = SecretStr("change-me")
    jwt_algorithm: str = "HS256"
    # when false, the live channel trusts the user id given by ?user_id= or "join"
    ws_require_token: bool = True

    presence_ttl_seconds: int = 60
    cors_origins: List[str] = ["http://localhost:3000"]
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
