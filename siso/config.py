from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    siso configuration, read from the environment with .env as a fallback.

    ENCRYPTION_PASSPHRASE is hashed with SHA-256 into the single AES-256 key
    every stored message is encrypted under. Changing it makes all pending
    messages undecryptable.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    DATABASE_URL: str = "sqlite:///./siso.db"
    LOG_LEVEL: str = "INFO"
    ENCRYPTION_PASSPHRASE: str = "siso-super-secret-key"
    ADMIN_CODE: str = "changeme-admin"
    POLL_INTERVAL_SECONDS: float = Field(default=4.0, gt=0)

    @field_validator("LOG_LEVEL")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
