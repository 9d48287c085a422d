from __future__ import annotations

from functools import lru_cache
from urllib.parse import quote_plus

from pydantic import Field, PostgresDsn, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _build_postgres_dsn(
    *,
    host: str,
    port: int,
    name: str,
    user: str,
    password: str,
    ssl_mode: str,
) -> str:
    encoded_user = quote_plus(user)
    encoded_password = quote_plus(password) if password else ""
    auth = f"{encoded_user}:{encoded_password}" if encoded_password else encoded_user
    dsn = f"postgresql://{auth}@{host}:{port}/{name}"
    if ssl_mode:
        dsn = f"{dsn}?sslmode={quote_plus(ssl_mode)}"
    return dsn


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    db_host: str = Field(default="localhost", validation_alias="DB_HOST")
    db_port: int = Field(default=5432, validation_alias="DB_PORT")
    db_name: str = Field(default="memobot_dev", validation_alias="DB_NAME")
    db_user: str = Field(default="memobot", validation_alias="DB_USER")
    db_password: str = Field(default="memobot", validation_alias="DB_PASSWORD")
    db_ssl_mode: str = Field(default="prefer", validation_alias="DB_SSL_MODE")

    database_url: PostgresDsn | None = Field(default=None, validation_alias="DATABASE_URL")

    media_storage_dir: str = Field(default="storage/media", validation_alias="MEDIA_STORAGE_DIR")
    media_max_size_bytes: int = Field(default=16 * 1024 * 1024, validation_alias="MEDIA_MAX_SIZE_BYTES")
    media_fetch_timeout_seconds: float = Field(default=30.0, validation_alias="MEDIA_FETCH_TIMEOUT_SECONDS")

    twilio_account_sid: str = Field(default="", validation_alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str = Field(default="", validation_alias="TWILIO_AUTH_TOKEN")
    twilio_whatsapp_number: str = Field(default="", validation_alias="TWILIO_WHATSAPP_NUMBER")
    twilio_api_base_url: str = Field(
        default="https://api.twilio.com/2010-04-01",
        validation_alias="TWILIO_API_BASE_URL",
    )

    reminder_scheduler_enabled: bool = Field(default=True, validation_alias="REMINDER_SCHEDULER_ENABLED")
    reminder_poll_interval_seconds: int = Field(
        default=60, ge=1, validation_alias="REMINDER_POLL_INTERVAL_SECONDS"
    )
    reminder_default_hour: int = Field(default=9, ge=0, le=23, validation_alias="REMINDER_DEFAULT_HOUR")
    default_timezone: str = Field(default="UTC", validation_alias="DEFAULT_TIMEZONE")

    @computed_field
    @property
    def database_dsn(self) -> str:
        if self.database_url is not None:
            return str(self.database_url)
        return _build_postgres_dsn(
            host=self.db_host,
            port=self.db_port,
            name=self.db_name,
            user=self.db_user,
            password=self.db_password,
            ssl_mode=self.db_ssl_mode,
        )

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_whatsapp_number)


@lru_cache
def get_settings() -> Settings:
    return Settings()
