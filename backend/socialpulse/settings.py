from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

# env name -> settings attribute; absence of any is fatal at startup
REQUIRED_SECRETS = {
    "INSTAGRAM_APP_ID": "instagram_app_id",
    "INSTAGRAM_APP_SECRET": "instagram_app_secret",
    "INSTAGRAM_REDIRECT_URI": "instagram_redirect_uri",
    "ENCRYPTION_KEY": "encryption_key",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )

    database_url: str = Field(
        default="postgresql+asyncpg://postgres:postgres@db:5432/socialpulse",
        validation_alias=AliasChoices("DATABASE_URL", "SOCIALPULSE_DATABASE_URL"),
    )
    instagram_app_id: str | None = Field(default=None, validation_alias=AliasChoices("INSTAGRAM_APP_ID", "SOCIALPULSE_INSTAGRAM_APP_ID"))
    instagram_app_secret: str | None = Field(default=None, validation_alias=AliasChoices("INSTAGRAM_APP_SECRET", "SOCIALPULSE_INSTAGRAM_APP_SECRET"))
    instagram_redirect_uri: str | None = Field(default=None, validation_alias=AliasChoices("INSTAGRAM_REDIRECT_URI", "SOCIALPULSE_INSTAGRAM_REDIRECT_URI"))
    encryption_key: str | None = Field(default=None, validation_alias=AliasChoices("ENCRYPTION_KEY", "SOCIALPULSE_ENCRYPTION_KEY"))
    frontend_url: str = Field(default="http://localhost:3000", validation_alias=AliasChoices("FRONTEND_URL", "SOCIALPULSE_FRONTEND_URL"))
    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL", "SOCIALPULSE_LOG_LEVEL"))
    scheduler_enabled: bool = Field(default=True, validation_alias=AliasChoices("SCHEDULER_ENABLED", "SOCIALPULSE_SCHEDULER_ENABLED"))
    token_refresh_window_days: int = Field(default=7, validation_alias=AliasChoices("TOKEN_REFRESH_WINDOW_DAYS", "SOCIALPULSE_TOKEN_REFRESH_WINDOW_DAYS"))
    insights_sync_interval_hours: int = Field(default=6, validation_alias=AliasChoices("INSIGHTS_SYNC_INTERVAL_HOURS", "SOCIALPULSE_INSIGHTS_SYNC_INTERVAL_HOURS"))
    media_insights_limit: int = Field(default=25, validation_alias=AliasChoices("MEDIA_INSIGHTS_LIMIT", "SOCIALPULSE_MEDIA_INSIGHTS_LIMIT"))

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("postgresql+"):
            return self.database_url
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url

    def missing_required(self) -> list[str]:
        return [env for env, attr in REQUIRED_SECRETS.items() if not getattr(self, attr)]

    def require(self) -> None:
        """Fail fast when any OAuth or encryption secret is absent."""
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                config_key=missing[0],
            )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
