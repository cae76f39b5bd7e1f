"""Application settings powered by Pydantic BaseSettings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from dashfeed.fetch.constants import DEFAULT_CACHE_TTL_SECONDS


class AppSettings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
    )

    coingecko_api_key: str | None = Field(
        default=None, validation_alias="COINGECKO_API_KEY"
    )
    coinglass_api_key: str | None = Field(
        default=None, validation_alias="COINGLASS_API_KEY"
    )
    token_terminal_api_key: str | None = Field(
        default=None, validation_alias="TOKEN_TERMINAL_API_KEY"
    )
    defillama_api_key: str | None = Field(
        default=None, validation_alias="DEFILLAMA_API_KEY"
    )

    cache_ttl_seconds: float = Field(
        default=float(DEFAULT_CACHE_TTL_SECONDS),
        gt=0,
        validation_alias="DASHFEED_CACHE_TTL_SECONDS",
    )
    cache_max_age_seconds: int = Field(
        default=300, ge=0, validation_alias="DASHFEED_CACHE_MAX_AGE_SECONDS"
    )
    stale_while_revalidate_seconds: int = Field(
        default=600, ge=0, validation_alias="DASHFEED_STALE_WHILE_REVALIDATE_SECONDS"
    )
    single_flight: bool = Field(
        default=False, validation_alias="DASHFEED_SINGLE_FLIGHT"
    )

    def secrets(self) -> tuple[str, ...]:
        """All configured API keys, for masking in logs."""
        return tuple(
            key
            for key in (
                self.coingecko_api_key,
                self.coinglass_api_key,
                self.token_terminal_api_key,
                self.defillama_api_key,
            )
            if key
        )


def get_settings() -> AppSettings:
    """Get a settings instance."""
    return AppSettings()
