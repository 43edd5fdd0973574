"""Web server configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings

from accounts.validators import StringListEnvSettingsSource, normalize_base_url, parse_string_list

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class AppSettings(BaseSettings):
    model_config = {"env_prefix": "APP_"}

    # "production" switches the session cookie to Secure + SameSite=None
    environment: Literal["development", "production"] = "development"
    version: str = "dev"
    log_dir: str = "backend/logs/webapp"
    cors_origins: list[str] = ["http://localhost:5173"]
    # Browser-facing frontend; reset, email change, and sign-in links point here
    client_url: str = "http://localhost:5173"
    # Public base URL of this server; signup confirmation links point here
    api_url: str = "http://localhost:8000"
    # Avatar URLs must be served from this host (or a subdomain); avatar updates are refused while unset
    avatar_storage_host: str | None = None

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v)

    @field_validator("client_url", "api_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        return normalize_base_url(v)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, StringListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings)
