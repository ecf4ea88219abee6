from __future__ import annotations

from functools import lru_cache
from typing import Annotated, List

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = Field("JMAP Webmail", description="Display name reported by the API")
    environment: str = Field("development", description="Environment name")
    log_level: str = Field("INFO", description="Python logging level")

    jmap_well_known_url: str = Field(
        "https://api.fastmail.com/.well-known/jmap",
        validation_alias=AliasChoices("JMAP_WELL_KNOWN_URL", "JMAP_URL", "JMAP_SESSION_URL"),
        description="Discovery resource of the remote JMAP service",
    )
    jmap_timeout: float = Field(30.0, description="Timeout in seconds for one JMAP exchange")
    jmap_max_redirects: int = Field(5, description="Redirects followed while discovering")
    jmap_trusted_origins: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Origins that may receive credentials after a cross-origin redirect",
    )

    email_page_size: int = Field(50, description="Messages fetched per mailbox page")

    session_cookie_name: str = Field("session", description="Name of the session cookie")
    session_cookie_secure: bool = Field(
        True, description="Mark the session cookie Secure; disable only for plain-HTTP development"
    )

    listen_host: str = Field("127.0.0.1", description="Address uvicorn binds to")
    listen_port: int = Field(8080, description="Port uvicorn binds to")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str | None) -> str:
        if not value:
            return "INFO"
        normalized = str(value).strip().upper()
        if normalized == "WARN":
            return "WARNING"
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("LOG_LEVEL must be DEBUG, INFO, WARNING, ERROR or CRITICAL")
        return normalized

    @field_validator("jmap_well_known_url", mode="before")
    @classmethod
    def _normalize_well_known_url(cls, value: str | None) -> str:
        text = str(value or "").strip()
        if not text.lower().startswith(("https://", "http://")):
            raise ValueError("JMAP_WELL_KNOWN_URL must be an http(s) URL")
        return text

    @field_validator("jmap_trusted_origins", mode="before")
    @classmethod
    def _split_trusted_origins(cls, value: str | List[str] | None) -> List[str]:
        if not value:
            return []
        if isinstance(value, str):
            items = value.replace(",", " ").split()
        else:
            items = [str(item) for item in value]
        return [item.strip().rstrip("/").lower() for item in items if item.strip()]

    @field_validator("jmap_max_redirects")
    @classmethod
    def _check_max_redirects(cls, value: int) -> int:
        if value < 0:
            raise ValueError("JMAP_MAX_REDIRECTS must not be negative")
        return value

    @field_validator("email_page_size")
    @classmethod
    def _check_page_size(cls, value: int) -> int:
        if not 1 <= value <= 500:
            raise ValueError("EMAIL_PAGE_SIZE must be between 1 and 500")
        return value


@lru_cache()
def get_settings() -> Settings:
    return Settings()
