import os
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from masterlink.cdn.candidates import AUDIO_EXTENSIONS
from masterlink.cdn.probe import PROBE_MAX_HITS, PROBE_TIMEOUT_SECONDS


class Settings(BaseSettings):
    parent_base_url: str = "https://chosenmasters.com"
    # Either name works, PARTNER_API_KEY wins when both are set
    partner_api_key: str = Field(default="", validation_alias=AliasChoices("partner_api_key", "cm_api_key"))
    cdn_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "cdn_url", "mastering_cloudfront_url", "next_public_mastering_cloudfront_url"
        ),
    )
    cors_origins: list[str] = ["*"]

    upload_url_timeout_seconds: float = 15
    submit_timeout_seconds: float = 25
    status_timeout_seconds: float = 12

    probe_timeout_seconds: float = PROBE_TIMEOUT_SECONDS
    probe_max_hits: int = Field(default=PROBE_MAX_HITS, gt=0)
    probe_default_extensions: list[str] = list(AUDIO_EXTENSIONS)

    log_dir: Path | None = None  # no file sink when unset

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=[os.getenv("ENV_FILE", ""), ".env"],
        extra="ignore",
        env_nested_delimiter="__",
    )

    @field_validator("parent_base_url")
    @classmethod
    def _strip_trailing_slashes(cls, value: str) -> str:
        return value.rstrip("/")


def get_settings() -> Settings:  # ty: ignore[invalid-return-type]
    """This is only used for dependency references, see __init__.py:

    app.dependency_overrides[get_settings] = lambda: settings
    """
    ...
