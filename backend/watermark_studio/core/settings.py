from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from watermark_studio.schemas.contracts import ProviderKind


class Settings(BaseSettings):
    app_name: str = "Watermark Studio"
    uploads_dir: str = "uploads"
    public_base_url: str = ""
    log_level: str = "INFO"

    api_key: str = Field(default="", validation_alias=AliasChoices("FAL_KEY", "FAL_API_KEY", "PROVIDER_API_KEY"))
    demo_mode: bool = False
    blob_read_write_token: str = ""
    provider: ProviderKind = ProviderKind.FAL
    provider_endpoint: str = ""
    provider_timeout_s: int = 120

    concurrency_limit: int = Field(default=2, ge=1)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_s: float = 2.0
    backoff_multiplier: float = 2.0
    retry_classify_errors: bool = True

    sample_fallback_enabled: bool = True
    max_upload_files: int = 20
    gallery_max_images: int = 20
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    )
    scraper_timeout_s: int = 15
    scraper_use_browser: bool = False

    session_max_entries: int = 1000
    session_ttl_s: int = 3600

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    @property
    def demo_active(self) -> bool:
        return self.demo_mode or not self.api_key or self.provider is ProviderKind.DEMO


settings = Settings()


def get_settings() -> Settings:
    return settings


def ensure_directories(config: Settings) -> None:
    Path(config.uploads_dir).mkdir(parents=True, exist_ok=True)
