from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Review Trust Analyzer"
    app_env: str = "dev"
    log_level: str = "INFO"

    mongo_uri: str = "mongodb://localhost:27017"
    db_name: str = "review_trust_analyzer"
    persist_results: bool = False

    gemini_api_key: str = ""
    gemini_model: str = "gemini-1.5-flash"
    use_fallback_analysis: bool = False

    analysis_sentiment_batch_size: int = 12
    analysis_sentiment_concurrency: int = 3
    analysis_sentiment_delay_ms: int = 500
    analysis_fake_batch_size: int = 6
    analysis_fake_concurrency: int = 2
    analysis_fake_delay_ms: int = 750
    analysis_max_retries: int = 3
    analysis_rate_limit_base_ms: int = 30000

    scraper_headless: bool = True
    scraper_slow_mo_ms: int = 0
    scraper_browser_channel: str = ""
    scraper_timeout_ms: int = 30000
    scraper_locale: str = "en-US"
    scraper_user_data_dir: str = "playwright-data"
    scraper_min_click_gap_ms: int = 600
    scraper_extra_chromium_args: Annotated[list[str], NoDecode] = Field(default_factory=list)
    scraper_target_recent: int = Field(default=100, ge=0)
    scraper_target_worst: int = Field(default=100, ge=0)
    scraper_target_best: int = Field(default=100, ge=0)
    scraper_sort_orders: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["recent", "worst", "best"]
    )
    scraper_total_timeout_s: float = 300.0
    scraper_sort_timeout_ms: int = 10000
    scraper_sort_attempts: int = 3
    scraper_pagination_attempts: int = 60
    scraper_scroll_delay_ms: int = 1500
    scraper_scroll_strategy: str = "adaptive"

    session_retention_hours: float = 24.0
    session_sweep_interval_s: float = 600.0
    scrape_retries: int = 3
    analysis_retries: int = 2
    retry_base_delay_ms: int = 2000
    retry_max_delay_ms: int = 15000
    retry_jitter_ms: int = 1000

    memory_warning_mb: int = 1024
    memory_critical_mb: int = 2048
    heap_warning_mb: int = 512
    heap_critical_mb: int = 1024
    memory_monitor_interval_s: float = 30.0
    memory_cleanup_cooldown_s: float = 30.0
    diagnostics_max_entries: int = 1000
    diagnostics_max_mb: int = 100

    sampling_threshold: int = 300
    sampling_per_category: int = 100

    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value: object) -> object:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("scraper_extra_chromium_args", mode="before")
    @classmethod
    def parse_scraper_extra_chromium_args(cls, value: object) -> object:
        if isinstance(value, str):
            return [arg.strip() for arg in value.split(",") if arg.strip()]
        return value

    @field_validator("scraper_sort_orders", mode="before")
    @classmethod
    def parse_scraper_sort_orders(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip().lower() for item in value.split(",") if item.strip()]
        return value

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def target_counts(self) -> dict[str, int]:
        return {
            "recent": self.scraper_target_recent,
            "worst": self.scraper_target_worst,
            "best": self.scraper_target_best,
        }


settings = Settings()
