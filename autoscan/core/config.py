"""Application settings with Pydantic validation and environment loading."""

from __future__ import annotations

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = "autoscan"
    app_version: str = "0.1.0"
    debug: bool = Field(
        default=False, description="Enable debug mode (disable in production)"
    )
    environment: str = Field(
        default="production",
        description="Environment: development, staging, production",
    )

    # Server
    host: str = Field(default="0.0.0.0", description="API bind address")
    port: int = Field(default=8000, ge=1, le=65535)

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./autoscan.db",
        description="SQLAlchemy database URL (SQLite or PostgreSQL)",
    )

    # Trading mode and broker credentials (paper/live strictly separated)
    trading_mode: Literal["paper", "live"] = Field(
        default="paper", description="Trading mode used on first start"
    )
    alpaca_paper_api_key: str = Field(default="", description="Alpaca paper key id")
    alpaca_paper_secret_key: str = Field(default="", description="Alpaca paper secret")
    alpaca_live_api_key: str = Field(default="", description="Alpaca live key id")
    alpaca_live_secret_key: str = Field(default="", description="Alpaca live secret")
    alpaca_paper_url: str = Field(default="https://paper-api.alpaca.markets")
    alpaca_live_url: str = Field(default="https://api.alpaca.markets")
    alpaca_data_url: str = Field(default="https://data.alpaca.markets")
    alpaca_data_feed: str = Field(default="iex", description="iex (free) or sip (paid)")

    alpha_vantage_api_key: str = Field(
        default="", description="Alpha Vantage API key for fundamentals"
    )

    # Request governor defaults (overridden by persisted app_settings rows)
    alpaca_rate_limit_per_minute: int = Field(default=200, ge=1)
    alpaca_rate_limit_per_day: Optional[int] = Field(default=None, ge=1)
    alpha_vantage_rate_limit_per_minute: int = Field(default=5, ge=1)
    alpha_vantage_rate_limit_per_day: Optional[int] = Field(default=25, ge=1)
    governor_dispatch_delay_ms: int = Field(
        default=100, ge=0, le=5000, description="Pause between dispatched calls"
    )
    governor_default_timeout: float = Field(
        default=30.0, gt=0, description="Seconds a call may wait in the queue"
    )

    # Screening
    scan_batch_size: int = Field(default=10, ge=1, le=500)
    scan_batch_delay: float = Field(
        default=1.0, ge=0, description="Seconds between fetch batches"
    )
    default_symbols: List[str] = Field(
        default_factory=lambda: [
            "AAPL", "MSFT", "GOOGL", "AMZN", "NVDA", "META", "TSLA", "NFLX",
            "ADBE", "CRM", "ORCL", "CSCO", "INTC", "AMD", "QCOM",
            "JPM", "BAC", "WFC", "GS", "MS", "V", "MA", "PYPL", "AXP",
            "JNJ", "UNH", "PFE", "ABBV", "LLY", "MRK",
            "WMT", "HD", "MCD", "NKE", "COST", "PG", "KO", "PEP",
            "BA", "CAT", "GE", "HON", "LMT",
            "XOM", "CVX", "COP",
        ]
    )
    fundamentals_cache_hours: int = Field(default=24, ge=0)
    technicals_cache_minutes: int = Field(default=60, ge=0)
    history_bars: int = Field(default=200, ge=30, le=1000)

    # Scheduler
    scheduler_timezone: str = Field(default="UTC", description="Scheduler timezone")
    default_schedule_interval: int = Field(
        default=15, ge=1, description="Default scan interval in minutes"
    )
    resume_scheduler_on_startup: bool = Field(
        default=True,
        description="Restart the scheduler if it was running at last shutdown",
    )

    # Position monitor
    position_monitor_enabled: bool = Field(default=True)
    position_monitor_interval: int = Field(
        default=60, ge=10, description="Seconds between position checks"
    )

    # Order execution
    order_fill_poll_attempts: int = Field(default=3, ge=0, le=20)
    order_fill_poll_interval: float = Field(default=1.0, ge=0)

    # External API timeouts
    external_api_timeout: int = Field(
        default=30, ge=5, le=120, description="External API timeout in seconds"
    )

    # Logging
    log_level: str = Field(
        default="INFO", description="Log level: DEBUG, INFO, WARNING, ERROR"
    )
    log_format: str = Field(default="json", description="Log format: json or text")

    @field_validator("default_symbols", mode="before")
    @classmethod
    def parse_symbols(cls, v):
        if isinstance(v, str):
            return [s.strip().upper() for s in v.split(",") if s.strip()]
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            raise ValueError(f"log_level must be one of {valid}")
        return upper

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """Cached settings factory."""
    return Settings()


settings = get_settings()
