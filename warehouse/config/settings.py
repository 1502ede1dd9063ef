"""
Sales Warehouse Pipeline
Centralized Configuration Management

Pydantic settings with environment variable support, validation, and type safety.
"""

from datetime import date
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RawStoreSettings(BaseSettings):
    """Raw Store (staging extracts) Configuration"""

    model_config = SettingsConfigDict(env_prefix="RAW_STORE_")

    path: str = Field(default="./data/raw", description="Raw store root directory")
    file_format: str = Field(default="csv", description="Extract file format: csv or parquet")
    delimiter: str = Field(default=",", description="CSV delimiter")
    encoding: str = Field(default="utf8", description="CSV encoding")

    @field_validator("file_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate extract format"""
        allowed = ["csv", "parquet"]
        if v.lower() not in allowed:
            raise ValueError(f"File format must be one of: {allowed}")
        return v.lower()


class WarehouseSettings(BaseSettings):
    """Dimensional Output Configuration"""

    model_config = SettingsConfigDict(env_prefix="WAREHOUSE_")

    output_path: str = Field(default="./data/warehouse", description="Target root directory")
    keep_releases: int = Field(default=3, ge=1, description="Published releases to retain")
    stable_surrogate_keys: bool = Field(
        default=False,
        description="Persist business key to surrogate key assignments across runs",
    )
    lock_filename: str = Field(default=".run.lock", description="Run lock file name")


class QualitySettings(BaseSettings):
    """Data Quality Configuration"""

    model_config = SettingsConfigDict(env_prefix="QUALITY_")

    max_issues_per_check: int = Field(
        default=500,
        ge=1,
        description="Row-level issues recorded per failing check before summarizing",
    )
    min_valid_date: date = Field(default=date(1900, 1, 1), description="Earliest accepted date")
    max_valid_date: date = Field(default=date(2050, 12, 31), description="Latest accepted transaction date")
    amount_tolerance: float = Field(
        default=1e-6,
        ge=0,
        description="Allowed drift between amount and quantity * price",
    )
    fail_on_fatal: bool = Field(default=True, description="Halt a stage on fatal issues")


class MonitoringSettings(BaseSettings):
    """Logging and Metrics Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")
    pushgateway_url: Optional[str] = Field(
        default=None,
        alias="PUSHGATEWAY_URL",
        description="Prometheus Pushgateway receiving run metrics; disabled when unset",
    )
    metrics_job: str = Field(default="sales_warehouse", alias="METRICS_JOB", description="Pushgateway job name")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing pipeline configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="sales-warehouse", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    version: str = Field(default="1.0.0", description="Application version")

    raw_store: RawStoreSettings = Field(default_factory=RawStoreSettings)
    warehouse: WarehouseSettings = Field(default_factory=WarehouseSettings)
    quality: QualitySettings = Field(default_factory=QualitySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
