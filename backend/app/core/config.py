"""Application configuration using pydantic-settings."""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[3] / ".env"),
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    log_level: str = "INFO"
    auth_enabled: bool = False
    default_tenant_id: str = "default"
    tenant_tokens: str = ""

    # Storage
    hr_db_path: str = "./data/hr_analytics.db"
    tenant_data_dir: str = "./data/tenants"

    # Backups
    backup_dir: str = "./backups"
    backup_retention_days: int = 7
    backup_schedule_enabled: bool = False
    backup_interval_minutes: int = 60
    # unset exports every record; when set, a capped export fails its backup
    backup_export_max_records: Optional[int] = None

    # Tabular file locking (milliseconds)
    csv_lock_retries: int = 3
    csv_lock_factor: float = 2.0
    csv_lock_min_timeout_ms: int = 50
    csv_lock_max_timeout_ms: int = 200
    csv_lock_stale_ms: int = 5000

    # Aggregation bounds
    analytics_employee_page_size: int = 1000
    analytics_contribution_page_size: int = 100
    analytics_max_records: int = 10000
    analytics_top_contributors: int = 10

    def tenant_dir(self, tenant_id: str) -> Path:
        return Path(self.tenant_data_dir) / tenant_id


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
