# Pydantic settings

from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import os


class Settings(BaseSettings):
    """Application settings"""

    # App
    app_name: str = "Funnel Analytics"
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Storage
    database_url: str = "sqlite:///./events.db"
    duckdb_path: str = ":memory:"
    import_batch_size: int = Field(default=1000, ge=1)

    # Funnel
    funnel_milestones: list[str] = ["app_install", "view_item", "add_to_cart", "purchase"]
    segment_by: Optional[str] = "platform"
    segment_conflict_policy: Literal["flag", "exclude"] = "flag"

    # Retention / activation
    cohort_event: str = "app_install"
    activation_event: str = "view_item"
    retention_weeks: int = Field(default=4, ge=1)

    @field_validator('log_level', mode='before')
    @classmethod
    def upper_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    model_config = SettingsConfigDict(
        # Use .env.local if it exists (for local dev), otherwise .env
        env_file=".env.local" if os.path.exists(".env.local") else ".env",
        case_sensitive=False
    )


settings = Settings()
