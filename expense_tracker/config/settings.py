"""
Configuration Management for Expense Tracker

Every setting is read from the environment (or a .env file) through pydantic-settings.

DESIGN DECISION: One module owns every knob the containers read.
The hosted backend settings are separate from the app settings, so the
in-memory backend and the tests run without any backend credentials.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SupabaseSettings(BaseSettings):
    """Hosted backend (auth, tables, realtime) configuration."""
    
    model_config = SettingsConfigDict(
        env_prefix="SUPABASE_",
        extra="ignore"
    )
    
    url: str = Field(
        ...,
        description="Project URL (or the URL of a forwarding relay in front of it)"
    )
    anon_key: str = Field(
        ...,
        description="Public anon API key"
    )
    schema_name: str = Field(
        default="public",
        description="Database schema the tables live in"
    )
    
    @field_validator('url')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class AppSettings(BaseSettings):
    """
    Behavior of the state containers.
    
    Read from environment variables, then the .env file.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    # Money
    default_currency: str = Field(
        default="INR",
        min_length=3,
        max_length=3,
        description="Currency assigned to new profiles when none is chosen"
    )
    default_categories: str = Field(
        default="Food,Rent,Travel,Shopping,Other",
        description="Comma-separated seed categories shown when none exist remotely"
    )
    
    # Notifications
    notification_history_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="How many notifications the notifier keeps"
    )
    
    # Remote calls
    remote_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per remote call before giving up"
    )
    
    @field_validator('default_currency')
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()
    
    @property
    def default_categories_list(self) -> list[str]:
        """Get seed categories as a list."""
        return [c.strip() for c in self.default_categories.split(",") if c.strip()]


class Settings(BaseSettings):
    """
    Entry point for all settings.
    
    Sub-settings are built on access, so a missing backend URL only
    fails code that actually reaches the hosted backend.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    @property
    def supabase(self) -> SupabaseSettings:
        return SupabaseSettings()
    
    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Shared Settings instance.
    
    Built once per process. Calling
    get_settings.cache_clear() forces a reload.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Try to build every sub-settings object.
    
    Returns {name: ok} plus "<name>_error" entries for failures.
    Meant for a startup health check.
    """
    results = {}
    
    settings = get_settings()
    
    try:
        _ = settings.supabase
        results["supabase"] = True
    except Exception as e:
        results["supabase"] = False
        results["supabase_error"] = str(e)
    
    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)
    
    return results
