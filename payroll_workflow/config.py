"""
Payroll Workflow - Configuration Settings

This module handles all application configuration using Pydantic Settings.
Environment variables are loaded from .env file.
"""

from functools import lru_cache
from typing import Dict, List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===========================================
    # APPLICATION CONFIGURATION
    # ===========================================
    app_name: str = "Payroll Workflow"
    app_env: str = "development"
    debug: bool = False
    api_version: str = "v1"

    # ===========================================
    # DATABASE CONFIGURATION
    # ===========================================
    database_url_async: str = "sqlite+aiosqlite:///./payroll_workflow.db"
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # ===========================================
    # JWT AUTHENTICATION
    # Tokens are issued by the identity service; this service only verifies them.
    # ===========================================
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # ===========================================
    # CORS SETTINGS
    # ===========================================
    cors_origins: str = "http://localhost:3000,http://localhost:8000,http://127.0.0.1:8000"

    # ===========================================
    # PAYROLL POLICY
    # ===========================================
    currency: str = "NGN"
    pension_rate: float = 8.0
    nhf_rate: float = 2.5

    # Department names (case-insensitive) treated as HR / Finance
    hr_department_names: List[str] = ["Human Resources", "HR"]
    finance_department_names: List[str] = ["Finance", "Finance and Accounting", "Accounting"]

    # Job title -> approval capabilities. Titles are matched exactly after
    # lower-casing and collapsing whitespace.
    position_capabilities: Dict[str, List[str]] = {
        "head of department": ["DEPARTMENT_HEAD"],
        "department head": ["DEPARTMENT_HEAD"],
        "hod": ["DEPARTMENT_HEAD"],
        "head of unit": ["DEPARTMENT_HEAD"],
        "department manager": ["DEPARTMENT_HEAD"],
        "department director": ["DEPARTMENT_HEAD"],
        "hr manager": ["HR_MANAGER", "DEPARTMENT_HEAD"],
        "hr head": ["HR_MANAGER", "DEPARTMENT_HEAD"],
        "hr hod": ["HR_MANAGER", "DEPARTMENT_HEAD"],
        "head of hr": ["HR_MANAGER", "DEPARTMENT_HEAD"],
        "head of human resources": ["HR_MANAGER", "DEPARTMENT_HEAD"],
        "human resources manager": ["HR_MANAGER", "DEPARTMENT_HEAD"],
        "finance director": ["FINANCE_DIRECTOR", "DEPARTMENT_HEAD"],
        "head of finance": ["FINANCE_DIRECTOR", "DEPARTMENT_HEAD"],
        "finance head": ["FINANCE_DIRECTOR", "DEPARTMENT_HEAD"],
        "chief financial officer": ["FINANCE_DIRECTOR"],
    }

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string into list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured database is SQLite."""
        return self.database_url_async.startswith("sqlite")

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env.lower() == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()


# Export settings instance
settings = get_settings()
