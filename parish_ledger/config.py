"""
Configuration management using Pydantic Settings.
All parameters are loaded from environment variables with sensible defaults.
"""

import os
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Persistent data path shared with entry_point.py
APP_BASE_PATH = Path(os.environ.get(
    "PARISH_LEDGER_BASE_PATH",
    os.environ.get("APP_BASE_PATH", Path.home() / "Documents" / "parish_ledger")
))
ENV_FILE_PATH = APP_BASE_PATH / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: str = Field(default="development")
    app_debug: bool = Field(default=False)
    app_log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)

    # Document store
    store_backend: str = Field(default="memory")  # "memory" or "json"
    data_dir: Path = Field(default=Path("./data"))

    # Collections
    statements_collection: str = Field(default="bankStatements")
    income_collection: str = Field(default="income")
    expenses_collection: str = Field(default="expenses")
    members_collection: str = Field(default="members")
    intents_collection: str = Field(default="reconciliationIntents")

    # Matching Parameters
    amount_tolerance: float = Field(default=0.01)
    fuzzy_window_days: int = Field(default=3)

    # Lifecycle
    cascade_unreconcile_on_delete: bool = Field(default=True)

    # Storage
    reports_dir: Path = Field(default=Path("./data/reports"))

    def collection_for(self, kind: str) -> str:
        """Store collection holding income or expense records of ``kind``."""
        if kind == "income":
            return self.income_collection
        if kind == "expenses":
            return self.expenses_collection
        raise ValueError(f"Unknown transaction kind: {kind}")

    @property
    def store_path(self) -> Path:
        return self.data_dir / "store.json"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
