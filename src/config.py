from __future__ import annotations

from datetime import date
from decimal import Decimal
from functools import cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[1]


class AppSettings(BaseSettings):
    clearing_account: str = "Assets:Closing"
    closing_window_days: int = Field(default=15, ge=0)
    closing_max_candidates: int = Field(default=3, gt=0)
    closing_open_date: date = date(2000, 1, 1)
    closing_balance_date: date = date(2099, 1, 1)
    balance_tolerance: Decimal = Decimal("0.040")
    import_cache_path: Path = PROJECT_ROOT / "data" / "import_cache.db"

    model_config = SettingsConfigDict(
        env_prefix="BEANBOOK_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@cache
def config() -> AppSettings:
    return AppSettings()
