from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = "sqlite:///./taxi_ledger.db"
    business_timezone: str = "Asia/Tokyo"
    default_shimebi_day: int = 20
    default_business_start_hour: int = 9
    default_daily_goal: int = 50000
    default_planned_hours: int = 12
    duty_day_sample_size: int = 20

    model_config = SettingsConfigDict(
        env_prefix="TAXI_LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
