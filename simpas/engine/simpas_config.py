from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix='SIMPAS_', env_file='.env', extra='ignore')

    app_name: str = 'SIMPAS'
    school_name: str = 'Sekolah'
    students_csv_url: str = (
        'https://docs.google.com/spreadsheets/d/e/2PACX-1vQE3K6fsKmQLDCuYJajLi1P0NGJgOlIjCG20M5HbmpF_HNYcdMxIzMV6WSOHT4pncvpg2DXoJL8lcM4'
        '/pub?gid=0&single=true&output=csv'
    )
    violations_csv_url: str = (
        'https://docs.google.com/spreadsheets/d/e/2PACX-1vSjjjQTJbDSEngCSmo_tE7pbXLHUcZK385u010_UE-WL5QwfBNMVS4iW4Nu6OWR3Kxvr0KdYkhBj9gq'
        '/pub?gid=0&single=true&output=csv'
    )
    script_url: str = (
        'https://script.google.com/macros/s/AKfycbx5RJHID-0QupEh0q3nT3-leg45UEntgvtmqAyLm8PnAN5-kbdYcnoixsILQTWbCLDy/exec'
    )
    store_path: str = '~/.simpas/store.json'
    request_timeout_seconds: float = 15.0
    refresh_interval_seconds: int = 30
    manual_refresh_floor_seconds: float = 1.0
    recent_write_window_minutes: int = 10
    recent_limit: int = 5
    log_level: str = 'INFO'
    login_username: str = 'admin'
    login_password: str = 'admin'


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
