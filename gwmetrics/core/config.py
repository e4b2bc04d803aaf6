"""Runtime settings for the metrics engine."""

from typing import Dict, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    SERVICE_NAME: str = "gwmetrics"

    # Default registry setup
    METRICS_DEFAULT_COLLECTORS: bool = True
    METRICS_NAMESPACE: str = ""
    # 0 means unbounded
    METRICS_MAX_SERIES_PER_FAMILY: int = 0
    METRICS_INCLUDE_TIMESTAMPS: bool = False

    # Push gateway
    PUSHGATEWAY_URL: str = "http://localhost:9091"
    PUSHGATEWAY_TIMEOUT_SECONDS: float = 10.0
    PUSHGATEWAY_HEADERS: Dict[str, str] = {}

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings()
    return _settings_cache


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings_cache
    _settings_cache = None
