from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Robotics Intelligence Globe API"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database (optional SQL history backend)
    database_url: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5

    # Providers
    github_token: str | None = None
    news_api_key: str | None = None
    github_api_base_url: str = "https://api.github.com"
    usaspending_api_base_url: str = "https://api.usaspending.gov/api/v2"
    news_api_base_url: str = "https://newsapi.org/v2"
    polymarket_clob_base_url: str = "https://clob.polymarket.com"
    market_data_base_url: str = "https://query1.finance.yahoo.com"

    # Data files
    companies_dataset_path: str = "data/private_companies.v2.json"
    narrative_history_path: str = "data/narrative-history.json"
    sticky_signals_path: str = "data/sticky-signals.json"
    breaking_contracts_path: str = "data/breaking-contracts.json"
    funding_database_path: str = "data/robotics-funding.json"

    # Caching
    companies_cache_ttl_seconds: float = 300.0
    narrative_cache_ttl_seconds: float = 900.0
    component_cache_ttl_seconds: float = 300.0
    upstream_cache_ttl_seconds: float = 60.0

    # Narrative Index
    narrative_weight_scheme: str = "expanded"
    benchmark_symbol: str = "URTH"
    robotics_index_symbols: list[str] = ["BOTZ", "ROBO"]
    history_append_attempts: int = 3

    # Upstream policy
    upstream_timeout_seconds: float = 8.0
    upstream_retry_attempts: int = 2
    upstream_backoff_base_seconds: float = 0.25
    upstream_backoff_max_seconds: float = 2.0

    # Security
    cors_origins: list[str] = []
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "testserver"]

    # Sentry
    sentry_dsn: str | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "globe"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125
    metrics_schema_version: str = "globe.v1"

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
