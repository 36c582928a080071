from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    server_host: str = "0.0.0.0"
    server_port: int = 8080
    # Optional full database URL override (useful for tests)
    database_url: str = ""
    db_host: str = "db"
    db_port: int = 5432
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_name: str = "feature_flags"
    # Database connection pool settings
    db_pool_size: int = 20
    db_max_overflow: int = 30
    db_pool_recycle: int = 3600  # Recycle connections after 1 hour
    db_pool_pre_ping: bool = True
    # Redis; empty means the in-process cache is used
    redis_url: str = ""
    # Environment used when a request does not name one
    default_environment: str = "production"
    # Flag snapshot cache TTL (seconds)
    flag_cache_ttl_seconds: int = 300  # 5 minutes
    # Interval of the global flag cache sweep (seconds)
    cache_refresh_interval_seconds: int = 60
    # Record enabled/disabled/used events
    enable_feature_analytics: bool = True
    # Length of the linear ramp used by the gradual strategy. Default: 7 days
    gradual_rollout_window_seconds: int = 604800
    analytics_default_days: int = 7

