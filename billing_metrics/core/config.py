from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    DEBUG: bool = False
    APP_NAME: str = "billing-metrics"
    version: str = "0.1.0"
    APP_DATABASE_DSN: str = "sqlite:////tmp/database.db"
    REDIS_URL: str = "redis://localhost:6379"
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 2.0

    # Metrics cache
    METRICS_CACHE_NAMESPACE: str = "metrics"
    METRICS_CACHE_TTL_SECONDS: int = 1800  # 30 minutes

    # Aggregation
    METRICS_QUERY_TIMEOUT_SECONDS: float = 10.0
    METRICS_TOP_CUSTOMERS_LIMIT: int = 5
    METRICS_MAX_ANALYTICS_BUCKETS: int = 400

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"


settings = Settings()
