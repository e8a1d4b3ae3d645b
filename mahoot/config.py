"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── TiDB (MySQL-protocol compatible) ───────────────────────────────────
    tidb_host: str = "tidb"
    tidb_port: int = 4000
    tidb_user: str = "root"
    tidb_password: str = ""
    tidb_database: str = "mahoot"

    @property
    def tidb_url(self) -> str:
        return (
            f"mysql+aiomysql://{self.tidb_user}:{self.tidb_password}"
            f"@{self.tidb_host}:{self.tidb_port}/{self.tidb_database}"
        )

    # ── Redis ──────────────────────────────────────────────────────────────
    redis_host: str = "redis"
    redis_port: int = 6379
    feed_lease_enabled: bool = True      # serialise feed generation per user
    feed_lease_ttl_ms: int = 10_000      # lease auto-expires if holder dies
    feed_lease_wait_seconds: float = 2.0

    # ── Kafka ──────────────────────────────────────────────────────────────
    kafka_bootstrap_servers: str = "kafka:9092"
    kafka_topic_follows: str = "follow-events"
    kafka_topic_posts: str = "post-events"
    kafka_consumer_group: str = "mahoot-ingestion"

    # ── Mahoot defaults ────────────────────────────────────────────────────
    default_daily_post_limit: int = 300
    default_quota: int = 7
    default_quota_ceiling: int = 20      # cap for the calculated default quota
    overfetch_factor: int = 3            # candidates fetched per free slot
    feed_page_size: int = 20
    stats_retention_days: int = 60
    stats_cleanup_interval_seconds: int = 6 * 3600
    ingestion_log_every: int = 100

    # ── Observability ──────────────────────────────────────────────────────
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "mahoot-feed"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
