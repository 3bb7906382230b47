"""Configuration management for account-analytics."""

import os
from dataclasses import dataclass, field
from typing import Any

from account_analytics.exceptions import ConfigurationError
from account_analytics.models.enums import EventKind


@dataclass
class KafkaConfig:
    """Kafka consumer and producer configuration."""

    bootstrap_servers: str = "localhost:9092"
    group_id: str = "account-analytics"
    transaction_topic: str = "transaction-events"
    account_topic: str = "account-events"
    recalculated_topic: str = "analytics.recalculated"
    dead_letter_topic: str = "analytics.dead-letter"
    auto_offset_reset: str = "earliest"
    session_timeout_ms: int = 30000
    max_poll_interval_ms: int = 300000
    acks: str = "all"

    @property
    def topics(self) -> list[str]:
        """Topics the analytics consumer subscribes to."""
        return [self.transaction_topic, self.account_topic]

    def topic_for(self, kind: EventKind) -> str:
        """Topic an event kind is published to.

        Per-account ordering holds within a topic only, so lifecycle events
        are not ordered against transactions.
        """
        if kind == EventKind.TRANSACTION_POSTED:
            return self.transaction_topic
        return self.account_topic

    def consumer_dict(self) -> dict[str, Any]:
        """Convert to confluent-kafka consumer config dict."""
        return {
            "bootstrap.servers": self.bootstrap_servers,
            "group.id": self.group_id,
            "auto.offset.reset": self.auto_offset_reset,
            "enable.auto.commit": False,
            "session.timeout.ms": self.session_timeout_ms,
            "max.poll.interval.ms": self.max_poll_interval_ms,
        }

    def producer_dict(self) -> dict[str, Any]:
        """Convert to confluent-kafka producer config dict."""
        return {
            "bootstrap.servers": self.bootstrap_servers,
            "acks": self.acks,
            "enable.idempotence": True,
            "linger.ms": 5,
        }


@dataclass
class PostgresConfig:
    """PostgreSQL connection configuration for the durable store."""

    host: str = "localhost"
    port: int = 5432
    database: str = "analytics"
    user: str = "postgres"
    password: str = "postgres"
    table: str = "account_analytics"
    min_pool_size: int = 1
    max_pool_size: int = 10
    connect_timeout_seconds: int = 5
    statement_timeout_ms: int = 5000

    @property
    def connection_string(self) -> str:
        """Get connection string."""
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass
class RedisConfig:
    """Redis connection configuration for the cache."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: str | None = None
    key_prefix: str = "analytics:"
    ttl_seconds: int = 900
    socket_timeout_seconds: float = 2.0
    max_connections: int = 20


@dataclass
class ClassifierConfig:
    """Thresholds for volatility and spending-pattern classification."""

    high_threshold: float = 0.75
    moderate_threshold: float = 0.35
    volatility_window_months: int | None = None
    enable_seasonal: bool = True
    seasonal_min_months: int = 12
    seasonal_threshold: float = 0.6
    erratic_threshold: float = 0.8


@dataclass
class RetryConfig:
    """Exponential backoff for transient store failures."""

    max_attempts: int = 3
    initial_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_delay_seconds: float = 30.0


@dataclass
class CoordinatorConfig:
    """Store coordinator configuration."""

    idempotency_window: int = 500
    max_daily_buckets: int = 400
    publish_notifications: bool = True


@dataclass
class ConsumerConfig:
    """Event consumer concurrency configuration."""

    num_lanes: int = 8
    batch_size: int = 10
    poll_timeout_seconds: float = 1.0
    redelivery_delay_seconds: float = 1.0


@dataclass
class AnalyticsConfig:
    """Main configuration for account-analytics."""

    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    postgres: PostgresConfig = field(default_factory=PostgresConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    consumer: ConsumerConfig = field(default_factory=ConsumerConfig)
    log_level: str = "INFO"
    log_format: str = "standard"

    def validate(self) -> None:
        """Check cross-field constraints.

        Raises
        ------
        ConfigurationError
            If any value is out of range.
        """
        errors = []
        if self.classifier.moderate_threshold < 0 or self.classifier.high_threshold < 0:
            errors.append("classifier thresholds must be non-negative")
        if self.classifier.moderate_threshold > self.classifier.high_threshold:
            errors.append("moderate_threshold must not exceed high_threshold")
        window = self.classifier.volatility_window_months
        if window is not None and window < 2:
            errors.append("volatility_window_months must be at least 2")
        if self.coordinator.idempotency_window < 1:
            errors.append("idempotency_window must be positive")
        if self.coordinator.max_daily_buckets < 1:
            errors.append("max_daily_buckets must be positive")
        if self.retry.max_attempts < 1:
            errors.append("retry max_attempts must be positive")
        if self.retry.multiplier < 1:
            errors.append("retry multiplier must be at least 1")
        if self.consumer.num_lanes < 1:
            errors.append("num_lanes must be positive")
        if self.consumer.batch_size < 1:
            errors.append("batch_size must be positive")
        if errors:
            raise ConfigurationError("; ".join(errors))

    @classmethod
    def from_env(cls) -> "AnalyticsConfig":
        """Create config from environment variables."""
        try:
            kafka = KafkaConfig(
                bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
                group_id=os.getenv("KAFKA_GROUP_ID", "account-analytics"),
                transaction_topic=os.getenv("KAFKA_TRANSACTION_TOPIC", "transaction-events"),
                account_topic=os.getenv("KAFKA_ACCOUNT_TOPIC", "account-events"),
                recalculated_topic=os.getenv("KAFKA_RECALCULATED_TOPIC", "analytics.recalculated"),
                dead_letter_topic=os.getenv("KAFKA_DEAD_LETTER_TOPIC", "analytics.dead-letter"),
            )

            postgres = PostgresConfig(
                host=os.getenv("POSTGRES_HOST", "localhost"),
                port=int(os.getenv("POSTGRES_PORT", "5432")),
                database=os.getenv("POSTGRES_DB", "analytics"),
                user=os.getenv("POSTGRES_USER", "postgres"),
                password=os.getenv("POSTGRES_PASSWORD", "postgres"),
                max_pool_size=int(os.getenv("POSTGRES_POOL_SIZE", "10")),
            )

            redis = RedisConfig(
                host=os.getenv("REDIS_HOST", "localhost"),
                port=int(os.getenv("REDIS_PORT", "6379")),
                db=int(os.getenv("REDIS_DB", "0")),
                password=os.getenv("REDIS_PASSWORD") or None,
                ttl_seconds=int(os.getenv("REDIS_TTL_SECONDS", "900")),
            )

            window = os.getenv("VOLATILITY_WINDOW_MONTHS")
            classifier = ClassifierConfig(
                high_threshold=float(os.getenv("VOLATILITY_HIGH_THRESHOLD", "0.75")),
                moderate_threshold=float(os.getenv("VOLATILITY_MODERATE_THRESHOLD", "0.35")),
                volatility_window_months=int(window) if window else None,
                enable_seasonal=os.getenv("ENABLE_SEASONAL", "true").lower() == "true",
            )

            retry = RetryConfig(
                max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", "3")),
                initial_delay_seconds=float(os.getenv("RETRY_INITIAL_DELAY", "1.0")),
                multiplier=float(os.getenv("RETRY_MULTIPLIER", "2.0")),
            )

            coordinator = CoordinatorConfig(
                idempotency_window=int(os.getenv("IDEMPOTENCY_WINDOW", "500")),
                max_daily_buckets=int(os.getenv("MAX_DAILY_BUCKETS", "400")),
                publish_notifications=os.getenv("PUBLISH_NOTIFICATIONS", "true").lower() == "true",
            )

            consumer = ConsumerConfig(
                num_lanes=int(os.getenv("NUM_LANES", "8")),
                batch_size=int(os.getenv("CONSUMER_BATCH_SIZE", "10")),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment value: {e}") from e

        config = cls(
            kafka=kafka,
            postgres=postgres,
            redis=redis,
            classifier=classifier,
            retry=retry,
            coordinator=coordinator,
            consumer=consumer,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "standard"),
        )
        config.validate()
        return config
