"""Kafka publisher for recalculation notifications and dead letters."""

import json
import logging
from dataclasses import dataclass
from typing import Any

from confluent_kafka import KafkaException, Producer

from account_analytics.config import KafkaConfig
from account_analytics.exceptions import PublishError
from account_analytics.models.analytics import AccountAnalytics
from account_analytics.store.serialization import serialize_value

logger = logging.getLogger(__name__)


@dataclass
class PublisherStats:
    """Track producer delivery statistics."""

    sent: int = 0
    delivered: int = 0
    failed: int = 0

    @property
    def success_rate(self) -> float:
        """Calculate success rate."""
        total = self.delivered + self.failed
        return self.delivered / total if total > 0 else 0.0


class KafkaPublisher:
    """Publish analytics messages to Kafka, keyed by account id."""

    def __init__(self, config: KafkaConfig | str, producer: Producer | None = None) -> None:
        """Initialize the publisher.

        Parameters
        ----------
        config : KafkaConfig | str
            Kafka configuration or bootstrap servers string.
        producer : Producer | None
            Existing producer; one is created from ``config`` otherwise.
        """
        if isinstance(config, str):
            config = KafkaConfig(bootstrap_servers=config)

        self.config = config
        self.producer = producer or Producer(config.producer_dict())
        self.stats = PublisherStats()

    def _delivery_callback(self, err: Any, msg: Any) -> None:
        """Handle delivery reports."""
        if err:
            self.stats.failed += 1
            logger.error("Delivery failed: %s", err)
        else:
            self.stats.delivered += 1
            logger.debug("Delivered to %s[%d]@%d", msg.topic(), msg.partition(), msg.offset())

    def send(
        self,
        topic: str,
        value: dict[str, Any] | bytes | None,
        key: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Hand one message to the producer.

        Raises
        ------
        PublishError
            If the producer queue is full or the producer rejects the message.
        """
        if isinstance(value, dict):
            value = json.dumps(serialize_value(value), ensure_ascii=False).encode("utf-8")

        try:
            self.producer.produce(
                topic=topic,
                key=key.encode("utf-8") if key else None,
                value=value,
                headers=list(headers.items()) if headers else None,
                callback=self._delivery_callback,
            )
        except (BufferError, KafkaException) as e:
            raise PublishError(f"Could not publish to {topic}: {e}") from e
        self.stats.sent += 1
        self.producer.poll(0)

    def publish_recalculated(self, state: AccountAnalytics) -> bool:
        """Fire-and-forget notification that an account's analytics changed.

        Returns whether the message was handed to the producer.
        """
        message = {
            "accountId": state.account_id,
            "spendingPattern": state.spending_pattern,
            "volatilityScore": state.volatility_score,
            "lastUpdated": state.last_updated,
        }
        try:
            self.send(self.config.recalculated_topic, message, key=state.account_id)
        except PublishError as e:
            logger.warning("Recalculated notification dropped for account %s: %s", state.account_id, e)
            return False
        return True

    def publish_dead_letter(
        self,
        value: bytes | None,
        key: str | None,
        reason: str,
        source_topic: str | None = None,
        partition: int | None = None,
        offset: int | None = None,
    ) -> None:
        """Route an unprocessable message to the dead-letter topic."""
        headers = {"dlt-reason": reason}
        if source_topic is not None:
            headers["dlt-original-topic"] = source_topic
        if partition is not None:
            headers["dlt-original-partition"] = str(partition)
        if offset is not None:
            headers["dlt-original-offset"] = str(offset)
        self.send(self.config.dead_letter_topic, value, key=key, headers=headers)
        logger.error(
            "Dead-lettered message key=%s from %s[%s]@%s: %s",
            key, source_topic, partition, offset, reason,
        )

    def flush(self, timeout: float = 30.0) -> None:
        """Flush pending messages."""
        self.producer.flush(timeout)

    def close(self) -> None:
        """Flush and close the producer."""
        self.flush()
        logger.info(
            "Kafka publisher closed: sent=%d, delivered=%d, failed=%d",
            self.stats.sent,
            self.stats.delivered,
            self.stats.failed,
        )
