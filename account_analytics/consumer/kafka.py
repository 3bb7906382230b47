"""Kafka consumer feeding account events into the processing lanes."""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any

from confluent_kafka import Consumer, KafkaError, KafkaException, TopicPartition

from account_analytics.config import AnalyticsConfig
from account_analytics.consumer.dispatcher import (
    BatchDispatcher,
    BatchOutcome,
    ConsumerStats,
    InboundMessage,
)
from account_analytics.consumer.lanes import LaneExecutor
from account_analytics.coordinator import StoreCoordinator, UpdateResult
from account_analytics.sinks.kafka import KafkaPublisher

logger = logging.getLogger(__name__)


def _alert_halted(result: UpdateResult) -> None:
    logger.critical(
        "ALERT lane halted for account %s at event %s: %s",
        result.account_id,
        result.idempotency_key,
        result.error,
        extra={"extra": {"account_id": result.account_id, "event": result.idempotency_key}},
    )


def _message_timestamp(msg: Any) -> datetime | None:
    timestamp_type, timestamp_ms = msg.timestamp()
    if timestamp_type == 0 or timestamp_ms is None or timestamp_ms < 0:
        return None
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


def to_inbound(msg: Any) -> InboundMessage:
    """Convert a confluent-kafka message into an ``InboundMessage``."""
    key = msg.key()
    return InboundMessage(
        topic=msg.topic(),
        partition=msg.partition(),
        offset=msg.offset(),
        value=msg.value(),
        key=key.decode("utf-8") if isinstance(key, bytes) else key,
        timestamp=_message_timestamp(msg),
    )


class KafkaEventConsumer:
    """Consume transaction and account topics with manual offset commits.

    Offsets are committed only for events that reached a terminal
    acknowledged state; partitions holding a failed or cancelled event are
    rewound so that event is redelivered.
    """

    def __init__(
        self,
        config: AnalyticsConfig,
        coordinator: StoreCoordinator,
        publisher: KafkaPublisher | None = None,
        consumer: Consumer | None = None,
    ) -> None:
        """Initialize the consumer.

        Parameters
        ----------
        config : AnalyticsConfig
            Full service configuration.
        coordinator : StoreCoordinator
            Handles each event inside its account's lane.
        publisher : KafkaPublisher | None
            Dead-letter sink; failed and halted events are only logged without it.
        consumer : Consumer | None
            Existing consumer; one is created from ``config.kafka`` otherwise.
        """
        self.config = config
        self.consumer = consumer or Consumer(config.kafka.consumer_dict())
        self.stats = ConsumerStats()
        self.lanes = LaneExecutor(
            coordinator.process,
            num_lanes=config.consumer.num_lanes,
            on_halt=_alert_halted,
        )
        self.dispatcher = BatchDispatcher(self.lanes, publisher=publisher, stats=self.stats)
        self._stop = threading.Event()
        self._sleep = time.sleep

    def start(self) -> None:
        """Subscribe to the event topics and start the lanes."""
        topics = self.config.kafka.topics
        self.consumer.subscribe(topics)
        self.lanes.start()
        logger.info("Subscribed to %s as group %s", ", ".join(topics), self.config.kafka.group_id)

    def poll_once(self) -> BatchOutcome | None:
        """Consume and process one batch.

        Returns
        -------
        BatchOutcome | None
            ``None`` when nothing was consumed.
        """
        messages = self.consumer.consume(
            num_messages=self.config.consumer.batch_size,
            timeout=self.config.consumer.poll_timeout_seconds,
        )
        inbound = []
        for msg in messages:
            err = msg.error()
            if err is not None:
                if err.code() != KafkaError._PARTITION_EOF:
                    logger.error("Consumer error: %s", err)
                continue
            inbound.append(to_inbound(msg))

        if not inbound:
            return None

        outcome = self.dispatcher.dispatch(inbound)
        self._apply(outcome)
        return outcome

    def _apply(self, outcome: BatchOutcome) -> None:
        for (topic, partition), offset in outcome.rewinds.items():
            logger.warning("Rewinding %s[%d] to offset %d for redelivery", topic, partition, offset)
            self.consumer.seek(TopicPartition(topic, partition, offset))

        if outcome.commits:
            offsets = [
                TopicPartition(topic, partition, offset)
                for (topic, partition), offset in outcome.commits.items()
            ]
            try:
                self.consumer.commit(offsets=offsets, asynchronous=False)
            except KafkaException as e:
                # Uncommitted events are redelivered and suppressed as duplicates
                logger.error("Offset commit failed: %s", e)

        if outcome.rewinds:
            self._sleep(self.config.consumer.redelivery_delay_seconds)

    def run(self, max_batches: int | None = None) -> ConsumerStats:
        """Poll until ``stop`` is called or ``max_batches`` batches were processed."""
        self.start()
        batches = 0
        try:
            while not self._stop.is_set():
                if self.poll_once() is not None:
                    batches += 1
                    if batches % 100 == 0:
                        logger.info("Consumer progress: %s", self.stats)
                if max_batches is not None and batches >= max_batches:
                    break
        finally:
            self.close()
        return self.stats

    def stop(self) -> None:
        """Ask ``run`` to return after the current batch."""
        self._stop.set()

    def close(self) -> None:
        """Stop the lanes and close the Kafka consumer."""
        self.lanes.shutdown(wait=True)
        self.consumer.close()
        logger.info(
            "Consumer closed: received=%d, applied=%d, duplicates=%d, rejected=%d, "
            "failed=%d, halted=%d, dead_lettered=%d",
            self.stats.received,
            self.stats.applied,
            self.stats.duplicates,
            self.stats.rejected,
            self.stats.failed,
            self.stats.halted,
            self.stats.dead_lettered,
        )
