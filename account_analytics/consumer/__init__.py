"""Event consumption: per-account lanes, batch dispatch and the Kafka consumer."""

from account_analytics.consumer.dispatcher import (
    BatchDispatcher,
    BatchOutcome,
    ConsumerStats,
    InboundMessage,
)
from account_analytics.consumer.kafka import KafkaEventConsumer
from account_analytics.consumer.lanes import LaneExecutor

__all__ = [
    "BatchDispatcher",
    "BatchOutcome",
    "ConsumerStats",
    "InboundMessage",
    "KafkaEventConsumer",
    "LaneExecutor",
]
