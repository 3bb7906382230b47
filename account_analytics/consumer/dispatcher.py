"""Batch dispatch from transport messages to processing lanes.

The dispatcher is transport-agnostic: it parses each message, hands valid
envelopes to the lanes, waits for the batch, and works out per partition
which offset may be committed and where consumption must rewind so that
unacknowledged events are redelivered.
"""

import logging
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime

from account_analytics.coordinator import UpdateResult, UpdateStage, UpdateStatus
from account_analytics.consumer.lanes import LaneExecutor
from account_analytics.exceptions import AnalyticsError, PublishError, ValidationError
from account_analytics.models.events import EventEnvelope, parse_envelope
from account_analytics.sinks.kafka import KafkaPublisher

logger = logging.getLogger(__name__)

TopicPartitionKey = tuple[str, int]


@dataclass(frozen=True)
class InboundMessage:
    """A raw message as delivered by the transport."""

    topic: str
    partition: int
    offset: int
    value: bytes | None
    key: str | None = None
    timestamp: datetime | None = None


@dataclass
class ConsumerStats:
    """Counters for every outcome the consumer observes."""

    received: int = 0
    applied: int = 0
    duplicates: int = 0
    rejected: int = 0
    failed: int = 0
    halted: int = 0
    deferred: int = 0
    dead_lettered: int = 0

    def record(self, status: UpdateStatus) -> None:
        if status == UpdateStatus.ACKNOWLEDGED:
            self.applied += 1
        elif status == UpdateStatus.DUPLICATE:
            self.duplicates += 1
        elif status == UpdateStatus.REJECTED:
            self.rejected += 1
        elif status == UpdateStatus.FAILED:
            self.failed += 1
        elif status == UpdateStatus.HALTED:
            self.halted += 1
        else:
            self.deferred += 1


@dataclass
class BatchOutcome:
    """What the transport should do after a batch.

    ``commits`` maps a partition to the next offset to commit; ``rewinds``
    maps a partition to the offset consumption must seek back to.
    """

    commits: dict[TopicPartitionKey, int] = field(default_factory=dict)
    rewinds: dict[TopicPartitionKey, int] = field(default_factory=dict)
    results: list[UpdateResult] = field(default_factory=list)


class BatchDispatcher:
    """Drive lanes with a batch of transport messages."""

    def __init__(
        self,
        lanes: LaneExecutor,
        publisher: KafkaPublisher | None = None,
        stats: ConsumerStats | None = None,
    ) -> None:
        self.lanes = lanes
        self.publisher = publisher
        self.stats = stats or ConsumerStats()

    def dispatch(self, messages: list[InboundMessage]) -> BatchOutcome:
        """Process a batch and decide commits and rewinds per partition."""
        # A new batch starts after any rewind, so earlier failures no longer block
        self.lanes.unblock_all()

        acked: dict[InboundMessage, bool] = {}
        pending = []
        for message in messages:
            self.stats.received += 1
            try:
                envelope = parse_envelope(message.value or b"", received_at=message.timestamp)
            except ValidationError as e:
                self.stats.rejected += 1
                logger.warning(
                    "Dropping invalid message %s[%d]@%d: %s",
                    message.topic, message.partition, message.offset, e,
                )
                acked[message] = True
                continue
            pending.append((message, envelope, self.lanes.submit(envelope)))

        outcome = BatchOutcome()
        for message, envelope, future in pending:
            result = self._result_of(envelope, future)
            self.stats.record(result.status)
            outcome.results.append(result)
            acked[message] = self._settle(message, result)

        self._plan_offsets(messages, acked, outcome)
        return outcome

    @staticmethod
    def _result_of(envelope: EventEnvelope, future: "Future[UpdateResult]") -> UpdateResult:
        """Wait for a lane result; a crashed lane fails only its own message."""
        try:
            return future.result()
        except Exception as e:
            logger.exception(
                "Lane crashed on event %s for account %s", envelope.idempotency_key, envelope.account_id
            )
            return UpdateResult(
                envelope.account_id, envelope.idempotency_key, UpdateStatus.FAILED, UpdateStage.RECEIVED, error=e
            )

    def _settle(self, message: InboundMessage, result: UpdateResult) -> bool:
        """Return whether the message may be acknowledged."""
        if result.status.acknowledged:
            return True

        if result.status == UpdateStatus.HALTED:
            # Parked in the dead-letter topic for replay once the account is repaired
            return self._dead_letter(message, f"account halted: {result.error or 'lane halted'}")

        if result.status == UpdateStatus.FAILED:
            if result.error is None or isinstance(result.error, AnalyticsError):
                self._dead_letter(message, f"retries exhausted: {result.error}")
            else:
                self._dead_letter(message, f"handler crashed: {result.error!r}")
        return False

    def _dead_letter(self, message: InboundMessage, reason: str) -> bool:
        if self.publisher is None:
            logger.error(
                "No dead-letter publisher; %s[%d]@%d not parked: %s",
                message.topic, message.partition, message.offset, reason,
            )
            return False
        try:
            self.publisher.publish_dead_letter(
                message.value,
                message.key,
                reason,
                source_topic=message.topic,
                partition=message.partition,
                offset=message.offset,
            )
        except PublishError as e:
            logger.error("Dead-letter publish failed for %s[%d]@%d: %s",
                         message.topic, message.partition, message.offset, e)
            return False
        self.stats.dead_lettered += 1
        return True

    @staticmethod
    def _plan_offsets(
        messages: list[InboundMessage],
        acked: dict[InboundMessage, bool],
        outcome: BatchOutcome,
    ) -> None:
        by_partition: dict[TopicPartitionKey, list[InboundMessage]] = {}
        for message in messages:
            by_partition.setdefault((message.topic, message.partition), []).append(message)

        for tp, partition_messages in by_partition.items():
            partition_messages.sort(key=lambda m: m.offset)
            first_unacked = next((m for m in partition_messages if not acked[m]), None)
            if first_unacked is None:
                outcome.commits[tp] = partition_messages[-1].offset + 1
            else:
                outcome.rewinds[tp] = first_unacked.offset
                if first_unacked.offset > partition_messages[0].offset:
                    outcome.commits[tp] = first_unacked.offset
