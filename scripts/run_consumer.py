#!/usr/bin/env python3
"""Run the account analytics consumer.

Consumes account and transaction events from Kafka and maintains per-account
analytics in PostgreSQL (durable) and Redis (cache).

Configuration comes from environment variables (see ``AnalyticsConfig.from_env``);
the flags below override the most common ones.
"""

import argparse
import logging
import signal
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from account_analytics.config import AnalyticsConfig
from account_analytics.consumer import KafkaEventConsumer
from account_analytics.coordinator import StoreCoordinator
from account_analytics.exceptions import AnalyticsError
from account_analytics.logging import setup_logging
from account_analytics.retry import RetryPolicy
from account_analytics.sinks import KafkaPublisher
from account_analytics.store.postgres import PostgresAnalyticsStore
from account_analytics.store.redis_cache import RedisAnalyticsCache

logger = logging.getLogger(__name__)


def build_consumer(config: AnalyticsConfig) -> tuple[KafkaEventConsumer, list]:
    """Wire store, cache, publisher, coordinator and consumer.

    Returns the consumer and the resources to close after it stops.
    """
    store = PostgresAnalyticsStore(config.postgres)
    store.ensure_schema()
    cache = RedisAnalyticsCache(config.redis)
    publisher = KafkaPublisher(config.kafka)

    coordinator = StoreCoordinator(
        store,
        cache,
        config=config,
        retry=RetryPolicy(config.retry),
        publisher=publisher,
    )
    consumer = KafkaEventConsumer(config, coordinator, publisher=publisher)
    return consumer, [publisher, cache, store]


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run the account analytics consumer")
    parser.add_argument("--kafka-bootstrap", type=str, help="Kafka bootstrap servers")
    parser.add_argument("--group-id", type=str, help="Kafka consumer group id")
    parser.add_argument("--lanes", type=int, help="Number of processing lanes")
    parser.add_argument("--batch-size", type=int, help="Messages consumed per batch")
    parser.add_argument(
        "--max-batches",
        type=int,
        default=None,
        help="Stop after this many non-empty batches (default: run until interrupted)",
    )
    parser.add_argument("--log-level", type=str, help="Log level (default: from LOG_LEVEL or INFO)")
    parser.add_argument("--log-format", choices=["standard", "json"], help="Log format")
    args = parser.parse_args()

    try:
        config = AnalyticsConfig.from_env()
        if args.kafka_bootstrap:
            config.kafka.bootstrap_servers = args.kafka_bootstrap
        if args.group_id:
            config.kafka.group_id = args.group_id
        if args.lanes:
            config.consumer.num_lanes = args.lanes
        if args.batch_size:
            config.consumer.batch_size = args.batch_size
        if args.log_level:
            config.log_level = args.log_level
        if args.log_format:
            config.log_format = args.log_format
        config.validate()
    except AnalyticsError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(config.log_level, config.log_format)

    consumer, resources = build_consumer(config)

    def _signal_handler(signum: int, frame: object) -> None:
        logger.info("Shutdown requested (signal %d), finishing current batch...", signum)
        consumer.stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        stats = consumer.run(max_batches=args.max_batches)
    finally:
        for resource in resources:
            resource.close()

    logger.info(
        "Done: received=%d applied=%d duplicates=%d rejected=%d failed=%d halted=%d",
        stats.received,
        stats.applied,
        stats.duplicates,
        stats.rejected,
        stats.failed,
        stats.halted,
    )


if __name__ == "__main__":
    main()
