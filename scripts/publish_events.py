#!/usr/bin/env python3
"""Publish synthetic account events to Kafka.

Generates ``AccountOpened`` and monthly ``TransactionPosted`` envelopes for a
number of accounts and publishes them keyed by account id. Transactions go to
the transaction topic and lifecycle events to the account topic; ordering per
account holds within each topic, not across the two.
"""

import argparse
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from account_analytics.config import KafkaConfig
from account_analytics.generators import BehaviorProfile, EventStreamGenerator
from account_analytics.sinks import KafkaPublisher

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Publish synthetic account events to Kafka")
    parser.add_argument("--accounts", type=int, default=10, help="Number of accounts (default: 10)")
    parser.add_argument("--months", type=int, default=6, help="Months of activity per account (default: 6)")
    parser.add_argument(
        "--profile",
        choices=[p.value for p in BehaviorProfile],
        action="append",
        help="Behavior profile; repeat to cycle through several (default: all)",
    )
    parser.add_argument("--start", type=str, help="First month of activity, YYYY-MM (default: January this year)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--kafka-bootstrap", type=str, default="localhost:9092", help="Kafka bootstrap servers")
    parser.add_argument(
        "--duplicate-rate",
        type=float,
        default=0.0,
        help="Share of events published twice to exercise redelivery (default: 0)",
    )
    args = parser.parse_args()

    start = None
    if args.start:
        start = datetime.strptime(args.start, "%Y-%m").replace(tzinfo=timezone.utc)
    profiles = [BehaviorProfile(p) for p in args.profile] if args.profile else None

    config = KafkaConfig(bootstrap_servers=args.kafka_bootstrap)
    publisher = KafkaPublisher(config)
    generator = EventStreamGenerator(seed=args.seed)

    started = time.perf_counter()
    published = 0
    try:
        for event in generator.generate(args.accounts, profiles=profiles, months=args.months, start=start):
            topic = config.topic_for(event.kind)
            copies = 2 if generator.rng.random() < args.duplicate_rate else 1
            for _ in range(copies):
                publisher.send(topic, event.to_wire(), key=event.account_id)
                published += 1
    finally:
        publisher.close()

    elapsed = time.perf_counter() - started
    logger.info(
        "Published %d events for %d accounts in %.2fs (delivered=%d, failed=%d)",
        published,
        args.accounts,
        elapsed,
        publisher.stats.delivered,
        publisher.stats.failed,
    )


if __name__ == "__main__":
    main()
