"""Outbound message sinks."""

from account_analytics.sinks.kafka import KafkaPublisher, PublisherStats

__all__ = ["KafkaPublisher", "PublisherStats"]
