"""Synthetic event generators."""

from account_analytics.generators.events import BehaviorProfile, EventStreamGenerator

__all__ = ["BehaviorProfile", "EventStreamGenerator"]
