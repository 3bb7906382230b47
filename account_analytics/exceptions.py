"""Custom exception hierarchy for account-analytics."""


class AnalyticsError(Exception):
    """Base exception for all account-analytics errors."""


class ValidationError(AnalyticsError):
    """Raised when an event envelope is malformed or unsupported.

    Validation failures are never retried: the event is dropped and counted.
    """


class StoreError(AnalyticsError):
    """Raised when a durable store or cache operation fails."""


class TransientStoreError(StoreError):
    """Raised on timeouts and connectivity failures; safe to retry."""


class ConsistencyViolation(AnalyticsError):
    """Raised when an aggregate state breaks one of its invariants."""

    def __init__(self, account_id: str, violations: list[str]) -> None:
        self.account_id = account_id
        self.violations = list(violations)
        super().__init__(f"Account {account_id} violates invariants: {'; '.join(self.violations)}")


class ConfigurationError(AnalyticsError):
    """Raised when configuration is invalid or missing."""


class PublishError(AnalyticsError):
    """Raised when a message cannot be handed to the Kafka producer."""
