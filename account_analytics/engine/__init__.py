"""Pure aggregation and classification over account analytics."""

from account_analytics.engine.aggregator import fold
from account_analytics.engine.classifier import Classification, classify

__all__ = ["Classification", "classify", "fold"]
