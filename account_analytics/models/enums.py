"""Enumeration types for analytics events and aggregates."""

from enum import Enum


class EventKind(str, Enum):
    ACCOUNT_OPENED = "AccountOpened"
    ACCOUNT_STATUS_CHANGED = "AccountStatusChanged"
    TRANSACTION_POSTED = "TransactionPosted"


class SpendingPattern(str, Enum):
    INACTIVE = "INACTIVE"
    STABLE = "STABLE"
    VARIABLE = "VARIABLE"
    VOLATILE = "VOLATILE"
    INCREASING = "INCREASING"
    DECREASING = "DECREASING"
    ERRATIC = "ERRATIC"
    SEASONAL = "SEASONAL"


class TransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"
    PAYMENT = "PAYMENT"
    FEE = "FEE"
    INTEREST = "INTEREST"


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    FROZEN = "FROZEN"
    SUSPENDED = "SUSPENDED"
    CLOSED = "CLOSED"
