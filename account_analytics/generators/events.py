"""Synthetic account event streams for local runs and load tests."""

import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Iterator

from faker import Faker

from account_analytics.models.enums import AccountStatus, EventKind, TransactionType
from account_analytics.models.events import (
    AccountOpenedPayload,
    AccountStatusPayload,
    EventEnvelope,
    TransactionPayload,
)

CENT = Decimal("0.01")


class BehaviorProfile(str, Enum):
    """Shape of an account's monthly net flow."""

    STEADY = "steady"
    INCREASING = "increasing"
    DECREASING = "decreasing"
    VOLATILE = "volatile"


class EventStreamGenerator:
    """Generate ordered event envelopes for synthetic accounts.

    Each account gets an ``AccountOpened`` event followed by monthly
    ``TransactionPosted`` events whose net per month follows the chosen
    profile: constant for steady, strictly rising or falling by half the
    base amount per month for the trend profiles, and alternating sign for
    volatile.

    Parameters
    ----------
    seed : int | None
        Random seed for reproducibility.
    locale : str
        Faker locale (default ``pt_BR``).
    """

    CATEGORIES = [
        "groceries",
        "restaurants",
        "transport",
        "utilities",
        "health",
        "entertainment",
        "education",
        "shopping",
    ]
    CATEGORY_WEIGHTS = [0.25, 0.15, 0.15, 0.12, 0.08, 0.10, 0.05, 0.10]

    ACCOUNT_TYPES = ["CHECKING", "SAVINGS", "SALARY"]

    def __init__(self, seed: int | None = None, locale: str = "pt_BR") -> None:
        self.fake = Faker(locale)
        self.rng = random.Random(seed)
        if seed is not None:
            self.fake.seed_instance(seed)

    def monthly_nets(self, profile: BehaviorProfile, months: int, base: Decimal) -> list[Decimal]:
        """Target net flow for each month of a profile."""
        profile = BehaviorProfile(profile)
        step = (base / 2).quantize(CENT)
        if profile == BehaviorProfile.STEADY:
            return [base] * months
        if profile == BehaviorProfile.INCREASING:
            return [base + step * i for i in range(months)]
        if profile == BehaviorProfile.DECREASING:
            return [base + step * (months - 1 - i) for i in range(months)]

        nets = []
        for i in range(months):
            swing = (base * Decimal(str(round(self.rng.uniform(0.8, 1.2), 2)))).quantize(CENT)
            nets.append(swing if i % 2 == 0 else -swing)
        return nets

    def account_opened(self, account_id: str, occurred_at: datetime) -> EventEnvelope:
        return EventEnvelope(
            kind=EventKind.ACCOUNT_OPENED,
            account_id=account_id,
            occurred_at=occurred_at,
            idempotency_key=f"opened-{self.fake.uuid4()}",
            payload=AccountOpenedPayload(
                account_type=self.rng.choice(self.ACCOUNT_TYPES),
                user_id=self.fake.uuid4(),
                status=AccountStatus.ACTIVE.value,
            ),
        )

    def status_changed(
        self,
        account_id: str,
        occurred_at: datetime,
        status: AccountStatus,
        previous_status: AccountStatus | None = AccountStatus.ACTIVE,
    ) -> EventEnvelope:
        return EventEnvelope(
            kind=EventKind.ACCOUNT_STATUS_CHANGED,
            account_id=account_id,
            occurred_at=occurred_at,
            idempotency_key=f"status-{self.fake.uuid4()}",
            payload=AccountStatusPayload(
                status=status.value,
                previous_status=previous_status.value if previous_status else None,
            ),
        )

    def transaction(
        self,
        account_id: str,
        amount: Decimal,
        occurred_at: datetime,
        category: str | None = None,
    ) -> EventEnvelope:
        """Build one ``TransactionPosted`` envelope for a signed amount."""
        if amount > 0:
            tx_type = TransactionType.DEPOSIT
            description = f"Deposito {self.fake.company()}"
        else:
            tx_type = self.rng.choice([TransactionType.WITHDRAWAL, TransactionType.PAYMENT])
            description = f"Pagamento {self.fake.company()}"

        transaction_id = self.fake.uuid4()
        return EventEnvelope(
            kind=EventKind.TRANSACTION_POSTED,
            account_id=account_id,
            occurred_at=occurred_at,
            idempotency_key=f"tx-{transaction_id}",
            payload=TransactionPayload(
                amount=amount,
                transaction_id=transaction_id,
                transaction_type=tx_type.value,
                category=category,
                description=description,
            ),
        )

    def generate_account(
        self,
        profile: BehaviorProfile = BehaviorProfile.STEADY,
        months: int = 6,
        start: datetime | None = None,
        account_id: str | None = None,
        base_amount: Decimal = Decimal("1000.00"),
        withdrawals_per_month: int = 3,
    ) -> list[EventEnvelope]:
        """Generate the full, chronologically ordered stream for one account.

        Parameters
        ----------
        profile : BehaviorProfile
            Monthly net flow shape.
        months : int
            Number of consecutive calendar months with activity.
        start : datetime | None
            First month of activity (defaults to January of the current year, UTC).
        account_id : str | None
            Account id; a random UUID otherwise.
        base_amount : Decimal
            Reference monthly net.
        withdrawals_per_month : int
            Debits posted each month besides the single credit.

        Returns
        -------
        list[EventEnvelope]
            ``AccountOpened`` first, then every transaction in time order.
        """
        if months < 1:
            raise ValueError("months must be positive")
        if start is None:
            start = datetime(datetime.now(timezone.utc).year, 1, 1, tzinfo=timezone.utc)
        account_id = account_id or self.fake.uuid4()

        events = [self.account_opened(account_id, start - timedelta(days=1))]
        for index, net in enumerate(self.monthly_nets(profile, months, base_amount)):
            events.extend(self._month(account_id, self._month_start(start, index), net, withdrawals_per_month))
        return events

    def generate(
        self,
        num_accounts: int,
        profiles: list[BehaviorProfile] | None = None,
        months: int = 6,
        start: datetime | None = None,
    ) -> Iterator[EventEnvelope]:
        """Yield streams for several accounts, cycling through ``profiles``."""
        profiles = profiles or list(BehaviorProfile)
        for i in range(num_accounts):
            yield from self.generate_account(profiles[i % len(profiles)], months=months, start=start)

    def _month(
        self,
        account_id: str,
        month_start: datetime,
        net: Decimal,
        withdrawals_per_month: int,
    ) -> list[EventEnvelope]:
        withdrawals = [
            Decimal(str(round(self.rng.uniform(10, 300), 2))) for _ in range(withdrawals_per_month)
        ]
        deposit = net + sum(withdrawals, Decimal("0"))
        if deposit < Decimal("1.00"):
            # Keep the credit positive; the extra debit preserves the month's net
            withdrawals.append(Decimal("1.00") - deposit)
            deposit = Decimal("1.00")

        # Credit lands in the first days, debits anywhere up to day 28
        events = [self.transaction(account_id, deposit, self._moment(month_start, 1, 5), "salary")]
        for amount in withdrawals:
            category = self.rng.choices(self.CATEGORIES, weights=self.CATEGORY_WEIGHTS, k=1)[0]
            events.append(self.transaction(account_id, -amount, self._moment(month_start, 6, 28), category))
        events.sort(key=lambda e: e.occurred_at)
        return events

    def _moment(self, month_start: datetime, first_day: int, last_day: int) -> datetime:
        return month_start.replace(
            day=self.rng.randint(first_day, last_day),
            hour=self.rng.randint(8, 20),
            minute=self.rng.randint(0, 59),
            second=self.rng.randint(0, 59),
        )

    @staticmethod
    def _month_start(start: datetime, offset: int) -> datetime:
        month_index = start.month - 1 + offset
        return datetime(start.year + month_index // 12, month_index % 12 + 1, 1, tzinfo=timezone.utc)
