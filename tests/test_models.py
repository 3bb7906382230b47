"""Tests for event envelopes and the aggregate state model."""

import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from account_analytics.exceptions import ConsistencyViolation, ValidationError
from account_analytics.models import (
    AccountAnalytics,
    AccountOpenedPayload,
    AccountStatusPayload,
    DailyBalance,
    EventKind,
    SpendingPattern,
    TransactionPayload,
    check_invariants,
    ensure_consistent,
    parse_envelope,
)
from account_analytics.models.analytics import (
    NO_CATEGORY,
    day_key,
    is_day_key,
    is_month_key,
    month_key,
    remember_key,
)
from account_analytics.models.events import parse_amount, parse_timestamp


def _wire(**overrides) -> dict:
    data = {
        "kind": "TransactionPosted",
        "accountId": "acct-1",
        "occurredAt": "2024-01-15T10:30:00Z",
        "idempotencyKey": "evt-1",
        "payload": {"amount": "150.25", "category": "groceries"},
    }
    data.update(overrides)
    return data


class TestParseEnvelope:
    """Tests for parse_envelope."""

    def test_transaction_from_bytes(self) -> None:
        envelope = parse_envelope(json.dumps(_wire()).encode("utf-8"))

        assert envelope.kind == EventKind.TRANSACTION_POSTED
        assert envelope.account_id == "acct-1"
        assert envelope.idempotency_key == "evt-1"
        assert envelope.occurred_at == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert isinstance(envelope.payload, TransactionPayload)
        assert envelope.payload.amount == Decimal("150.25")
        assert envelope.payload.category == "groceries"

    def test_json_number_amount_keeps_decimal_precision(self) -> None:
        raw = '{"kind":"TransactionPosted","accountId":"a","occurredAt":"2024-01-01T00:00:00Z",' \
              '"idempotencyKey":"k","payload":{"amount":0.1}}'

        envelope = parse_envelope(raw)

        assert envelope.payload.amount == Decimal("0.1")

    def test_negative_amount(self) -> None:
        envelope = parse_envelope(_wire(payload={"amount": "-50.00"}))

        assert envelope.payload.amount == Decimal("-50.00")

    def test_account_opened(self) -> None:
        envelope = parse_envelope(_wire(kind="AccountOpened", payload={"accountType": "SAVINGS"}))

        assert envelope.kind == EventKind.ACCOUNT_OPENED
        assert isinstance(envelope.payload, AccountOpenedPayload)
        assert envelope.payload.account_type == "SAVINGS"

    def test_account_status_requires_status(self) -> None:
        with pytest.raises(ValidationError, match="payload.status"):
            parse_envelope(_wire(kind="AccountStatusChanged", payload={}))

    def test_account_status_changed(self) -> None:
        envelope = parse_envelope(
            _wire(kind="AccountStatusChanged", payload={"status": "FROZEN", "previousStatus": "ACTIVE"})
        )

        assert isinstance(envelope.payload, AccountStatusPayload)
        assert envelope.payload.status == "FROZEN"
        assert envelope.payload.previous_status == "ACTIVE"

    def test_received_at_from_transport(self) -> None:
        received = datetime(2024, 1, 16, tzinfo=timezone.utc)

        envelope = parse_envelope(_wire(), received_at=received)

        assert envelope.received_at == received

    @pytest.mark.parametrize(
        "raw",
        [
            b"not json",
            b"[1, 2]",
            b"",
        ],
    )
    def test_invalid_documents(self, raw: bytes) -> None:
        with pytest.raises(ValidationError):
            parse_envelope(raw)

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"kind": "LoanApproved"}, "Unsupported event kind"),
            ({"accountId": ""}, "accountId"),
            ({"idempotencyKey": None}, "idempotencyKey"),
            ({"occurredAt": "yesterday"}, "occurredAt"),
            ({"payload": {"amount": "abc"}}, "not a decimal"),
            ({"payload": {}}, "amount is required"),
            ({"payload": {"amount": "NaN"}}, "finite"),
            ({"payload": "100"}, "payload must be an object"),
        ],
    )
    def test_missing_or_invalid_fields(self, overrides: dict, message: str) -> None:
        with pytest.raises(ValidationError, match=message):
            parse_envelope(_wire(**overrides))

    def test_to_wire_parses_back(self) -> None:
        envelope = parse_envelope(_wire())

        again = parse_envelope(envelope.to_wire())

        assert again == envelope


class TestParsing:
    def test_naive_timestamp_is_utc(self) -> None:
        assert parse_timestamp("2024-03-01T08:00:00", "t").tzinfo == timezone.utc

    def test_offset_timestamp_converted_to_utc(self) -> None:
        parsed = parse_timestamp("2024-03-01T08:00:00-03:00", "t")

        assert parsed == datetime(2024, 3, 1, 11, 0, tzinfo=timezone.utc)

    def test_float_amount_goes_through_str(self) -> None:
        assert parse_amount(19.99) == Decimal("19.99")

    def test_bool_amount_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_amount(True)

    @pytest.mark.parametrize("value", ["1E+27", "-1E+15", "999999999999999999", "0.000000001"])
    def test_out_of_range_amount_rejected(self, value: str) -> None:
        with pytest.raises(ValidationError):
            parse_amount(value)

    @pytest.mark.parametrize("value", ["999999999999999.99", "-0.00000001", "1.5000000000"])
    def test_amount_within_bounds(self, value: str) -> None:
        assert parse_amount(value) == Decimal(value)

    def test_huge_amount_envelope_rejected(self) -> None:
        wire = _wire(payload={"amount": "1E+27"})

        with pytest.raises(ValidationError, match="out of range"):
            parse_envelope(json.dumps(wire).encode("utf-8"))


class TestBucketKeys:
    def test_month_and_day_keys(self) -> None:
        moment = datetime(2024, 2, 5, 23, 59, tzinfo=timezone.utc)

        assert month_key(moment) == "2024-02"
        assert day_key(moment) == "2024-02-05"

    def test_key_patterns(self) -> None:
        assert is_month_key("2024-12")
        assert not is_month_key("2024-13")
        assert not is_month_key("2024-1")
        assert is_day_key("2024-01-31")
        assert not is_day_key("2024-01-32")
        assert not is_day_key("2024-01")

    def test_non_canonical_keys_rejected_on_construction(self) -> None:
        with pytest.raises(ConsistencyViolation, match="non-canonical"):
            AccountAnalytics(account_id="acct-1", monthly_income={"2024-1": Decimal("10")})


class TestAccountAnalytics:
    def test_empty_state(self) -> None:
        state = AccountAnalytics.empty("acct-1")

        assert state.total_balance == Decimal("0")
        assert state.transaction_count == 0
        assert state.primary_category == NO_CATEGORY
        assert state.spending_pattern == SpendingPattern.INACTIVE
        assert state.daily_balances == {}
        assert check_invariants(state) == []

    def test_month_keys_sorted_union(self) -> None:
        state = AccountAnalytics(
            account_id="acct-1",
            monthly_income={"2024-03": Decimal("1"), "2024-01": Decimal("1")},
            monthly_expenses={"2024-02": Decimal("1"), "2024-03": Decimal("1")},
        )

        assert state.month_keys() == ["2024-01", "2024-02", "2024-03"]

    def test_has_processed(self) -> None:
        state = AccountAnalytics(account_id="acct-1", recent_idempotency_keys=["a", "b"])

        assert state.has_processed("a")
        assert not state.has_processed("c")


class TestInvariants:
    def test_balance_mismatch(self) -> None:
        state = AccountAnalytics(
            account_id="acct-1",
            total_balance=Decimal("10"),
            total_income=Decimal("20"),
            total_expenses=Decimal("5"),
        )

        violations = check_invariants(state)

        assert len(violations) == 1
        assert "total_balance" in violations[0]

    def test_count_mismatch(self) -> None:
        state = AccountAnalytics(account_id="acct-1", transaction_count=3, deposit_count=1, withdrawal_count=1)

        assert any("transaction_count" in v for v in check_invariants(state))

    def test_dates_out_of_order(self) -> None:
        state = AccountAnalytics(
            account_id="acct-1",
            first_transaction_date=datetime(2024, 2, 1, tzinfo=timezone.utc),
            last_transaction_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

        assert any("first_transaction_date" in v for v in check_invariants(state))

    def test_negative_magnitudes(self) -> None:
        state = AccountAnalytics(account_id="acct-1", largest_withdrawal=Decimal("-1"))

        assert any("extrema" in v for v in check_invariants(state))

    def test_ensure_consistent_raises(self) -> None:
        state = AccountAnalytics(account_id="acct-1", total_income=Decimal("5"))

        with pytest.raises(ConsistencyViolation) as exc_info:
            ensure_consistent(state)

        assert exc_info.value.account_id == "acct-1"

    def test_ensure_consistent_returns_state(self) -> None:
        state = AccountAnalytics(
            account_id="acct-1",
            daily_balances={"2024-01-01": DailyBalance(Decimal("0"), datetime(2024, 1, 1, tzinfo=timezone.utc))},
        )

        assert ensure_consistent(state) is state


class TestRememberKey:
    def test_appends_without_mutating(self) -> None:
        keys = ["a", "b"]

        updated = remember_key(keys, "c", capacity=5)

        assert updated == ["a", "b", "c"]
        assert keys == ["a", "b"]

    def test_evicts_oldest(self) -> None:
        assert remember_key(["a", "b", "c"], "d", capacity=3) == ["b", "c", "d"]

    def test_existing_key_moves_to_newest(self) -> None:
        assert remember_key(["a", "b"], "a", capacity=3) == ["b", "a"]
