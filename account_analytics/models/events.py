"""Event envelope model and wire-format parsing."""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Union

from account_analytics.exceptions import ValidationError
from account_analytics.models.enums import EventKind

# Accepted amounts, and running sums of them, fit the default 28-digit decimal context
MAX_AMOUNT = Decimal("1E15")
MAX_AMOUNT_PLACES = 8


@dataclass(frozen=True)
class TransactionPayload:
    """Posted transaction details.

    ``amount`` is signed: positive is a credit, negative is a debit.
    """

    amount: Decimal
    transaction_id: str | None = None
    transaction_type: str | None = None
    category: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class AccountOpenedPayload:
    """Account opening details."""

    account_type: str | None = None
    user_id: str | None = None
    status: str | None = None


@dataclass(frozen=True)
class AccountStatusPayload:
    """Account status transition."""

    status: str
    previous_status: str | None = None


Payload = Union[TransactionPayload, AccountOpenedPayload, AccountStatusPayload]


@dataclass(frozen=True)
class EventEnvelope:
    """Normalized representation of one delivered account or transaction event."""

    kind: EventKind
    account_id: str
    occurred_at: datetime
    idempotency_key: str
    payload: Payload
    received_at: datetime | None = None

    def to_wire(self) -> dict[str, Any]:
        """Render the envelope in its JSON wire format."""
        payload: dict[str, Any]
        if isinstance(self.payload, TransactionPayload):
            payload = {
                "amount": str(self.payload.amount),
                "transactionId": self.payload.transaction_id,
                "transactionType": self.payload.transaction_type,
                "category": self.payload.category,
                "description": self.payload.description,
            }
        elif isinstance(self.payload, AccountStatusPayload):
            payload = {
                "status": self.payload.status,
                "previousStatus": self.payload.previous_status,
            }
        else:
            payload = {
                "accountType": self.payload.account_type,
                "userId": self.payload.user_id,
                "status": self.payload.status,
            }

        wire = {
            "kind": self.kind.value,
            "accountId": self.account_id,
            "occurredAt": self.occurred_at.isoformat(),
            "idempotencyKey": self.idempotency_key,
            "payload": {k: v for k, v in payload.items() if v is not None},
        }
        if self.received_at is not None:
            wire["receivedAt"] = self.received_at.isoformat()
        return wire


def parse_timestamp(value: Any, field_name: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive timestamps are taken to be UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValidationError(f"{field_name} is not an ISO-8601 timestamp: {value!r}") from e
    else:
        raise ValidationError(f"{field_name} is required")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_amount(value: Any) -> Decimal:
    """Parse a signed monetary amount without going through binary floats."""
    if value is None or isinstance(value, bool):
        raise ValidationError("payload.amount is required")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValidationError(f"payload.amount is not a decimal: {value!r}") from e
    if not amount.is_finite():
        raise ValidationError(f"payload.amount must be finite: {value!r}")
    if abs(amount) >= MAX_AMOUNT:
        raise ValidationError(f"payload.amount out of range: {value!r}")
    if amount.normalize().as_tuple().exponent < -MAX_AMOUNT_PLACES:
        raise ValidationError(f"payload.amount has more than {MAX_AMOUNT_PLACES} decimal places: {value!r}")
    return amount


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _required_str(data: dict[str, Any], key: str, field_name: str | None = None) -> str:
    value = _optional_str(data, key)
    if value is None:
        raise ValidationError(f"{field_name or key} is required")
    return value


def _parse_payload(kind: EventKind, data: Any) -> Payload:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("payload must be an object")

    if kind == EventKind.TRANSACTION_POSTED:
        return TransactionPayload(
            amount=parse_amount(data.get("amount")),
            transaction_id=_optional_str(data, "transactionId"),
            transaction_type=_optional_str(data, "transactionType"),
            category=_optional_str(data, "category"),
            description=_optional_str(data, "description"),
        )
    if kind == EventKind.ACCOUNT_STATUS_CHANGED:
        return AccountStatusPayload(
            status=_required_str(data, "status", "payload.status"),
            previous_status=_optional_str(data, "previousStatus"),
        )
    return AccountOpenedPayload(
        account_type=_optional_str(data, "accountType"),
        user_id=_optional_str(data, "userId"),
        status=_optional_str(data, "status"),
    )


def parse_envelope(
    raw: bytes | str | dict[str, Any],
    received_at: datetime | None = None,
) -> EventEnvelope:
    """Parse and validate an event envelope from its wire format.

    Parameters
    ----------
    raw : bytes | str | dict
        JSON document (encoded or already decoded).
    received_at : datetime | None
        Transport delivery time, used when the document carries none.

    Returns
    -------
    EventEnvelope
        Validated, immutable envelope.

    Raises
    ------
    ValidationError
        If the document is not valid JSON, a required field is missing,
        or the kind is not supported.
    """
    if isinstance(raw, (bytes, str)):
        try:
            data = json.loads(raw, parse_float=Decimal)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError(f"Envelope is not valid JSON: {e}") from e
    else:
        data = raw

    if not isinstance(data, dict):
        raise ValidationError("Envelope must be a JSON object")

    kind_value = data.get("kind")
    try:
        kind = EventKind(kind_value)
    except ValueError as e:
        raise ValidationError(f"Unsupported event kind: {kind_value!r}") from e

    account_id = _required_str(data, "accountId")
    idempotency_key = _required_str(data, "idempotencyKey")
    occurred_at = parse_timestamp(data.get("occurredAt"), "occurredAt")

    if data.get("receivedAt") is not None:
        received_at = parse_timestamp(data["receivedAt"], "receivedAt")

    return EventEnvelope(
        kind=kind,
        account_id=account_id,
        occurred_at=occurred_at,
        idempotency_key=idempotency_key,
        payload=_parse_payload(kind, data.get("payload")),
        received_at=received_at,
    )
