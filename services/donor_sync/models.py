"""
Data model for donor reconciliation.

DonorRecord is the normalized form of one roster row. The Remote* types are
read-only views of Mollie resources; they are built from API payloads and
only ever referenced by id.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Union

CURRENCY_EUR = "EUR"

TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class DonorRecord:
    """
    One donor from the input roster.

    Hashable, so it can be used as a key in reconciliation maps. Identity for
    matching against Mollie is (display_name, email); the remaining fields are
    only used when creating mandates and subscriptions.
    """
    first_name: str
    last_name: str
    iban: str
    donation_amount: Decimal = Decimal("0")
    email: Optional[str] = None
    middle_insert: Optional[str] = None
    authorized_since: Optional[date] = None

    @property
    def display_name(self) -> str:
        return display_name(self)

    @property
    def identity(self) -> tuple:
        """Key used to decide whether two rows describe the same donor."""
        return (self.display_name, self.email or "")

    def describe(self) -> str:
        """Short human-readable label for log lines."""
        return self.email or self.display_name


def display_name(record: DonorRecord) -> str:
    """
    Join first and last name with a single space.

    Collapses to just one part when the other is empty. Tussenvoegsel is not
    part of the name sent to Mollie.
    """
    first = record.first_name or ""
    last = record.last_name or ""
    separator = " " if first and last else ""
    return f"{first}{separator}{last}"


def format_amount(value: Union[Decimal, int, float, str]) -> str:
    """
    Render an amount with exactly two fraction digits.

    Examples:
        >>> format_amount(12)
        '12.00'
        >>> format_amount(Decimal("7.5"))
        '7.50'
    """
    amount = Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    return f"{amount:.2f}"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp as returned by Mollie."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_day(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class Amount:
    """Money as Mollie transmits it: currency code plus a string value."""
    currency: str
    value: str

    @classmethod
    def eur(cls, value: Union[Decimal, int, float, str]) -> "Amount":
        return cls(currency=CURRENCY_EUR, value=format_amount(value))

    @classmethod
    def from_api(cls, payload: Optional[Dict[str, Any]]) -> Optional["Amount"]:
        if not payload:
            return None
        return cls(currency=payload.get("currency", ""), value=payload.get("value", ""))

    def to_api(self) -> Dict[str, str]:
        return {"currency": self.currency, "value": self.value}


@dataclass(frozen=True)
class RemoteCustomer:
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "RemoteCustomer":
        return cls(
            id=payload["id"],
            name=payload.get("name"),
            email=payload.get("email"),
            created_at=parse_timestamp(payload.get("createdAt")),
        )


@dataclass(frozen=True)
class RemoteMandate:
    id: str
    customer_id: str
    status: Optional[str] = None
    method: Optional[str] = None
    signature_date: Optional[date] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any], customer_id: str) -> "RemoteMandate":
        # Mandate payloads only link to their customer, so the id is passed in.
        return cls(
            id=payload["id"],
            customer_id=customer_id,
            status=payload.get("status"),
            method=payload.get("method"),
            signature_date=_parse_day(payload.get("signatureDate")),
            created_at=parse_timestamp(payload.get("createdAt")),
        )


@dataclass(frozen=True)
class RemoteSubscription:
    id: str
    customer_id: str
    amount: Optional[Amount] = None
    interval: Optional[str] = None
    description: Optional[str] = None
    webhook_url: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = None
    mandate_id: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_api(cls, payload: Dict[str, Any], customer_id: str) -> "RemoteSubscription":
        return cls(
            id=payload["id"],
            customer_id=payload.get("customerId") or customer_id,
            amount=Amount.from_api(payload.get("amount")),
            interval=payload.get("interval"),
            description=payload.get("description"),
            webhook_url=payload.get("webhookUrl"),
            status=payload.get("status"),
            created_at=parse_timestamp(payload.get("createdAt")),
            mandate_id=payload.get("mandateId"),
        )
