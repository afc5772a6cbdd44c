"""
Matching rules between local donors and Mollie resources.

Matching is strict: names and emails must be identical, case-sensitive,
with no normalization beyond joining first and last name with one space.

When Mollie returns several candidates (more than one mandate for a customer,
or more than one customer for a donor) a SelectionPolicy decides which one
counts.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Sequence, TypeVar

from .models import DonorRecord, RemoteCustomer, display_name

T = TypeVar("T")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class AmbiguousMatchError(Exception):
    """Raised when REQUIRE_UNIQUE finds more than one candidate."""

    def __init__(self, count: int):
        super().__init__(f"{count} candidates found where one was required")
        self.count = count


class SelectionPolicy(str, Enum):
    """How to pick one remote item out of several candidates."""
    FIRST = "first"
    MOST_RECENT = "most_recent"
    REQUIRE_UNIQUE = "require_unique"


def matches(record: DonorRecord, remote: RemoteCustomer) -> bool:
    """
    Decide whether a Mollie customer belongs to a donor record.

    Absent values on either side compare as empty strings, so a donor without
    email matches a customer whose email is empty or missing.
    """
    return (
        display_name(record) == (remote.name or "")
        and (record.email or "") == (remote.email or "")
    )


def _created_at(item) -> datetime:
    created = getattr(item, "created_at", None)
    if created is None:
        return _EPOCH
    if created.tzinfo is None:
        return created.replace(tzinfo=timezone.utc)
    return created


def select_one(items: Sequence[T], policy: SelectionPolicy = SelectionPolicy.FIRST) -> Optional[T]:
    """
    Pick the authoritative item from a list of candidates.

    Args:
        items: Candidates in the order Mollie listed them
        policy: Selection policy

    Returns:
        The chosen item, or None if there are no candidates

    Raises:
        AmbiguousMatchError: REQUIRE_UNIQUE with more than one candidate
    """
    if not items:
        return None

    if policy == SelectionPolicy.FIRST:
        return items[0]

    if policy == SelectionPolicy.MOST_RECENT:
        # max() keeps the first of equal keys, so ties fall back to list order
        return max(items, key=_created_at)

    if len(items) > 1:
        raise AmbiguousMatchError(len(items))
    return items[0]
