"""
Parser for donor roster rows.

Converts raw row dictionaries (from fetcher.py) into DonorRecord objects:
- Column mapping from the Dutch roster headers
- Amount parsing (point or comma decimals, optional euro sign)
- Date parsing for "Gemachtigd sinds"

Rows that cannot produce a usable record are reported, not raised, so one
bad row never aborts the whole roster.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

import structlog

from .models import DonorRecord

logger = structlog.get_logger(__name__)


# Maps canonical field name to the accepted header names
COLUMN_ALIASES: Dict[str, List[str]] = {
    "first_name": ["Voornaam", "voornaam"],
    "middle_insert": ["Tussenvoegsel", "tussenvoegsel"],
    "last_name": ["Achternaam", "achternaam"],
    "email": ["Primaire E-Mail", "Primaire E-mail", "primaire e-mail", "E-mail", "Email"],
    "iban": ["IBAN", "Iban", "iban"],
    "donation_amount": ["Donatie bedrag", "Donatiebedrag", "donatie bedrag"],
    "authorized_since": ["Gemachtigd sinds", "gemachtigd sinds"],
}


class ParseError(Exception):
    """Error during parsing of a roster row."""
    pass


class MissingRequiredFieldError(ParseError):
    """Required field is missing or empty."""
    pass


def _find_column(
    record: Dict[str, Any],
    field_name: str,
    required: bool = False,
) -> Optional[str]:
    """
    Find the value for a field using column aliases.

    Args:
        record: Raw row dictionary
        field_name: Canonical field name
        required: If True, raise error when missing or empty

    Returns:
        Stripped value, or None when absent or blank

    Raises:
        MissingRequiredFieldError: If required and not found
    """
    aliases = COLUMN_ALIASES.get(field_name, [field_name])

    for alias in aliases:
        if alias in record:
            value = record[alias]
            if value is None:
                break
            value = str(value).strip()
            if not value:
                break
            return value

    if required:
        raise MissingRequiredFieldError(
            f"Required field '{field_name}' is missing. Tried columns: {aliases}"
        )

    return None


def _parse_date(value: Optional[str]) -> Optional[date]:
    """Parse a date in one of the formats exported by the member administration."""
    if not value:
        return None

    formats = [
        "%Y-%m-%d",           # 2024-03-05
        "%d-%m-%Y",           # 05-03-2024
        "%d/%m/%Y",           # 05/03/2024
        "%Y/%m/%d",           # 2024/03/05
        "%d.%m.%Y",           # 05.03.2024
        "%Y-%m-%dT%H:%M:%S",  # ISO with time
        "%Y-%m-%d %H:%M:%S",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue

    logger.debug("Could not parse date", value=value)
    return None


def _parse_amount(value: Optional[str]) -> Optional[Decimal]:
    """
    Parse a donation amount.

    Handles:
    - Euro sign and spaces
    - Decimal point or decimal comma
    - Thousand separators (1.234,56 or 1,234.56)
    """
    if not value:
        return None

    value = re.sub(r"[€\s]", "", value)
    if value.upper().startswith("EUR"):
        value = value[3:]

    if "." in value and "," in value:
        # Whichever separator comes last is the decimal one
        if value.rfind(",") > value.rfind("."):
            value = value.replace(".", "").replace(",", ".")
        else:
            value = value.replace(",", "")
    elif "," in value:
        value = value.replace(",", ".")

    try:
        amount = Decimal(value)
    except InvalidOperation:
        logger.debug("Could not parse amount", value=value)
        return None

    if not amount.is_finite():
        return None
    return amount


def parse_donor(record: Dict[str, Any]) -> DonorRecord:
    """
    Parse a single roster row into a DonorRecord.

    Args:
        record: Dictionary from a roster row

    Returns:
        DonorRecord

    Raises:
        MissingRequiredFieldError: If IBAN or both name parts are missing
        ParseError: If the amount is missing, invalid or negative

    Example:
        >>> donor = parse_donor({
        ...     "Voornaam": "Jan",
        ...     "Achternaam": "Jansen",
        ...     "IBAN": "NL00BANK1234",
        ...     "Donatie bedrag": "10",
        ... })
        >>> donor.display_name
        'Jan Jansen'
    """
    first_name = _find_column(record, "first_name") or ""
    last_name = _find_column(record, "last_name") or ""
    if not first_name and not last_name:
        raise MissingRequiredFieldError("Both 'Voornaam' and 'Achternaam' are empty")

    iban = _find_column(record, "iban", required=True)

    amount_str = _find_column(record, "donation_amount", required=True)
    amount = _parse_amount(amount_str)
    if amount is None:
        raise ParseError(f"Invalid donation amount: {amount_str}")
    if amount < 0:
        raise ParseError(f"Negative donation amount: {amount_str}")

    return DonorRecord(
        first_name=first_name,
        middle_insert=_find_column(record, "middle_insert"),
        last_name=last_name,
        email=_find_column(record, "email"),
        iban=iban.replace(" ", ""),
        donation_amount=amount,
        authorized_since=_parse_date(_find_column(record, "authorized_since")),
    )


def parse_all_donors(
    records: List[Dict[str, Any]],
    skip_errors: bool = True,
) -> Tuple[List[DonorRecord], List[Dict[str, Any]]]:
    """
    Parse multiple roster rows into DonorRecord objects.

    Args:
        records: List of raw row dictionaries
        skip_errors: If True, log errors and continue; if False, raise

    Returns:
        Tuple of (donors, error_records)
    """
    donors: List[DonorRecord] = []
    errors: List[Dict[str, Any]] = []

    for i, record in enumerate(records):
        try:
            donors.append(parse_donor(record))
        except ParseError as e:
            errors.append({
                "row_index": i,
                "error": str(e),
                "record": record,
            })

            if skip_errors:
                logger.warning("Skipping roster row", row_index=i, error=str(e))
            else:
                raise

    logger.info("Parsed donor roster", donors=len(donors), errors=len(errors))

    return donors, errors


def deduplicate(donors: List[DonorRecord]) -> List[DonorRecord]:
    """
    Keep the first row per donor identity (display name, email).

    Two rows for the same identity would both match the same Mollie customer,
    or both create one, so only the first is reconciled.
    """
    seen: Dict[tuple, DonorRecord] = {}
    for donor in donors:
        if donor.identity in seen:
            logger.warning(
                "Duplicate donor in roster, keeping first row",
                name=donor.display_name,
                email=donor.email,
            )
            continue
        seen[donor.identity] = donor
    return list(seen.values())
