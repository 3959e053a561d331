"""Field-level helpers for pipe-delimited ledger lines.

Numbers use a comma decimal separator, dates are ``DDMMYYYY`` and document
numbers are compared as digits only. Helpers never raise on bad input: a
malformed amount becomes zero, a malformed date becomes ``None``.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def field(fields: Sequence[str], index: int) -> str:
    """Stripped field at ``index``, or ``""`` when the line is too short."""
    return fields[index].strip() if index < len(fields) else ""


def optional_amount(fields: Sequence[str], index: int) -> Decimal:
    """Amount at ``index`` when the line carries that field, else zero."""
    return parse_amount(fields[index]) if index < len(fields) else ZERO


def parse_amount(value: str | None) -> Decimal:
    """Parse ``"1500,00"`` into ``Decimal("1500.00")``; blanks and garbage become zero."""
    if not value:
        return ZERO
    cleaned = value.strip().replace(",", ".")
    if not cleaned:
        return ZERO
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        logger.debug("Unparseable amount %r treated as zero", value)
        return ZERO
    return amount if amount.is_finite() else ZERO


def digits_only(value: str | None) -> str:
    return "".join(ch for ch in value or "" if ch.isdigit())


def nullable(value: str | None) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def is_ddmmyyyy(value: str) -> bool:
    """True for an 8-digit string with a plausible day and month up front."""
    if len(value) != 8 or not value.isdigit():
        return False
    return 1 <= int(value[:2]) <= 31 and 1 <= int(value[2:4]) <= 12


def parse_period(value: str) -> Optional[date]:
    """First day of the month of a ``DDMMYYYY`` date."""
    value = value.strip()
    if len(value) != 8 or not value.isdigit():
        return None
    month, year = int(value[2:4]), int(value[4:])
    if not 1 <= month <= 12 or year < 1:
        return None
    return date(year, month, 1)


def format_cnpj(document: str) -> str:
    """``12345678000190`` -> ``12.345.678/0001-90``; other lengths pass through."""
    if len(document) != 14:
        return document
    return f"{document[:2]}.{document[2:5]}.{document[5:8]}/{document[8:12]}-{document[12:]}"
