"""
Period key resolution for period locks.

A document date maps to one key per period type:
    MONTH   -> "2026-02"
    QUARTER -> "2026-Q1"
    YEAR    -> "2026"

ZERO I/O.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import date

from receivables_kernel.domain.types import PeriodType

_KEY_PATTERNS = {
    PeriodType.MONTH: re.compile(r"^\d{4}-(0[1-9]|1[0-2])$"),
    PeriodType.QUARTER: re.compile(r"^\d{4}-Q[1-4]$"),
    PeriodType.YEAR: re.compile(r"^\d{4}$"),
}


def period_key(period_type: PeriodType, on: date) -> str:
    """Key of the period of ``period_type`` that contains ``on``."""
    if period_type == PeriodType.MONTH:
        return f"{on.year:04d}-{on.month:02d}"
    if period_type == PeriodType.QUARTER:
        return f"{on.year:04d}-Q{(on.month - 1) // 3 + 1}"
    return f"{on.year:04d}"


def period_keys_for(
    on: date,
    period_types: Iterable[PeriodType] = (PeriodType.MONTH, PeriodType.QUARTER, PeriodType.YEAR),
) -> list[tuple[PeriodType, str]]:
    """All (type, key) pairs that a lock could use to cover ``on``."""
    return [(pt, period_key(pt, on)) for pt in period_types]


def lock_label(period_type: PeriodType, key: str) -> str:
    """Display form used in errors and audit payloads, e.g. ``MONTH:2026-02``."""
    return f"{period_type.value}:{key}"


def is_valid_period_key(period_type: PeriodType, key: str) -> bool:
    return bool(_KEY_PATTERNS[period_type].match(key))


def month_start(on: date) -> date:
    """First day of the month containing ``on``."""
    return on.replace(day=1)
