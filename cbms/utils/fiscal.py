"""Financial-year label helpers (April to March years labelled ``"2024-2025"``)."""

from __future__ import annotations

import datetime
import re

from cbms.utils.constants import FINANCIAL_YEAR_START_MONTH

_LABEL_RE = re.compile(r"^(\d{4})-(\d{4})$")


def is_valid_label(label: str) -> bool:
    match = _LABEL_RE.match(label or "")
    return bool(match) and int(match.group(2)) == int(match.group(1)) + 1


def start_year(label: str) -> int:
    """Return the first calendar year of a ``"YYYY-YYYY"`` label.

    Raises:
        ValueError: If *label* is not a well-formed financial-year label.
    """
    if not is_valid_label(label):
        raise ValueError(f"Invalid financial year '{label}'; expected format YYYY-YYYY")
    return int(label[:4])


def label_for_start(year: int) -> str:
    return f"{year}-{year + 1}"


def financial_year_for(day: datetime.date) -> str:
    """Financial year containing *day*: April onwards belongs to ``{y}-{y+1}``."""
    if day.month >= FINANCIAL_YEAR_START_MONTH:
        return label_for_start(day.year)
    return label_for_start(day.year - 1)


def current_financial_year(today: datetime.date | None = None) -> str:
    return financial_year_for(today or datetime.date.today())


def previous_financial_year(label: str) -> str:
    """The year before *label*, e.g. ``"2025-2026"`` -> ``"2024-2025"``."""
    return label_for_start(start_year(label) - 1)


def year_bounds(label: str) -> tuple[datetime.date, datetime.date]:
    """First and last day of the financial year (1 April to 31 March)."""
    first = start_year(label)
    return (
        datetime.date(first, FINANCIAL_YEAR_START_MONTH, 1),
        datetime.date(first + 1, FINANCIAL_YEAR_START_MONTH, 1) - datetime.timedelta(days=1),
    )


def last_closed_year_for_proposal(label: str) -> str:
    """Most recent completed year when drafting a proposal for *label*.

    Proposals for ``"2027-2028"`` are drafted during 2026-2027, so the last
    full year of figures is ``"2025-2026"``.
    """
    return label_for_start(start_year(label) - 2)
