"""Indian fiscal calendar helpers.

The fiscal year runs April to March and is labelled ``"2026-27"``.
Quarters: Q1 Apr–Jun, Q2 Jul–Sep, Q3 Oct–Dec, Q4 Jan–Mar.
"""

import re
from dataclasses import dataclass
from datetime import date

QUARTERS = ("Q1", "Q2", "Q3", "Q4")

_FY_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True)
class FiscalPeriod:
    quarter: str
    financial_year: str

    @property
    def start_year(self) -> int:
        return fiscal_year_start(self.financial_year)


def fiscal_quarter(day: date) -> str:
    """Fiscal quarter label for a calendar date."""
    if 4 <= day.month <= 6:
        return "Q1"
    if 7 <= day.month <= 9:
        return "Q2"
    if 10 <= day.month <= 12:
        return "Q3"
    return "Q4"


def fiscal_year_label(day: date) -> str:
    """Fiscal year label (``YYYY-YY``) containing ``day``."""
    start = day.year if day.month >= 4 else day.year - 1
    return f"{start}-{str(start + 1)[-2:]}"


def fiscal_period(day: date) -> FiscalPeriod:
    return FiscalPeriod(quarter=fiscal_quarter(day), financial_year=fiscal_year_label(day))


def is_valid_fiscal_year(label: str) -> bool:
    """``2026-27`` is valid; ``2026-28`` and ``26-27`` are not."""
    match = _FY_PATTERN.match(label or "")
    if not match:
        return False
    start = int(match.group(1))
    return match.group(2) == str(start + 1)[-2:]


def fiscal_year_start(label: str) -> int:
    if not is_valid_fiscal_year(label):
        raise ValueError(f"Invalid financial year: {label!r} (use YYYY-YY)")
    return int(label[:4])


def deposit_due_date(quarter: str, financial_year: str) -> date:
    """Statutory TDS deposit due date for a quarter of a fiscal year."""
    start = fiscal_year_start(financial_year)
    due_dates = {
        "Q1": date(start, 7, 7),
        "Q2": date(start, 10, 7),
        "Q3": date(start + 1, 1, 7),
        "Q4": date(start + 1, 4, 30),
    }
    if quarter not in due_dates:
        raise ValueError(f"Invalid quarter: {quarter!r}")
    return due_dates[quarter]
