# eld_integration_hub/common/quarters.py
"""
Calendar quarter helpers for IFTA reporting.

IFTA periods are calendar quarters written 'YYYY-QN' (e.g., '2024-Q3').
Everything that takes a quarter accepts either that string or a Quarter.
"""

import calendar
import re
from datetime import date
from typing import Final, Self

from pydantic import BaseModel, ConfigDict, Field

__all__: list[str] = [
    'Quarter',
    'QuarterLike',
    'format_quarter',
    'month_to_quarter',
    'parse_quarter',
    'previous_quarter',
    'quarter_date_range',
    'quarter_for_date',
    'quarter_months',
]

_QUARTER_PATTERN: Final[re.Pattern[str]] = re.compile(r'^\s*(\d{4})-Q([1-4])\s*$', re.IGNORECASE)
_MONTH_PATTERN: Final[re.Pattern[str]] = re.compile(r'^\s*(\d{4})-(\d{1,2})\s*$')


class Quarter(BaseModel):
    """A calendar quarter."""

    model_config = ConfigDict(extra='forbid', frozen=True)

    year: int = Field(ge=1900, le=9999)
    number: int = Field(ge=1, le=4)

    def __str__(self) -> str:
        return f'{self.year}-Q{self.number}'

    @property
    def first_month(self) -> int:
        """Calendar month number (1-12) the quarter starts in."""
        return (self.number - 1) * 3 + 1

    @property
    def months(self) -> tuple[int, int, int]:
        """The three calendar month numbers of the quarter."""
        first: int = self.first_month
        return (first, first + 1, first + 2)

    @property
    def start_date(self) -> date:
        """First day of the quarter."""
        return date(self.year, self.first_month, 1)

    @property
    def end_date(self) -> date:
        """Last day of the quarter."""
        last_month: int = self.first_month + 2
        return date(self.year, last_month, calendar.monthrange(self.year, last_month)[1])

    @property
    def mid_date(self) -> date:
        """The 15th of the quarter's middle month."""
        return date(self.year, self.first_month + 1, 15)

    def period_keys(self) -> tuple[str, str, str]:
        """'YYYY-MM' keys for each month of the quarter."""
        first: int = self.first_month
        return (
            f'{self.year}-{first:02d}',
            f'{self.year}-{first + 1:02d}',
            f'{self.year}-{first + 2:02d}',
        )

    def previous(self) -> Self:
        """The quarter before this one."""
        if self.number == 1:
            return type(self)(year=self.year - 1, number=4)
        return type(self)(year=self.year, number=self.number - 1)


QuarterLike = Quarter | str


def parse_quarter(value: QuarterLike) -> Quarter:
    """
    Parse 'YYYY-QN' into a Quarter.

    Raises:
        ValueError: If the string is not a valid quarter.

    Example:
        >>> parse_quarter('2024-Q3').months
        (7, 8, 9)
    """
    if isinstance(value, Quarter):
        return value
    match: re.Match[str] | None = _QUARTER_PATTERN.match(value)
    if match is None:
        raise ValueError(f"Invalid quarter {value!r}; expected 'YYYY-QN'")
    return Quarter(year=int(match.group(1)), number=int(match.group(2)))


def format_quarter(year: int, number: int) -> str:
    """Format a year and quarter number as 'YYYY-QN'."""
    return str(Quarter(year=year, number=number))


def quarter_months(quarter: QuarterLike) -> tuple[str, str]:
    """
    First and last month of a quarter as 'YYYY-MM' strings.

    Example:
        >>> quarter_months('2024-Q1')
        ('2024-01', '2024-03')
    """
    keys: tuple[str, str, str] = parse_quarter(quarter).period_keys()
    return keys[0], keys[2]


def quarter_date_range(quarter: QuarterLike) -> tuple[date, date]:
    """Inclusive first and last day of a quarter."""
    parsed: Quarter = parse_quarter(quarter)
    return parsed.start_date, parsed.end_date


def month_to_quarter(month: str) -> str:
    """
    Map a 'YYYY-MM' month to its 'YYYY-QN' quarter.

    Raises:
        ValueError: If the month string is malformed or out of range.
    """
    match: re.Match[str] | None = _MONTH_PATTERN.match(month)
    if match is None:
        raise ValueError(f"Invalid month {month!r}; expected 'YYYY-MM'")
    month_number: int = int(match.group(2))
    if not 1 <= month_number <= 12:  # noqa: PLR2004
        raise ValueError(f'Month out of range in {month!r}')
    return format_quarter(int(match.group(1)), (month_number - 1) // 3 + 1)


def quarter_for_date(value: date) -> Quarter:
    """The quarter containing a date (or datetime)."""
    return Quarter(year=value.year, number=(value.month - 1) // 3 + 1)


def previous_quarter(quarter: QuarterLike) -> Quarter:
    """The quarter before the given one, rolling Q1 back to the prior Q4."""
    return parse_quarter(quarter).previous()
