"""
Text helpers shared by the screens: date parsing, formatting, pagination rows.
"""
import calendar
import re
from datetime import date, datetime
from typing import List, Optional, Tuple

DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d/%m/%y", "%d%m%y", "%d %b %Y", "%d %B %Y")
_DATE_SEPARATORS = re.compile(r"[,\n;]+")


def parse_date(text: str) -> Optional[date]:
    value = " ".join(text.split())
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def parse_dates(text: str) -> Tuple[List[date], List[str]]:
    """Split on commas, semicolons or newlines. Returns (dates, unparsed parts)."""
    dates, invalid = [], []
    for part in _DATE_SEPARATORS.split(text):
        part = part.strip()
        if not part:
            continue
        parsed = parse_date(part)
        if parsed is None:
            invalid.append(part)
        else:
            dates.append(parsed)
    return dates, invalid


def format_date(value: date) -> str:
    return value.strftime("%b %d, %Y")


def truncate(text: Optional[str], limit: int) -> str:
    if not text:
        return ""
    return text if len(text) <= limit else f"{text[:limit]}..."


def page_footer(start: int, page_size: int, total: int) -> str:
    if total <= page_size:
        return ""
    current = start // page_size + 1
    pages = (total - 1) // page_size + 1
    return f"\nPage {current} of {pages}"


def add_months(value: date, months: int) -> date:
    """Same day ``months`` later, clamped to the end of a shorter month."""
    index = value.month - 1 + months
    year, month = value.year + index // 12, index % 12 + 1
    return value.replace(year=year, month=month, day=min(value.day, calendar.monthrange(year, month)[1]))
