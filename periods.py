from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from errors import WindowResolutionError


PRESETS = (
    "this-month",
    "last-month",
    "last-3-months",
    "last-6-months",
    "year-to-date",
    "custom",
    "all-time",
)

_ALIASES = {"all": "all-time"}


@dataclass(frozen=True)
class Period:
    """An inclusive reporting window; both bounds ``None`` means all time."""

    slug: str
    start: Optional[date]
    end: Optional[date]

    @property
    def is_unbounded(self) -> bool:
        return self.start is None and self.end is None

    @property
    def duration_days(self) -> int:
        if self.start is None or self.end is None:
            raise ValueError("Unbounded period has no duration")
        return (self.end - self.start).days + 1

    def contains(self, value: date) -> bool:
        if self.start is not None and value < self.start:
            return False
        if self.end is not None and value > self.end:
            return False
        return True

    def previous(self) -> Optional["Period"]:
        if self.start is None or self.end is None:
            return None
        prev_end = self.start - timedelta(days=1)
        prev_start = prev_end - timedelta(days=self.duration_days - 1)
        return Period("previous", prev_start, prev_end)

    @property
    def label(self) -> str:
        if self.is_unbounded:
            return "All Time"
        if self.slug in ("custom", "previous", "tax-year"):
            return f"{self.start:%d %b %Y} - {self.end:%d %b %Y}"
        return " ".join(word.capitalize() for word in self.slug.split("-"))


ALL_TIME = Period("all-time", None, None)


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    first = month_start(d)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def month_range(start: date, end: date) -> list[date]:
    months: list[date] = []
    current = month_start(start)
    last = month_start(end)
    while current <= last:
        months.append(current)
        current = add_months(current, 1)
    return months


def tax_year_window(start_year: int) -> Period:
    """UK tax year: 6 April to 5 April of the following year."""
    return Period("tax-year", date(start_year, 4, 6), date(start_year + 1, 4, 5))


def _parse_bound(value, side: str, strict: bool) -> Optional[date]:
    if value is None or value == "":
        if strict:
            raise WindowResolutionError(f"Custom period requires a {side} date")
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        if strict:
            raise WindowResolutionError(f"Invalid {side} date: {value}") from exc
        return None


def resolve_window(
    preset: Optional[str],
    custom_start=None,
    custom_end=None,
    *,
    today: Optional[date] = None,
    strict: bool = False,
) -> Period:
    today = today or date.today()
    slug = (preset or "this-month").strip().lower().replace("_", "-")
    slug = _ALIASES.get(slug, slug)
    this_month = Period("this-month", month_start(today), month_end(today))

    if slug == "all-time":
        return ALL_TIME
    if slug == "last-month":
        last = add_months(today, -1)
        return Period("last-month", last, month_end(last))
    if slug == "last-3-months":
        return Period("last-3-months", add_months(today, -2), this_month.end)
    if slug == "last-6-months":
        return Period("last-6-months", add_months(today, -5), this_month.end)
    if slug == "year-to-date":
        return Period("year-to-date", date(today.year, 1, 1), today)
    if slug == "custom":
        start = _parse_bound(custom_start, "start", strict) or this_month.start
        end = _parse_bound(custom_end, "end", strict) or this_month.end
        if end < start:
            if strict:
                raise WindowResolutionError("Start date must be before end date")
            start, end = this_month.start, this_month.end
        return Period("custom", start, end)
    if slug != "this-month" and strict:
        raise WindowResolutionError(f"Unknown period preset: {preset}")
    return this_month
