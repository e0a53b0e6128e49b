"""Period aggregation over treatment and expense records.

Every function here is pure: it reads the collections it is given, never
mutates them and performs no I/O. Records are accessed by attribute, so ORM
rows and lightweight objects with the same field names are interchangeable.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Iterable, Iterator, Optional, Sequence

from errors import MalformedDateError
from models import PaymentStatus
from periods import ALL_TIME, Period, month_end, month_range
from schemas import TaxSettings


logger = logging.getLogger(__name__)

OTHER = "Other"
UNASSIGNED = "Unassigned"


@dataclass(frozen=True)
class Totals:
    revenue: int = 0
    costs: int = 0
    profit: int = 0
    outstanding: int = 0
    product_costs: int = 0
    expense_costs: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _require(collection, name: str):
    if collection is None:
        raise TypeError(f"{name} collection is required")
    return collection


def record_date(record) -> date:
    value = getattr(record, "date", None)
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError as exc:
            raise MalformedDateError(f"Unparseable date {value!r}") from exc
    raise MalformedDateError(f"Missing or invalid date {value!r}")


def _dated(records: Iterable) -> Iterator[tuple[date, object]]:
    for record in records:
        try:
            yield record_date(record), record
        except MalformedDateError as exc:
            logger.warning(
                "skipping record id=%s: %s", getattr(record, "id", None), exc
            )


def _in_window(records: Iterable, window: Period) -> list:
    return [record for d, record in _dated(records) if window.contains(d)]


def _status(treatment) -> PaymentStatus:
    raw = getattr(treatment, "payment_status", PaymentStatus.paid)
    try:
        return PaymentStatus(raw)
    except ValueError:
        return PaymentStatus.pending


def _cents(record, field: str) -> int:
    return int(getattr(record, field, 0) or 0)


def revenue_recognized(treatment) -> int:
    price = max(0, _cents(treatment, "price_paid_cents"))
    status = _status(treatment)
    if status == PaymentStatus.paid:
        return price
    if status == PaymentStatus.partially_paid:
        return min(max(0, _cents(treatment, "amount_paid_cents")), price)
    return 0


def outstanding_balance(treatment) -> int:
    if _status(treatment) == PaymentStatus.paid:
        return 0
    price = max(0, _cents(treatment, "price_paid_cents"))
    return price - revenue_recognized(treatment)


def _treatment_profit(treatment) -> int:
    return revenue_recognized(treatment) - _cents(treatment, "product_cost_cents")


def _totals_for(treatments: Sequence, expenses: Sequence, outstanding: int) -> Totals:
    revenue = sum(revenue_recognized(t) for t in treatments)
    product_costs = sum(_cents(t, "product_cost_cents") for t in treatments)
    expense_costs = sum(_cents(e, "amount_cents") for e in expenses)
    costs = product_costs + expense_costs
    return Totals(
        revenue=revenue,
        costs=costs,
        profit=revenue - costs,
        outstanding=outstanding,
        product_costs=product_costs,
        expense_costs=expense_costs,
    )


def compute_totals(
    treatments: Iterable,
    expenses: Iterable,
    window: Period,
    *,
    outstanding_window: Optional[Period] = None,
) -> Totals:
    """Revenue, costs and profit for ``window``.

    Outstanding balances are summed over ``outstanding_window`` instead, which
    defaults to all time so unpaid treatments stay visible whatever window is
    being viewed.
    """
    treatments = list(_require(treatments, "treatments"))
    expenses = list(_require(expenses, "expenses"))
    outstanding_window = outstanding_window or ALL_TIME
    outstanding = sum(
        outstanding_balance(t) for t in _in_window(treatments, outstanding_window)
    )
    return _totals_for(
        _in_window(treatments, window), _in_window(expenses, window), outstanding
    )


def compute_comparison_totals(
    treatments: Iterable, expenses: Iterable, window: Period
) -> Totals:
    previous = window.previous()
    if previous is None:
        return Totals()
    treatments = list(_require(treatments, "treatments"))
    expenses = list(_require(expenses, "expenses"))
    return _totals_for(
        _in_window(treatments, previous), _in_window(expenses, previous), 0
    )


def _series_months(treatments: list, expenses: list, window: Period) -> list[date]:
    if window.start is not None and window.end is not None:
        return month_range(window.start, window.end)
    dates = [d for d, _ in _dated(treatments)] + [d for d, _ in _dated(expenses)]
    if window.start is not None:
        dates = [d for d in dates if d >= window.start] + [window.start]
    if window.end is not None:
        dates = [d for d in dates if d <= window.end] + [window.end]
    if not dates:
        return []
    return month_range(min(dates), max(dates))


def _month_buckets(
    treatments: Iterable, expenses: Iterable, window: Period
) -> Iterator[tuple[date, list, list]]:
    treatments = list(_require(treatments, "treatments"))
    expenses = list(_require(expenses, "expenses"))
    months = _series_months(treatments, expenses, window)
    if not months:
        return
    by_month_t: dict[date, list] = {m: [] for m in months}
    by_month_e: dict[date, list] = {m: [] for m in months}
    for d, record in _dated(treatments):
        bucket = by_month_t.get(d.replace(day=1))
        if bucket is not None:
            bucket.append(record)
    for d, record in _dated(expenses):
        bucket = by_month_e.get(d.replace(day=1))
        if bucket is not None:
            bucket.append(record)
    for month in months:
        yield month, by_month_t[month], by_month_e[month]


def month_label(month: date) -> str:
    return f"{month:%b %Y}"


def compute_monthly_series(
    treatments: Iterable, expenses: Iterable, window: Period
) -> list[dict[str, object]]:
    """One entry per calendar month touched by ``window``, with no gaps.

    Months are aggregated whole, so a window that starts or ends mid-month
    still reports that month's complete figures.
    """
    out: list[dict[str, object]] = []
    for month, month_treatments, month_expenses in _month_buckets(
        treatments, expenses, window
    ):
        totals = _totals_for(month_treatments, month_expenses, 0)
        out.append(
            {
                "month": month_label(month),
                "start": month,
                "end": month_end(month),
                "revenue": totals.revenue,
                "costs": totals.costs,
                "profit": totals.profit,
            }
        )
    return out


def compute_cash_flow_series(
    treatments: Iterable, expenses: Iterable, window: Period
) -> list[dict[str, object]]:
    # product costs are embedded in treatments, not separate cash movements
    out: list[dict[str, object]] = []
    for month, month_treatments, month_expenses in _month_buckets(
        treatments, expenses, window
    ):
        out.append(
            {
                "month": month_label(month),
                "start": month,
                "end": month_end(month),
                "cash_in": sum(revenue_recognized(t) for t in month_treatments),
                "cash_out": sum(_cents(e, "amount_cents") for e in month_expenses),
            }
        )
    return out


def _breakdown(
    treatments: Iterable, window: Period, key: Callable[[object], str]
) -> list[dict[str, object]]:
    buckets: dict[str, dict[str, object]] = {}
    for treatment in _in_window(_require(treatments, "treatments"), window):
        name = key(treatment)
        entry = buckets.setdefault(
            name, {"name": name, "revenue": 0, "cost": 0, "profit": 0, "count": 0}
        )
        entry["revenue"] += revenue_recognized(treatment)
        entry["cost"] += _cents(treatment, "product_cost_cents")
        entry["profit"] += _treatment_profit(treatment)
        entry["count"] += 1
    return sorted(buckets.values(), key=lambda e: int(e["revenue"]), reverse=True)


def compute_category_breakdown(
    treatments: Iterable,
    window: Period,
    resolve_category: Callable[[str], Optional[str]],
) -> list[dict[str, object]]:
    def key(treatment) -> str:
        name = getattr(treatment, "treatment_name", None)
        if not name:
            return OTHER
        return resolve_category(name) or OTHER

    return _breakdown(treatments, window, key)


def compute_treatment_breakdown(
    treatments: Iterable, window: Period
) -> list[dict[str, object]]:
    return _breakdown(
        treatments, window, lambda t: getattr(t, "treatment_name", None) or OTHER
    )


def compute_practitioner_breakdown(
    treatments: Iterable, window: Period
) -> list[dict[str, object]]:
    return _breakdown(
        treatments,
        window,
        lambda t: getattr(t, "practitioner_name", None) or UNASSIGNED,
    )


def compute_expense_breakdown(
    expenses: Iterable, window: Period
) -> list[dict[str, object]]:
    totals: dict[str, int] = {}
    for expense in _in_window(_require(expenses, "expenses"), window):
        name = getattr(expense, "category", None) or OTHER
        totals[name] = totals.get(name, 0) + _cents(expense, "amount_cents")
    grand_total = sum(totals.values())
    items = sorted(totals.items(), key=lambda x: x[1], reverse=True)
    return [
        {
            "name": name,
            "amount_cents": amount,
            "percent": (amount / grand_total * 100) if grand_total else 0,
        }
        for name, amount in items
    ]


def calculate_trend(current: int, previous: int) -> str:
    if previous == 0:
        if current > 0:
            return "∞%"
        if current < 0:
            return "-∞%"
        return "0%"
    change = (Decimal(current - previous) / Decimal(previous)) * 100
    return f"{change.quantize(Decimal('1'), rounding=ROUND_HALF_UP)}%"


def _percent_of(amount: int, percent: Decimal) -> int:
    return int(
        (Decimal(amount) * percent / Decimal(100)).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
    )


def compute_tax_summary(
    treatments: Iterable,
    expenses: Iterable,
    window: Period,
    settings: TaxSettings,
    resolve_category: Callable[[str], Optional[str]],
) -> dict[str, object]:
    in_window_t = _in_window(_require(treatments, "treatments"), window)
    in_window_e = _in_window(_require(expenses, "expenses"), window)
    exempt = {c.lower() for c in settings.vat_exempt_categories}

    total_revenue = sum(revenue_recognized(t) for t in in_window_t)
    vat_exempt_revenue = 0
    for treatment in in_window_t:
        name = getattr(treatment, "treatment_name", None)
        category = (resolve_category(name) if name else None) or OTHER
        if category.lower() in exempt:
            vat_exempt_revenue += revenue_recognized(treatment)
    vat_taxable_revenue = total_revenue - vat_exempt_revenue

    allowable_expenses: dict[str, int] = {}
    for expense in in_window_e:
        category = getattr(expense, "category", None) or OTHER
        allowable_expenses[category] = allowable_expenses.get(category, 0) + _cents(
            expense, "amount_cents"
        )
    total_expenses = sum(allowable_expenses.values())
    product_costs = sum(_cents(t, "product_cost_cents") for t in in_window_t)
    total_costs = total_expenses + product_costs

    vat_owed = 0
    if settings.vat_registered:
        if settings.vat_scheme == "standard":
            vat_owed = _percent_of(vat_taxable_revenue, Decimal(20))
        elif settings.vat_scheme == "flat_rate" and settings.flat_rate_percent:
            vat_owed = _percent_of(
                total_revenue, Decimal(str(settings.flat_rate_percent))
            )

    return {
        "start": window.start,
        "end": window.end,
        "total_revenue": total_revenue,
        "vat_exempt_revenue": vat_exempt_revenue,
        "vat_taxable_revenue": vat_taxable_revenue,
        "allowable_expenses": allowable_expenses,
        "total_expenses": total_expenses,
        "product_costs": product_costs,
        "total_costs": total_costs,
        "profit": total_revenue - total_costs,
        "vat_owed": vat_owed,
    }
