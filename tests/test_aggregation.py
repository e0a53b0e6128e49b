import logging
from datetime import date
from types import SimpleNamespace

import pytest

from aggregation import (
    calculate_trend,
    compute_cash_flow_series,
    compute_category_breakdown,
    compute_comparison_totals,
    compute_expense_breakdown,
    compute_monthly_series,
    compute_practitioner_breakdown,
    compute_tax_summary,
    compute_totals,
    compute_treatment_breakdown,
    outstanding_balance,
    revenue_recognized,
)
from models import Expense, PaymentStatus, TreatmentEntry
from periods import ALL_TIME, Period
from schemas import TaxSettings


JUNE = Period("custom", date(2024, 6, 1), date(2024, 6, 30))


def _treatment(
    on: date,
    price: int,
    status: PaymentStatus = PaymentStatus.paid,
    *,
    amount_paid: int = 0,
    cost: int = 0,
    name: str = "Botox",
    practitioner: str = None,
) -> TreatmentEntry:
    return TreatmentEntry(
        date=on,
        treatment_name=name,
        practitioner_name=practitioner,
        price_paid_cents=price,
        amount_paid_cents=amount_paid,
        payment_status=status,
        product_cost_cents=cost,
    )


def _expense(on: date, amount: int, category: str = "Rent") -> Expense:
    return Expense(date=on, category=category, amount_cents=amount)


def test_revenue_recognition_by_payment_status():
    paid = _treatment(date(2024, 6, 1), 10000, PaymentStatus.paid)
    pending = _treatment(date(2024, 6, 1), 5000, PaymentStatus.pending)
    partial = _treatment(
        date(2024, 6, 1), 8000, PaymentStatus.partially_paid, amount_paid=3000
    )

    assert revenue_recognized(paid) == 10000
    assert revenue_recognized(pending) == 0
    assert revenue_recognized(partial) == 3000

    assert outstanding_balance(paid) == 0
    assert outstanding_balance(pending) == 5000
    assert outstanding_balance(partial) == 5000


def test_partial_payment_is_clamped_to_price():
    overpaid = _treatment(
        date(2024, 6, 1), 8000, PaymentStatus.partially_paid, amount_paid=9000
    )
    assert revenue_recognized(overpaid) == 8000
    assert outstanding_balance(overpaid) == 0


def test_totals_for_example_month():
    treatments = [
        _treatment(date(2024, 6, 5), 10000, PaymentStatus.paid),
        _treatment(date(2024, 6, 20), 5000, PaymentStatus.pending),
    ]
    expenses = [_expense(date(2024, 6, 10), 3000)]

    totals = compute_totals(treatments, expenses, JUNE)

    assert totals.revenue == 10000
    assert totals.costs == 3000
    assert totals.profit == 7000
    assert totals.outstanding == 5000


def test_outstanding_is_all_time_unless_scoped():
    treatments = [
        _treatment(date(2024, 6, 20), 5000, PaymentStatus.pending),
        _treatment(date(2023, 1, 10), 2000, PaymentStatus.pending),
    ]

    assert compute_totals(treatments, [], JUNE).outstanding == 7000
    scoped = compute_totals(treatments, [], JUNE, outstanding_window=JUNE)
    assert scoped.outstanding == 5000


def test_costs_include_product_costs():
    treatments = [_treatment(date(2024, 6, 5), 10000, cost=2500)]
    expenses = [_expense(date(2024, 6, 10), 3000)]

    totals = compute_totals(treatments, expenses, JUNE)

    assert totals.product_costs == 2500
    assert totals.expense_costs == 3000
    assert totals.costs == 5500
    assert totals.profit == 4500


def test_window_end_is_inclusive():
    treatments = [
        _treatment(date(2024, 6, 30), 1000),
        _treatment(date(2024, 7, 1), 4000),
    ]
    assert compute_totals(treatments, [], JUNE).revenue == 1000


def test_comparison_uses_preceding_period_of_equal_length():
    treatments = [
        _treatment(date(2024, 5, 10), 4000),
        _treatment(date(2024, 5, 1), 900),
        _treatment(date(2024, 6, 10), 7000),
    ]
    expenses = [_expense(date(2024, 5, 20), 1000)]

    previous = compute_comparison_totals(treatments, expenses, JUNE)

    assert previous.revenue == 4000
    assert previous.costs == 1000
    assert previous.profit == 3000


def test_comparison_is_zero_for_unbounded_window():
    treatments = [_treatment(date(2024, 5, 10), 4000)]
    previous = compute_comparison_totals(treatments, [], ALL_TIME)
    assert (previous.revenue, previous.costs, previous.profit) == (0, 0, 0)


def test_monthly_series_is_dense_without_data():
    window = Period("custom", date(2024, 1, 1), date(2024, 3, 31))

    series = compute_monthly_series([], [], window)

    assert [row["month"] for row in series] == ["Jan 2024", "Feb 2024", "Mar 2024"]
    for row in series:
        assert (row["revenue"], row["costs"], row["profit"]) == (0, 0, 0)


def test_monthly_series_buckets_records_by_month():
    window = Period("custom", date(2024, 1, 1), date(2024, 3, 31))
    treatments = [
        _treatment(date(2024, 1, 15), 10000, cost=1000),
        _treatment(date(2024, 3, 2), 6000, PaymentStatus.pending),
    ]
    expenses = [_expense(date(2024, 3, 31), 2000)]

    series = compute_monthly_series(treatments, expenses, window)

    assert series[0]["revenue"] == 10000
    assert series[0]["costs"] == 1000
    assert series[0]["profit"] == 9000
    assert series[1]["revenue"] == 0
    assert series[2]["revenue"] == 0
    assert series[2]["profit"] == -2000


def test_unbounded_monthly_series_spans_data():
    treatments = [_treatment(date(2024, 1, 15), 10000)]
    expenses = [_expense(date(2024, 3, 2), 2000)]

    series = compute_monthly_series(treatments, expenses, ALL_TIME)

    assert [row["month"] for row in series] == ["Jan 2024", "Feb 2024", "Mar 2024"]
    assert compute_monthly_series([], [], ALL_TIME) == []


def test_cash_flow_excludes_product_costs():
    treatments = [_treatment(date(2024, 6, 5), 10000, cost=2500)]
    expenses = [_expense(date(2024, 6, 10), 3000)]

    series = compute_cash_flow_series(treatments, expenses, JUNE)

    assert len(series) == 1
    assert series[0]["month"] == "Jun 2024"
    assert series[0]["cash_in"] == 10000
    assert series[0]["cash_out"] == 3000


def test_category_breakdown_falls_back_to_other():
    catalog = {"botox": "Injectables"}
    treatments = [
        _treatment(date(2024, 6, 1), 20000, cost=5000, name="Botox"),
        _treatment(date(2024, 6, 2), 5000, name="Mystery Peel"),
        _treatment(date(2024, 6, 3), 1000, name=None),
        _treatment(date(2024, 7, 3), 9999, name="Botox"),
    ]

    breakdown = compute_category_breakdown(
        treatments, JUNE, lambda name: catalog.get(name.lower())
    )

    assert [row["name"] for row in breakdown] == ["Injectables", "Other"]
    assert breakdown[0]["revenue"] == 20000
    assert breakdown[0]["profit"] == 15000
    assert breakdown[0]["count"] == 1
    assert breakdown[1]["revenue"] == 6000
    assert breakdown[1]["count"] == 2
    total_revenue = compute_totals(treatments, [], JUNE).revenue
    assert sum(row["revenue"] for row in breakdown) == total_revenue


def test_treatment_and_practitioner_breakdowns():
    treatments = [
        _treatment(date(2024, 6, 1), 3000, name="Peel", practitioner="Dr Ade"),
        _treatment(date(2024, 6, 2), 9000, name="Filler", practitioner="Dr Ade"),
        _treatment(date(2024, 6, 3), 2000, PaymentStatus.pending, name="Filler"),
    ]

    by_treatment = compute_treatment_breakdown(treatments, JUNE)
    assert [row["name"] for row in by_treatment] == ["Filler", "Peel"]
    assert by_treatment[0]["count"] == 2
    assert by_treatment[0]["revenue"] == 9000

    by_practitioner = compute_practitioner_breakdown(treatments, JUNE)
    assert [row["name"] for row in by_practitioner] == ["Dr Ade", "Unassigned"]
    assert by_practitioner[1]["revenue"] == 0


def test_expense_breakdown_percentages():
    expenses = [
        _expense(date(2024, 6, 1), 3000, "Rent"),
        _expense(date(2024, 6, 2), 1000, "Supplies"),
        _expense(date(2024, 6, 3), 0, None),
    ]

    breakdown = compute_expense_breakdown(expenses, JUNE)

    assert breakdown[0] == {"name": "Rent", "amount_cents": 3000, "percent": 75.0}
    assert breakdown[1]["percent"] == 25.0
    assert breakdown[2]["name"] == "Other"


def test_malformed_dates_are_skipped(caplog):
    broken = SimpleNamespace(
        id=99,
        date="not-a-date",
        price_paid_cents=5000,
        payment_status="paid",
        product_cost_cents=0,
    )
    treatments = [broken, _treatment(date(2024, 6, 5), 1000)]

    with caplog.at_level(logging.WARNING, logger="aggregation"):
        totals = compute_totals(treatments, [], JUNE)

    assert totals.revenue == 1000
    assert "id=99" in caplog.text


def test_string_dates_are_accepted():
    record = SimpleNamespace(
        date="2024-06-05", price_paid_cents=1500, payment_status="paid"
    )
    assert compute_totals([record], [], JUNE).revenue == 1500


def test_missing_collection_is_a_contract_violation():
    with pytest.raises(TypeError):
        compute_totals(None, [], JUNE)
    with pytest.raises(TypeError):
        compute_monthly_series([], None, JUNE)


def test_calculate_trend():
    assert calculate_trend(150, 100) == "50%"
    assert calculate_trend(50, 100) == "-50%"
    assert calculate_trend(0, 0) == "0%"
    assert calculate_trend(5, 0) == "∞%"
    assert calculate_trend(-5, 0) == "-∞%"


def test_tax_summary_standard_and_flat_rate():
    categories = {"consultation": "Consultation", "botox": "Injectables"}
    treatments = [
        _treatment(date(2024, 5, 1), 10000, name="Consultation"),
        _treatment(date(2024, 9, 1), 20000, cost=3000, name="Botox"),
        _treatment(date(2024, 4, 5), 99900, name="Botox"),
    ]
    expenses = [
        _expense(date(2024, 5, 1), 5000, "Rent"),
        _expense(date(2025, 4, 5), 1000, "Insurance"),
    ]
    window = Period("tax-year", date(2024, 4, 6), date(2025, 4, 5))
    resolve = lambda name: categories.get(name.lower())  # noqa: E731

    standard = compute_tax_summary(
        treatments,
        expenses,
        window,
        TaxSettings(vat_registered=True, vat_scheme="standard"),
        resolve,
    )
    assert standard["total_revenue"] == 30000
    assert standard["vat_exempt_revenue"] == 10000
    assert standard["vat_taxable_revenue"] == 20000
    assert standard["vat_owed"] == 4000
    assert standard["allowable_expenses"] == {"Rent": 5000, "Insurance": 1000}
    assert standard["total_costs"] == 9000
    assert standard["profit"] == 21000

    flat = compute_tax_summary(
        treatments,
        expenses,
        window,
        TaxSettings(vat_registered=True, vat_scheme="flat_rate", flat_rate_percent=12.5),
        resolve,
    )
    assert flat["vat_owed"] == 3750

    unregistered = compute_tax_summary(
        treatments, expenses, window, TaxSettings(), resolve
    )
    assert unregistered["vat_owed"] == 0
