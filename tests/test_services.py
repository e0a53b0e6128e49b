from datetime import date

import pytest
from pydantic import ValidationError
from sqlalchemy.orm import Session

from database import Base, build_engine
from models import PaymentStatus
from periods import Period
from schemas import CatalogEntryIn, ExpenseIn, RecurringExpenseIn, TreatmentIn
from services import (
    CatalogService,
    DashboardService,
    ExpenseService,
    RecurringExpenseService,
    ReportService,
    TreatmentService,
)


JUNE = Period("this-month", date(2024, 6, 1), date(2024, 6, 30))


def make_session() -> Session:
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine, expire_on_commit=False)


def _seed_june(session: Session) -> None:
    treatments = TreatmentService(session)
    treatments.create(
        TreatmentIn(
            date=date(2024, 6, 5),
            patient_name="A. Patient",
            treatment_name="Botox",
            practitioner_name="Dr Ade",
            price_paid_cents=10000,
            payment_status=PaymentStatus.paid,
        )
    )
    treatments.create(
        TreatmentIn(
            date=date(2024, 6, 20),
            patient_name="=cmd|' /C calc'!A0",
            treatment_name="Lip Filler",
            price_paid_cents=5000,
            payment_status=PaymentStatus.pending,
        )
    )
    ExpenseService(session).create(
        ExpenseIn(date=date(2024, 6, 10), category="Supplies", amount_cents=3000)
    )


def test_treatment_amount_paid_cannot_exceed_price():
    with pytest.raises(ValidationError):
        TreatmentIn(
            date=date(2024, 6, 1),
            treatment_name="Botox",
            price_paid_cents=1000,
            amount_paid_cents=1500,
            payment_status=PaymentStatus.partially_paid,
        )


def test_paid_treatment_records_full_amount():
    session = make_session()
    treatment = TreatmentService(session).create(
        TreatmentIn(
            date=date(2024, 6, 1),
            treatment_name="Botox",
            price_paid_cents=10000,
            payment_status=PaymentStatus.paid,
        )
    )
    assert treatment.amount_paid_cents == 10000


def test_record_payment_moves_through_statuses():
    session = make_session()
    service = TreatmentService(session)
    treatment = service.create(
        TreatmentIn(
            date=date(2024, 6, 1),
            treatment_name="Filler",
            price_paid_cents=10000,
            payment_status=PaymentStatus.pending,
        )
    )

    service.record_payment(treatment.id, 4000)
    assert treatment.payment_status == PaymentStatus.partially_paid
    assert treatment.amount_paid_cents == 4000

    with pytest.raises(ValueError):
        service.record_payment(treatment.id, 7000)

    service.record_payment(treatment.id, 6000)
    assert treatment.payment_status == PaymentStatus.paid

    with pytest.raises(ValueError):
        service.record_payment(treatment.id, 100)


def test_missing_treatment_raises_not_found():
    from errors import NotFoundError

    session = make_session()
    with pytest.raises(NotFoundError):
        TreatmentService(session).get(404)


def test_catalog_match_prefers_exact_then_similar():
    session = make_session()
    catalog = CatalogService(session)
    for name, category in [
        ("Botox", "Injectables"),
        ("Lip Filler", "Fillers"),
        ("Cheek Filler", "Fillers"),
    ]:
        catalog.create(CatalogEntryIn(treatment_name=name, category=category))

    exact = catalog.match_treatment("botox")
    assert not exact.needs_confirmation
    assert exact.confirmed.treatment_name == "Botox"

    partial = catalog.match_treatment("Filler")
    assert partial.needs_confirmation
    assert [e.treatment_name for e in partial.suggestions] == [
        "Cheek Filler",
        "Lip Filler",
    ]

    typo = catalog.match_treatment("Botx")
    assert [e.treatment_name for e in typo.suggestions] == ["Botox"]

    assert catalog.match_treatment("Laser Hair Removal").suggestions == []


def test_catalog_rejects_duplicates():
    session = make_session()
    catalog = CatalogService(session)
    catalog.create(CatalogEntryIn(treatment_name="Botox", category="Injectables"))
    with pytest.raises(ValueError):
        catalog.create(CatalogEntryIn(treatment_name="Botox"))


def test_resolve_category_defaults_to_other():
    session = make_session()
    catalog = CatalogService(session)
    catalog.create(CatalogEntryIn(treatment_name="Botox", category="Injectables"))
    catalog.create(CatalogEntryIn(treatment_name="Peel"))

    assert catalog.resolve_category("BOTOX ") == "Injectables"
    assert catalog.resolve_category("Peel") == "Other"
    assert catalog.resolve_category("Unknown") == "Other"


def test_dashboard_summary_for_example_month():
    session = make_session()
    _seed_june(session)
    CatalogService(session).create(
        CatalogEntryIn(treatment_name="Botox", category="Injectables")
    )

    dashboard = DashboardService(session).dashboard(JUNE)

    assert dashboard["totals"]["revenue"] == 10000
    assert dashboard["totals"]["costs"] == 3000
    assert dashboard["totals"]["profit"] == 7000
    assert dashboard["outstanding"] == 5000
    assert dashboard["trends"]["revenue"] == "∞%"
    assert dashboard["period"]["label"] == "This Month"
    assert [row["name"] for row in dashboard["categories"]] == ["Injectables", "Other"]
    assert [row["month"] for row in dashboard["monthly"]] == ["Jun 2024"]


def test_recurring_service_materializes_and_toggles():
    session = make_session()
    service = RecurringExpenseService(session)
    definition = service.create(
        RecurringExpenseIn(category="Rent", amount_cents=150000, notes="Studio")
    )

    report = service.materialize_due(date(2024, 6, 15))
    assert report.created_count == 1
    assert service.get(definition.id).last_generated_date == date(2024, 6, 1)

    service.toggle(definition.id, False)
    assert service.list_all(active_only=True) == []
    assert service.materialize_due(date(2024, 7, 2)).created_count == 0


def test_csv_export_contains_sections_and_sanitizes():
    session = make_session()
    _seed_june(session)

    content = ReportService(session).export_csv(JUNE)

    assert "PROFIT & LOSS SUMMARY" in content
    assert "Total Revenue (Received),100.00" in content
    assert "Outstanding Payments,50.00" in content
    assert "Net Profit,70.00" in content
    assert "SUMMARY BY PRACTITIONER" in content
    assert "\t=cmd" in content
