from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from aggregation import (
    OTHER,
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
)
from config import get_settings
from csv_utils import export_report
from errors import NotFoundError, PersistenceError
from models import (
    Expense,
    PaymentStatus,
    RecurringExpense,
    TreatmentCatalogEntry,
    TreatmentEntry,
)
from periods import ALL_TIME, Period, tax_year_window
from recurrence import MaterializationReport, RecurringEngine
from schemas import (
    CatalogEntryIn,
    ExpenseIn,
    RecurringExpenseIn,
    TaxSettings,
    TreatmentIn,
)


logger = logging.getLogger(__name__)

MAX_FUZZY_DISTANCE = 2


def _commit(session: Session, action: str) -> None:
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise PersistenceError(f"Failed to {action}") from exc


def tax_settings_from_config() -> TaxSettings:
    settings = get_settings()
    scheme = settings.vat_scheme if settings.vat_scheme == "flat_rate" else "standard"
    return TaxSettings(
        vat_registered=settings.vat_registered,
        vat_scheme=scheme,
        flat_rate_percent=settings.flat_rate_percent,
        vat_exempt_categories=settings.vat_exempt_categories,
    )


class TreatmentService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[TreatmentEntry]:
        stmt = select(TreatmentEntry).order_by(
            TreatmentEntry.date.desc(), TreatmentEntry.id.desc()
        )
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to list treatments") from exc

    def get(self, treatment_id: int) -> TreatmentEntry:
        treatment = self.session.get(TreatmentEntry, treatment_id)
        if not treatment:
            raise NotFoundError("Treatment not found")
        return treatment

    def create(self, data: TreatmentIn) -> TreatmentEntry:
        treatment = TreatmentEntry(**data.model_dump())
        self._normalize_payment(treatment)
        self.session.add(treatment)
        _commit(self.session, "create treatment")
        self.session.refresh(treatment)
        return treatment

    def update(self, treatment_id: int, data: TreatmentIn) -> TreatmentEntry:
        treatment = self.get(treatment_id)
        for name, value in data.model_dump().items():
            setattr(treatment, name, value)
        self._normalize_payment(treatment)
        _commit(self.session, "update treatment")
        self.session.refresh(treatment)
        return treatment

    def delete(self, treatment_id: int) -> None:
        treatment = self.get(treatment_id)
        self.session.delete(treatment)
        _commit(self.session, "delete treatment")

    def mark_paid(self, treatment_id: int) -> TreatmentEntry:
        treatment = self.get(treatment_id)
        treatment.amount_paid_cents = treatment.price_paid_cents
        treatment.payment_status = PaymentStatus.paid
        _commit(self.session, "update treatment")
        return treatment

    def record_payment(self, treatment_id: int, amount_cents: int) -> TreatmentEntry:
        if amount_cents <= 0:
            raise ValueError("Payment amount must be positive")
        treatment = self.get(treatment_id)
        if treatment.payment_status == PaymentStatus.paid:
            raise ValueError("Treatment is already paid in full")
        paid = treatment.amount_paid_cents or 0
        if treatment.payment_status == PaymentStatus.pending:
            paid = 0
        new_total = paid + amount_cents
        if new_total > treatment.price_paid_cents:
            raise ValueError("Payment exceeds the outstanding balance")
        treatment.amount_paid_cents = new_total
        treatment.payment_status = (
            PaymentStatus.paid
            if new_total == treatment.price_paid_cents
            else PaymentStatus.partially_paid
        )
        _commit(self.session, "record payment")
        return treatment

    @staticmethod
    def _normalize_payment(treatment: TreatmentEntry) -> None:
        if treatment.payment_status == PaymentStatus.paid:
            treatment.amount_paid_cents = treatment.price_paid_cents
        elif treatment.payment_status == PaymentStatus.pending:
            treatment.amount_paid_cents = 0


class ExpenseService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Expense]:
        stmt = select(Expense).order_by(Expense.date.desc(), Expense.id.desc())
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to list expenses") from exc

    def get(self, expense_id: int) -> Expense:
        expense = self.session.get(Expense, expense_id)
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def create(self, data: ExpenseIn) -> Expense:
        expense = Expense(
            date=data.date,
            category=data.category.strip(),
            amount_cents=data.amount_cents,
            notes=data.notes,
            is_recurring=False,
            is_auto_generated=False,
        )
        self.session.add(expense)
        _commit(self.session, "create expense")
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        _commit(self.session, "delete expense")


class RecurringExpenseService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self, *, active_only: bool = False) -> list[RecurringExpense]:
        stmt = select(RecurringExpense).order_by(RecurringExpense.created_at.desc())
        if active_only:
            stmt = stmt.where(RecurringExpense.is_active.is_(True))
        return list(self.session.scalars(stmt).all())

    def get(self, definition_id: int) -> RecurringExpense:
        definition = self.session.get(RecurringExpense, definition_id)
        if not definition:
            raise NotFoundError("Recurring expense not found")
        return definition

    def create(self, data: RecurringExpenseIn) -> RecurringExpense:
        definition = RecurringExpense(**data.model_dump())
        self.session.add(definition)
        _commit(self.session, "create recurring expense")
        self.session.refresh(definition)
        return definition

    def update(self, definition_id: int, data: RecurringExpenseIn) -> RecurringExpense:
        # last_generated_date is owned by the recurrence engine
        definition = self.get(definition_id)
        for name, value in data.model_dump().items():
            setattr(definition, name, value)
        _commit(self.session, "update recurring expense")
        self.session.refresh(definition)
        return definition

    def toggle(self, definition_id: int, is_active: bool) -> RecurringExpense:
        definition = self.get(definition_id)
        definition.is_active = is_active
        _commit(self.session, "toggle recurring expense")
        return definition

    def delete(self, definition_id: int) -> None:
        definition = self.get(definition_id)
        self.session.delete(definition)
        _commit(self.session, "delete recurring expense")

    def materialize_due(self, today: Optional[date] = None) -> MaterializationReport:
        report = RecurringEngine(self.session).materialize_due(today)
        _commit(self.session, "commit recurring expenses")
        return report


@dataclass
class TreatmentMatch:
    query: str
    confirmed: Optional[TreatmentCatalogEntry] = None
    suggestions: list[TreatmentCatalogEntry] = field(default_factory=list)

    @property
    def needs_confirmation(self) -> bool:
        return self.confirmed is None


class CatalogService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[TreatmentCatalogEntry]:
        stmt = select(TreatmentCatalogEntry).order_by(
            TreatmentCatalogEntry.treatment_name
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: CatalogEntryIn) -> TreatmentCatalogEntry:
        entry = TreatmentCatalogEntry(
            treatment_name=data.treatment_name.strip(),
            category=(data.category or "").strip() or None,
            default_price_cents=data.default_price_cents,
            typical_product_cost_cents=data.typical_product_cost_cents,
        )
        self.session.add(entry)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValueError("Treatment already exists in the catalog") from exc
        self.session.refresh(entry)
        return entry

    def category_lookup(self) -> Callable[[str], str]:
        by_name = {
            entry.treatment_name.strip().lower(): entry.category or OTHER
            for entry in self.list_all()
        }

        def resolve(treatment_name: str) -> str:
            if not treatment_name:
                return OTHER
            return by_name.get(treatment_name.strip().lower(), OTHER)

        return resolve

    def resolve_category(self, treatment_name: str) -> str:
        return self.category_lookup()(treatment_name)

    def match_treatment(self, name: str) -> TreatmentMatch:
        query = (name or "").strip()
        if not query:
            raise ValueError("Treatment name cannot be empty")
        query_lower = query.lower()
        entries = self.list_all()

        for entry in entries:
            if entry.treatment_name.lower() == query_lower:
                return TreatmentMatch(query=query, confirmed=entry)

        scored: list[tuple[int, str, TreatmentCatalogEntry]] = []
        for entry in entries:
            name_lower = entry.treatment_name.lower()
            dist = int(Levenshtein.distance(query_lower, name_lower))
            if query_lower in name_lower or name_lower in query_lower:
                scored.append((0, name_lower, entry))
            elif dist <= MAX_FUZZY_DISTANCE:
                scored.append((dist, name_lower, entry))
        scored.sort(key=lambda item: (item[0], item[1]))
        return TreatmentMatch(query=query, suggestions=[item[2] for item in scored])


class DashboardService:
    """Loads records once and feeds them through the aggregation functions."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self._treatments: Optional[list[TreatmentEntry]] = None
        self._expenses: Optional[list[Expense]] = None
        self._resolve: Optional[Callable[[str], str]] = None

    @property
    def treatments(self) -> list[TreatmentEntry]:
        if self._treatments is None:
            self._treatments = TreatmentService(self.session).list_all()
        return self._treatments

    @property
    def expenses(self) -> list[Expense]:
        if self._expenses is None:
            self._expenses = ExpenseService(self.session).list_all()
        return self._expenses

    @property
    def resolve_category(self) -> Callable[[str], str]:
        if self._resolve is None:
            self._resolve = CatalogService(self.session).category_lookup()
        return self._resolve

    def summary(self, window: Period) -> dict[str, object]:
        current = compute_totals(self.treatments, self.expenses, window)
        previous = compute_comparison_totals(self.treatments, self.expenses, window)
        trends: dict[str, Optional[str]] = {"revenue": None, "costs": None, "profit": None}
        if not window.is_unbounded:
            trends = {
                "revenue": calculate_trend(current.revenue, previous.revenue),
                "costs": calculate_trend(current.costs, previous.costs),
                "profit": calculate_trend(current.profit, previous.profit),
            }
        return {
            "period": {
                "slug": window.slug,
                "start": window.start,
                "end": window.end,
                "label": window.label,
            },
            "totals": current.as_dict(),
            "previous": previous.as_dict(),
            "trends": trends,
            "outstanding": current.outstanding,
        }

    def monthly_series(self, window: Period) -> list[dict[str, object]]:
        return compute_monthly_series(self.treatments, self.expenses, window)

    def cash_flow(self, window: Period) -> list[dict[str, object]]:
        return compute_cash_flow_series(self.treatments, self.expenses, window)

    def category_breakdown(self, window: Period) -> list[dict[str, object]]:
        return compute_category_breakdown(
            self.treatments, window, self.resolve_category
        )

    def treatment_breakdown(self, window: Period) -> list[dict[str, object]]:
        return compute_treatment_breakdown(self.treatments, window)

    def practitioner_breakdown(self, window: Period) -> list[dict[str, object]]:
        return compute_practitioner_breakdown(self.treatments, window)

    def expense_breakdown(self, window: Period) -> list[dict[str, object]]:
        return compute_expense_breakdown(self.expenses, window)

    def tax_summary(
        self, start_year: int, settings: Optional[TaxSettings] = None
    ) -> dict[str, object]:
        return compute_tax_summary(
            self.treatments,
            self.expenses,
            tax_year_window(start_year),
            settings or tax_settings_from_config(),
            self.resolve_category,
        )

    def dashboard(self, window: Period) -> dict[str, object]:
        data = self.summary(window)
        data.update(
            {
                "monthly": self.monthly_series(window),
                "cash_flow": self.cash_flow(window),
                "categories": self.category_breakdown(window),
                "treatments": self.treatment_breakdown(window),
            }
        )
        return data


class ReportService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.dashboard = DashboardService(session)

    def export_csv(self, window: Period = ALL_TIME) -> str:
        treatments = [t for t in self.dashboard.treatments if window.contains(t.date)]
        expenses = [e for e in self.dashboard.expenses if window.contains(e.date)]
        totals = compute_totals(treatments, expenses, ALL_TIME)
        return export_report(
            window,
            totals,
            treatments,
            expenses,
            self.dashboard.treatment_breakdown(window),
            self.dashboard.practitioner_breakdown(window),
            currency_symbol=get_settings().currency_symbol,
        )
