import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from errors import PersistenceError
from models import Expense, RecurrenceFrequency, RecurringExpense


logger = logging.getLogger(__name__)

AUTO_GENERATED_SUFFIX = "(Auto-generated)"


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def period_bucket(frequency: RecurrenceFrequency, value: date) -> str:
    if frequency == RecurrenceFrequency.monthly:
        return f"{value.year:04d}-{value.month:02d}"
    if frequency == RecurrenceFrequency.yearly:
        return f"{value.year:04d}"
    return value.isoformat()


def is_due(definition: RecurringExpense, today: date) -> bool:
    if not definition.is_active:
        return False
    last = definition.last_generated_date
    if last is None:
        return True
    frequency = RecurrenceFrequency(definition.recurrence_frequency)
    if frequency == RecurrenceFrequency.weekly:
        return last <= today - timedelta(days=7)
    return period_bucket(frequency, last) != period_bucket(frequency, today)


def occurrence_date(frequency: RecurrenceFrequency, today: date) -> date:
    frequency = RecurrenceFrequency(frequency)
    if frequency == RecurrenceFrequency.monthly:
        return today.replace(day=1)
    if frequency == RecurrenceFrequency.yearly:
        return date(today.year, 1, 1)
    return today


def auto_generated_notes(notes: Optional[str]) -> str:
    return f"{notes or ''} {AUTO_GENERATED_SUFFIX}".strip()


@dataclass
class MaterializationReport:
    created: list[Expense] = field(default_factory=list)
    failures: list[tuple[int, Exception]] = field(default_factory=list)
    skipped: int = 0

    @property
    def created_count(self) -> int:
        return len(self.created)


class RecurringEngine:
    """Turns due recurring expense definitions into concrete expenses.

    Definitions are evaluated one at a time. Each one runs inside its own
    savepoint so a failed create or marker update rolls back only that
    definition and the rest of the batch carries on. The marker is written
    only after the expense insert has flushed, so a definition never records
    a generation that did not happen.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def active_definitions(self) -> list[RecurringExpense]:
        stmt = (
            select(RecurringExpense)
            .where(RecurringExpense.is_active.is_(True))
            .order_by(RecurringExpense.id)
        )
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to list recurring expenses") from exc

    def materialize_due(self, today: Optional[date] = None) -> MaterializationReport:
        today = today or local_today()
        report = MaterializationReport()
        for definition in self.active_definitions():
            if not is_due(definition, today):
                report.skipped += 1
                continue
            definition_id = definition.id
            try:
                with self.session.begin_nested():
                    expense = self.materialize(definition, today)
            except (PersistenceError, SQLAlchemyError) as exc:
                logger.exception(
                    "recurring_materialize_failed: definition_id=%s", definition_id
                )
                report.failures.append((definition_id, exc))
                continue
            report.created.append(expense)
        logger.info(
            "recurring_materialize: today=%s created=%s failed=%s skipped=%s",
            today,
            report.created_count,
            len(report.failures),
            report.skipped,
        )
        return report

    def materialize(self, definition: RecurringExpense, today: date) -> Expense:
        occurred_on = occurrence_date(definition.recurrence_frequency, today)
        expense = self._create_occurrence(definition, occurred_on)
        self._mark_generated(definition, occurred_on)
        return expense

    def _create_occurrence(
        self, definition: RecurringExpense, occurred_on: date
    ) -> Expense:
        expense = Expense(
            date=occurred_on,
            category=definition.category,
            amount_cents=definition.amount_cents,
            notes=auto_generated_notes(definition.notes),
            is_recurring=False,
            is_auto_generated=True,
            origin_recurring_id=definition.id,
        )
        try:
            self.session.add(expense)
            self.session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Failed to create expense for recurring definition {definition.id}"
            ) from exc
        return expense

    def _mark_generated(self, definition: RecurringExpense, occurred_on: date) -> None:
        try:
            definition.last_generated_date = occurred_on
            self.session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Failed to update recurring definition {definition.id}"
            ) from exc
