from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class PaymentStatus(str, Enum):
    paid = "paid"
    pending = "pending"
    partially_paid = "partially_paid"


class RecurrenceFrequency(str, Enum):
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class TreatmentCatalogEntry(Base, TimestampMixin):
    __tablename__ = "treatment_catalog"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    treatment_name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    default_price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    typical_product_cost_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    __table_args__ = (
        CheckConstraint("default_price_cents >= 0", name="ck_catalog_price_positive"),
    )


class TreatmentEntry(Base, TimestampMixin):
    __tablename__ = "treatments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    patient_name: Mapped[Optional[str]] = mapped_column(String(120))
    treatment_name: Mapped[Optional[str]] = mapped_column(String(120))
    practitioner_name: Mapped[Optional[str]] = mapped_column(String(120))
    price_paid_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_paid_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(PaymentStatus), nullable=False, default=PaymentStatus.paid
    )
    product_cost_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_treatments_date", "date"),
        Index("ix_treatments_status", "payment_status"),
        CheckConstraint("price_paid_cents >= 0", name="ck_treatments_price_positive"),
        CheckConstraint(
            "amount_paid_cents >= 0", name="ck_treatments_amount_paid_positive"
        ),
    )


class RecurringExpense(Base, TimestampMixin):
    __tablename__ = "recurring_expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    recurrence_frequency: Mapped[RecurrenceFrequency] = mapped_column(
        SAEnum(RecurrenceFrequency),
        nullable=False,
        default=RecurrenceFrequency.monthly,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_generated_date: Mapped[Optional[date]] = mapped_column(Date)

    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="origin_recurring"
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_auto_generated: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    origin_recurring_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_expenses.id", ondelete="SET NULL")
    )

    origin_recurring: Mapped[Optional["RecurringExpense"]] = relationship(
        "RecurringExpense", back_populates="expenses"
    )

    __table_args__ = (
        Index("ix_expenses_date", "date"),
        Index("ix_expenses_category_date", "category", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
    )
