from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import PaymentStatus, RecurrenceFrequency


class TreatmentIn(BaseModel):
    date: date
    patient_name: Optional[str] = Field(default=None, max_length=120)
    treatment_name: str = Field(..., min_length=1, max_length=120)
    practitioner_name: Optional[str] = Field(default=None, max_length=120)
    price_paid_cents: int = Field(..., ge=0)
    amount_paid_cents: int = Field(default=0, ge=0)
    payment_status: PaymentStatus = PaymentStatus.paid
    product_cost_cents: int = Field(default=0, ge=0)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _amount_paid_within_price(self) -> "TreatmentIn":
        if self.amount_paid_cents > self.price_paid_cents:
            raise ValueError("Amount paid cannot exceed the treatment price")
        return self


class PaymentIn(BaseModel):
    amount_cents: int = Field(..., gt=0)


class ExpenseIn(BaseModel):
    date: date
    category: str = Field(..., min_length=1, max_length=100)
    amount_cents: int = Field(..., ge=0)
    notes: Optional[str] = None


class RecurringExpenseIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    amount_cents: int = Field(..., ge=0)
    notes: Optional[str] = None
    recurrence_frequency: RecurrenceFrequency = RecurrenceFrequency.monthly
    is_active: bool = True


class ToggleIn(BaseModel):
    is_active: bool


class CatalogEntryIn(BaseModel):
    treatment_name: str = Field(..., min_length=1, max_length=120)
    category: Optional[str] = Field(default=None, max_length=100)
    default_price_cents: int = Field(default=0, ge=0)
    typical_product_cost_cents: int = Field(default=0, ge=0)


class TaxSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    vat_registered: bool = False
    vat_scheme: Literal["standard", "flat_rate"] = "standard"
    flat_rate_percent: float = Field(default=0, ge=0, le=100)
    vat_exempt_categories: tuple[str, ...] = ("Wellness", "Consultation")
