import csv
import re
from datetime import datetime
from io import StringIO
from typing import Optional, Sequence

from aggregation import Totals, outstanding_balance, revenue_recognized
from models import Expense, TreatmentEntry
from periods import Period


def sanitize_csv_value(value: Optional[str]) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def format_cents(cents: int) -> str:
    return f"{cents / 100:.2f}"


def export_report(
    window: Period,
    totals: Totals,
    treatments: Sequence[TreatmentEntry],
    expenses: Sequence[Expense],
    by_treatment: Sequence[dict[str, object]],
    by_practitioner: Sequence[dict[str, object]],
    *,
    currency_symbol: str = "£",
    generated_at: Optional[datetime] = None,
) -> str:
    generated_at = generated_at or datetime.now()
    output = StringIO()
    writer = csv.writer(output)

    writer.writerow(["Clinic Finance Export"])
    writer.writerow([f"Date Range: {window.label}"])
    writer.writerow([f"Generated: {generated_at:%d %b %Y %H:%M}"])
    writer.writerow([])

    writer.writerow(["PROFIT & LOSS SUMMARY"])
    writer.writerow(["Metric", f"Amount ({currency_symbol})"])
    writer.writerow(["Total Revenue (Received)", format_cents(totals.revenue)])
    writer.writerow(["Outstanding Payments", format_cents(totals.outstanding)])
    writer.writerow(["Product Costs", format_cents(totals.product_costs)])
    writer.writerow(["Other Expenses", format_cents(totals.expense_costs)])
    writer.writerow(["Total Costs", format_cents(totals.costs)])
    writer.writerow(["Net Profit", format_cents(totals.profit)])
    writer.writerow([])

    writer.writerow(["TREATMENTS LEDGER"])
    writer.writerow(
        [
            "Date",
            "Patient",
            "Treatment",
            "Price",
            "Amount Received",
            "Payment Status",
            "Outstanding",
            "Product Cost",
            "Profit",
            "Practitioner",
            "Notes",
        ]
    )
    for t in treatments:
        received = revenue_recognized(t)
        writer.writerow(
            [
                t.date.isoformat(),
                sanitize_csv_value(t.patient_name) or "-",
                sanitize_csv_value(t.treatment_name),
                format_cents(t.price_paid_cents),
                format_cents(received),
                t.payment_status.value,
                format_cents(outstanding_balance(t)),
                format_cents(t.product_cost_cents or 0),
                format_cents(received - (t.product_cost_cents or 0)),
                sanitize_csv_value(t.practitioner_name) or "-",
                sanitize_csv_value(t.notes),
            ]
        )
    writer.writerow([])

    writer.writerow(["EXPENSES LEDGER"])
    writer.writerow(["Date", "Category", "Amount", "Auto-generated", "Notes"])
    for e in expenses:
        writer.writerow(
            [
                e.date.isoformat(),
                sanitize_csv_value(e.category),
                format_cents(e.amount_cents),
                "1" if e.is_auto_generated else "0",
                sanitize_csv_value(e.notes),
            ]
        )
    writer.writerow([])

    writer.writerow(["SUMMARY BY TREATMENT"])
    writer.writerow(["Treatment", "Count", "Total Revenue", "Total Cost", "Total Profit"])
    for row in by_treatment:
        writer.writerow(
            [
                sanitize_csv_value(str(row["name"])),
                row["count"],
                format_cents(int(row["revenue"])),
                format_cents(int(row["cost"])),
                format_cents(int(row["profit"])),
            ]
        )
    writer.writerow([])

    writer.writerow(["SUMMARY BY PRACTITIONER"])
    writer.writerow(["Practitioner", "Count", "Total Revenue", "Total Profit"])
    for row in by_practitioner:
        writer.writerow(
            [
                sanitize_csv_value(str(row["name"])),
                row["count"],
                format_cents(int(row["revenue"])),
                format_cents(int(row["profit"])),
            ]
        )
    return output.getvalue()
