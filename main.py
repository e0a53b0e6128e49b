import logging
from datetime import date

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from database import SessionLocal
from errors import NotFoundError, PersistenceError, WindowResolutionError
from models import Expense, RecurringExpense, TreatmentCatalogEntry, TreatmentEntry
from periods import Period, resolve_window
from recurrence import MaterializationReport, local_today
from scheduler import SchedulerManager
from schemas import (
    CatalogEntryIn,
    ExpenseIn,
    PaymentIn,
    RecurringExpenseIn,
    ToggleIn,
    TreatmentIn,
)
from services import (
    CatalogService,
    DashboardService,
    ExpenseService,
    RecurringExpenseService,
    ReportService,
    TreatmentService,
)


logger = logging.getLogger(__name__)

app = FastAPI(title="Clinic Finance")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def period_from_request(request: Request) -> Period:
    params = request.query_params
    strict = params.get("strict") in ("1", "true")
    try:
        return resolve_window(
            params.get("period"),
            params.get("start"),
            params.get("end"),
            today=local_today(),
            strict=strict,
        )
    except WindowResolutionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _treatment_out(t: TreatmentEntry) -> dict[str, object]:
    return {
        "id": t.id,
        "date": t.date.isoformat(),
        "patient_name": t.patient_name,
        "treatment_name": t.treatment_name,
        "practitioner_name": t.practitioner_name,
        "price_paid_cents": t.price_paid_cents,
        "amount_paid_cents": t.amount_paid_cents,
        "payment_status": t.payment_status.value,
        "product_cost_cents": t.product_cost_cents,
        "notes": t.notes,
    }


def _expense_out(e: Expense) -> dict[str, object]:
    return {
        "id": e.id,
        "date": e.date.isoformat(),
        "category": e.category,
        "amount_cents": e.amount_cents,
        "notes": e.notes,
        "is_recurring": e.is_recurring,
        "is_auto_generated": e.is_auto_generated,
        "origin_recurring_id": e.origin_recurring_id,
    }


def _recurring_out(r: RecurringExpense) -> dict[str, object]:
    return {
        "id": r.id,
        "category": r.category,
        "amount_cents": r.amount_cents,
        "notes": r.notes,
        "recurrence_frequency": r.recurrence_frequency.value,
        "is_active": r.is_active,
        "last_generated_date": (
            r.last_generated_date.isoformat() if r.last_generated_date else None
        ),
    }


def _catalog_out(c: TreatmentCatalogEntry) -> dict[str, object]:
    return {
        "id": c.id,
        "treatment_name": c.treatment_name,
        "category": c.category,
        "default_price_cents": c.default_price_cents,
        "typical_product_cost_cents": c.typical_product_cost_cents,
    }


def _report_out(report: MaterializationReport) -> dict[str, object]:
    return {
        "created": [_expense_out(e) for e in report.created],
        "failures": [
            {"recurring_id": definition_id, "error": str(exc)}
            for definition_id, exc in report.failures
        ],
        "skipped": report.skipped,
    }


@app.get("/api/dashboard")
def api_dashboard(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    try:
        RecurringExpenseService(db).materialize_due(local_today())
    except PersistenceError:
        logger.exception("dashboard: recurring expense generation failed")
    try:
        return DashboardService(db).dashboard(period)
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@app.get("/api/practitioners")
def api_practitioners(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    return DashboardService(db).practitioner_breakdown(period)


@app.get("/api/expense-breakdown")
def api_expense_breakdown(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    return DashboardService(db).expense_breakdown(period)


@app.get("/api/treatments")
def api_treatments(db: Session = Depends(get_db)):
    return [_treatment_out(t) for t in TreatmentService(db).list_all()]


@app.post("/api/treatments", status_code=201)
def create_treatment(data: TreatmentIn, db: Session = Depends(get_db)):
    try:
        treatment = TreatmentService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _treatment_out(treatment)


@app.put("/api/treatments/{treatment_id}")
def update_treatment(
    treatment_id: int, data: TreatmentIn, db: Session = Depends(get_db)
):
    try:
        treatment = TreatmentService(db).update(treatment_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _treatment_out(treatment)


@app.post("/api/treatments/{treatment_id}/payments")
def record_payment(
    treatment_id: int, data: PaymentIn, db: Session = Depends(get_db)
):
    try:
        treatment = TreatmentService(db).record_payment(treatment_id, data.amount_cents)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _treatment_out(treatment)


@app.post("/api/treatments/{treatment_id}/mark-paid")
def mark_treatment_paid(treatment_id: int, db: Session = Depends(get_db)):
    try:
        treatment = TreatmentService(db).mark_paid(treatment_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _treatment_out(treatment)


@app.delete("/api/treatments/{treatment_id}")
def delete_treatment(treatment_id: int, db: Session = Depends(get_db)):
    try:
        TreatmentService(db).delete(treatment_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/expenses")
def api_expenses(db: Session = Depends(get_db)):
    return [_expense_out(e) for e in ExpenseService(db).list_all()]


@app.post("/api/expenses", status_code=201)
def create_expense(data: ExpenseIn, db: Session = Depends(get_db)):
    return _expense_out(ExpenseService(db).create(data))


@app.delete("/api/expenses/{expense_id}")
def delete_expense(expense_id: int, db: Session = Depends(get_db)):
    try:
        ExpenseService(db).delete(expense_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/recurring-expenses")
def api_recurring(db: Session = Depends(get_db)):
    return [_recurring_out(r) for r in RecurringExpenseService(db).list_all()]


@app.post("/api/recurring-expenses", status_code=201)
def create_recurring(data: RecurringExpenseIn, db: Session = Depends(get_db)):
    return _recurring_out(RecurringExpenseService(db).create(data))


@app.put("/api/recurring-expenses/{definition_id}")
def update_recurring(
    definition_id: int, data: RecurringExpenseIn, db: Session = Depends(get_db)
):
    try:
        definition = RecurringExpenseService(db).update(definition_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _recurring_out(definition)


@app.post("/api/recurring-expenses/{definition_id}/toggle")
def toggle_recurring(
    definition_id: int, data: ToggleIn, db: Session = Depends(get_db)
):
    try:
        definition = RecurringExpenseService(db).toggle(definition_id, data.is_active)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _recurring_out(definition)


@app.delete("/api/recurring-expenses/{definition_id}")
def delete_recurring(definition_id: int, db: Session = Depends(get_db)):
    try:
        RecurringExpenseService(db).delete(definition_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/api/recurring-expenses/materialize")
def materialize_recurring(request: Request, db: Session = Depends(get_db)):
    today_param = request.query_params.get("today")
    try:
        today = date.fromisoformat(today_param) if today_param else local_today()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    report = RecurringExpenseService(db).materialize_due(today)
    return _report_out(report)


@app.get("/api/catalog")
def api_catalog(db: Session = Depends(get_db)):
    return [_catalog_out(c) for c in CatalogService(db).list_all()]


@app.post("/api/catalog", status_code=201)
def create_catalog_entry(data: CatalogEntryIn, db: Session = Depends(get_db)):
    try:
        entry = CatalogService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _catalog_out(entry)


@app.get("/api/catalog/match")
def match_catalog(name: str, db: Session = Depends(get_db)):
    try:
        match = CatalogService(db).match_treatment(name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "query": match.query,
        "needs_confirmation": match.needs_confirmation,
        "confirmed": _catalog_out(match.confirmed) if match.confirmed else None,
        "suggestions": [_catalog_out(c) for c in match.suggestions],
    }


@app.get("/api/reports/tax-year/{start_year}")
def api_tax_year(start_year: int, db: Session = Depends(get_db)):
    if start_year < 1970 or start_year > 3000:
        raise HTTPException(status_code=400, detail="Invalid tax year")
    return DashboardService(db).tax_summary(start_year)


@app.get("/reports/export.csv")
def export_csv(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    content = ReportService(db).export_csv(period)
    filename = f"clinic-report-{period.slug}-{local_today().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
