"""FastAPI application for the EduBeacon risk service."""

import logging
import traceback
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List

from fastapi import FastAPI, File, UploadFile, HTTPException, Request, Depends, Header
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from edubeacon.config import settings
from edubeacon.dashboard import (
    StudentOverview,
    high_risk_alerts,
    mentor_analytics,
    refresh_view,
    student_profile,
    student_tips,
    students_overview,
)
from edubeacon.email_templates import generate_email_draft
from edubeacon.models import (
    AcknowledgeResponse,
    DashboardView,
    EmailDraftResponse,
    HighRiskAlertItem,
    ImportResponse,
    MentorAnalytics,
    TipsResponse,
    utcnow,
)
from edubeacon.parsers import load_roster, records_to_csv, roster_to_records
from edubeacon.records import (
    AttendanceEntry,
    FeePayment,
    TestResult,
    WellbeingResponse,
    add_test_result,
    add_wellbeing_response,
    apply_fee_payment,
    record_attendance,
    summarize_risk_levels,
)
from edubeacon.sample_data import seed_store
from edubeacon.store import AlertNotFound, StorageError, StudentConflict, StudentNotFound, StudentStore

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

DEMO_ORGANIZATION_ID = 'demo-org'
DEMO_MENTOR_ID = 'demo-mentor'

store = StudentStore(
    retry_attempts=settings.store_retry_attempts,
    retry_backoff_seconds=settings.store_retry_backoff_seconds,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.seed_sample_data and not len(store):
        seed_store(store, DEMO_ORGANIZATION_ID, DEMO_MENTOR_ID)
    yield


app = FastAPI(title="EduBeacon Risk Service", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Override default exception handlers to return JSON (register specific handlers first)
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions and return JSON."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
    """Handle request validation errors and return JSON."""
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(ValidationError)
async def model_validation_handler_json(request: Request, exc: ValidationError):
    """Model validation failing inside a handler (e.g. a record without identity)."""
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors(include_url=False))}
    )


@app.exception_handler(StudentNotFound)
@app.exception_handler(AlertNotFound)
async def not_found_handler_json(request: Request, exc: LookupError):
    return JSONResponse(status_code=404, content={"detail": str(exc.args[0]) if exc.args else "Not found"})


@app.exception_handler(StudentConflict)
async def conflict_handler_json(request: Request, exc: StudentConflict):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler_json(request: Request, exc: StorageError):
    logger.error("Storage failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Student records are temporarily unavailable"})


@app.exception_handler(ValueError)
async def value_error_handler_json(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# Catches anything not handled by the specific handlers above
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and return JSON."""
    logger.exception("Unhandled error on %s", request.url.path)
    error_detail = str(exc)
    if settings.debug:
        error_detail = f"{str(exc)}\n\n{traceback.format_exc()}"

    return JSONResponse(
        status_code=500,
        content={
            "detail": f"Internal server error: {error_detail}",
            "type": type(exc).__name__
        }
    )


def get_store() -> StudentStore:
    return store


def organization_id(x_organization_id: str = Header(...)) -> str:
    """Organization of the caller, as asserted by the upstream gateway."""
    return x_organization_id


def user_id(x_user_id: str = Header(...)) -> str:
    """Calling mentor or student, as asserted by the upstream gateway."""
    return x_user_id


@app.get("/health")
async def health_check():
    """Health check endpoint to test server connectivity."""
    return {"status": "ok", "students": len(store)}


# ---- Mentor endpoints ----

@app.get("/api/mentor/students-overview", response_model=List[StudentOverview])
def get_students_overview(
    org: str = Depends(organization_id),
    mentor: str = Depends(user_id),
    db: StudentStore = Depends(get_store)
):
    """Rescore and list every student assigned to the calling mentor."""
    return students_overview(db, org, mentor)


@app.get("/api/mentor/student-profile/{student_id}", response_model=StudentOverview)
def get_student_profile(
    student_id: str,
    org: str = Depends(organization_id),
    mentor: str = Depends(user_id),
    db: StudentStore = Depends(get_store)
):
    db.get_scoped(student_id, org, mentor)
    return student_profile(db, student_id)


@app.get("/api/mentor/student/{student_id}/risk", response_model=DashboardView)
def get_student_risk(
    student_id: str,
    org: str = Depends(organization_id),
    mentor: str = Depends(user_id),
    db: StudentStore = Depends(get_store)
):
    """Current analysis only; flagged stale when it could not be refreshed."""
    db.get_scoped(student_id, org, mentor)
    return refresh_view(db, student_id)


@app.get("/api/mentor/analytics", response_model=MentorAnalytics)
def get_mentor_analytics(
    org: str = Depends(organization_id),
    mentor: str = Depends(user_id),
    db: StudentStore = Depends(get_store)
):
    return mentor_analytics(db.list_for_mentor(org, mentor))


@app.get("/api/mentor/high-risk-alerts", response_model=List[HighRiskAlertItem])
def get_high_risk_alerts(
    org: str = Depends(organization_id),
    mentor: str = Depends(user_id),
    db: StudentStore = Depends(get_store)
):
    """Unacknowledged high and critical alerts across the mentor's students."""
    overview = students_overview(db, org, mentor)
    return high_risk_alerts([item.student for item in overview])


@app.post("/api/mentor/acknowledge-alert/{student_id}/{alert_id}", response_model=AcknowledgeResponse)
def acknowledge_alert(
    student_id: str,
    alert_id: str,
    org: str = Depends(organization_id),
    mentor: str = Depends(user_id),
    db: StudentStore = Depends(get_store)
):
    db.get_scoped(student_id, org, mentor)
    alert = db.acknowledge_alert(student_id, alert_id, acknowledged_by=mentor)
    return AcknowledgeResponse(message="Alert acknowledged successfully", alert=alert)


@app.post("/api/mentor/update-attendance/{student_id}")
def update_attendance(
    student_id: str,
    entry: AttendanceEntry,
    org: str = Depends(organization_id),
    mentor: str = Depends(user_id),
    db: StudentStore = Depends(get_store)
):
    db.get_scoped(student_id, org, mentor)
    record, attendance = db.update(
        student_id,
        lambda r: record_attendance(r, entry.date, entry.status, entry.subject)
    )
    return {
        'message': 'Attendance updated successfully',
        'attendance': attendance,
        'risk_analysis': record.risk_analysis
    }


@app.post("/api/mentor/add-test-result/{student_id}")
def add_test_result_endpoint(
    student_id: str,
    test: TestResult,
    org: str = Depends(organization_id),
    mentor: str = Depends(user_id),
    db: StudentStore = Depends(get_store)
):
    db.get_scoped(student_id, org, mentor)
    record, _ = db.update(student_id, lambda r: add_test_result(r, test))
    return {
        'message': 'Test result added successfully',
        'academic': record.academic,
        'risk_analysis': record.risk_analysis
    }


@app.post("/api/mentor/update-fee-status/{student_id}")
def update_fee_status(
    student_id: str,
    payment: FeePayment,
    org: str = Depends(organization_id),
    mentor: str = Depends(user_id),
    db: StudentStore = Depends(get_store)
):
    db.get_scoped(student_id, org, mentor)
    now = utcnow()
    record, fees = db.update(student_id, lambda r: apply_fee_payment(r, payment, as_of=now), as_of=now)
    return {
        'message': 'Fee status updated successfully',
        'fees': fees,
        'risk_analysis': record.risk_analysis
    }


@app.post("/api/mentor/import-roster", response_model=ImportResponse)
async def import_roster(
    file: UploadFile = File(...),
    org: str = Depends(organization_id),
    mentor: str = Depends(user_id),
    db: StudentStore = Depends(get_store)
):
    """Upload an .xlsx or .csv roster and score every student in it."""
    file_bytes = await file.read()
    if len(file_bytes) > settings.max_upload_size:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size: {settings.max_upload_size_mb}MB"
        )

    df = load_roster(file_bytes, file.filename or '')
    if df.empty:
        raise HTTPException(status_code=400, detail="No student records found in the uploaded file.")

    records = roster_to_records(df, organization_id=org, mentor_id=mentor)
    imported = db.import_records(records)
    saved = [record for record, _ in imported]

    summary = summarize_risk_levels(saved)
    summary['total'] = len(saved)
    summary['updated'] = sum(1 for _, created in imported if not created)
    logger.info("Imported %d students for mentor %s: %s", len(records), mentor, summary)

    return ImportResponse(
        success=True,
        message=f"Successfully imported {len(records)} students",
        imported=len(records),
        summary=summary
    )


@app.get("/api/mentor/download.csv")
def download_csv(
    org: str = Depends(organization_id),
    mentor: str = Depends(user_id),
    db: StudentStore = Depends(get_store)
):
    """Download the mentor's students and their current analysis as CSV."""
    records = db.list_for_mentor(org, mentor)
    if not records:
        raise HTTPException(status_code=404, detail="No students available")

    stamp = datetime.now().strftime('%Y-%m-%d')
    return StreamingResponse(
        iter([records_to_csv(records)]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=student_risk_{stamp}.csv"}
    )


@app.post("/api/mentor/email-draft/{student_id}", response_model=EmailDraftResponse)
def email_draft(
    student_id: str,
    org: str = Depends(organization_id),
    mentor: str = Depends(user_id),
    db: StudentStore = Depends(get_store)
):
    """Draft an outreach email matching the student's current overall risk level."""
    db.get_scoped(student_id, org, mentor)
    profile = student_profile(db, student_id)
    record = profile.student
    analysis = record.risk_analysis.analysis

    email = generate_email_draft(
        student_name=record.name,
        overall_risk_level=analysis.overall_risk_level if analysis else 'low',
        risk_factors=analysis.risk_factors if analysis else (),
        attendance_pct=record.attendance.percentage,
        gpa=record.academic.gpa
    )
    return EmailDraftResponse(**email)


# ---- Student endpoints ----

@app.get("/api/student/tips", response_model=TipsResponse)
def get_tips(
    org: str = Depends(organization_id),
    student: str = Depends(user_id),
    db: StudentStore = Depends(get_store)
):
    try:
        record = db.get_scoped(student, org)
    except StudentNotFound:
        record = None
    return TipsResponse(tips=student_tips(record))


@app.post("/api/student/wellbeing", status_code=201)
def submit_wellbeing(
    response: WellbeingResponse,
    org: str = Depends(organization_id),
    student: str = Depends(user_id),
    db: StudentStore = Depends(get_store)
):
    db.get_scoped(student, org)
    db.update(student, lambda r: add_wellbeing_response(r, response), recalculate=False)
    return {'message': 'Thank you for your response'}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
