from __future__ import annotations
import uuid
from datetime import timedelta
from typing import Dict, Optional
from sqlalchemy.orm import Session
from .config import TOOL_ACCESS_DAYS, normalize_email
from .models_db import AssessmentSession, AssessmentResponse, CareerReport, ToolPurchase, utcnow
from .questionnaire import Response, response_from_row


class SessionNotFound(LookupError):
    pass


class SessionClosed(RuntimeError):
    """Raised when a submitted session is asked to change its answers or position."""


def get_session_by_token(db: Session, session_token: str) -> AssessmentSession | None:
    return db.query(AssessmentSession).filter(AssessmentSession.session_token == session_token).one_or_none()

def require_session(db: Session, session_token: str) -> AssessmentSession:
    obj = get_session_by_token(db, session_token)
    if obj is None:
        raise SessionNotFound(session_token)
    return obj

def load_or_create_session(db: Session, session_token: str) -> AssessmentSession:
    """The device token is the only identity a browser has; one session per token."""
    obj = get_session_by_token(db, session_token)
    if obj is not None:
        return obj
    obj = AssessmentSession(session_token=session_token, status="in_progress", started_at=utcnow())
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj

def _ensure_open(obj: AssessmentSession) -> None:
    if obj.status in ("submitted", "scored"):
        raise SessionClosed(obj.id)

def load_responses(db: Session, session_id: str) -> Dict[str, Response]:
    rows = db.query(AssessmentResponse).filter(AssessmentResponse.session_id == session_id).all()
    return {r.question_id: response_from_row(r) for r in rows}

def save_response(db: Session, obj: AssessmentSession, response: Response) -> AssessmentResponse:
    """Upsert keyed on (session, question); a later answer replaces the earlier one."""
    _ensure_open(obj)
    row = (
        db.query(AssessmentResponse)
        .filter(AssessmentResponse.session_id == obj.id, AssessmentResponse.question_id == response.question_id)
        .one_or_none()
    )
    if row is None:
        row = AssessmentResponse(session_id=obj.id, question_id=response.question_id)
        db.add(row)
    row.selected_option_id = response.selected_option_id
    row.numeric_value = response.numeric_value
    row.text_value = response.text_value
    row.updated_at = utcnow()
    db.commit()
    db.refresh(row)
    return row

def update_progress(db: Session, obj: AssessmentSession, module_index: int, question_index: int) -> AssessmentSession:
    _ensure_open(obj)
    obj.current_module_index = module_index
    obj.current_question_index = question_index
    db.commit()
    db.refresh(obj)
    return obj

def save_email(db: Session, obj: AssessmentSession, email: str) -> AssessmentSession:
    obj.email = normalize_email(email)
    db.commit()
    db.refresh(obj)
    return obj

def save_inferred_level(db: Session, obj: AssessmentSession, level: str) -> AssessmentSession:
    obj.inferred_level = level
    db.commit()
    db.refresh(obj)
    return obj

def submit_session(db: Session, obj: AssessmentSession) -> AssessmentSession:
    if obj.status in ("submitted", "scored"):
        return obj
    obj.status = "submitted"
    obj.submitted_at = utcnow()
    db.commit()
    db.refresh(obj)
    return obj

def store_report(db: Session, obj: AssessmentSession, report: dict) -> CareerReport:
    rec = CareerReport(session_id=obj.id, report=report)
    db.add(rec)
    obj.status = "scored"
    obj.scored_at = utcnow()
    db.commit()
    db.refresh(rec)
    return rec

def latest_report(db: Session, session_id: str) -> CareerReport | None:
    return (
        db.query(CareerReport)
        .filter(CareerReport.session_id == session_id)
        .order_by(CareerReport.created_at.desc())
        .first()
    )

def create_purchase(
    db: Session,
    email: str,
    tool_type: str,
    status: str = "pending",
    access_token: Optional[str] = None,
    expires_at=None,
    stripe_session_id: Optional[str] = None,
) -> ToolPurchase:
    now = utcnow()
    obj = ToolPurchase(
        email=normalize_email(email),
        tool_type=tool_type,
        status=status,
        access_token=access_token,
        stripe_session_id=stripe_session_id,
        purchased_at=now,
        expires_at=expires_at or now + timedelta(days=TOOL_ACCESS_DAYS),
        usage_count=0,
    )
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj

def new_access_token() -> str:
    return f"{uuid.uuid4()}-{uuid.uuid4()}"
