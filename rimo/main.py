from __future__ import annotations
import logging
from fastapi import FastAPI, Header, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import (
    RIMO_API_KEY, LOG_LEVEL, LEVEL_ORDER, TOOL_TYPES,
    REPORT_RATE_LIMIT_MAX_REQUESTS, REPORT_RATE_LIMIT_WINDOW_MINUTES,
)
from .models_api import (
    SessionStartRequest, ResponseRequest, ProgressRequest, EmailRequest, LevelRequest,
    AccessLinkRequest, AccessCheckRequest, AccessGrantRequest, ToolRunRequest,
)
from .db import init_db, get_session, Base
from . import models_db  # registers table models
from .models_db import AssessmentSession, as_utc
from .questionnaire import Response, load_catalog, load_modules
from .assessment_engine import evaluate, check_answer, calibration_level
from .report_engine import build_report, report_items
from .crud import (
    SessionNotFound, SessionClosed, require_session, load_or_create_session, load_responses,
    save_response, update_progress, save_email, save_inferred_level, submit_session,
    store_report, latest_report,
)
from .tool_access import AccessDenied, verify_access_link, check_access, grant_access
from .rate_limit import RateLimited, check_rate_limit
from .llm_gateway import GatewayError
from .tools import ToolInputError, ToolOutputError, run_tool

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Rimo Career Benchmark API", version="1.0")

def check_auth(authorization: Optional[str]) -> None:
    if not RIMO_API_KEY:
        return
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    token = authorization.replace("Bearer ", "", 1).strip()
    if token != RIMO_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid token")

def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else "unknown")

@app.on_event("startup")
def on_startup():
    engine = init_db()
    Base.metadata.create_all(bind=engine)
    logger.info("database ready: %s", engine.url.render_as_string(hide_password=True))


@app.exception_handler(SessionNotFound)
def _session_not_found(request: Request, exc: SessionNotFound):
    return JSONResponse(status_code=404, content={"detail": "Session not found"})

@app.exception_handler(SessionClosed)
def _session_closed(request: Request, exc: SessionClosed):
    return JSONResponse(status_code=409, content={"detail": "Assessment already submitted"})

@app.exception_handler(AccessDenied)
def _access_denied(request: Request, exc: AccessDenied):
    return JSONResponse(status_code=403, content={"detail": exc.reason, "expired": exc.expired})

@app.exception_handler(RateLimited)
def _rate_limited(request: Request, exc: RateLimited):
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests. Please try again later.", "retry_after_seconds": exc.retry_after_seconds},
        headers={"Retry-After": str(exc.retry_after_seconds)},
    )

@app.exception_handler(GatewayError)
def _gateway_error(request: Request, exc: GatewayError):
    status = exc.status if exc.status in (402, 429) else 502
    return JSONResponse(status_code=status, content={"detail": exc.message})

@app.exception_handler(SQLAlchemyError)
def _persistence_error(request: Request, exc: SQLAlchemyError):
    # the request's session is closed by get_session, which rolls the transaction back
    logger.error("persistence failure on %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=503, content={"detail": "Failed to save, please try again."})


def _session_view(obj: AssessmentSession) -> dict:
    return {
        "id": obj.id,
        "session_token": obj.session_token,
        "status": obj.status,
        "current_module_index": obj.current_module_index,
        "current_question_index": obj.current_question_index,
        "email": obj.email,
        "inferred_level": obj.inferred_level,
        "submitted_at": as_utc(obj.submitted_at).isoformat() if obj.submitted_at else None,
    }

def _state(db: Session, obj: AssessmentSession, module_id: Optional[str] = None) -> dict:
    catalog = load_catalog(db)
    responses = load_responses(db, obj.id)
    out = evaluate(catalog.questions, responses, obj.inferred_level, obj.email, module_id=module_id)
    out["session"] = _session_view(obj)
    return out


@app.get("/v1/health")
def health():
    return {"status": "ok"}

@app.get("/v1/assessment/modules")
def modules(db: Session = Depends(get_session)):
    return {"modules": [m.model_dump() for m in load_modules(db)]}

@app.post("/v1/assessment/sessions")
def start_session(req: SessionStartRequest, db: Session = Depends(get_session)):
    obj = load_or_create_session(db, req.session_token)
    return _state(db, obj)

@app.get("/v1/assessment/sessions/{session_token}")
def session_state(session_token: str, module_id: Optional[str] = None, db: Session = Depends(get_session)):
    return _state(db, require_session(db, session_token), module_id=module_id)

@app.put("/v1/assessment/sessions/{session_token}/responses")
def answer(session_token: str, req: ResponseRequest, db: Session = Depends(get_session)):
    obj = require_session(db, session_token)
    catalog = load_catalog(db)
    question = catalog.question(req.question_id)
    if question is None:
        raise HTTPException(status_code=400, detail=f"Unknown question: {req.question_id}")

    response = Response(**req.model_dump())
    try:
        check_answer(question, response)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    save_response(db, obj, response)
    level = calibration_level(question, response)
    if level:
        if level in LEVEL_ORDER:
            save_inferred_level(db, obj, level)
        else:
            logger.warning("calibration option on %s names unknown level %r", question.id, level)
    return _state(db, obj)

@app.put("/v1/assessment/sessions/{session_token}/progress")
def progress(session_token: str, req: ProgressRequest, db: Session = Depends(get_session)):
    obj = update_progress(db, require_session(db, session_token), req.module_index, req.question_index)
    return {"session": _session_view(obj)}

@app.put("/v1/assessment/sessions/{session_token}/email")
def email(session_token: str, req: EmailRequest, db: Session = Depends(get_session)):
    obj = save_email(db, require_session(db, session_token), req.email)
    return _state(db, obj)

@app.put("/v1/assessment/sessions/{session_token}/level")
def level(session_token: str, req: LevelRequest, db: Session = Depends(get_session)):
    if req.level not in LEVEL_ORDER:
        raise HTTPException(status_code=400, detail=f"Unknown level: {req.level}")
    obj = save_inferred_level(db, require_session(db, session_token), req.level)
    return _state(db, obj)

@app.post("/v1/assessment/sessions/{session_token}/submit")
def submit(session_token: str, db: Session = Depends(get_session)):
    obj = submit_session(db, require_session(db, session_token))
    return {"session": _session_view(obj)}

@app.post("/v1/assessment/sessions/{session_token}/report")
def generate_report(session_token: str, request: Request, db: Session = Depends(get_session)):
    check_rate_limit(
        db,
        client_ip(request),
        "generate-career-report",
        REPORT_RATE_LIMIT_MAX_REQUESTS,
        REPORT_RATE_LIMIT_WINDOW_MINUTES,
    )
    obj = require_session(db, session_token)
    if obj.status not in ("submitted", "scored"):
        raise HTTPException(status_code=409, detail="Assessment has not been submitted")

    catalog = load_catalog(db)
    report = build_report(report_items(catalog.by_id(), load_responses(db, obj.id)))
    rec = store_report(db, obj, report)
    return {"report_id": rec.id, "created_at": as_utc(rec.created_at).isoformat(), "report": rec.report}

@app.get("/v1/assessment/sessions/{session_token}/report")
def read_report(session_token: str, db: Session = Depends(get_session)):
    obj = require_session(db, session_token)
    rec = latest_report(db, obj.id)
    if not rec:
        raise HTTPException(status_code=404, detail="Not found")
    return {"report_id": rec.id, "created_at": as_utc(rec.created_at).isoformat(), "report": rec.report}


@app.post("/v1/tools/access/verify")
def verify_link(req: AccessLinkRequest, db: Session = Depends(get_session)):
    try:
        return verify_access_link(db, req.access_token)
    except AccessDenied as e:
        return {"valid": False, "error": e.reason, "expired": e.expired}

@app.post("/v1/tools/access/check")
def check(req: AccessCheckRequest, db: Session = Depends(get_session)):
    if req.tool_type not in TOOL_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown tool type: {req.tool_type}")
    return check_access(db, req.email, req.tool_type)

@app.post("/v1/tools/access/grant")
def grant(
    req: AccessGrantRequest,
    db: Session = Depends(get_session),
    authorization: Optional[str] = Header(default=None),
):
    check_auth(authorization)
    try:
        purchase, link = grant_access(db, req.email, req.tool_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "purchase_id": purchase.id,
        "email": purchase.email,
        "tool_type": purchase.tool_type,
        "status": purchase.status,
        "expires_at": as_utc(purchase.expires_at).isoformat(),
        "access_link": link,
    }

@app.post("/v1/tools/run/{tool_name}")
def tool(tool_name: str, req: ToolRunRequest, request: Request, db: Session = Depends(get_session)):
    try:
        return run_tool(
            db,
            tool_name,
            req.input,
            email=req.email,
            access_token=req.access_token,
            client_ip=client_ip(request),
        )
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown tool: {tool_name}")
    except ToolInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ToolOutputError as e:
        raise HTTPException(status_code=502, detail=str(e))
