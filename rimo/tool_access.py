"""Entitlement checks for the paid tools.

Every paid entry point calls :func:`verify_tool_access` before it talks to the
LLM gateway. Expiry is a read-time check: an expired purchase keeps its
``active`` status and is simply refused.
"""
from __future__ import annotations
import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple
from sqlalchemy import func, update
from sqlalchemy.orm import Session
from .config import APP_BASE_URL, TOOL_ACCESS_DAYS, TOOL_TYPES, normalize_email
from .crud import create_purchase, new_access_token
from .models_db import ToolPurchase, as_utc, utcnow

logger = logging.getLogger(__name__)

INVALID_TOKEN = "Invalid access token"
EXPIRED = "Access has expired"
NO_EMAIL_ACCESS = "No active access found for this email"
MISSING_CREDENTIALS = "Email or access token required"


class AccessDenied(Exception):
    """kind is one of ``validation``, ``not_entitled`` or ``expired``."""

    def __init__(self, reason: str, kind: str = "not_entitled"):
        super().__init__(reason)
        self.reason = reason
        self.kind = kind

    @property
    def expired(self) -> bool:
        return self.kind == "expired"


def days_remaining(expires_at: datetime, now: datetime) -> int:
    return math.ceil((as_utc(expires_at) - now).total_seconds() / 86400)

def _describe(purchase: ToolPurchase, now: datetime) -> Dict[str, Any]:
    expires_at = as_utc(purchase.expires_at)
    return {
        "valid": True,
        "purchase_id": purchase.id,
        "tool_type": purchase.tool_type,
        "email": purchase.email,
        "expires_at": expires_at.isoformat(),
        "days_remaining": days_remaining(expires_at, now),
    }

def _record_usage(db: Session, purchase: ToolPurchase, now: datetime) -> None:
    # single UPDATE so concurrent verifications never lose an increment
    db.execute(
        update(ToolPurchase)
        .where(ToolPurchase.id == purchase.id)
        .values(usage_count=ToolPurchase.usage_count + 1, last_used_at=now)
    )
    db.commit()
    db.refresh(purchase)

def _active_by_token(db: Session, access_token: str, tool_type: Optional[str]) -> ToolPurchase | None:
    q = db.query(ToolPurchase).filter(ToolPurchase.access_token == access_token, ToolPurchase.status == "active")
    if tool_type is not None:
        q = q.filter(ToolPurchase.tool_type == tool_type)
    return q.one_or_none()

def _check_token(db: Session, access_token: str, tool_type: Optional[str], now: datetime) -> Dict[str, Any]:
    purchase = _active_by_token(db, access_token, tool_type)
    if purchase is None:
        logger.info("access rejected: tool=%s credential=token reason=%s", tool_type, INVALID_TOKEN)
        raise AccessDenied(INVALID_TOKEN)
    if as_utc(purchase.expires_at) < now:
        logger.info("access rejected: tool=%s credential=token reason=%s", tool_type, EXPIRED)
        raise AccessDenied(EXPIRED, kind="expired")
    _record_usage(db, purchase, now)
    logger.info("access granted: tool=%s credential=token purchase=%s", purchase.tool_type, purchase.id)
    return _describe(purchase, now)


def verify_tool_access(
    db: Session,
    tool_type: str,
    email: Optional[str] = None,
    access_token: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Accept or reject a caller for ``tool_type``, recording usage on accept.

    The access token wins when both credentials are given. A token must match an
    active purchase of this tool type and be unexpired; an email picks the
    active, unexpired purchase with the latest expiry. Raises AccessDenied.
    """
    now = now or utcnow()
    if access_token:
        return _check_token(db, access_token, tool_type, now)

    email = normalize_email(email)
    if email:
        purchase = (
            db.query(ToolPurchase)
            .filter(
                func.lower(ToolPurchase.email) == email,
                ToolPurchase.tool_type == tool_type,
                ToolPurchase.status == "active",
                ToolPurchase.expires_at > now,
            )
            .order_by(ToolPurchase.expires_at.desc())
            .first()
        )
        if purchase is None:
            logger.info("access rejected: tool=%s credential=email reason=%s", tool_type, NO_EMAIL_ACCESS)
            raise AccessDenied(NO_EMAIL_ACCESS)
        _record_usage(db, purchase, now)
        logger.info("access granted: tool=%s credential=email purchase=%s", tool_type, purchase.id)
        return _describe(purchase, now)

    raise AccessDenied(MISSING_CREDENTIALS, kind="validation")


def verify_access_link(db: Session, access_token: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Magic-link click: the token alone identifies the tool."""
    if not access_token:
        raise AccessDenied(MISSING_CREDENTIALS, kind="validation")
    return _check_token(db, access_token, None, now or utcnow())


def check_access(db: Session, email: str, tool_type: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Read-only entitlement lookup; does not count as usage."""
    now = now or utcnow()
    email = normalize_email(email)
    if not email:
        raise AccessDenied(MISSING_CREDENTIALS, kind="validation")
    purchase = (
        db.query(ToolPurchase)
        .filter(
            func.lower(ToolPurchase.email) == email,
            ToolPurchase.tool_type == tool_type,
            ToolPurchase.status == "active",
        )
        .order_by(ToolPurchase.expires_at.desc())
        .first()
    )
    if purchase is None:
        return {"has_access": False, "expired": False}
    expires_at = as_utc(purchase.expires_at)
    if expires_at < now:
        return {"has_access": False, "expired": True}
    return {
        "has_access": True,
        "expires_at": expires_at.isoformat(),
        "days_remaining": days_remaining(expires_at, now),
    }


def access_link(access_token: str, tool_type: str) -> str:
    return f"{APP_BASE_URL}/career-coach?verify={access_token}&tool={tool_type}"

def grant_access(db: Session, email: str, tool_type: str, now: Optional[datetime] = None) -> Tuple[ToolPurchase, str]:
    """Activate the newest pending purchase with a fresh token, or create an active one."""
    if tool_type not in TOOL_TYPES:
        raise ValueError(f"Unknown tool type: {tool_type}")
    now = now or utcnow()
    email = normalize_email(email)
    if not email:
        raise ValueError("Email is required")

    token = new_access_token()
    pending = (
        db.query(ToolPurchase)
        .filter(
            func.lower(ToolPurchase.email) == email,
            ToolPurchase.tool_type == tool_type,
            ToolPurchase.status == "pending",
        )
        .order_by(ToolPurchase.created_at.desc())
        .first()
    )
    if pending is None:
        purchase = create_purchase(
            db,
            email=email,
            tool_type=tool_type,
            status="active",
            access_token=token,
            expires_at=now + timedelta(days=TOOL_ACCESS_DAYS),
        )
        logger.info("created active purchase %s for tool=%s", purchase.id, tool_type)
    else:
        pending.status = "active"
        pending.access_token = token
        pending.purchased_at = now
        db.commit()
        db.refresh(pending)
        purchase = pending
        logger.info("activated pending purchase %s for tool=%s", purchase.id, tool_type)
    return purchase, access_link(token, tool_type)
