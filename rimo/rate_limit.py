from __future__ import annotations
import logging
import math
from datetime import datetime, timedelta
from typing import Dict, Optional
from sqlalchemy.orm import Session
from .models_db import RateLimit, as_utc, utcnow

logger = logging.getLogger(__name__)


class RateLimited(Exception):
    def __init__(self, retry_after_seconds: int):
        super().__init__(f"rate limited, retry after {retry_after_seconds}s")
        self.retry_after_seconds = retry_after_seconds


def check_rate_limit(
    db: Session,
    identifier: str,
    endpoint: str,
    max_requests: int,
    window_minutes: int,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """Fixed window counter per (identifier, endpoint).

    Returns ``{"remaining": n}`` when the call is allowed, raises RateLimited
    once ``max_requests`` calls have been made inside the current window.
    """
    now = now or utcnow()
    window = timedelta(minutes=window_minutes)
    row = (
        db.query(RateLimit)
        .filter(RateLimit.identifier == identifier, RateLimit.endpoint == endpoint)
        .one_or_none()
    )

    if row is not None and as_utc(row.window_start) >= now - window:
        if row.request_count >= max_requests:
            window_end = as_utc(row.window_start) + window
            retry_after = max(5, math.ceil((window_end - now).total_seconds()))
            logger.info("rate limit hit: endpoint=%s identifier=%s", endpoint, identifier)
            raise RateLimited(retry_after)
        row.request_count += 1
        db.commit()
        return {"remaining": max_requests - row.request_count}

    if row is None:
        row = RateLimit(identifier=identifier, endpoint=endpoint)
        db.add(row)
    row.request_count = 1
    row.window_start = now
    db.commit()
    return {"remaining": max_requests - 1}


def prune_windows(db: Session, older_than: timedelta, now: Optional[datetime] = None) -> int:
    cutoff = (now or utcnow()) - older_than
    n = db.query(RateLimit).filter(RateLimit.window_start < cutoff).delete(synchronize_session=False)
    db.commit()
    return n
