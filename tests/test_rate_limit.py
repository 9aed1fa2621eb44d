"""
Tests for the fixed-window rate limiter.
"""

from datetime import timedelta
import pytest

from rimo.models_db import RateLimit, utcnow
from rimo.rate_limit import RateLimited, check_rate_limit, prune_windows


class TestRateLimit:

    def test_counts_down_then_blocks(self, db):
        now = utcnow()
        assert check_rate_limit(db, "ip:1.2.3.4", "tool:ats_score", 3, 30, now=now) == {"remaining": 2}
        assert check_rate_limit(db, "ip:1.2.3.4", "tool:ats_score", 3, 30, now=now) == {"remaining": 1}
        assert check_rate_limit(db, "ip:1.2.3.4", "tool:ats_score", 3, 30, now=now) == {"remaining": 0}
        with pytest.raises(RateLimited) as e:
            check_rate_limit(db, "ip:1.2.3.4", "tool:ats_score", 3, 30, now=now + timedelta(minutes=10))
        assert e.value.retry_after_seconds == 20 * 60

    def test_retry_after_floor(self, db):
        now = utcnow()
        check_rate_limit(db, "x", "e", 1, 1, now=now)
        with pytest.raises(RateLimited) as e:
            check_rate_limit(db, "x", "e", 1, 1, now=now + timedelta(seconds=59))
        assert e.value.retry_after_seconds == 5

    def test_window_resets(self, db):
        now = utcnow()
        check_rate_limit(db, "x", "e", 1, 5, now=now)
        later = now + timedelta(minutes=6)
        assert check_rate_limit(db, "x", "e", 1, 5, now=later) == {"remaining": 0}
        assert db.query(RateLimit).count() == 1

    def test_identifiers_and_endpoints_are_independent(self, db):
        now = utcnow()
        check_rate_limit(db, "a", "e1", 1, 5, now=now)
        check_rate_limit(db, "b", "e1", 1, 5, now=now)
        check_rate_limit(db, "a", "e2", 1, 5, now=now)
        assert db.query(RateLimit).count() == 3

    def test_prune_windows(self, db):
        now = utcnow()
        check_rate_limit(db, "old", "e", 5, 5, now=now - timedelta(days=2))
        check_rate_limit(db, "new", "e", 5, 5, now=now)
        assert prune_windows(db, timedelta(hours=24), now=now) == 1
        assert [r.identifier for r in db.query(RateLimit).all()] == ["new"]
