"""Rate-limit housekeeping.

Default policy:
- Delete rate-limit windows that started more than RATE_LIMIT_RETENTION_HOURS ago (24h).
  Those windows can no longer block anyone; a new request opens a fresh window.
"""

from __future__ import annotations
import os
from datetime import timedelta
from rimo.db import init_db
from rimo import db as rimo_db
from rimo.rate_limit import prune_windows

RATE_LIMIT_RETENTION_HOURS = int(os.getenv("RATE_LIMIT_RETENTION_HOURS", "24"))

def main():
    init_db()
    with rimo_db.SessionLocal() as db:
        n = prune_windows(db, timedelta(hours=RATE_LIMIT_RETENTION_HOURS))

    print(f"Deleted {n} rate-limit windows (>= {RATE_LIMIT_RETENTION_HOURS} hours old).")

if __name__ == "__main__":
    main()
