"""Load the assessment catalog from rimo/catalog_seed.json.

Re-running is safe: rows are merged by id, so edits to the seed file update
the existing modules, questions and options in place.
"""

from __future__ import annotations
import sys
from pathlib import Path
from rimo.db import Base, init_db
from rimo import db as rimo_db
from rimo.questionnaire import load_seed, seed_catalog

def main():
    path = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    engine = init_db()
    Base.metadata.create_all(bind=engine)
    with rimo_db.SessionLocal() as db:
        counts = seed_catalog(db, load_seed(path))
    print(f"Seeded {counts['modules']} modules, {counts['questions']} questions, {counts['options']} options.")

if __name__ == "__main__":
    main()
