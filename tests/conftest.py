from __future__ import annotations
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rimo.db import Base, get_session
from rimo import models_db  # registers table models
from rimo import assessment_engine
from rimo.main import app
from rimo.questionnaire import load_seed, seed_catalog


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    SessionTest = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = SessionTest()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded_db(db):
    seed_catalog(db, load_seed())
    return db


@pytest.fixture
def client(engine, seeded_db):
    SessionTest = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    def _override():
        s = SessionTest()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_session] = _override
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_flags():
    assessment_engine._flagged.clear()
    yield
    assessment_engine._flagged.clear()


