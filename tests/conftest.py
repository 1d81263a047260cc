"""Shared test fixtures for the fleet import reconciler tests.

Uses a SQLite database so tests run without PostgreSQL.
"""

from __future__ import annotations

import os

# Override DATABASE_URL before importing anything from fleetrecon; the
# Settings model reads .env eagerly via pydantic-settings, and the
# module-level ``engine`` in fleetrecon.core.database would try to connect
# to PostgreSQL.
os.environ["DATABASE_URL"] = "sqlite:///./test.db"

import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from fleetrecon.core.database import Base, get_db
from fleetrecon.main import app
from fleetrecon.models import Agreement, Customer, Vehicle
from fleetrecon.services.assignment.jobs import ImportJobRegistry
from fleetrecon.services.assignment.store import SqlRecordStore

# Use SQLite file-based database for tests (no PostgreSQL needed)
TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)


# Enable foreign keys for SQLite
@event.listens_for(engine, "connect")
def _set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db_session) -> SqlRecordStore:
    return SqlRecordStore(db_session)


@pytest.fixture
def make_agreement(db_session):
    """Factory that inserts an agreement with its customer and vehicle."""

    def _make(
        agreement_number: str,
        license_plate: str,
        customer_name: str,
        start_date: date,
        end_date: Optional[date] = None,
        status: str = "active",
        balance: Decimal = Decimal("0.00"),
    ) -> Agreement:
        customer = Customer(id=uuid.uuid4(), full_name=customer_name)
        vehicle = (
            db_session.query(Vehicle)
            .filter(Vehicle.license_plate == license_plate)
            .one_or_none()
        )
        if vehicle is None:
            vehicle = Vehicle(id=uuid.uuid4(), license_plate=license_plate)
        agreement = Agreement(
            id=uuid.uuid4(),
            agreement_number=agreement_number,
            customer=customer,
            vehicle=vehicle,
            start_date=start_date,
            end_date=end_date,
            status=status,
            balance=balance,
        )
        db_session.add(agreement)
        db_session.commit()
        return agreement

    return _make


@pytest.fixture(scope="function")
def client(db_session):
    """FastAPI test client with overridden DB dependency and a fresh job registry."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.state.import_jobs = ImportJobRegistry(TestingSessionLocal)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
