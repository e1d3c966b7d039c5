"""
Shared pytest fixtures.

Every test gets a fresh in-memory SQLite database. The API client shares the
test's session through a ``get_session`` override, so data created by a
fixture is visible to the routers and vice versa.
"""

import itertools
import os
from decimal import Decimal

# Keep the lifespan cleanup loop out of tests
os.environ.setdefault("CART_CLEANUP_INTERVAL_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app.core.security import create_access_token, get_password_hash
from app.db.session import enable_sqlite_foreign_keys, get_session
from app.main import app
from app.models.product import Product
from app.models.worker import Worker, WorkerRole

TEST_PASSWORD = "secret123"


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


# ============================================================================
# DATA FACTORIES
# ============================================================================


@pytest.fixture(scope="session")
def password_hash() -> str:
    return get_password_hash(TEST_PASSWORD)


@pytest.fixture
def make_product(session):
    """Create and persist a product; keyword arguments override the defaults."""

    def _make(**overrides) -> Product:
        data = {
            "name": "Paracetamol",
            "brand": "Calpol",
            "company": "GSK",
            "strength": "500mg",
            "category": "Analgesic",
            "price": Decimal("10.00"),
            "stock": 10,
        }
        data.update(overrides)
        product = Product(**data)
        session.add(product)
        session.commit()
        session.refresh(product)
        return product

    return _make


@pytest.fixture
def make_worker(session, password_hash):
    counter = itertools.count(1)

    def _make(role: WorkerRole = WorkerRole.WORKER, **overrides) -> Worker:
        n = next(counter)
        data = {
            "name": f"Worker {n}",
            "email": f"worker{n}@pharmacare.test",
            "employee_id": f"EMP{n:03d}",
            "phone": "9876543210",
            "password_hash": password_hash,
            "role": role,
        }
        data.update(overrides)
        worker = Worker(**data)
        session.add(worker)
        session.commit()
        session.refresh(worker)
        return worker

    return _make


@pytest.fixture
def worker(make_worker) -> Worker:
    return make_worker()


@pytest.fixture
def owner(make_worker) -> Worker:
    return make_worker(role=WorkerRole.OWNER, name="Owner", email="owner@pharmacare.test", employee_id="OWN001")


# ============================================================================
# API FIXTURES
# ============================================================================


@pytest.fixture
def client(session):
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(worker: Worker) -> dict:
        token = create_access_token({"sub": str(worker.id), "role": worker.role.value})
        return {"Authorization": f"Bearer {token}"}

    return _headers
