"""Pytest configuration and fixtures."""

import os

# Must be set before stockledger settings are imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from datetime import date
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stockledger.core.rbac import UserRole
from stockledger.core.security import create_access_token
from stockledger.db.base import Base
from stockledger.db.session import configure_sqlite, get_db
from stockledger.main import app
# Import all models to ensure they're registered with Base.metadata
from stockledger.models import *  # noqa: F401,F403
from stockledger.models.catalog import ItemType, StockItem, Warehouse
from stockledger.services.transaction_processor import BatchOptions, CartItem, TransactionProcessor

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiter during tests to avoid flaky failures
    from stockledger.core.rate_limit import limiter
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _token(role: UserRole, user_id: str) -> str:
    return create_access_token(
        data={"sub": user_id, "email": f"{role.value}@example.com", "role": role.value}
    )


@pytest.fixture
def staff_headers() -> dict:
    return {"Authorization": f"Bearer {_token(UserRole.STAFF, 'staff-1')}"}


@pytest.fixture
def manager_headers() -> dict:
    return {"Authorization": f"Bearer {_token(UserRole.MANAGER, 'manager-1')}"}


@pytest.fixture
def owner_headers() -> dict:
    return {"Authorization": f"Bearer {_token(UserRole.OWNER, 'owner-1')}"}


@pytest.fixture
def warehouses(db_session: Session) -> dict:
    """Main store (default), bar and an inactive cellar."""
    main = Warehouse(name="Main Store", code="MAIN", is_default=True, is_active=True)
    bar = Warehouse(name="Bar", code="BAR", is_default=False, is_active=True)
    cellar = Warehouse(name="Old Cellar", code="OLD", is_default=False, is_active=False)
    db_session.add_all([main, bar, cellar])
    db_session.commit()
    return {"main": main, "bar": bar, "cellar": cellar}


@pytest.fixture
def items(db_session: Session) -> dict:
    """Graded and ungraded ingredients, a container and an inactive item."""
    flour = StockItem(name="Flour", code="ING-001", item_type=ItemType.INGREDIENT, unit="kg", stock_grade="A")
    sugar = StockItem(name="Sugar", code="ING-002", item_type=ItemType.INGREDIENT, unit="kg", stock_grade="B")
    salt = StockItem(name="Salt", code="ING-003", item_type=ItemType.INGREDIENT, unit="kg", stock_grade=None)
    tray = StockItem(name="Gastro Tray", code="CON-001", item_type=ItemType.CONTAINER, unit="pcs")
    retired = StockItem(
        name="Retired Spice", code="ING-999", item_type=ItemType.INGREDIENT, unit="g",
        stock_grade="A", is_active=False,
    )
    db_session.add_all([flour, sugar, salt, tray, retired])
    db_session.commit()
    return {"flour": flour, "sugar": sugar, "salt": salt, "tray": tray, "retired": retired}


@pytest.fixture
def receive(db_session: Session):
    """Book incoming stock through the processor so the ledger stays consistent."""
    def _receive(item: StockItem, warehouse: Warehouse, qty, on: date = None):
        return TransactionProcessor(db_session).process_batch(
            [CartItem(item_id=item.id, quantity=Decimal(str(qty)))],
            "incoming",
            BatchOptions(warehouse_id=warehouse.id, occurred_at=on, notes="seed"),
        )
    return _receive
