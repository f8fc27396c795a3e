import os
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backend.app.api.deps import get_db
from backend.app.db.base import Base
from backend.app.db.models import models_v1  # noqa: F401  (tables)
from backend.app.db.models.models_v1 import (
    Customer,
    Product,
    RawMaterial,
    Recipe,
    RecipeMaterial,
    Supplier,
)
from backend.app.main import app

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+pysqlite://")


def _make_engine():
    if not TEST_DATABASE_URL.startswith("sqlite"):
        return create_engine(TEST_DATABASE_URL, pool_pre_ping=True)

    engine = create_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite gère mal BEGIN / SAVEPOINT : on émet nous-mêmes le BEGIN
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture(scope="function")
def db_session() -> Session:
    """
    Session DB isolée par test.

    Transaction englobante + SAVEPOINT (join_transaction_mode) :
    TOUT est rollback à la fin du test, même après commit().
    SQLite en mémoire par défaut, TEST_DATABASE_URL pour viser Postgres.
    """
    engine = _make_engine()
    Base.metadata.create_all(bind=engine)

    connection = engine.connect()
    transaction = connection.begin()

    TestSession = sessionmaker(autoflush=False, autocommit=False)
    session = TestSession(bind=connection, join_transaction_mode="create_savepoint")

    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()
        engine.dispose()


@pytest.fixture
def client(db_session):
    def _get_db():
        try:
            yield db_session
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _get_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


# ---------- ARRANGE helpers ----------
class Factory:
    """Données de référence minimales ; le stock initial est posé directement (pas de mouvement)."""

    def __init__(self, db: Session):
        self.db = db
        self._n = 0

    def _seq(self) -> int:
        self._n += 1
        return self._n

    def product(self, qty: int = 0, *, sku: str | None = None, price: str = "10.00", threshold: int = 10) -> Product:
        n = self._seq()
        p = Product(
            sku=sku or f"SKU-{n}",
            name=f"Product {n}",
            unit_cost=Decimal("5.00"),
            unit_price=Decimal(price),
            on_hand_quantity=qty,
            reorder_threshold=threshold,
        )
        self.db.add(p)
        self.db.flush()
        return p

    def supplier(self) -> Supplier:
        s = Supplier(name=f"Supplier {self._seq()}", lead_time_days=3)
        self.db.add(s)
        self.db.flush()
        return s

    def customer(self) -> Customer:
        c = Customer(name=f"Customer {self._seq()}")
        self.db.add(c)
        self.db.flush()
        return c

    def material(self, stock: str, *, cost: str = "1", name: str | None = None, active: bool = True) -> RawMaterial:
        n = self._seq()
        m = RawMaterial(
            name=name or f"Material {n}",
            current_stock=Decimal(stock),
            cost_per_unit=Decimal(cost),
            active=active,
        )
        self.db.add(m)
        self.db.flush()
        return m

    def recipe(self, product: Product, lines, *, hours: str = "1", active: bool = True) -> Recipe:
        """lines : [(material, required_per_unit, wastage_percent)]"""
        r = Recipe(
            product_id=product.id,
            name=f"Recipe {product.sku}",
            estimated_time_hours=Decimal(hours),
            active=active,
            materials=[
                RecipeMaterial(
                    material_id=m.id,
                    required_quantity_per_unit=Decimal(req),
                    wastage_percent=Decimal(wastage),
                    unit=m.unit,
                )
                for m, req, wastage in lines
            ],
        )
        self.db.add(r)
        self.db.flush()
        return r


@pytest.fixture
def factory(db_session) -> Factory:
    return Factory(db_session)
