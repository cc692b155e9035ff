from __future__ import annotations

from contextlib import contextmanager

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gestock.db.migrate import migrate
from gestock.db.models import OrderItem


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    migrate(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    @contextmanager
    def _session():
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return _session


@pytest.fixture()
def order_items(session_factory):
    with session_factory() as session:
        session.add_all(
            [
                OrderItem(id="i1", tenant_id="t1", branch_id="b1", product_name="Yerba Mate", qty=6, stock_qty=5),
                OrderItem(id="i2", tenant_id="t1", branch_id="b1", product_name="Azucar", display_name="Azúcar 1kg", qty=2),
                OrderItem(id="i3", tenant_id="t2", branch_id="b9", product_name="Harina", qty=1, stock_qty=1),
            ]
        )
    return ["i1", "i2", "i3"]
