"""
Shared pytest fixtures for the chainbasis test suite.

Uses an isolated temporary SQLite database so tests never touch the
configured database, plus small builders for the pydantic models most tests
need.
"""

import os
import tempfile
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from chainbasis.database import Base

# Import all models so Base.metadata knows about them
from chainbasis.models.wallet import Wallet                               # noqa: F401
from chainbasis.models.transaction import Transaction, CostBasisEntry    # noqa: F401
from chainbasis.schemas import cost_basis as schemas


@pytest.fixture(scope="session")
def test_engine():
    """Create a temporary SQLite database for the entire test session."""
    tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    tmp.close()
    engine = create_engine(
        f"sqlite:///{tmp.name}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()
    os.unlink(tmp.name)


@pytest.fixture()
def test_db(test_engine):
    """
    Session bound to the temporary database. Tables are emptied afterwards so
    each test starts from a clean slate.
    """
    TestSessionLocal = sessionmaker(bind=test_engine)
    db = TestSessionLocal()
    yield db
    db.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        db.execute(table.delete())
    db.commit()
    db.close()


def make_tx(id, tx_type, amount, price=None, day=1, token="ETH", month=1, year=2024):
    """Build an engine input row with sensible defaults."""
    return schemas.Transaction(
        id=str(id),
        hash=f"0xhash{id}",
        chain="ethereum",
        type=tx_type,
        token_symbol=token,
        amount=amount,
        price_usd=Decimal(str(price)) if price is not None else None,
        timestamp=datetime(year, month, day, tzinfo=timezone.utc),
    )


@pytest.fixture()
def tx_factory():
    return make_tx
