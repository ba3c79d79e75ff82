"""
Module-level engine and session helpers.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from revenue_kernel.db import engine as db
from revenue_kernel.models.customer_balance import CustomerBalance


OPENED = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _account():
    return CustomerBalance(customer_id="C-1", amount_due=Decimal("5.00"), opened_at=OPENED)


@pytest.fixture
def module_engine():
    db.reset_engine()
    engine = db.init_engine_from_url("sqlite://")
    db.create_tables()
    yield engine
    db.reset_engine()


def test_helpers_fail_before_initialisation():
    db.reset_engine()
    with pytest.raises(RuntimeError):
        db.get_engine()
    with pytest.raises(RuntimeError):
        db.get_session()
    with pytest.raises(RuntimeError):
        db.get_session_factory()


def test_session_scope_commits(module_engine):
    assert db.get_engine() is module_engine

    with db.session_scope() as session:
        session.add(_account())

    with db.session_scope(db.get_session_factory()) as session:
        stored = session.execute(select(CustomerBalance)).scalar_one()
    assert stored.amount_due == Decimal("5.00")
    assert stored.advance_credit == Decimal("0")


def test_session_scope_rolls_back_on_error(module_engine):
    with pytest.raises(ZeroDivisionError):
        with db.session_scope() as session:
            session.add(_account())
            session.flush()
            1 / 0

    session = db.get_session()
    try:
        assert session.execute(select(CustomerBalance)).first() is None
    finally:
        session.close()
