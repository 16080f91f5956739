"""
Tests for module-level engine management and session_scope.
"""

from decimal import Decimal

import pytest

from stock_kernel.db import engine as db_engine
from stock_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    is_postgres,
    reset_engine,
    session_scope,
)
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.services.stock_level_store import StockLevelStore


@pytest.fixture
def module_engine():
    engine = init_engine_from_url("sqlite://")
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


class TestEngineLifecycle:

    def test_session_requires_init(self):
        reset_engine()
        with pytest.raises(RuntimeError, match="not initialized"):
            get_session()

    def test_reset_forgets_engine(self, module_engine):
        assert db_engine.get_engine() is module_engine
        assert not is_postgres()
        reset_engine()
        with pytest.raises(RuntimeError):
            db_engine.get_engine()
        init_engine_from_url("sqlite://")


class TestSessionScope:

    def test_commits_on_exit(self, module_engine):
        clock = DeterministicClock()
        with session_scope() as session:
            StockLevelStore(session, clock).apply_delta(
                "S-MAIN", "P-RICE", Decimal("3"), average_cost=Decimal("10"),
            )
        with session_scope() as session:
            assert StockLevelStore(session, clock).get("S-MAIN", "P-RICE").quantity == Decimal("3")

    def test_rolls_back_on_error(self, module_engine):
        clock = DeterministicClock()
        with pytest.raises(RuntimeError, match="abort"):
            with session_scope() as session:
                StockLevelStore(session, clock).apply_delta(
                    "S-MAIN", "P-RICE", Decimal("3"), average_cost=Decimal("10"),
                )
                raise RuntimeError("abort")
        with session_scope() as session:
            assert StockLevelStore(session, clock).get("S-MAIN", "P-RICE") is None
