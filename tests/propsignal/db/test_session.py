"""
Tests for session scopes and the retry decorator
"""
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.propsignal.db.base import Base
from src.propsignal.db.models import Property
from src.propsignal.db.session import session_scope_factory, with_retry


@pytest.fixture(scope="function")
def session_scope():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    yield session_scope_factory(sessionmaker(bind=engine, expire_on_commit=False))

    Base.metadata.drop_all(engine)
    engine.dispose()


class TestSessionScope:
    """Tests for session_scope_factory"""

    def test_commits_on_success(self, session_scope):
        with session_scope() as session:
            session.add(Property(bbl="1001230001"))

        with session_scope() as session:
            assert session.execute(select(Property.bbl)).scalars().all() == ["1001230001"]

    def test_rolls_back_on_error(self, session_scope):
        with pytest.raises(ValueError):
            with session_scope() as session:
                session.add(Property(bbl="1001230001"))
                session.flush()
                raise ValueError("abort")

        with session_scope() as session:
            assert session.execute(select(Property)).scalars().all() == []


class TestWithRetry:
    """Tests for with_retry"""

    def _operational_error(self):
        return OperationalError("SELECT 1", {}, Exception("server closed the connection"))

    def test_retries_then_succeeds(self):
        sleep = Mock()
        operation = Mock(side_effect=[self._operational_error(), self._operational_error(), "ok"])
        operation.__name__ = "operation"

        result = with_retry(max_retries=3, retry_delay=2, sleep=sleep)(operation)()

        assert result == "ok"
        assert operation.call_count == 3
        assert [call.args[0] for call in sleep.call_args_list] == [2, 4]

    def test_gives_up_after_max_retries(self):
        sleep = Mock()
        operation = Mock(side_effect=self._operational_error())
        operation.__name__ = "operation"

        with pytest.raises(OperationalError):
            with_retry(max_retries=2, retry_delay=1, sleep=sleep)(operation)()

        assert operation.call_count == 2
        assert sleep.call_count == 1

    def test_other_errors_are_not_retried(self):
        operation = Mock(side_effect=ValueError("bad input"))
        operation.__name__ = "operation"

        with pytest.raises(ValueError):
            with_retry(sleep=Mock())(operation)()

        assert operation.call_count == 1
