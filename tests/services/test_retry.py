"""
Tests for run_with_retry.

Each attempt runs in its own session; ConcurrencyConflictError triggers a
fresh attempt until max_attempts is reached.
"""

import pytest
from sqlalchemy import text
from sqlalchemy.orm import sessionmaker

from stock_kernel.exceptions import ConcurrencyConflictError
from stock_services.retry import run_with_retry


@pytest.fixture
def session_factory(db_tables, db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


class TestRunWithRetry:

    def test_success_on_first_attempt(self, session_factory):
        calls = []

        def work(session):
            calls.append(session)
            return session.execute(text("SELECT 1")).scalar_one()

        assert run_with_retry(session_factory, work) == 1
        assert len(calls) == 1

    def test_retries_after_conflict(self, session_factory, captured_logs):
        sessions = []

        def work(session):
            sessions.append(session)
            if len(sessions) < 3:
                raise ConcurrencyConflictError("record_sale", "deadlock detected")
            return "done"

        assert run_with_retry(session_factory, work, max_attempts=3) == "done"
        assert len(sessions) == 3
        assert len({id(s) for s in sessions}) == 3
        messages = [r["message"] for r in captured_logs()]
        assert messages.count("retrying_after_conflict") == 2
        assert "retry_succeeded" in messages

    def test_gives_up_after_max_attempts(self, session_factory, captured_logs):
        attempts = []

        def work(session):
            attempts.append(1)
            raise ConcurrencyConflictError("record_sale", "could not serialize access")

        with pytest.raises(ConcurrencyConflictError):
            run_with_retry(session_factory, work, max_attempts=2)

        assert len(attempts) == 2
        assert any(r["message"] == "retry_attempts_exhausted" for r in captured_logs())

    def test_other_errors_not_retried(self, session_factory):
        attempts = []

        def work(session):
            attempts.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            run_with_retry(session_factory, work, max_attempts=5)

        assert len(attempts) == 1

    def test_invalid_max_attempts(self, session_factory):
        with pytest.raises(ValueError, match="max_attempts"):
            run_with_retry(session_factory, lambda session: None, max_attempts=0)
