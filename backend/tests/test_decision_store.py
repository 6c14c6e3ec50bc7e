"""
Tests for DecisionStore
"""
from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import exc as sa_exc

from explore.core.database import Deadline
from explore.core.errors import (DeadlineExceeded, QueryFailed, StoreUnavailable,
                                 TransactionAborted)
from explore.models.decision import Decision
from explore.services.decision_store import DecisionStore

T0 = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


def at(seconds: int) -> datetime:
    return T0 + timedelta(seconds=seconds)


class PgError(Exception):
    """Stand-in for a psycopg2 error carrying a SQLSTATE"""

    def __init__(self, message, pgcode):
        super().__init__(message)
        self.pgcode = pgcode


def store_errors(error_type: str) -> float:
    value = REGISTRY.get_sample_value("explore_store_errors_total", {"error_type": error_type})
    return value or 0.0


class TestUpsert:
    """Insert-or-overwrite semantics"""

    def test_first_decision_creates_row(self, db, store):
        store.upsert("u1", "u2", True, at(0))
        db.commit()

        decision = store.get("u1", "u2")
        assert decision is not None
        assert decision.liked is True
        assert db.query(Decision).count() == 1

    def test_repeated_like_keeps_single_row(self, db, store):
        store.upsert("u1", "u2", True, at(0))
        store.upsert("u1", "u2", True, at(5))
        db.commit()

        rows = db.query(Decision).filter_by(actor_user_id="u1", recipient_user_id="u2").all()
        assert len(rows) == 1
        assert rows[0].liked is True

    def test_new_decision_overwrites_flag_and_time(self, db, store):
        store.upsert("u1", "u2", True, at(0))
        store.upsert("u1", "u2", False, at(30))
        db.commit()

        decision = store.get("u1", "u2")
        assert decision.liked is False
        assert decision.decided_at.replace(tzinfo=timezone.utc) == at(30)

    def test_pair_is_ordered(self, db, store):
        store.upsert("u1", "u2", True, at(0))
        store.upsert("u2", "u1", False, at(1))
        db.commit()

        assert db.query(Decision).count() == 2
        assert store.get("u1", "u2").liked is True
        assert store.get("u2", "u1").liked is False

    def test_naive_time_is_treated_as_utc(self, db, store):
        store.upsert("u1", "u2", True, datetime(2024, 3, 15, 12, 0, 0))
        db.commit()

        [liker] = store.list_likers("u2", exclude_reciprocated=False, limit=10)
        assert liker.decided_at == T0
        assert liker.unix_timestamp == int(T0.timestamp())


class TestExistsMutual:
    """Both-directions like check"""

    def test_one_direction_is_not_mutual(self, store):
        store.upsert("a", "b", True, at(0))
        assert store.exists_mutual("a", "b") is False
        assert store.exists_mutual("b", "a") is False

    def test_both_likes_are_mutual_in_either_order(self, store):
        store.upsert("a", "b", True, at(0))
        store.upsert("b", "a", True, at(1))
        assert store.exists_mutual("a", "b") is True
        assert store.exists_mutual("b", "a") is True

    def test_pass_breaks_mutuality(self, store):
        store.upsert("a", "b", True, at(0))
        store.upsert("b", "a", False, at(1))
        assert store.exists_mutual("a", "b") is False

    def test_unrelated_likes_do_not_count(self, store):
        store.upsert("a", "b", True, at(0))
        store.upsert("b", "c", True, at(1))
        store.upsert("c", "a", True, at(2))
        assert store.exists_mutual("a", "b") is False


class TestListLikers:
    """Feed query ordering and filtering"""

    def test_no_likers_returns_empty_list(self, store):
        assert store.list_likers("nobody", exclude_reciprocated=False, limit=10) == []

    def test_most_recent_first(self, store):
        for i, actor in enumerate(["a", "b", "c"]):
            store.upsert(actor, "x", True, at(i))

        likers = store.list_likers("x", exclude_reciprocated=False, limit=10)
        assert [liker.actor_id for liker in likers] == ["c", "b", "a"]
        timestamps = [liker.unix_timestamp for liker in likers]
        assert timestamps == sorted(timestamps, reverse=True)
        assert len(set(timestamps)) == 3

    def test_ties_are_ordered_by_actor_id(self, store):
        for actor in ["m", "z", "a"]:
            store.upsert(actor, "x", True, at(0))

        likers = store.list_likers("x", exclude_reciprocated=False, limit=10)
        assert [liker.actor_id for liker in likers] == ["a", "m", "z"]

    def test_passes_are_not_listed(self, store):
        store.upsert("a", "x", True, at(0))
        store.upsert("b", "x", False, at(1))

        likers = store.list_likers("x", exclude_reciprocated=False, limit=10)
        assert [liker.actor_id for liker in likers] == ["a"]

    def test_other_recipients_are_not_listed(self, store):
        store.upsert("a", "x", True, at(0))
        store.upsert("a", "y", True, at(1))

        likers = store.list_likers("x", exclude_reciprocated=False, limit=10)
        assert [liker.actor_id for liker in likers] == ["a"]

    def test_exclude_reciprocated_drops_liked_back(self, store):
        store.upsert("a", "x", True, at(0))
        store.upsert("b", "x", True, at(1))
        store.upsert("x", "a", True, at(2))

        everyone = store.list_likers("x", exclude_reciprocated=False, limit=10)
        fresh = store.list_likers("x", exclude_reciprocated=True, limit=10)
        assert [liker.actor_id for liker in everyone] == ["b", "a"]
        assert [liker.actor_id for liker in fresh] == ["b"]

    def test_recipient_pass_does_not_count_as_reciprocated(self, store):
        store.upsert("a", "x", True, at(0))
        store.upsert("x", "a", False, at(1))

        fresh = store.list_likers("x", exclude_reciprocated=True, limit=10)
        assert [liker.actor_id for liker in fresh] == ["a"]

    def test_limit_and_offset(self, store):
        for i in range(5):
            store.upsert(f"u{i}", "x", True, at(i))

        page = store.list_likers("x", exclude_reciprocated=False, limit=2, offset=1)
        assert [liker.actor_id for liker in page] == ["u3", "u2"]


class TestCountLikers:
    """Aggregate likes"""

    def test_zero_for_unknown_recipient(self, store):
        assert store.count_likers("nobody") == 0

    def test_counts_only_likes(self, store):
        store.upsert("a", "x", True, at(0))
        store.upsert("b", "x", True, at(1))
        store.upsert("c", "x", False, at(2))
        store.upsert("a", "y", True, at(3))

        assert store.count_likers("x") == 2

    def test_reciprocated_likes_still_count(self, store):
        store.upsert("a", "x", True, at(0))
        store.upsert("x", "a", True, at(1))

        assert store.count_likers("x") == 1


class TestStoreErrors:
    """SQLAlchemy errors surface as store errors"""

    def test_connection_failure_is_unavailable(self, db, store, monkeypatch):
        def broken(*args, **kwargs):
            raise sa_exc.OperationalError("INSERT", {}, Exception("connection refused"))

        monkeypatch.setattr(db, "execute", broken)
        with pytest.raises(StoreUnavailable) as exc_info:
            store.upsert("a", "b", True, at(0))
        assert exc_info.value.operation == "upsert"
        assert exc_info.value.status_code == 503

    def test_constraint_violation_is_invalid_input(self, db, store, monkeypatch):
        def broken(*args, **kwargs):
            raise sa_exc.IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed"))

        monkeypatch.setattr(db, "execute", broken)
        with pytest.raises(QueryFailed) as exc_info:
            store.upsert("a", "b", True, at(0))
        assert exc_info.value.invalid_input is True
        assert exc_info.value.status_code == 400

    def test_statement_timeout_is_deadline_exceeded(self, db, store, monkeypatch):
        def broken(*args, **kwargs):
            raise sa_exc.OperationalError(
                "SELECT", {}, PgError("canceling statement due to statement timeout", "57014")
            )

        monkeypatch.setattr(db, "query", broken)
        with pytest.raises(DeadlineExceeded):
            store.count_likers("x")

    def test_mysql_query_timeout_is_deadline_exceeded(self, db, store, monkeypatch):
        def broken(*args, **kwargs):
            raise sa_exc.OperationalError(
                "SELECT", {}, Exception(3024, "Query execution was interrupted")
            )

        monkeypatch.setattr(db, "query", broken)
        with pytest.raises(DeadlineExceeded):
            store.count_likers("x")

    def test_connect_timeout_is_unavailable(self, db, store, monkeypatch):
        def broken(*args, **kwargs):
            raise sa_exc.OperationalError("SELECT", {}, Exception("timeout expired"))

        monkeypatch.setattr(db, "query", broken)
        with pytest.raises(StoreUnavailable) as exc_info:
            store.count_likers("x")
        assert not isinstance(exc_info.value, DeadlineExceeded)

    @pytest.mark.parametrize(
        "orig",
        [
            Exception(1205, "Lock wait timeout exceeded; try restarting transaction"),
            Exception(1213, "Deadlock found when trying to get lock"),
            PgError("could not serialize access", "40001"),
            PgError("deadlock detected", "40P01"),
        ],
    )
    def test_lock_conflicts_abort_transaction(self, db, store, monkeypatch, orig):
        def broken(*args, **kwargs):
            raise sa_exc.OperationalError("INSERT", {}, orig)

        monkeypatch.setattr(db, "execute", broken)
        with pytest.raises(TransactionAborted) as exc_info:
            store.upsert("a", "b", True, at(0))
        assert not isinstance(exc_info.value, DeadlineExceeded)
        assert exc_info.value.status_code == 503

    def test_programming_error_is_query_failed(self, db, store, monkeypatch):
        def broken(*args, **kwargs):
            raise sa_exc.ProgrammingError("SELECT", {}, Exception("syntax error"))

        monkeypatch.setattr(db, "query", broken)
        with pytest.raises(QueryFailed) as exc_info:
            store.list_likers("x", exclude_reciprocated=True, limit=10)
        assert exc_info.value.invalid_input is False
        assert exc_info.value.status_code == 500

    def test_expired_deadline_stops_before_statement(self, db):
        ticks = iter([0.0, 10.0])
        deadline = Deadline(1.0, clock=lambda: next(ticks))
        store = DecisionStore(db, deadline)

        with pytest.raises(DeadlineExceeded):
            store.upsert("a", "b", True, at(0))
        db.rollback()
        assert db.query(Decision).count() == 0

    def test_expired_deadline_is_counted(self, db):
        ticks = iter([0.0, 10.0])
        store = DecisionStore(db, Deadline(1.0, clock=lambda: next(ticks)))
        before = store_errors("DeadlineExceeded")

        with pytest.raises(DeadlineExceeded):
            store.count_likers("x")
        assert store_errors("DeadlineExceeded") == before + 1

    def test_translated_error_is_counted(self, db, store, monkeypatch):
        def broken(*args, **kwargs):
            raise sa_exc.OperationalError("SELECT", {}, Exception("connection refused"))

        monkeypatch.setattr(db, "query", broken)
        before = store_errors("StoreUnavailable")
        with pytest.raises(StoreUnavailable):
            store.count_likers("x")
        assert store_errors("StoreUnavailable") == before + 1
