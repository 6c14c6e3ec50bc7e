"""
Tests for concurrent decisions on a file-backed database

Each worker owns a session on a shared engine, so the writes really run
in separate connections and serialize on the database's write lock.
"""
import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from explore.core.database import Base
from explore.models.decision import Decision
from explore.services.decision_service import DecisionService

T0 = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def file_engine(tmp_path):
    """SQLite engine on a real file so every session gets its own connection"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'explore.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


def run_concurrently(engine, decisions):
    """
    Run one put_decision per thread, released together

    Args:
        engine: Engine the worker sessions bind to
        decisions: (name, actor, recipient, liked, decided_at) per worker

    Returns:
        Mapping of worker name to the mutual flag it returned
    """
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    barrier = threading.Barrier(len(decisions))
    results = {}
    errors = []

    def worker(name, actor, recipient, liked, decided_at):
        session = SessionLocal()
        try:
            service = DecisionService(
                session, page_size=10, clock=lambda: decided_at, timeout_seconds=30.0
            )
            barrier.wait()
            results[name] = service.put_decision(actor, recipient, liked)
        except Exception as e:  # surfaced to the test below
            errors.append(e)
        finally:
            session.close()

    threads = [
        threading.Thread(target=worker, name=decision[0], args=decision)
        for decision in decisions
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert not errors, errors
    assert len(results) == len(decisions)
    return results


def test_racing_likes_report_mutual_to_the_later_commit(file_engine):
    results = run_concurrently(file_engine, [
        ("a-likes-b", "a", "b", True, T0),
        ("b-likes-a", "b", "a", True, T0),
    ])

    assert any(results.values())

    session = sessionmaker(bind=file_engine)()
    try:
        assert session.query(Decision).filter(Decision.liked == True).count() == 2  # noqa: E712
    finally:
        session.close()


def test_racing_decisions_on_one_pair_keep_the_last_commit(file_engine):
    # An upsert holds the write lock until its transaction commits, so the
    # order in which inserts execute is the commit order.
    insert_order = []

    @event.listens_for(file_engine, "after_cursor_execute")
    def record_insert(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("INSERT"):
            insert_order.append(threading.current_thread().name)

    writes = {
        "like": ("like", "a", "b", True, T0),
        "pass": ("pass", "a", "b", False, T0 + timedelta(seconds=5)),
    }
    run_concurrently(file_engine, list(writes.values()))

    assert sorted(insert_order) == ["like", "pass"]
    _, _, _, liked, decided_at = writes[insert_order[-1]]

    session = sessionmaker(bind=file_engine)()
    try:
        rows = session.query(Decision).all()
        assert len(rows) == 1
        assert rows[0].liked is liked
        assert rows[0].decided_at.replace(tzinfo=timezone.utc) == decided_at
    finally:
        session.close()
