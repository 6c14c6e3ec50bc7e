"""
Database configuration, session management and transaction scoping
"""
import re
import time
from contextlib import contextmanager
from typing import Generator, Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from explore.core.config import get_settings
from explore.core.errors import (DeadlineExceeded, StoreUnavailable,
                                 TransactionAborted, translate_db_error)
from explore.core.logging_config import LoggingConfig
from explore.core.metrics import (db_connection_pool_overflow,
                                  db_connection_pool_size, db_queries_total,
                                  db_query_duration_seconds)

logger = LoggingConfig.get_logger(__name__)

# Lazy initialization - don't create engine at module level
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None

Base = declarative_base()

_TABLE_PATTERN = re.compile(r'\b(?:FROM|INTO|UPDATE)\s+"?(\w+)"?', re.IGNORECASE)


def _setup_db_metrics(engine: Engine):
    """Setup SQLAlchemy event listeners for database metrics"""

    @event.listens_for(engine, "before_cursor_execute")
    def receive_before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault('query_start_time', []).append(time.perf_counter())

    @event.listens_for(engine, "after_cursor_execute")
    def receive_after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        if not conn.info.get('query_start_time'):
            return
        duration = time.perf_counter() - conn.info['query_start_time'].pop()

        words = statement.strip().split(None, 1)
        operation = words[0].lower() if words else "unknown"
        match = _TABLE_PATTERN.search(statement)
        table = match.group(1).lower() if match else "unknown"

        db_queries_total.labels(operation=operation, table=table).inc()
        db_query_duration_seconds.labels(operation=operation, table=table).observe(duration)

    def _update_pool_metrics(*_args):
        pool = engine.pool
        # StaticPool/NullPool expose no sizing information
        if not isinstance(pool, QueuePool):
            return
        db_connection_pool_size.labels(state="active").set(pool.checkedout())
        db_connection_pool_size.labels(state="idle").set(pool.checkedin())
        db_connection_pool_overflow.set(pool.overflow())

    event.listen(engine, "checkout", _update_pool_metrics)
    event.listen(engine, "checkin", _update_pool_metrics)


def _build_engine(database_url: str) -> Engine:
    settings = get_settings()
    echo = settings.log_sqlalchemy

    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False, "timeout": 5}}
        # In-memory databases live inside one connection
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(
        database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,  # Verify connections before using
        echo=echo,
        connect_args={"connect_timeout": 5},
    )


def configure_engine(database_url: Optional[str] = None) -> Engine:
    """
    (Re)create the engine and session factory

    Args:
        database_url: SQLAlchemy URL; defaults to Settings.database_url

    Returns:
        The new engine
    """
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()

    _engine = _build_engine(database_url or get_settings().database_url)
    _setup_db_metrics(_engine)
    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    logger.debug("Database engine configured", extra={"dialect": _engine.dialect.name})
    return _engine


def get_engine() -> Engine:
    """Get or create database engine (lazy initialization)"""
    if _engine is None:
        configure_engine()
    return _engine


def get_session_local() -> sessionmaker:
    """Get or create session factory (lazy initialization)"""
    if _SessionLocal is None:
        configure_engine()
    return _SessionLocal


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session
    """
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Optional[Engine] = None) -> None:
    """Create tables that do not exist yet"""
    import explore.models  # noqa: F401  registers models on Base.metadata

    Base.metadata.create_all(bind=engine or get_engine())


def wait_for_database(retries: Optional[int] = None, delay: Optional[float] = None) -> Engine:
    """
    Block until the database answers a trivial query

    Args:
        retries: Number of attempts (defaults to settings)
        delay: Seconds between attempts (defaults to settings)

    Returns:
        Connected engine

    Raises:
        StoreUnavailable: If the database never became reachable
    """
    settings = get_settings()
    retries = retries if retries is not None else settings.database_connect_retries
    delay = delay if delay is not None else settings.database_connect_retry_delay_seconds
    engine = get_engine()

    last_error: Optional[Exception] = None
    for attempt in range(1, retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return engine
        except sa_exc.SQLAlchemyError as e:
            last_error = e
            logger.warning(
                "Waiting for database to be ready...",
                extra={"attempt": attempt, "retries": retries, "error_type": type(e).__name__}
            )
            if attempt < retries:
                time.sleep(delay)

    raise StoreUnavailable(
        f"Database not reachable after {retries} attempts: {type(last_error).__name__}",
        operation="connect",
    ) from last_error


class Deadline:
    """Absolute point in time by which a request's store work must finish"""

    def __init__(self, timeout_seconds: float, clock=time.monotonic):
        self._clock = clock
        self.timeout_seconds = timeout_seconds
        self.expires_at = clock() + timeout_seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._clock() >= self.expires_at

    def check(self, stage: str) -> None:
        if self.expired:
            raise DeadlineExceeded(
                f"Deadline of {self.timeout_seconds:.3f}s exceeded before {stage}",
                operation=stage,
            )


def _apply_statement_timeout(db: Session, deadline: Deadline) -> None:
    # Only PostgreSQL scopes a statement timeout to the current transaction
    if db.get_bind().dialect.name != "postgresql":
        return
    remaining_ms = max(1, int(deadline.remaining() * 1000))
    db.execute(text(f"SET LOCAL statement_timeout = {remaining_ms}"))


def _rollback(db: Session) -> None:
    try:
        db.rollback()
    except sa_exc.SQLAlchemyError as e:
        logger.warning(f"Rollback failed: {type(e).__name__}", exc_info=True)


@contextmanager
def transaction_scope(db: Session, deadline: Optional[Deadline] = None) -> Iterator[Session]:
    """
    Run a unit of work in one transaction

    Commits when the block exits normally and the deadline still holds.
    Every other exit, including cancellation, rolls the transaction back
    before the exception propagates.

    Args:
        db: Session to scope
        deadline: Optional request deadline checked at begin and commit
    """
    try:
        if deadline is not None:
            deadline.check("begin")
            try:
                _apply_statement_timeout(db, deadline)
            except sa_exc.SQLAlchemyError as e:
                raise translate_db_error(e, "begin") from e
        yield db
        if deadline is not None:
            deadline.check("commit")
        try:
            db.commit()
        except sa_exc.SQLAlchemyError as e:
            raise TransactionAborted(f"commit failed: {type(e).__name__}", operation="commit") from e
    except BaseException:
        _rollback(db)
        raise
