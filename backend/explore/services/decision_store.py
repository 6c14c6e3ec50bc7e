"""
Decision store: the only writer of the decisions table
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, TypeVar

from sqlalchemy import and_, desc, exists, func, or_
from sqlalchemy import exc as sa_exc
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.orm import Session, aliased

from explore.core.database import Deadline
from explore.core.errors import DecisionStoreError, QueryFailed, translate_db_error
from explore.core.logging_config import LoggingConfig
from explore.core.metrics import explore_store_errors_total
from explore.models.decision import Decision

logger = LoggingConfig.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Liker:
    """A user who liked the recipient, with the time of that like"""
    actor_id: str
    decided_at: datetime

    @property
    def unix_timestamp(self) -> int:
        return int(self.decided_at.timestamp())


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back; stored values are always UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DecisionStore:
    """
    Persistence for like/pass decisions

    All statements run on the caller's session, so they join whatever
    transaction the caller has open. Commit and rollback belong to the caller.
    """

    def __init__(self, db: Session, deadline: Optional[Deadline] = None):
        self.db = db
        self.deadline = deadline

    def _run(self, operation: str, work: Callable[[], T]) -> T:
        try:
            if self.deadline is not None:
                self.deadline.check(operation)
            return work()
        except DecisionStoreError as e:
            explore_store_errors_total.labels(error_type=type(e).__name__).inc()
            logger.warning(
                f"Decision store {operation} stopped: {e.message}",
                extra={"operation": operation, "error_type": type(e).__name__},
            )
            raise
        except sa_exc.SQLAlchemyError as e:
            error = translate_db_error(e, operation)
            explore_store_errors_total.labels(error_type=type(error).__name__).inc()
            logger.error(
                f"Decision store {operation} failed",
                exc_info=True,
                extra={"operation": operation, "error_type": type(e).__name__},
            )
            raise error from e

    def _upsert_statement(self, values: dict):
        dialect = self.db.get_bind().dialect.name
        table = Decision.__table__

        if dialect in ("postgresql", "sqlite"):
            insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            stmt = insert(table).values(**values)
            return stmt.on_conflict_do_update(
                index_elements=["actor_user_id", "recipient_user_id"],
                set_={"liked": stmt.excluded.liked, "decided_at": stmt.excluded.decided_at},
            )
        if dialect in ("mysql", "mariadb"):
            stmt = mysql.insert(table).values(**values)
            return stmt.on_duplicate_key_update(
                liked=stmt.inserted.liked,
                decided_at=stmt.inserted.decided_at,
            )
        raise QueryFailed(f"upsert is not supported on dialect {dialect}", operation="upsert")

    def upsert(self, actor_id: str, recipient_id: str, liked: bool, now: datetime) -> None:
        """
        Write or overwrite the decision of actor about recipient

        Args:
            actor_id: User making the decision
            recipient_id: User being decided about
            liked: True for like, False for pass
            now: Decision time
        """
        values = {
            "actor_user_id": actor_id,
            "recipient_user_id": recipient_id,
            "liked": liked,
            "decided_at": _as_utc(now),
        }
        self._run("upsert", lambda: self.db.execute(self._upsert_statement(values)))
        logger.debug(
            "Decision upserted",
            extra={"actor_id": actor_id, "recipient_id": recipient_id, "liked": liked},
        )

    def exists_mutual(self, user_a: str, user_b: str) -> bool:
        """True if both users currently like each other"""
        def work():
            return self.db.query(func.count()).select_from(Decision).filter(
                Decision.liked == True,  # noqa: E712
                or_(
                    and_(Decision.actor_user_id == user_a, Decision.recipient_user_id == user_b),
                    and_(Decision.actor_user_id == user_b, Decision.recipient_user_id == user_a),
                )
            ).scalar()

        # user_a == user_b matches a single row that satisfies both directions
        required = 1 if user_a == user_b else 2
        return self._run("exists_mutual", work) == required

    def list_likers(
        self,
        recipient_id: str,
        exclude_reciprocated: bool,
        limit: int,
        offset: int = 0,
    ) -> List[Liker]:
        """
        Likers of recipient, most recent first

        Ties on decided_at are broken by actor id ascending.

        Args:
            recipient_id: User whose likers are listed
            exclude_reciprocated: Drop likers the recipient already liked back
            limit: Maximum number of rows
            offset: Number of rows to skip
        """
        def work():
            query = self.db.query(Decision.actor_user_id, Decision.decided_at).filter(
                Decision.recipient_user_id == recipient_id,
                Decision.liked == True,  # noqa: E712
            )
            if exclude_reciprocated:
                reverse = aliased(Decision)
                query = query.filter(
                    ~exists().where(
                        reverse.actor_user_id == Decision.recipient_user_id,
                        reverse.recipient_user_id == Decision.actor_user_id,
                        reverse.liked == True,  # noqa: E712
                    )
                )
            return query.order_by(
                desc(Decision.decided_at),
                Decision.actor_user_id,
            ).limit(limit).offset(offset).all()

        rows = self._run("list_likers", work)
        return [Liker(actor_id=actor_id, decided_at=_as_utc(decided_at)) for actor_id, decided_at in rows]

    def count_likers(self, recipient_id: str) -> int:
        """Number of users whose current decision about recipient is a like"""
        def work():
            return self.db.query(func.count()).select_from(Decision).filter(
                Decision.recipient_user_id == recipient_id,
                Decision.liked == True,  # noqa: E712
            ).scalar()

        return int(self._run("count_likers", work) or 0)

    def get(self, actor_id: str, recipient_id: str) -> Optional[Decision]:
        """Current decision of actor about recipient, if any"""
        return self._run("get", lambda: self.db.get(Decision, (actor_id, recipient_id), populate_existing=True))
