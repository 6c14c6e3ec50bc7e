"""
Decision service: entry point for the liked-you reads and the decision write
"""
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterator, List, Optional

from sqlalchemy.orm import Session

from explore.core.config import get_settings
from explore.core.database import Deadline, transaction_scope
from explore.core.logging_config import LoggingConfig
from explore.core.metrics import explore_decisions_total, explore_mutual_matches_total
from explore.services.decision_store import DecisionStore, Liker
from explore.services.liked_you_feed import FeedPage, LikedYouFeed
from explore.services.pagination import decode_cursor, encode_cursor
from explore.services.reciprocity import ReciprocityEngine

logger = LoggingConfig.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LikedYouPage:
    """Feed page as returned to callers"""
    likers: List[Liker] = field(default_factory=list)
    next_pagination_token: Optional[str] = None


class DecisionService:
    """
    Orchestrates store, feed and reciprocity behind four operations

    Every operation runs in its own transaction bounded by a request
    deadline. Store errors propagate unchanged; nothing is retried here.
    """

    def __init__(
        self,
        db: Session,
        page_size: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
        timeout_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self.db = db
        self.page_size = page_size if page_size is not None else settings.explore_page_size
        self.clock = clock or _utcnow
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.request_timeout_seconds
        )

    @contextmanager
    def _unit_of_work(self) -> Iterator[DecisionStore]:
        deadline = Deadline(self.timeout_seconds)
        with transaction_scope(self.db, deadline):
            yield DecisionStore(self.db, deadline)

    def _list(self, recipient_id: str, pagination_token: Optional[str], new_only: bool) -> LikedYouPage:
        offset = decode_cursor(pagination_token)
        with self._unit_of_work() as store:
            feed = LikedYouFeed(store, self.page_size)
            page: FeedPage = (
                feed.new_likers(recipient_id, offset) if new_only
                else feed.all_likers(recipient_id, offset)
            )

        next_token = encode_cursor(page.next_offset) if page.has_more else None
        return LikedYouPage(likers=page.likers, next_pagination_token=next_token)

    def list_liked_you(self, recipient_id: str, pagination_token: Optional[str] = None) -> LikedYouPage:
        """Users who liked the recipient, most recent first"""
        return self._list(recipient_id, pagination_token, new_only=False)

    def list_new_liked_you(self, recipient_id: str, pagination_token: Optional[str] = None) -> LikedYouPage:
        """Users who liked the recipient and were not liked back yet"""
        return self._list(recipient_id, pagination_token, new_only=True)

    def count_liked_you(self, recipient_id: str) -> int:
        """Number of users who currently like the recipient"""
        with self._unit_of_work() as store:
            return store.count_likers(recipient_id)

    def put_decision(self, actor_id: str, recipient_id: str, liked: bool) -> bool:
        """
        Record a like or pass and report whether it completed a mutual like

        The upsert and the mutuality read share one transaction; if either
        fails, or the deadline expires before commit, nothing is written.

        Args:
            actor_id: User making the decision
            recipient_id: User being decided about
            liked: True for like, False for pass

        Returns:
            True if both users now like each other
        """
        with self._unit_of_work() as store:
            store.upsert(actor_id, recipient_id, liked, self.clock())
            mutual = ReciprocityEngine(store).check(actor_id, recipient_id, liked)

        explore_decisions_total.labels(liked=str(liked).lower()).inc()
        if mutual:
            explore_mutual_matches_total.inc()
        logger.info(
            "Decision recorded",
            extra={
                "actor_id": actor_id,
                "recipient_id": recipient_id,
                "liked": liked,
                "mutual_likes": mutual,
            },
        )
        return mutual
