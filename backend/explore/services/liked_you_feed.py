"""
Paginated liked-you feeds
"""
from dataclasses import dataclass, field
from typing import List

from explore.core.logging_config import LoggingConfig
from explore.core.metrics import explore_feed_pages_total
from explore.services.decision_store import DecisionStore, Liker

logger = LoggingConfig.get_logger(__name__)


@dataclass
class FeedPage:
    """One page of a liked-you feed"""
    likers: List[Liker] = field(default_factory=list)
    offset: int = 0
    has_more: bool = False

    @property
    def next_offset(self) -> int:
        return self.offset + len(self.likers)


class LikedYouFeed:
    """
    Time-ordered projections of who liked a recipient

    Both feeds share ordering (decided_at descending, actor id ascending on
    ties) and offset pagination. One row beyond the page is fetched so that
    has_more is exact, also when the remaining count equals the page size.
    """

    def __init__(self, store: DecisionStore, page_size: int):
        if page_size < 1:
            raise ValueError(f"page_size must be positive, got {page_size}")
        self.store = store
        self.page_size = page_size

    def _page(self, feed: str, recipient_id: str, offset: int, exclude_reciprocated: bool) -> FeedPage:
        rows = self.store.list_likers(
            recipient_id,
            exclude_reciprocated=exclude_reciprocated,
            limit=self.page_size + 1,
            offset=offset,
        )
        page = FeedPage(
            likers=rows[:self.page_size],
            offset=offset,
            has_more=len(rows) > self.page_size,
        )
        explore_feed_pages_total.labels(feed=feed).inc()
        logger.debug(
            "Feed page loaded",
            extra={
                "feed": feed,
                "recipient_id": recipient_id,
                "offset": offset,
                "count": len(page.likers),
                "has_more": page.has_more,
            },
        )
        return page

    def all_likers(self, recipient_id: str, offset: int = 0) -> FeedPage:
        """Everyone who currently likes the recipient"""
        return self._page("all", recipient_id, offset, exclude_reciprocated=False)

    def new_likers(self, recipient_id: str, offset: int = 0) -> FeedPage:
        """Likers the recipient has not liked back yet"""
        return self._page("new", recipient_id, offset, exclude_reciprocated=True)
