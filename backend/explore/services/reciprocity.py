"""
Mutual-like detection for freshly written decisions
"""
from explore.core.logging_config import LoggingConfig
from explore.services.decision_store import DecisionStore

logger = LoggingConfig.get_logger(__name__)


class ReciprocityEngine:
    """
    Decides whether a decision just written completes a mutual like

    Must run on the same session and transaction as the upsert it checks, after
    that upsert, so the read reflects the caller's own write plus the latest
    committed decision of the other side.
    """

    def __init__(self, store: DecisionStore):
        self.store = store

    def check(self, actor_id: str, recipient_id: str, liked: bool) -> bool:
        """
        Args:
            actor_id: User who just decided
            recipient_id: User decided about
            liked: The decision just written

        Returns:
            True if actor and recipient now like each other
        """
        if not liked:
            # A pass can never complete a match
            return False

        mutual = self.store.exists_mutual(actor_id, recipient_id)
        if mutual:
            logger.info(
                "Mutual like detected",
                extra={"actor_id": actor_id, "recipient_id": recipient_id},
            )
        return mutual
