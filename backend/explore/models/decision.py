"""
SQLAlchemy model for like/pass decisions
"""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, String

from explore.core.database import Base


class Decision(Base):
    """
    Latest like/pass decision of one user about another

    One row per ordered (actor, recipient) pair; a new decision for the
    same pair overwrites liked and decided_at.
    """
    __tablename__ = "decisions"

    actor_user_id = Column(String(255), primary_key=True)
    recipient_user_id = Column(String(255), primary_key=True)
    liked = Column(Boolean, nullable=False)
    decided_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_decisions_recipient_feed", "recipient_user_id", "liked", "decided_at"),
    )

    def __repr__(self):
        return (
            f"<Decision(actor={self.actor_user_id}, recipient={self.recipient_user_id}, "
            f"liked={self.liked})>"
        )
