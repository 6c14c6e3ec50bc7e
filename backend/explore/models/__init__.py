"""
SQLAlchemy models
"""
from explore.core.database import Base  # noqa: F401
from explore.models.decision import Decision  # noqa: F401
