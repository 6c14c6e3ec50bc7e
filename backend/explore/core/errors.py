"""
Decision store error taxonomy and SQLAlchemy error translation
"""
from typing import Optional

from sqlalchemy import exc as sa_exc


class DecisionStoreError(Exception):
    """Base class for every error raised by the decision store"""

    status_code = 500
    classification = "internal"

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation

    def to_dict(self) -> dict:
        return {
            "detail": self.message,
            "type": type(self).__name__,
            "classification": self.classification,
        }


class StoreUnavailable(DecisionStoreError):
    """Connection or pool failure"""

    status_code = 503
    classification = "unavailable"


class QueryFailed(DecisionStoreError):
    """Malformed query or constraint violation"""

    def __init__(self, message: str, operation: Optional[str] = None, invalid_input: bool = False):
        super().__init__(message, operation)
        self.invalid_input = invalid_input
        if invalid_input:
            self.status_code = 400
            self.classification = "invalid_input"


class TransactionAborted(DecisionStoreError):
    """Transaction rolled back because of a conflict or cancellation"""

    status_code = 503
    classification = "unavailable"


class DeadlineExceeded(TransactionAborted):
    """Request deadline expired while store work was in flight"""

    status_code = 504
    classification = "deadline_exceeded"


# PostgreSQL SQLSTATEs
_PG_QUERY_CANCELED = "57014"
_PG_TRANSACTION_CONFLICTS = {"40001", "40P01"}  # serialization_failure, deadlock_detected

# MySQL server error numbers
_MYSQL_QUERY_TIMEOUT = 3024  # ER_QUERY_TIMEOUT (max_execution_time)
_MYSQL_TRANSACTION_CONFLICTS = {1205, 1213}  # lock wait timeout, deadlock


def _sqlstate(orig) -> Optional[str]:
    # psycopg2 exposes pgcode, psycopg 3 exposes sqlstate
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def _mysql_errno(orig) -> Optional[int]:
    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


def translate_db_error(error: sa_exc.SQLAlchemyError, operation: str) -> DecisionStoreError:
    """
    Map a SQLAlchemy exception onto the store taxonomy

    Statement timeouts are recognised by driver error code only, so a
    connect timeout stays StoreUnavailable and a lock wait timeout stays
    TransactionAborted.

    Args:
        error: Exception raised by SQLAlchemy
        operation: Store operation that was running (upsert, list_likers, ...)

    Returns:
        Matching DecisionStoreError (not raised)
    """
    message = f"{operation} failed: {type(error).__name__}"
    orig = getattr(error, "orig", None)
    sqlstate = _sqlstate(orig)
    errno = _mysql_errno(orig)

    if sqlstate == _PG_QUERY_CANCELED or errno == _MYSQL_QUERY_TIMEOUT:
        return DeadlineExceeded(message, operation)
    if sqlstate in _PG_TRANSACTION_CONFLICTS or errno in _MYSQL_TRANSACTION_CONFLICTS:
        return TransactionAborted(message, operation)
    if isinstance(error, (sa_exc.IntegrityError, sa_exc.DataError)):
        return QueryFailed(message, operation, invalid_input=True)
    if isinstance(error, (sa_exc.OperationalError, sa_exc.InterfaceError,
                          sa_exc.DisconnectionError, sa_exc.TimeoutError)):
        return StoreUnavailable(message, operation)
    if isinstance(error, sa_exc.InvalidRequestError) and "rollback" in str(error).lower():
        return TransactionAborted(message, operation)
    return QueryFailed(message, operation)
