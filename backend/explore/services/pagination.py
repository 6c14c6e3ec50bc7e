"""
Opaque pagination cursors for the liked-you feeds

A cursor encodes the offset at which the next page starts. Clients must
treat it as opaque; the only guarantee is that passing a token back resumes
where the page that issued it ended.
"""
import base64
import binascii
import json
from typing import Optional

from explore.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)

_OFFSET_KEY = "o"

# Largest offset a signed 64-bit OFFSET clause accepts
MAX_OFFSET = 2 ** 63 - 1


def encode_cursor(offset: int) -> str:
    """Encode an offset as a URL-safe token"""
    if not 0 <= offset <= MAX_OFFSET:
        raise ValueError(f"offset must be between 0 and {MAX_OFFSET}, got {offset}")
    payload = json.dumps({_OFFSET_KEY: offset}, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(payload).rstrip(b"=").decode("ascii")


def decode_cursor(token: Optional[str]) -> int:
    """
    Decode a token into an offset

    Absent, malformed and out-of-range tokens all mean "first page";
    this never raises.
    """
    if not token:
        return 0

    try:
        padded = token + "=" * (-len(token) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        offset = payload[_OFFSET_KEY]
    except (binascii.Error, UnicodeError, ValueError, TypeError, KeyError):
        logger.debug("Ignoring unreadable pagination token", extra={"token_length": len(token)})
        return 0

    # bool is an int subclass and must not be accepted as an offset
    is_int = isinstance(offset, int) and not isinstance(offset, bool)
    if not is_int or not 0 <= offset <= MAX_OFFSET:
        logger.debug("Ignoring out-of-range pagination token", extra={"token_length": len(token)})
        return 0
    return offset
