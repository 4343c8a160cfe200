"""Caller identity for FastAPI routes.

Identity is an opaque owner id taken from the X-User-ID header. It is used to
scope data, not to authenticate: callers without the header share the
"anonymous" owner.
"""

from typing import Optional

from fastapi import Header

from utils.logging import get_logger, set_request_context

logger = get_logger(__name__)

ANONYMOUS_USER = "anonymous"
MAX_USER_ID_LENGTH = 128


async def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
) -> str:
    """Extract the owner id from the X-User-ID header.

    Returns:
        The trimmed header value, or "anonymous" if it is missing or unusable
    """
    if x_user_id is None or not x_user_id.strip():
        return ANONYMOUS_USER

    user_id = x_user_id.strip()
    if len(user_id) > MAX_USER_ID_LENGTH:
        logger.warning("X-User-ID header too long, treating caller as anonymous")
        return ANONYMOUS_USER

    set_request_context(user_id=user_id)
    return user_id
