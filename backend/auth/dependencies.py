"""
FastAPI dependencies for identifying the acting member.

Credential checks happen upstream (gateway or identity provider); by the
time a request reaches this service the caller's member identifier is
carried in the ``X-Member-Id`` header.
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException, status

logger = logging.getLogger(__name__)

MAX_MEMBER_ID_LENGTH = 64


async def get_current_member(x_member_id: Optional[str] = Header(None)) -> str:
    """
    Extract the acting member's identifier from the request.

    Returns:
        Member identifier (whitespace stripped)

    Raises:
        HTTPException: 401 if the header is missing or empty, 400 if it is too long

    Example:
        @app.get("/api/tasks/root")
        def root_tasks(member_id: str = Depends(get_current_member)):
            ...
    """
    if x_member_id is None or not x_member_id.strip():
        logger.info("Request without X-Member-Id header rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Member-Id header",
        )

    member_id = x_member_id.strip()
    if len(member_id) > MAX_MEMBER_ID_LENGTH:
        logger.info(f"Member id too long ({len(member_id)} characters)")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"X-Member-Id must be at most {MAX_MEMBER_ID_LENGTH} characters",
        )

    logger.debug(f"Acting member: {member_id}")
    return member_id
