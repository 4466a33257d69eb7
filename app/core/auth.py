"""Caller identity dependency.

Authentication happens at the gateway in front of this service, which
forwards the authenticated user id in the X-User-Id header.
"""

import logging

from fastapi import Header, HTTPException, Request, status

logger = logging.getLogger(__name__)

MAX_USER_ID_LENGTH = 36


async def require_user(
    request: Request,
    x_user_id: str | None = Header(default=None),
) -> str:
    """
    Dependency that returns the authenticated user's id.

    Usage:
        @router.get("/for-you")
        async def my_endpoint(user_id: str = Depends(require_user)):
            ...
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    user_id = x_user_id.strip()
    if not user_id or len(user_id) > MAX_USER_ID_LENGTH:
        client_ip = request.client.host if request.client else "unknown"
        logger.warning("Malformed user id header from %s", client_ip)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Malformed user id",
        )
    return user_id
