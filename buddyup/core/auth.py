"""
Auth utilities for the BuddyUp API.

Sessions are issued by the account service; here we only verify the
HS256 session JWT and read the user id from its `sub` claim. Falls back to
the X-User-Id header (service-to-service calls and tests).
"""
from fastapi import Header, HTTPException, Request
from typing import Optional
from buddyup.core.config import settings
import jwt
import logging

logger = logging.getLogger("buddyup")


def verify_session_jwt(token: str, secret: Optional[str] = None) -> Optional[str]:
    """
    Verify a session JWT and extract user_id.

    Args:
        token: JWT from Authorization header (Bearer {token})
        secret: HS256 secret; defaults to AUTH_JWT_SECRET

    Returns:
        user_id from the 'sub' claim, or None when no secret is configured

    Raises:
        HTTPException 401: Invalid or expired token
    """
    secret = secret or settings.AUTH_JWT_SECRET
    if not secret:
        logger.debug("No AUTH_JWT_SECRET configured, skipping JWT validation")
        return None

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Token has no subject")
    return str(user_id)


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Service/test caller user ID")
) -> str:
    """
    Extract current user ID from request context.

    Priority:
    1. Session JWT from Authorization header
    2. X-User-Id header
    3. Raise 401 Unauthorized
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        user_id = verify_session_jwt(auth_header[7:])
        if user_id:
            request.state.user_id = user_id
            return user_id

    if x_user_id and x_user_id.strip():
        request.state.user_id = x_user_id.strip()
        return x_user_id.strip()

    raise HTTPException(
        status_code=401,
        detail="Missing Authorization (Bearer JWT) or X-User-Id header",
    )
