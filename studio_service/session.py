"""Request authentication: resolves the bearer access token to a user."""

import logging
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from studio_service import schemas
from studio_service.db import get_db
from studio_service.errors import UnauthorizedError
from studio_service.models import User
from studio_service.tokens import verify_access_token

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def extract_access_token(request: Request) -> Optional[str]:
    """Cookie first, then the Authorization header."""
    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        return token
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return None


def get_current_user(request: Request, db: Session = Depends(get_db)) -> schemas.UserResponse:
    """
    FastAPI dependency guarding authenticated routes.
    Stores the sanitized user on request.state.user and returns it.
    """
    token = extract_access_token(request)
    if not token:
        logger.warning(f"Unauthenticated request to {request.url.path}")
        raise UnauthorizedError("Unauthorized request")

    payload = verify_access_token(token)
    try:
        user_id = int(payload.sub)
    except ValueError:
        raise UnauthorizedError("Invalid access token")

    user = db.get(User, user_id)
    if user is None:
        # Same answer as a bad token
        logger.warning(f"Access token refers to missing user {user_id}")
        raise UnauthorizedError("Invalid access token")

    current_user = schemas.UserResponse.model_validate(user)
    request.state.user = current_user
    return current_user
