"""Access/refresh token issuance and rotation."""

import hmac
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from studio_service import schemas
from studio_service.errors import InternalError, NotFoundError, UnauthorizedError
from studio_service.models import User
from studio_service.utils import (
    ACCESS_TOKEN_SECRET,
    ACCESS_TOKEN_EXPIRE_MINUTES,
    REFRESH_TOKEN_SECRET,
    REFRESH_TOKEN_EXPIRE_MINUTES,
    create_token,
    decode_token,
)

logger = logging.getLogger(__name__)


def issue_access_token(user: User) -> str:
    return create_token(
        {"sub": str(user.id), "email": user.email, "name": user.name},
        ACCESS_TOKEN_SECRET,
        ACCESS_TOKEN_EXPIRE_MINUTES,
    )


def issue_refresh_token(user: User) -> str:
    return create_token({"sub": str(user.id)}, REFRESH_TOKEN_SECRET, REFRESH_TOKEN_EXPIRE_MINUTES)


def issue_token_pair(db: Session, user_id: int) -> schemas.TokenPair:
    """
    Generates a new access/refresh pair for the user and stores the refresh
    token on the user row, replacing (and so revoking) any previous one.
    Nothing is returned unless the new refresh token was committed.
    """
    user = db.get(User, user_id)
    if user is None:
        logger.warning(f"Token issuance failed: user {user_id} not found.")
        raise NotFoundError("User not found")

    access_token = issue_access_token(user)
    refresh_token = issue_refresh_token(user)

    try:
        user.refresh_token = refresh_token
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Could not persist refresh token for user {user_id}: {e}", exc_info=True)
        raise InternalError("Could not create session")

    logger.info(f"Issued token pair for user_id: {user_id}")
    return schemas.TokenPair(accessToken=access_token, refreshToken=refresh_token)


def verify_access_token(token: str) -> schemas.TokenPayload:
    payload = decode_token(token, ACCESS_TOKEN_SECRET)
    if payload is None:
        raise UnauthorizedError("Invalid or expired access token")
    return schemas.TokenPayload(**payload)


def refresh_token_pair(db: Session, presented_token: str) -> schemas.TokenPair:
    """
    Exchanges a refresh token for a new pair. The presented token must match
    the one stored on the user; a rotated-out token is rejected.
    """
    payload = decode_token(presented_token, REFRESH_TOKEN_SECRET)
    if payload is None:
        raise UnauthorizedError("Invalid or expired refresh token")

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise UnauthorizedError("Invalid refresh token payload")

    user = db.get(User, user_id)
    if user is None:
        logger.warning(f"Refresh failed: user {user_id} not found.")
        raise NotFoundError("Invalid token")

    stored = (user.refresh_token or "").encode("utf-8")
    if not hmac.compare_digest(stored, presented_token.encode("utf-8")):
        logger.warning(f"Refresh failed: token mismatch for user {user_id}.")
        raise UnauthorizedError("Token mismatch, unauthorized request")

    return issue_token_pair(db, user.id)
