"""Credit ledger: the only place a user's credit balance changes."""

import logging
from typing import Optional

from prometheus_client import Counter
from sqlalchemy import update
from sqlalchemy.orm import Session

from studio_service.models import User

logger = logging.getLogger(__name__)

CREDITS_DEBITED = Counter("studio_credits_debited_total", "Credits consumed by image operations")


def debit_one(db: Session, user_id: int) -> Optional[User]:
    """
    Takes one credit from the user in a single conditional UPDATE.

    The balance filter and the decrement run as one statement, so concurrent
    debits can never push the balance below zero.

    Returns:
        The refreshed user after the decrement, or None if the user has no
        credit left (or does not exist).
    """
    stmt = (
        update(User)
        .where(User.id == user_id, User.credit_balance > 0)
        .values(credit_balance=User.credit_balance - 1)
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.execute(stmt)
        db.commit()
    except Exception:
        db.rollback()
        raise

    if result.rowcount != 1:
        logger.warning(f"Debit rejected for user {user_id}: no credit left.")
        return None

    CREDITS_DEBITED.inc()
    user = db.get(User, user_id, populate_existing=True)
    logger.info(f"Debited 1 credit from user {user_id}; balance now {user.credit_balance if user else 'n/a'}")
    return user
