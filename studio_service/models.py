"""Defines the 'users' table using the SQLAlchemy ORM."""

from sqlalchemy import Column, Integer, String, Text, DateTime, CheckConstraint, func

from studio_service.db import Base
from studio_service.utils import DEFAULT_CREDIT_BALANCE


class User(Base):
    """
    SQLAlchemy model for the 'users' table.
    Holds the identity, the password hash and the credit balance of each user.
    """
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("credit_balance >= 0", name="ck_users_credit_balance_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(50), nullable=False)

    # Unique login identifier
    email = Column(String(255), unique=True, index=True, nullable=False)

    # bcrypt hash; the plain password is never stored
    hashed_password = Column(String(255), nullable=False)

    # Only changed through ledger.debit_one
    credit_balance = Column(Integer, nullable=False, default=DEFAULT_CREDIT_BALANCE)

    # The one refresh token currently allowed to rotate; NULL after logout
    refresh_token = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
