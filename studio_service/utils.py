"""Utility functions for the studio service: configuration, password hashing and JWT handling."""

import os
import uuid
import logging
import bcrypt
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from dotenv import load_dotenv
from typing import Dict, List, Optional

# Load environment variables from .env
load_dotenv()

logger = logging.getLogger(__name__)

# --- Security configuration ---
ACCESS_TOKEN_SECRET = os.getenv("ACCESS_TOKEN_SECRET")
if not ACCESS_TOKEN_SECRET:
    logger.warning("ACCESS_TOKEN_SECRET is not set. Using an insecure default key for development.")
    ACCESS_TOKEN_SECRET = "insecure_default_access_secret_change_me"

REFRESH_TOKEN_SECRET = os.getenv("REFRESH_TOKEN_SECRET")
if not REFRESH_TOKEN_SECRET:
    logger.warning("REFRESH_TOKEN_SECRET is not set. Using an insecure default key for development.")
    REFRESH_TOKEN_SECRET = "insecure_default_refresh_secret_change_me"

ALGORITHM = "HS256"

ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 15))
REFRESH_TOKEN_EXPIRE_MINUTES = int(os.getenv("REFRESH_TOKEN_EXPIRE_MINUTES", 60 * 24 * 10))

DEFAULT_CREDIT_BALANCE = int(os.getenv("DEFAULT_CREDIT_BALANCE", 6))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

# --- Deployment ---
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
CORS_ORIGINS: List[str] = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGIN", "http://localhost:5173").split(",")
    if origin.strip()
]

# --- External image API ---
CLIPDROP_API_URL = os.getenv("CLIPDROP_API_URL", "https://clipdrop-api.co")
CLIPDROP_API_KEY = os.getenv("CLIPDROP_API_KEY")
CLIPDROP_TIMEOUT_SECONDS = float(os.getenv("CLIPDROP_TIMEOUT_SECONDS", 60))
if not CLIPDROP_API_KEY:
    logger.error("CLIPDROP_API_KEY is not set. Image operations will be rejected by the image API.")

# --- Asset storage ---
CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 10 * 1024 * 1024))


def cookie_options() -> Dict:
    """Cookie attributes for the session cookies, toggled by ENVIRONMENT."""
    is_production = ENVIRONMENT == "production"
    return {
        "httponly": True,
        "secure": is_production,
        "samesite": "none" if is_production else "lax",
    }


# --- Passwords ---
def get_password_hash(password: str) -> str:
    """Hashes a plain password with bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Checks a plain password against a stored bcrypt hash."""
    secret = plain_password.encode("utf-8")
    if len(secret) > 72:
        return False
    try:
        return bcrypt.checkpw(secret, hashed_password.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed.")
        return False


# --- JWT ---
def create_token(data: Dict, secret: str, expires_minutes: int) -> str:
    """
    Signs a JWT with the given payload and an expiration timestamp.

    Args:
        data: Payload to embed (e.g. {'sub': user_id}).
        secret: Signing key for this token class.
        expires_minutes: Lifetime of the token.

    Returns:
        The encoded JWT string.
    """
    now = datetime.now(timezone.utc)
    to_encode = data.copy()
    to_encode.update({
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
        # Two tokens minted in the same second must still differ
        "jti": uuid.uuid4().hex,
    })
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def decode_token(token: str, secret: str) -> Optional[Dict]:
    """
    Decodes and validates a JWT (signature and expiry).

    Returns:
        The payload if the token is valid and not expired, otherwise None.
    """
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"Token decode failed: {e}")
        return None
    if "sub" not in payload:
        logger.warning("Token decode failed: payload has no 'sub'.")
        return None
    return payload
