import logging
import time
from typing import Optional

from fastapi import FastAPI, APIRouter, Depends, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from studio_service import schemas, tokens
from studio_service.db import engine, Base, get_db
from studio_service.dependencies import get_asset_storage, get_image_api
from studio_service.errors import (
    BadRequestError,
    InternalError,
    NotFoundError,
    UnauthorizedError,
    api_response,
    error_response,
    register_exception_handlers,
)
from studio_service.image_api import ImageApiClient
from studio_service.models import User
from studio_service.pipeline import OPERATIONS, ImageOperation, run_operation
from studio_service.session import ACCESS_COOKIE, REFRESH_COOKIE, get_current_user
from studio_service.storage import AssetStorage
from studio_service.utils import CORS_ORIGINS, cookie_options, get_password_hash, verify_password

# Configure logger
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Create tables if they don't exist yet
try:
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables verified/created.")
except Exception as e:
    logger.error(f"Error initializing database: {e}", exc_info=True)


app = FastAPI(
    title="Image Studio API",
    description="User accounts, credit balances and credit-metered image editing.",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# --- Prometheus metrics ---
REQUEST_COUNT = Counter(
    "studio_requests_total",
    "Total requests processed by the studio service",
    ["method", "endpoint", "status_code"]
)
REQUEST_LATENCY = Histogram(
    "studio_request_latency_seconds",
    "Request latency in seconds for the studio service",
    ["endpoint"]
)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start_time = time.time()
    response = None
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception as exc:
        logger.error(f"Unhandled exception during request processing: {exc}", exc_info=True)
        response = error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")
    finally:
        latency = time.time() - start_time
        endpoint = request.url.path
        final_status_code = getattr(response, 'status_code', status_code)

        REQUEST_LATENCY.labels(endpoint=endpoint).observe(latency)
        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=final_status_code
        ).inc()

    return response


# --- Health and metrics ---
@app.get("/", response_class=PlainTextResponse, include_in_schema=False)
def root():
    return "API is running..."


@app.get("/metrics", tags=["Monitoring"])
def metrics():
    """Exposes application metrics for Prometheus."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health", tags=["Monitoring"])
def health_check():
    return {"status": "ok", "service": "studio_service"}


def set_session_cookies(response: Response, pair: schemas.TokenPair) -> None:
    options = cookie_options()
    response.set_cookie(ACCESS_COOKIE, pair.accessToken, **options)
    response.set_cookie(REFRESH_COOKIE, pair.refreshToken, **options)


# --- Account endpoints ---
users_router = APIRouter(prefix="/api/v2/users", tags=["Users"])


@users_router.post("/register", status_code=status.HTTP_201_CREATED)
def register(user_in: schemas.UserCreate, db: Session = Depends(get_db)):
    """Creates a user with a hashed password and the default credit balance."""
    logger.info(f"Registration attempt for email: {user_in.email}")
    if db.query(User).filter(User.email == user_in.email).first():
        logger.warning(f"Registration failed: email {user_in.email} already exists.")
        raise BadRequestError("User already exists with this email")

    new_user = User(
        name=user_in.name,
        email=user_in.email,
        hashed_password=get_password_hash(user_in.password),
    )
    try:
        db.add(new_user)
        db.commit()
        db.refresh(new_user)
    except IntegrityError:
        # Lost a race against another registration with the same email
        db.rollback()
        raise BadRequestError("User already exists with this email")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error during user creation for {user_in.email}: {e}", exc_info=True)
        raise InternalError("Could not save user.")

    logger.info(f"User created with ID: {new_user.id}")
    return api_response(schemas.serialize_user(new_user), "User registered successfully",
                        status.HTTP_201_CREATED)


@users_router.post("/login")
def login(credentials: schemas.LoginRequest, response: Response, db: Session = Depends(get_db)):
    """Checks email/password and starts a new session (replacing any previous one)."""
    logger.info(f"Login attempt for user: {credentials.email}")
    user = db.query(User).filter(User.email == credentials.email).first()
    if not user:
        logger.warning(f"Login failed: {credentials.email} not found.")
        raise NotFoundError("User not found")
    if not verify_password(credentials.password, user.hashed_password):
        logger.warning(f"Login failed: bad password for {credentials.email}.")
        raise UnauthorizedError("Invalid password")

    pair = tokens.issue_token_pair(db, user.id)
    set_session_cookies(response, pair)
    db.refresh(user)
    logger.info(f"Login successful for user_id: {user.id}")
    return api_response(
        {"user": schemas.serialize_user(user), **pair.model_dump()},
        "User logged in successfully",
    )


@users_router.post("/refresh-token")
def refresh_access_token(request: Request, response: Response,
                         body: Optional[schemas.RefreshRequest] = None,
                         db: Session = Depends(get_db)):
    """Rotates both tokens. The refresh token comes from the cookie or the JSON body."""
    incoming = request.cookies.get(REFRESH_COOKIE) or (body.refreshToken if body else None)
    if not incoming:
        raise UnauthorizedError("unauthorized request, refresh token missing")

    pair = tokens.refresh_token_pair(db, incoming)
    set_session_cookies(response, pair)
    return api_response(pair.model_dump(), "Access token refreshed")


@users_router.get("/current-user")
def fetch_current_user(current_user: schemas.UserResponse = Depends(get_current_user)):
    return api_response(current_user.model_dump(mode="json", by_alias=True),
                        "Current user fetched successfully")


@users_router.get("/credit")
def fetch_credit(current_user: schemas.UserResponse = Depends(get_current_user)):
    # get_current_user has just loaded the row, so the balance is current
    return api_response({"name": current_user.name, "credit": current_user.credit_balance},
                        "User credit fetched successfully")


@users_router.post("/logout")
def logout(response: Response, current_user: schemas.UserResponse = Depends(get_current_user),
           db: Session = Depends(get_db)):
    """
    Drops the stored refresh token and clears both cookies. Access tokens are
    stateless, so one already handed out stays valid until it expires.
    """
    user = db.get(User, current_user.id)
    if user is None:
        raise NotFoundError("User not found")
    try:
        user.refresh_token = None
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Could not clear refresh token for user {user.id}: {e}", exc_info=True)
        raise InternalError("Could not log out")

    options = cookie_options()
    response.delete_cookie(ACCESS_COOKIE, **options)
    response.delete_cookie(REFRESH_COOKIE, **options)
    logger.info(f"User {user.id} logged out")
    return api_response({}, "User logged out successfully")


# --- Image endpoints ---
images_router = APIRouter(prefix="/api/v2/images", tags=["Images"])


def make_image_endpoint(operation: ImageOperation):
    async def endpoint(request: Request,
                       current_user: schemas.UserResponse = Depends(get_current_user),
                       db: Session = Depends(get_db),
                       storage: AssetStorage = Depends(get_asset_storage),
                       image_api: ImageApiClient = Depends(get_image_api)):
        data = await run_operation(operation, request, current_user, db, storage, image_api)
        return api_response(data, operation.success_message)

    endpoint.__name__ = operation.name
    return endpoint


for _operation in OPERATIONS:
    images_router.add_api_route(_operation.route, make_image_endpoint(_operation), methods=["POST"],
                                name=_operation.name)


app.include_router(users_router)
app.include_router(images_router)


if __name__ == "__main__":
    import os
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
