"""
Credit-metered image operations.

All six operations run through `run_operation`, driven by the OPERATIONS
table: load the user, validate inputs, relay the uploaded asset when one is
needed, call the image API, then take one credit through the ledger.
"""

import os
import math
import base64
import logging
import tempfile
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from fastapi import Request
from fastapi.concurrency import run_in_threadpool
from prometheus_client import Counter
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from studio_service import ledger, schemas
from studio_service.errors import (
    ApiError,
    BadRequestError,
    InsufficientCreditError,
    InternalError,
    NotFoundError,
)
from studio_service.image_api import ImageApiClient
from studio_service.models import User
from studio_service.storage import AssetStorage
from studio_service.utils import MAX_UPLOAD_BYTES

logger = logging.getLogger(__name__)

IMAGE_OPERATIONS = Counter(
    "studio_image_operations_total",
    "Image operations by outcome",
    ["operation", "outcome"],
)

UPLOAD_FIELD = "image"
API_IMAGE_FIELD = "input_image"


@dataclass(frozen=True)
class ImageOperation:
    name: str
    route: str
    endpoint: str
    success_message: str
    needs_asset: bool = True
    # (request field, image API field)
    text_fields: Tuple[Tuple[str, str], ...] = ()
    positive_fields: Tuple[Tuple[str, str], ...] = ()
    # (response key, request field) echoed back on success
    echo_fields: Tuple[Tuple[str, str], ...] = ()
    # Only generate checks the balance before calling the image API
    precheck_balance: bool = False


OPERATIONS: Tuple[ImageOperation, ...] = (
    ImageOperation(
        name="generate",
        route="/generate",
        endpoint="/text-to-image/v1",
        success_message="Image Generated Successfully",
        needs_asset=False,
        text_fields=(("prompt", "prompt"),),
        precheck_balance=True,
    ),
    ImageOperation(
        name="remove_background",
        route="/remove-bg",
        endpoint="/remove-background/v1",
        success_message="Background removed successfully",
    ),
    ImageOperation(
        name="upscale",
        route="/upscale",
        endpoint="/image-upscaling/v1/upscale",
        success_message="Image upscaled successfully",
        positive_fields=(("targetWidth", "target_width"), ("targetHeight", "target_height")),
        echo_fields=(("newWidth", "targetWidth"), ("newHeight", "targetHeight")),
    ),
    ImageOperation(
        name="uncrop",
        route="/uncrop",
        endpoint="/uncrop/v1",
        success_message="Image uncropped successfully",
        positive_fields=(("extendLeft", "extend_left"), ("extendDown", "extend_down")),
        echo_fields=(("extendLeft", "extendLeft"), ("extendDown", "extendDown")),
    ),
    ImageOperation(
        name="remove_text",
        route="/remove-text",
        endpoint="/remove-text/v1",
        success_message="Text removed successfully",
    ),
    ImageOperation(
        name="replace_background",
        route="/replace-bg",
        endpoint="/replace-background/v1",
        success_message="Background replaced successfully",
        text_fields=(("prompt", "prompt"),),
    ),
)


def to_data_uri(image: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"


async def read_request_fields(request: Request) -> Tuple[Dict[str, Any], Optional[UploadFile]]:
    """Accepts JSON bodies as well as multipart/urlencoded forms."""
    content_type = request.headers.get("content-type", "").lower()
    if "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            raise BadRequestError("Request body is not valid JSON")
        if not isinstance(body, dict):
            raise BadRequestError("Request body must be a JSON object")
        return body, None

    try:
        form = await request.form()
    except StarletteHTTPException as exc:
        logger.warning(f"Unreadable form body on {request.url.path}: {exc.detail}")
        raise BadRequestError("Invalid form data")
    upload = form.get(UPLOAD_FIELD)
    fields = {key: value for key, value in form.items() if isinstance(value, str)}
    return fields, upload if isinstance(upload, UploadFile) else None


def validate_fields(operation: ImageOperation, raw: Dict[str, Any]) -> Tuple[Dict[str, str], Dict[str, int]]:
    """
    Returns (image API fields, parsed positive numbers by request field name).
    Raises BadRequestError naming the first invalid field.
    """
    api_fields: Dict[str, str] = {}
    numbers: Dict[str, int] = {}

    for field, api_name in operation.text_fields:
        value = raw.get(field)
        if not isinstance(value, str) or not value.strip():
            raise BadRequestError(f"{field.capitalize()} is required")
        api_fields[api_name] = value.strip()

    for field, api_name in operation.positive_fields:
        number = parse_positive_int(field, raw.get(field))
        numbers[field] = number
        api_fields[api_name] = str(number)

    return api_fields, numbers


def parse_positive_int(field: str, value: Any) -> int:
    """Accepts 100, 100.0 and "100"; rejects zero, negatives and fractions."""
    if isinstance(value, bool):
        raise BadRequestError(f"{field} must be a positive number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise BadRequestError(f"{field} must be a positive number")
    if not math.isfinite(number) or number <= 0:
        raise BadRequestError(f"{field} must be a positive number")
    if not number.is_integer():
        raise BadRequestError(f"{field} must be a whole number")
    return int(number)


async def save_upload(upload: UploadFile) -> str:
    """Writes the uploaded file to a temp path the asset storage can read."""
    content = await upload.read()
    if not content:
        raise BadRequestError("Image is required")
    if len(content) > MAX_UPLOAD_BYTES:
        raise BadRequestError(f"Image exceeds the {MAX_UPLOAD_BYTES} byte limit")

    suffix = os.path.splitext(upload.filename or "")[1] or ".png"
    fd, path = tempfile.mkstemp(prefix="upload_", suffix=suffix)
    with os.fdopen(fd, "wb") as tmp:
        tmp.write(content)
    return path


async def relay_asset(upload: Optional[UploadFile], storage: AssetStorage,
                      image_api: ImageApiClient) -> bytes:
    """
    Moves the client's upload to asset storage and reads it back for the
    image API. The stored copy is removed once its bytes are in hand.
    """
    if upload is None:
        raise BadRequestError("Image is required")

    local_path = await save_upload(upload)
    asset_url = await run_in_threadpool(storage.upload, local_path)
    if not asset_url:
        raise BadRequestError("Image upload failed")

    try:
        return await image_api.fetch_asset(asset_url)
    finally:
        deleted = await run_in_threadpool(storage.delete, asset_url)
        if not deleted:
            logger.warning(f"Relayed asset {asset_url} was not removed from storage")


async def run_operation(operation: ImageOperation, request: Request, current_user: schemas.UserResponse,
                        db: Session, storage: AssetStorage, image_api: ImageApiClient) -> Dict[str, Any]:
    """Runs one paid image operation and returns the response data."""
    logger.info(f"{operation.name} requested by user {current_user.id}")
    try:
        data = await _run(operation, request, current_user, db, storage, image_api)
    except ApiError as exc:
        IMAGE_OPERATIONS.labels(operation=operation.name, outcome=str(exc.status_code)).inc()
        logger.warning(f"{operation.name} failed for user {current_user.id}: {exc.status_code} {exc.message}")
        raise
    except Exception as exc:
        IMAGE_OPERATIONS.labels(operation=operation.name, outcome="500").inc()
        logger.error(f"Unexpected error in {operation.name} for user {current_user.id}: {exc}", exc_info=True)
        raise InternalError("Something went wrong")

    IMAGE_OPERATIONS.labels(operation=operation.name, outcome="success").inc()
    return data


async def _run(operation: ImageOperation, request: Request, current_user: schemas.UserResponse,
               db: Session, storage: AssetStorage, image_api: ImageApiClient) -> Dict[str, Any]:
    user = db.get(User, current_user.id)
    if user is None:
        raise NotFoundError("User not found")

    if operation.precheck_balance and user.credit_balance <= 0:
        raise InsufficientCreditError("Insufficient credits")

    raw_fields, upload = await read_request_fields(request)
    api_fields, numbers = validate_fields(operation, raw_fields)

    files = None
    if operation.needs_asset:
        image_bytes = await relay_asset(upload, storage, image_api)
        files = {API_IMAGE_FIELD: ("image.png", image_bytes, "image/png")}

    result = await image_api.process(operation.endpoint, api_fields, files)

    updated = ledger.debit_one(db, user.id)
    if updated is None:
        # The image API call has already been made and cannot be billed
        logger.critical(f"{operation.name} completed for user {user.id} but no credit could be debited")
        raise InsufficientCreditError("Insufficient credits")

    data: Dict[str, Any] = {
        "image": to_data_uri(result),
        "creditBalance": updated.credit_balance,
    }
    for key, field in operation.echo_fields:
        data[key] = numbers[field]
    return data
