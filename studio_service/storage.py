"""Asset storage for uploaded images (Cloudinary)."""

import os
import logging
from typing import Optional, Protocol

import cloudinary
import cloudinary.uploader

from studio_service.utils import CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY, CLOUDINARY_API_SECRET

logger = logging.getLogger(__name__)


class AssetStorage(Protocol):
    """Operations the image pipeline needs from object storage."""

    def upload(self, local_path: str) -> Optional[str]:
        ...

    def delete(self, file_url: str) -> bool:
        ...


def public_id_from_url(file_url: str) -> str:
    """'https://.../upload/v1/abc123.png' -> 'abc123'"""
    last_segment = file_url.rstrip("/").split("/")[-1]
    return last_segment.split(".")[0]


def remove_local_file(local_path: str) -> None:
    try:
        os.remove(local_path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error(f"Could not delete temp file {local_path}: {e}")


class CloudinaryStorage:
    """Uploads temp files to Cloudinary and removes them locally afterwards."""

    def __init__(self, cloud_name: Optional[str] = CLOUDINARY_CLOUD_NAME,
                 api_key: Optional[str] = CLOUDINARY_API_KEY,
                 api_secret: Optional[str] = CLOUDINARY_API_SECRET):
        self.configured = bool(cloud_name and api_key and api_secret)
        if not self.configured:
            logger.error("Cloudinary credentials are not set. Image uploads will fail.")
            return
        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True,
        )

    def upload(self, local_path: str) -> Optional[str]:
        """
        Uploads a local file and returns its public URL, or None on failure.
        The local file is removed in both cases.
        """
        if not local_path:
            logger.error("upload called without a local file path")
            return None
        try:
            if not self.configured:
                return None
            result = cloudinary.uploader.upload(local_path, resource_type="auto")
            url = result.get("secure_url") or result.get("url")
            logger.info(f"Uploaded {local_path} to {url}")
            return url
        except Exception as e:
            logger.error(f"Cloudinary upload error: {e}", exc_info=True)
            return None
        finally:
            remove_local_file(local_path)

    def delete(self, file_url: str) -> bool:
        if not file_url or not self.configured:
            return False
        public_id = public_id_from_url(file_url)
        try:
            result = cloudinary.uploader.destroy(public_id)
        except Exception as e:
            logger.error(f"Error deleting {public_id} from Cloudinary: {e}", exc_info=True)
            return False
        return result.get("result") == "ok"
