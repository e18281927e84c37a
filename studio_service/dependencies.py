"""
Dependency wiring for the external collaborators.
"""

from typing import Optional

from studio_service.image_api import ImageApiClient
from studio_service.storage import AssetStorage, CloudinaryStorage

_asset_storage: Optional[AssetStorage] = None
_image_api: Optional[ImageApiClient] = None


def get_asset_storage() -> AssetStorage:
    global _asset_storage
    if _asset_storage is None:
        _asset_storage = CloudinaryStorage()
    return _asset_storage


def get_image_api() -> ImageApiClient:
    global _image_api
    if _image_api is None:
        _image_api = ImageApiClient()
    return _image_api
