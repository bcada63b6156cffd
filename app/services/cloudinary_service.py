# app/services/cloudinary_service.py

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import cloudinary
import cloudinary.uploader
import cloudinary.api
from cloudinary import CloudinaryImage

from app.errors import UpstreamFailure

logger = logging.getLogger(__name__)

# Rough watercolor/anime look, close to a saturate + brighten + sharpen + gamma pass
GHIBLI_TRANSFORMATION: List[Dict[str, Any]] = [
    {"effect": "cartoonify:20:40"},
    {"effect": "saturation:50"},
    {"effect": "brightness:10"},
    {"effect": "sharpen:80"},
    {"effect": "gamma:10"},
    {"quality": "auto", "fetch_format": "jpg"},
]


@dataclass(frozen=True)
class StoredAsset:
    public_id: str
    url: str


class CloudinaryService:
    def __init__(self, cloud_name: str, api_key: str, api_secret: str, folder: str = "artify"):
        self.folder = folder
        cloudinary.config(
            cloud_name = cloud_name,
            api_key = api_key,
            api_secret = api_secret,
            secure = True
        )

    def upload_image(
        self,
        source: Union[bytes, str],
        public_id: str,
        subfolder: str = "originals",
        **options,
    ) -> StoredAsset:
        """Upload raw bytes or a remote URL and return the durable locator."""
        try:
            result = cloudinary.uploader.upload(
                source,
                public_id=public_id,
                folder=f"{self.folder}/{subfolder}",
                resource_type="image",
                **options
            )
        except Exception as e:
            logger.error(f"Cloudinary upload of {public_id} failed: {e}")
            raise UpstreamFailure("Image upload failed", service="storage", original_error=e)
        return StoredAsset(public_id=result["public_id"], url=result["secure_url"])

    def destroy_image(self, public_id: str) -> None:
        try:
            result = cloudinary.uploader.destroy(public_id)
        except Exception as e:
            logger.error(f"Cloudinary delete of {public_id} failed: {e}")
            raise UpstreamFailure("Image delete failed", service="storage", original_error=e)
        if result.get("result") not in ("ok", "not found"):
            logger.error(f"Cloudinary delete of {public_id} returned {result.get('result')}")
            raise UpstreamFailure("Image delete failed", service="storage")

    def build_url(self, public_id: str, transformation: List[Dict[str, Any]]) -> str:
        return CloudinaryImage(public_id).build_url(transformation=transformation, secure=True)

    def ping(self) -> bool:
        try:
            cloudinary.api.ping()
            return True
        except Exception as e:
            logger.warning(f"Cloudinary ping failed: {e}")
            return False


class GhibliTransformer:
    """
    Stylizes a stored source image.

    The derived rendering is produced by Cloudinary on first fetch, so the
    returned URL is only a recipe; the caller persists it through
    ``CloudinaryService.upload_image`` which forces the render and surfaces
    any failure.
    """

    def __init__(self, storage: CloudinaryService, timeout_seconds: int = 120):
        self.storage = storage
        self.timeout_seconds = timeout_seconds

    def transform(self, source_public_id: str, prompt: Optional[str] = None) -> str:
        try:
            return self.storage.build_url(source_public_id, GHIBLI_TRANSFORMATION)
        except Exception as e:
            logger.error(f"Cloudinary transformation of {source_public_id} failed: {e}")
            raise UpstreamFailure("Image transformation failed", service="transformer", original_error=e)

    def render_options(self, prompt: Optional[str] = None) -> Dict[str, Any]:
        options: Dict[str, Any] = {"timeout": self.timeout_seconds}
        if prompt:
            options["context"] = {"prompt": prompt}
        return options
