"""Cloudinary media store - signed REST uploads over aiohttp"""

import hashlib
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

from config import Config
from utils.exception_handler import ValidationError

logger = logging.getLogger(__name__)


ALLOWED_IMAGE_TYPES = frozenset({
    "image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp", "image/bmp", "image/tiff",
})

ALLOWED_FILE_TYPES = ALLOWED_IMAGE_TYPES | frozenset({
    # Documents
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    # Archives
    "application/zip", "application/x-zip", "application/x-zip-compressed",
    "application/rar", "application/x-rar", "application/x-rar-compressed",
    "application/x-7z-compressed", "application/7z",
    # Source code and text
    "text/plain", "application/json", "text/javascript", "application/javascript",
    "text/html", "text/css", "text/xml", "application/xml",
    "application/octet-stream",
})

_PUBLIC_ID_PATTERN = re.compile(r"/upload/(?:v\d+/)?(.+)$")


class MediaStoreError(Exception):
    """Media host rejected or failed an operation"""
    pass


@dataclass
class UploadedAsset:
    url: str
    public_id: str
    size_bytes: Optional[int] = None
    resource_type: str = "auto"


def validate_upload(filename: str, content_type: Optional[str], size: int, images_only: bool = False,
                    max_bytes: Optional[int] = None):
    """Reject disallowed MIME types and oversized payloads before touching the media host"""
    allowed = ALLOWED_IMAGE_TYPES if images_only else ALLOWED_FILE_TYPES
    if (content_type or "").lower() not in allowed:
        kind = "images" if images_only else "images, PDFs, office documents, archives or source files"
        raise ValidationError(f"File type not allowed for {filename}: {content_type}. Allowed: {kind}")
    limit = max_bytes or Config.MAX_UPLOAD_BYTES
    if size > limit:
        raise ValidationError(f"{filename} exceeds the {limit // (1024 * 1024)}MB limit")


def extract_public_id(url: Optional[str]) -> Optional[str]:
    """Public id from a delivery URL: .../upload/v123/folder/name.jpg -> folder/name"""
    if not url:
        return None
    match = _PUBLIC_ID_PATTERN.search(url)
    if not match:
        return None
    return re.sub(r"\.[^./]+$", "", match.group(1))


class CloudinaryMediaStore:
    """Service for storing listing assets and profile images on Cloudinary"""

    def __init__(self, cloud_name: Optional[str] = None, api_key: Optional[str] = None,
                 api_secret: Optional[str] = None, base_url: str = "https://api.cloudinary.com/v1_1",
                 root_folder: Optional[str] = None):
        self.cloud_name = cloud_name or Config.CLOUDINARY_CLOUD_NAME
        self.api_key = api_key or Config.CLOUDINARY_API_KEY
        self.api_secret = api_secret or Config.CLOUDINARY_API_SECRET
        self.base_url = base_url
        self.root_folder = Config.CLOUDINARY_FOLDER if root_folder is None else root_folder

        if not self.is_available():
            logger.warning("Cloudinary credentials not configured - uploads will fail")

    def is_available(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    def _sign(self, params: Dict[str, Any]) -> str:
        """SHA-1 over the alphabetically sorted params followed by the API secret"""
        to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params) if params[key] not in (None, ""))
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode("utf-8")).hexdigest()

    def _endpoint(self, resource_type: str, action: str) -> str:
        return f"{self.base_url}/{self.cloud_name}/{resource_type}/{action}"

    async def upload(self, data: bytes, folder: str, original_name: str,
                     resource_type: str = "auto", content_type: Optional[str] = None) -> UploadedAsset:
        if not self.is_available():
            raise MediaStoreError("Media storage is not configured")

        stem = original_name.rsplit(".", 1)[0] or "file"
        params = {
            "folder": "/".join(part for part in (self.root_folder, folder) if part),
            "public_id": f"{int(time.time() * 1000)}_{stem}",
            "timestamp": int(time.time()),
        }

        form = aiohttp.FormData()
        form.add_field("file", data, filename=original_name, content_type=content_type or "application/octet-stream")
        for key, value in params.items():
            form.add_field(key, str(value))
        form.add_field("api_key", self.api_key)
        form.add_field("signature", self._sign(params))

        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=120)) as session:
                async with session.post(self._endpoint(resource_type, "upload"), data=form) as response:
                    payload = await response.json(content_type=None)
                    if not isinstance(payload, dict):
                        raise MediaStoreError(f"Upload failed: unexpected response (HTTP {response.status})")
                    if response.status != 200:
                        message = (payload.get("error") or {}).get("message", "upload failed")
                        logger.error(f"Cloudinary upload failed for {original_name}: HTTP {response.status}: {message}")
                        raise MediaStoreError(f"Upload failed: {message}")
        except MediaStoreError:
            raise
        except aiohttp.ClientError as e:
            logger.error(f"Network error uploading {original_name} to Cloudinary: {e}")
            raise MediaStoreError(f"Network error: {e}")
        except Exception as e:
            logger.error(f"Unexpected error uploading {original_name} to Cloudinary: {e!r}")
            raise MediaStoreError(f"Unexpected error: {e!r}")

        logger.info(f"☁️ Uploaded {original_name} as {payload.get('public_id')}")
        return UploadedAsset(
            url=payload.get("secure_url") or payload.get("url"),
            public_id=payload.get("public_id"),
            size_bytes=payload.get("bytes"),
            resource_type=payload.get("resource_type", resource_type),
        )

    async def destroy(self, public_id: str, resource_type: str = "image") -> bool:
        """Delete an asset; True when the host reports 'ok' or 'not found'"""
        if not self.is_available():
            raise MediaStoreError("Media storage is not configured")

        params = {"public_id": public_id, "timestamp": int(time.time())}
        form = {**{k: str(v) for k, v in params.items()}, "api_key": self.api_key, "signature": self._sign(params)}
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30)) as session:
                async with session.post(self._endpoint(resource_type, "destroy"), data=form) as response:
                    payload = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            logger.error(f"Network error deleting {public_id} from Cloudinary: {e}")
            raise MediaStoreError(f"Network error: {e}")
        except Exception as e:
            logger.error(f"Unexpected error deleting {public_id} from Cloudinary: {e!r}")
            raise MediaStoreError(f"Unexpected error: {e!r}")

        result = payload.get("result") if isinstance(payload, dict) else None
        if result not in ("ok", "not found"):
            logger.warning(f"Cloudinary destroy for {public_id} returned {result}")
            return False
        return True
