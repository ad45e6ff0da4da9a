"""Shared plumbing for the API routers: response envelope, body parsing and service wiring"""

import logging
from typing import Any, Dict, List, Optional

import orjson
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.datastructures import UploadFile

from services.media_store import CloudinaryMediaStore
from services.purchase_service import PurchaseService
from services.seller_service import IncomingAsset, ListingDraft
from utils.exception_handler import ValidationError

logger = logging.getLogger(__name__)


def ok(data: Any = None, message: Optional[str] = None, status_code: int = 200, **extra) -> JSONResponse:
    """{success: true, data?, message?} envelope"""
    body: Dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


async def read_json(request: Request) -> Dict[str, Any]:
    """Parse a JSON object body; an empty body reads as {}"""
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = orjson.loads(raw)
    except ValueError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def require_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number")


async def read_assets(form, field_name: str) -> List[IncomingAsset]:
    """Pull the uploaded parts of one multipart field into memory"""
    assets = []
    for part in form.getlist(field_name):
        if not isinstance(part, UploadFile):
            continue
        data = await part.read()
        assets.append(IncomingAsset(filename=part.filename or "file", content_type=part.content_type, data=data))
    return assets


def get_purchase_service(request: Request) -> PurchaseService:
    """Checkout wired to the running scheduler so new sales get queued for completion"""
    scheduler = getattr(request.app.state, "scheduler", None)
    return PurchaseService(completion_scheduler=scheduler.completion_scheduler if scheduler else None)


def get_media_store(request: Request) -> CloudinaryMediaStore:
    return request.app.state.media_store


def listing_draft_from(source) -> ListingDraft:
    """Accepts English field names and their Spanish aliases"""
    def pick(*names):
        for name in names:
            value = source.get(name)
            if value not in (None, ""):
                return value
        return None

    tags = source.getlist("tags") if hasattr(source, "getlist") else source.get("tags")
    if isinstance(tags, list) and len(tags) == 1:
        tags = tags[0]

    return ListingDraft(
        title=pick("title", "titulo"),
        description=pick("description", "descripcion"),
        price=pick("price", "precio"),
        project_type=pick("type", "tipo"),
        category_id=pick("categoryId"),
        university=pick("university", "universidad"),
        subject=pick("subject", "career", "materia"),
        year=pick("year"),
        tags=tags,
    )
