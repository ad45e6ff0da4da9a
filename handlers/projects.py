"""
Catalog routes: explore, shelves, detail, downloads and listing upload
"""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from handlers.common import get_media_store, listing_draft_from, ok, read_assets, read_json
from middleware.auth_security import get_current_user
from models import ProjectStatus, User
from services.catalog_service import (
    PROJECT_TYPES, SORT_KEYS, ExploreFilters, catalog_service, serialize_category,
    serialize_project_card, serialize_project_detail,
)
from services.seller_service import seller_service
from utils.exception_handler import ValidationError
from utils.helpers import clamp_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.get("/featured")
async def featured_projects(
    limit: Optional[int] = Query(None),
    session: AsyncSession = Depends(get_db_session),
):
    projects = await catalog_service.featured(session, clamp_limit(limit, 6, 50))
    return ok([serialize_project_card(p) for p in projects])


@router.get("/recent")
async def recent_projects(
    limit: Optional[int] = Query(None),
    session: AsyncSession = Depends(get_db_session),
):
    projects = await catalog_service.recent(session, clamp_limit(limit, 8, 50))
    return ok([serialize_project_card(p) for p in projects])


@router.get("/explore")
async def explore_projects(
    search: Optional[str] = None,
    project_type: Optional[str] = Query(None, alias="type"),
    category: Optional[str] = None,
    university: Optional[str] = None,
    career: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    order_by: str = Query("newest", alias="orderBy"),
    page: int = 1,
    limit: int = 12,
    session: AsyncSession = Depends(get_db_session),
):
    if order_by not in SORT_KEYS:
        raise ValidationError(f"orderBy must be one of: {', '.join(SORT_KEYS)}")

    filters = ExploreFilters(
        search=search,
        project_type=project_type or None,
        category=category or None,
        university=university or None,
        career=career or None,
        min_price=Decimal(str(min_price)) if min_price is not None else None,
        max_price=Decimal(str(max_price)) if max_price is not None else None,
        order_by=order_by,
        page=page,
        limit=min(limit, 100),
    )
    result = await catalog_service.explore(session, filters)
    return ok(result["data"], pagination=result["pagination"], stats=result["stats"])


@router.get("/categories")
async def project_categories(session: AsyncSession = Depends(get_db_session)):
    categories = await catalog_service.active_categories(session)
    return ok([serialize_category(c) for c in categories])


@router.get("/types")
async def project_types():
    return ok(PROJECT_TYPES)


@router.post("/upload")
async def upload_project(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    body = await read_json(request)
    project = await seller_service.create_listing(session, user, listing_draft_from(body), ProjectStatus.PUBLISHED)
    return ok(serialize_project_detail(project), "Project created successfully", status_code=201)


@router.post("/upload-with-files")
async def upload_project_with_files(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    form = await request.form()
    files = await read_assets(form, "files")
    images = await read_assets(form, "images")

    data = await seller_service.create_listing_with_assets(
        session, user, listing_draft_from(form), files, images, get_media_store(request),
    )
    message = (
        f"Project created with {len(data['uploadedFiles'])} file(s) "
        f"and {len(data['uploadedImages'])} image(s)"
    )
    return ok(data, message, status_code=201)


@router.get("/{project_id}")
async def project_detail(project_id: int, session: AsyncSession = Depends(get_db_session)):
    project = await catalog_service.get_detail(session, project_id)
    await session.commit()
    return ok(serialize_project_detail(project))


@router.get("/{project_id}/download/{file_id}")
async def download_file(project_id: int, file_id: int, session: AsyncSession = Depends(get_db_session)):
    project_file = await catalog_service.register_download(session, project_id, file_id)
    data = {
        "id": project_file.id,
        "fileName": project_file.file_name,
        "fileUrl": project_file.file_url,
        "fileType": project_file.file_type,
        "fileSize": project_file.size_bytes,
    }
    await session.commit()
    logger.info(f"⬇️ File {file_id} of project {project_id} downloaded")
    return ok(data)
