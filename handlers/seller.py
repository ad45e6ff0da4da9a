"""Seller routes: seller onboarding, seller listings and draft uploads"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from handlers.common import get_media_store, listing_draft_from, ok, read_assets, read_json
from middleware.auth_security import ensure_self_or_admin, get_current_user
from models import ProjectStatus, User
from services.auth_service import serialize_user
from services.catalog_service import serialize_project_card, serialize_project_detail
from services.seller_service import seller_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/seller", tags=["seller"])


@router.post("/become-seller")
async def become_seller(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_db_session)):
    user = await seller_service.become_seller(session, user)
    data = serialize_user(user)
    await session.commit()
    return ok(data, "You are now a seller")


@router.get("/status/{user_id}")
async def seller_status(
    user_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    return ok(await seller_service.seller_status(session, user_id))


@router.get("/my-projects/{user_id}")
async def my_projects(
    user_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    ensure_self_or_admin(user, user_id)
    return ok(await seller_service.my_projects(session, user_id))


@router.get("/projects/{seller_id}")
async def seller_projects(
    seller_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    projects = await seller_service.projects_by_seller(session, seller_id)
    return ok([serialize_project_card(p) for p in projects])


@router.post("/upload-project")
async def upload_draft(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    body = await read_json(request)
    project = await seller_service.create_listing(session, user, listing_draft_from(body), ProjectStatus.DRAFT)
    return ok(serialize_project_detail(project), "Draft project created", status_code=201)


@router.post("/upload-files/{project_id}")
async def upload_files(
    project_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    form = await request.form()
    files = await read_assets(form, "files")
    images = await read_assets(form, "images")

    data = await seller_service.upload_assets(session, user, project_id, files, images, get_media_store(request))
    uploaded = len(data["uploadedFiles"]) + len(data["uploadedImages"])
    return ok(data, f"{uploaded} file(s) uploaded successfully")
