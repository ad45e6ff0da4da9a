"""Category routes"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from handlers.common import ok
from services.catalog_service import catalog_service, serialize_category

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/categories", tags=["categories"])


@router.get("")
async def list_categories(session: AsyncSession = Depends(get_db_session)):
    categories = await catalog_service.active_categories(session)
    return ok([serialize_category(c) for c in categories])


@router.get("/{category_id}")
async def get_category(category_id: int, session: AsyncSession = Depends(get_db_session)):
    return ok(await catalog_service.category_with_count(session, category_id))
