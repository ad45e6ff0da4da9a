"""Search history routes"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from handlers.common import ok, read_json
from middleware.auth_security import get_current_user
from models import User
from services.search_history_service import search_history_service, serialize_entry
from utils.helpers import clamp_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search-history", tags=["search-history"])


@router.post("")
async def record_search(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    body = await read_json(request)
    entry, created = await search_history_service.record(session, user.id, body.get("term"))
    data = serialize_entry(entry)
    await session.commit()
    if created:
        return ok(data, "Search saved", status_code=201)
    return ok(data, "Search updated")


@router.get("/recent")
async def recent_searches(
    limit: Optional[int] = None,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    entries = await search_history_service.recent(session, user.id, clamp_limit(limit, 5, 20))
    return ok([serialize_entry(e) for e in entries])


@router.get("/popular")
async def popular_searches(limit: Optional[int] = None, session: AsyncSession = Depends(get_db_session)):
    return ok(await search_history_service.popular(session, clamp_limit(limit, 5, 10)))


@router.patch("/{entry_id}/deactivate")
async def deactivate_search(
    entry_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    await search_history_service.deactivate(session, user.id, entry_id)
    await session.commit()
    return ok(message="Search removed from history")


@router.delete("/clear")
async def clear_history(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_db_session)):
    cleared = await search_history_service.clear(session, user.id)
    await session.commit()
    return ok({"cleared": cleared}, "Search history cleared")
