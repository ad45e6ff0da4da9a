"""Cart routes"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from handlers.common import ok, read_json, require_int
from middleware.auth_security import get_current_user
from models import User
from services.cart_service import cart_service
from utils.exception_handler import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cart", tags=["cart"])


@router.get("")
async def get_cart(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_db_session)):
    return ok(await cart_service.list_items(session, user.id))


@router.get("/count")
async def cart_count(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_db_session)):
    return ok({"count": await cart_service.count(session, user.id)})


@router.post("")
async def add_to_cart(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    body = await read_json(request)
    if body.get("projectId") is None:
        raise ValidationError("projectId is required")
    project_id = require_int(body["projectId"], "projectId")

    await cart_service.add(session, user.id, project_id)
    await session.commit()
    return ok({"projectId": project_id}, "Project added to cart", status_code=201)


@router.delete("")
async def clear_cart(user: User = Depends(get_current_user), session: AsyncSession = Depends(get_db_session)):
    removed = await cart_service.clear(session, user.id)
    await session.commit()
    return ok({"removed": removed}, "Cart cleared")


@router.delete("/{project_id}")
async def remove_from_cart(
    project_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    await cart_service.remove(session, user.id, project_id)
    await session.commit()
    return ok(message="Project removed from cart")
