"""Shopping cart - (user, listing) membership with purchase guards"""

import logging
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models import CartItem, Project
from services.catalog_service import serialize_project_card
from services.purchase_service import PurchaseService
from utils.datetime_helpers import to_iso
from utils.exception_handler import (
    AlreadyPurchasedError, ConflictError, NotFoundError, OwnListingPurchaseError,
)

logger = logging.getLogger(__name__)


class CartService:

    def __init__(self, purchases: PurchaseService = None):
        self.purchases = purchases or PurchaseService()

    async def list_items(self, session: AsyncSession, user_id: int) -> Dict[str, Any]:
        result = await session.execute(
            select(CartItem).where(CartItem.user_id == user_id).order_by(CartItem.created_at.desc())
        )
        items: List[CartItem] = list(result.scalars().all())
        total = sum((Decimal(str(item.project.price)) for item in items if item.project), Decimal("0"))
        return {
            "items": [
                {
                    "projectId": item.project_id,
                    "addedAt": to_iso(item.created_at),
                    "project": serialize_project_card(item.project) if item.project else None,
                }
                for item in items
            ],
            "total": float(total),
            "count": len(items),
        }

    async def count(self, session: AsyncSession, user_id: int) -> int:
        result = await session.execute(select(func.count()).select_from(CartItem).where(CartItem.user_id == user_id))
        return result.scalar() or 0

    async def add(self, session: AsyncSession, user_id: int, project_id: int) -> CartItem:
        project = await session.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project not found")
        if project.seller_id == user_id:
            raise OwnListingPurchaseError("You cannot add your own project to the cart")
        if await self.purchases.has_completed_purchase(session, user_id, project_id):
            raise AlreadyPurchasedError("You already purchased this project")

        existing = await session.get(CartItem, (user_id, project_id))
        if existing is not None:
            raise ConflictError("Project is already in your cart", code="ALREADY_IN_CART")

        item = CartItem(user_id=user_id, project_id=project_id)
        session.add(item)
        try:
            await session.flush()
        except IntegrityError:
            # Lost a race with a concurrent add; the primary key is authoritative
            await session.rollback()
            raise ConflictError("Project is already in your cart", code="ALREADY_IN_CART")
        logger.info(f"🛒 User {user_id} added project {project_id} to cart")
        return item

    async def remove(self, session: AsyncSession, user_id: int, project_id: int):
        result = await session.execute(
            delete(CartItem).where(CartItem.user_id == user_id, CartItem.project_id == project_id)
        )
        if not result.rowcount:
            raise NotFoundError("Project not found in cart")

    async def clear(self, session: AsyncSession, user_id: int) -> int:
        result = await session.execute(delete(CartItem).where(CartItem.user_id == user_id))
        return result.rowcount or 0


cart_service = CartService()
