"""Favorites - bookmarked listings per user"""

import logging
from typing import Any, Dict, List

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models import Favorite, Project
from services.catalog_service import serialize_project_card
from utils.datetime_helpers import to_iso
from utils.exception_handler import ConflictError, NotFoundError, OwnListingPurchaseError

logger = logging.getLogger(__name__)


class FavoritesService:

    async def list_favorites(self, session: AsyncSession, user_id: int) -> List[Dict[str, Any]]:
        result = await session.execute(
            select(Favorite).where(Favorite.user_id == user_id).order_by(Favorite.created_at.desc())
        )
        return [
            {
                "projectId": fav.project_id,
                "addedAt": to_iso(fav.created_at),
                "project": serialize_project_card(fav.project) if fav.project else None,
            }
            for fav in result.scalars().all()
        ]

    async def add(self, session: AsyncSession, user_id: int, project_id: int) -> Favorite:
        project = await session.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project not found")
        if project.seller_id == user_id:
            raise OwnListingPurchaseError("You cannot add your own project to favorites")

        if await session.get(Favorite, (user_id, project_id)) is not None:
            raise ConflictError("Project is already in your favorites", code="ALREADY_FAVORITE")

        favorite = Favorite(user_id=user_id, project_id=project_id)
        session.add(favorite)
        try:
            await session.flush()
        except IntegrityError:
            await session.rollback()
            raise ConflictError("Project is already in your favorites", code="ALREADY_FAVORITE")
        logger.info(f"⭐ User {user_id} favorited project {project_id}")
        return favorite

    async def remove(self, session: AsyncSession, user_id: int, project_id: int):
        result = await session.execute(
            delete(Favorite).where(Favorite.user_id == user_id, Favorite.project_id == project_id)
        )
        if not result.rowcount:
            raise NotFoundError("Project not found in favorites")

    async def is_favorite(self, session: AsyncSession, user_id: int, project_id: int) -> bool:
        return await session.get(Favorite, (user_id, project_id)) is not None


favorites_service = FavoritesService()
