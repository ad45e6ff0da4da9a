"""Comments on listings"""

import logging
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Comment, Project, User
from utils.datetime_helpers import to_iso
from utils.exception_handler import ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MIN_COMMENT_LENGTH = 3
MAX_COMMENT_LENGTH = 1000


def serialize_comment(comment: Comment) -> Dict[str, Any]:
    author = comment.author
    return {
        "id": comment.id,
        "projectId": comment.project_id,
        "content": comment.content,
        "createdAt": to_iso(comment.created_at),
        "user": {
            "id": author.id,
            "name": author.full_name,
            "profileImage": author.profile_image_url,
        } if author else None,
    }


class CommentService:

    async def list_for_project(self, session: AsyncSession, project_id: int) -> List[Comment]:
        result = await session.execute(
            select(Comment)
            .where(Comment.project_id == project_id)
            .order_by(Comment.created_at.desc(), Comment.id.desc())
        )
        return list(result.scalars().all())

    async def create(self, session: AsyncSession, user: User, project_id: int, content: str) -> Comment:
        text = (content or "").strip()
        if len(text) < MIN_COMMENT_LENGTH:
            raise ValidationError(f"Comment must be at least {MIN_COMMENT_LENGTH} characters")
        if len(text) > MAX_COMMENT_LENGTH:
            raise ValidationError(f"Comment cannot exceed {MAX_COMMENT_LENGTH} characters")

        if await session.get(Project, project_id) is None:
            raise NotFoundError("Project not found")

        comment = Comment(project_id=project_id, user_id=user.id, content=text)
        session.add(comment)
        await session.flush()
        await session.refresh(comment, attribute_names=["author"])
        logger.info(f"💬 User {user.id} commented on project {project_id}")
        return comment

    async def delete(self, session: AsyncSession, user: User, comment_id: int):
        comment = await session.get(Comment, comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")
        if comment.user_id != user.id and not user.is_admin:
            raise ForbiddenError("You can only delete your own comments")
        await session.delete(comment)
        await session.flush()


comment_service = CommentService()
