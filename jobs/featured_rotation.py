"""
Featured Rotation Job - promotes the newest published listings

Clears the featured flag on every listing, then flags the N most recent
published ones.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select, update

from config import Config
from database import Database
from models import Project, ProjectStatus

logger = logging.getLogger(__name__)


class FeaturedRotation:
    """Featured-flag rotation engine"""

    def __init__(self, db: Database, size: Optional[int] = None):
        self.db = db
        self.size = size or Config.FEATURED_ROTATION_SIZE
        self.execution_count = 0

    async def run_rotation(self) -> Dict[str, Any]:
        start_time = datetime.now()
        results = {
            "featured_ids": [],
            "execution_time_ms": 0,
            "status": "success",
        }

        try:
            async with self.db.session() as session:
                await session.execute(update(Project).values(is_featured=False))

                rows = await session.execute(
                    select(Project.id, Project.title)
                    .where(Project.status == ProjectStatus.PUBLISHED.value)
                    .order_by(Project.created_at.desc(), Project.id.desc())
                    .limit(self.size)
                )
                recent = rows.all()
                featured_ids = [row.id for row in recent]

                if featured_ids:
                    await session.execute(
                        update(Project).where(Project.id.in_(featured_ids)).values(is_featured=True)
                    )

            self.execution_count += 1
            results["featured_ids"] = featured_ids
            if featured_ids:
                logger.info(f"⭐ {len(featured_ids)} listings marked as featured: {featured_ids}")
            else:
                logger.info("⭐ No published listings to feature")

        except Exception as e:
            results["status"] = "error"
            results["error"] = str(e)
            logger.error(f"❌ Featured rotation failed: {e}")

        results["execution_time_ms"] = (datetime.now() - start_time).total_seconds() * 1000
        return results
