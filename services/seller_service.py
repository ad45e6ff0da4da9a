"""
Seller Service - seller accounts and listing authoring

Listing creation is intentionally non-atomic: the listing row is committed
first, then every asset is uploaded and recorded on its own. A failed asset is
reported in uploadErrors and leaves the listing in place.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import orjson
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import Config
from models import (
    Category, Project, ProjectFile, ProjectImage, ProjectStatus, ProjectTag, User, UserRole,
    PURCHASABLE_STATUSES,
)
from services.catalog_service import PROJECT_TYPE_VALUES, serialize_project_card, serialize_project_detail
from services.media_store import CloudinaryMediaStore, validate_upload
from services.notification_service import (
    NotificationService, ProjectErrorPayload, ProjectPublishedPayload, notification_service,
)
from utils.datetime_helpers import to_iso
from utils.exception_handler import (
    ForbiddenError, InternalError, NotFoundError, StudexError, ValidationError,
)
from utils.fee_calculator import FeeCalculator

logger = logging.getLogger(__name__)


@dataclass
class ListingDraft:
    """Author-supplied listing fields, already pulled out of the request"""
    title: Optional[str]
    description: Optional[str]
    price: Any
    project_type: Optional[str]
    category_id: Any
    university: Optional[str] = None
    subject: Optional[str] = None
    year: Any = None
    tags: Any = None


@dataclass
class IncomingAsset:
    filename: str
    content_type: Optional[str]
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class UploadReport:
    uploaded_files: List[Dict[str, Any]] = field(default_factory=list)
    uploaded_images: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def parse_tags(raw) -> List[str]:
    """Tags arrive as a JSON array string, a list, or a comma list; bad input yields no tags"""
    if not raw:
        return []
    values = raw
    if isinstance(raw, str):
        try:
            values = orjson.loads(raw)
        except ValueError:
            values = raw.split(",")
    if not isinstance(values, (list, tuple)):
        return []

    tags = []
    for value in values:
        tag = str(value).strip()[:50]
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def _require_text(value: Optional[str], name: str) -> str:
    text = (value or "").strip() if isinstance(value, str) else ""
    if not text:
        raise ValidationError(f"Missing required field: {name}")
    return text


class SellerService:

    def __init__(self, notifications: Optional[NotificationService] = None):
        self.notifications = notifications or notification_service

    # ------------------------------------------------------------------
    # Seller accounts
    # ------------------------------------------------------------------

    async def become_seller(self, session: AsyncSession, user: User) -> User:
        if user.role == UserRole.SELLER.value:
            raise ValidationError("User is already a seller")
        if user.role == UserRole.ADMIN.value:
            raise ValidationError("Admin accounts cannot become sellers")

        user.role = UserRole.SELLER.value
        await session.flush()
        logger.info(f"🏪 User {user.id} became a seller")
        return user

    async def seller_status(self, session: AsyncSession, user_id: int) -> Dict[str, Any]:
        user = await session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")

        total = (await session.execute(
            select(func.count(Project.id)).where(Project.seller_id == user_id)
        )).scalar() or 0
        active = (await session.execute(
            select(func.count(Project.id)).where(
                Project.seller_id == user_id,
                Project.status.in_(PURCHASABLE_STATUSES),
            )
        )).scalar() or 0

        return {
            "userId": user.id,
            "isSeller": user.is_seller,
            "userType": user.role,
            "isVerifiedSeller": user.is_verified_seller,
            "totalProjects": total,
            "activeProjects": active,
        }

    async def my_projects(self, session: AsyncSession, user_id: int) -> Dict[str, Any]:
        user = await session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        if not user.is_seller:
            raise ForbiddenError("User is not a seller")

        projects = await self._projects_of(session, user_id)
        cards = []
        for project in projects:
            card = serialize_project_card(project)
            card["updatedAt"] = to_iso(project.updated_at)
            card["stats"] = {"totalImages": len(project.images), "totalFiles": len(project.files)}
            cards.append(card)

        return {
            "projects": cards,
            "stats": {
                "total": len(projects),
                "published": sum(1 for p in projects if p.status in PURCHASABLE_STATUSES),
                "totalViews": sum(p.views or 0 for p in projects),
                "totalDownloads": sum(p.downloads or 0 for p in projects),
            },
        }

    async def projects_by_seller(self, session: AsyncSession, seller_id: int) -> List[Project]:
        if await session.get(User, seller_id) is None:
            raise NotFoundError("Seller not found")
        return await self._projects_of(session, seller_id)

    @staticmethod
    async def _projects_of(session: AsyncSession, seller_id: int) -> List[Project]:
        result = await session.execute(
            select(Project)
            .where(Project.seller_id == seller_id)
            .order_by(Project.updated_at.desc(), Project.id.desc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Listing authoring
    # ------------------------------------------------------------------

    async def _validate_draft(self, session: AsyncSession, draft: ListingDraft,
                              require_academic_fields: bool) -> Dict[str, Any]:
        values = {
            "title": _require_text(draft.title, "title"),
            "description": _require_text(draft.description, "description"),
            "project_type": _require_text(draft.project_type, "type"),
        }
        if values["project_type"] not in PROJECT_TYPE_VALUES:
            raise ValidationError(f"Unknown project type: {values['project_type']}")

        try:
            price = FeeCalculator.to_money(draft.price)
        except ValueError:
            raise ValidationError("price must be a number")
        if price <= 0:
            raise ValidationError("price must be greater than 0")
        values["price"] = price

        try:
            category_id = int(draft.category_id)
        except (TypeError, ValueError):
            raise ValidationError("categoryId must be a valid number")
        if await session.get(Category, category_id) is None:
            raise ValidationError(f"Category {category_id} does not exist")
        values["category_id"] = category_id

        if require_academic_fields:
            values["university"] = _require_text(draft.university, "university")
            values["subject"] = _require_text(draft.subject, "subject")
        else:
            values["university"] = (draft.university or "").strip() or "Sin universidad"
            values["subject"] = (draft.subject or "").strip() or "General"

        if draft.year not in (None, ""):
            try:
                values["year"] = int(draft.year)
            except (TypeError, ValueError):
                raise ValidationError("year must be a number")
        elif require_academic_fields:
            raise ValidationError("Missing required field: year")
        else:
            values["year"] = None

        values["tags"] = parse_tags(draft.tags)
        return values

    @staticmethod
    def _validate_assets(files: Sequence[IncomingAsset], images: Sequence[IncomingAsset]):
        if len(files) > Config.MAX_FILES_PER_UPLOAD:
            raise ValidationError(f"At most {Config.MAX_FILES_PER_UPLOAD} files per upload")
        if len(images) > Config.MAX_IMAGES_PER_UPLOAD:
            raise ValidationError(f"At most {Config.MAX_IMAGES_PER_UPLOAD} images per upload")
        for asset in files:
            validate_upload(asset.filename, asset.content_type, asset.size)
        for asset in images:
            validate_upload(asset.filename, asset.content_type, asset.size, images_only=True)

    async def _insert_listing(self, session: AsyncSession, seller_id: int, values: Dict[str, Any],
                              status: ProjectStatus) -> Project:
        project = Project(
            title=values["title"],
            description=values["description"],
            price=values["price"],
            project_type=values["project_type"],
            university=values["university"],
            subject=values["subject"],
            year=values["year"],
            category_id=values["category_id"],
            seller_id=seller_id,
            status=status.value,
            views=0,
            downloads=0,
            is_featured=False,
        )
        project.tags = [ProjectTag(tag=tag) for tag in values["tags"]]
        session.add(project)
        await session.flush()
        return project

    async def create_listing(self, session: AsyncSession, user: User, draft: ListingDraft,
                             status: ProjectStatus = ProjectStatus.PUBLISHED) -> Project:
        """Create a listing without assets and commit it; published listings notify the author"""
        seller_id = user.id
        values = await self._validate_draft(session, draft, require_academic_fields=False)
        if status == ProjectStatus.DRAFT and not (user.is_seller or user.is_admin):
            raise ForbiddenError("Only sellers can create projects")

        try:
            project = await self._insert_listing(session, seller_id, values, status)
            await session.commit()
        except StudexError:
            raise
        except Exception as e:
            await session.rollback()
            logger.error(f"❌ Failed to create project '{values['title']}' for user {seller_id}: {e}")
            await self.notifications.notify_project_error(
                session, seller_id, ProjectErrorPayload(project_title=values["title"], reason="Error creating project"),
            )
            raise InternalError("Error creating project")

        project_id, title = project.id, project.title
        logger.info(f"📦 Project {project_id} created by user {seller_id} with status {status.value}")

        if status == ProjectStatus.PUBLISHED:
            await self.notifications.notify_project_published(
                session, seller_id, ProjectPublishedPayload(project_id=project_id, project_title=title),
            )
        return await self._reload(session, project_id)

    async def create_listing_with_assets(self, session: AsyncSession, user: User, draft: ListingDraft,
                                         files: Sequence[IncomingAsset], images: Sequence[IncomingAsset],
                                         media: CloudinaryMediaStore) -> Dict[str, Any]:
        """
        Publish a listing and then upload its assets one by one.

        Steps run in order: validate, commit the listing, notify the author,
        upload each asset and commit its row. An asset failure is collected and
        the remaining assets are still attempted.
        """
        seller_id = user.id
        values = await self._validate_draft(session, draft, require_academic_fields=True)
        if not files and not images:
            raise ValidationError("At least one file or image is required")
        self._validate_assets(files, images)

        try:
            project = await self._insert_listing(session, seller_id, values, ProjectStatus.PUBLISHED)
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"❌ Failed to create project '{values['title']}' for user {seller_id}: {e}")
            await self.notifications.notify_project_error(
                session, seller_id,
                ProjectErrorPayload(project_title=values["title"], reason="Error uploading project with files"),
            )
            raise InternalError("Error creating project with files")

        project_id, title = project.id, project.title
        logger.info(f"📦 Project {project_id} published by user {seller_id}; uploading "
                    f"{len(files)} file(s) and {len(images)} image(s)")

        await self.notifications.notify_project_published(
            session, seller_id,
            ProjectPublishedPayload(
                project_id=project_id, project_title=title,
                files_uploaded=len(files), images_uploaded=len(images),
            ),
        )

        report = await self._upload_assets(session, project_id, files, images, media)
        if report.errors:
            logger.warning(f"⚠️ Project {project_id} has {len(report.errors)} failed upload(s)")

        project = await self._reload(session, project_id)
        data = {
            "project": serialize_project_detail(project),
            "uploadedFiles": report.uploaded_files,
            "uploadedImages": report.uploaded_images,
        }
        if report.errors:
            data["uploadErrors"] = report.errors
        return data

    async def upload_assets(self, session: AsyncSession, user: User, project_id: int,
                            files: Sequence[IncomingAsset], images: Sequence[IncomingAsset],
                            media: CloudinaryMediaStore) -> Dict[str, Any]:
        """Attach assets to an existing listing; a draft moves to review once something uploads"""
        acting_id, is_admin = user.id, user.is_admin
        project = await session.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project not found")
        if project.seller_id != acting_id and not is_admin:
            raise ForbiddenError("Only the project owner can upload files")
        if not files and not images:
            raise ValidationError("At least one file or image is required")
        self._validate_assets(files, images)

        previous_status = project.status
        report = await self._upload_assets(session, project_id, files, images, media)
        uploaded = report.uploaded_files + report.uploaded_images
        if not uploaded:
            raise ValidationError("No file could be uploaded", details={"errors": report.errors})

        new_status = previous_status
        if previous_status == ProjectStatus.DRAFT.value:
            project = await self._reload(session, project_id)
            project.status = ProjectStatus.REVIEW.value
            await session.commit()
            new_status = ProjectStatus.REVIEW.value
            logger.info(f"📦 Project {project_id} moved from draft to review")

        return {
            "uploadedFiles": report.uploaded_files,
            "uploadedImages": report.uploaded_images,
            "errors": report.errors,
            "projectStatus": new_status,
        }

    async def _upload_assets(self, session: AsyncSession, project_id: int,
                             files: Sequence[IncomingAsset], images: Sequence[IncomingAsset],
                             media: CloudinaryMediaStore) -> UploadReport:
        report = UploadReport()

        has_main = (await session.execute(
            select(func.count(ProjectImage.id)).where(
                ProjectImage.project_id == project_id, ProjectImage.is_main.is_(True),
            )
        )).scalar() or 0

        for position, image in enumerate(images, start=1):
            try:
                asset = await media.upload(image.data, f"projects/{project_id}/images", image.filename,
                                           resource_type="image", content_type=image.content_type)
                row = ProjectImage(
                    project_id=project_id,
                    file_name=image.filename,
                    file_url=asset.url,
                    public_id=asset.public_id,
                    size_bytes=image.size,
                    position=position,
                    is_main=not has_main,
                )
                session.add(row)
                await session.commit()
                has_main = has_main or row.is_main
                report.uploaded_images.append({
                    "id": row.id,
                    "fileName": row.file_name,
                    "fileUrl": row.file_url,
                    "fileSize": row.size_bytes,
                    "isMain": row.is_main,
                })
            except Exception as e:
                await session.rollback()
                logger.error(f"❌ Upload of image {image.filename} for project {project_id} failed: {e}")
                report.errors.append(f"Error uploading {image.filename}: {e}")

        for position, item in enumerate(files, start=1):
            try:
                asset = await media.upload(item.data, f"projects/{project_id}/files", item.filename,
                                           resource_type="raw", content_type=item.content_type)
                row = ProjectFile(
                    project_id=project_id,
                    file_name=item.filename,
                    file_url=asset.url,
                    public_id=asset.public_id,
                    file_type=item.content_type,
                    size_bytes=item.size,
                    position=position,
                )
                session.add(row)
                await session.commit()
                report.uploaded_files.append({
                    "id": row.id,
                    "fileName": row.file_name,
                    "fileUrl": row.file_url,
                    "fileSize": row.size_bytes,
                })
            except Exception as e:
                await session.rollback()
                logger.error(f"❌ Upload of file {item.filename} for project {project_id} failed: {e}")
                report.errors.append(f"Error uploading {item.filename}: {e}")

        return report

    @staticmethod
    async def _reload(session: AsyncSession, project_id: int) -> Project:
        result = await session.execute(
            select(Project)
            .where(Project.id == project_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()


seller_service = SellerService()
