"""
Catalog Service - listing search, featured/recent shelves and detail views

Explore filters compose with AND over one predicate; the page, the total and
the aggregate stats are all computed from that same predicate.
"""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from sqlalchemy import exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    Category, Project, ProjectFile, ProjectStatus, ProjectTag, User, PURCHASABLE_STATUSES,
)
from utils.datetime_helpers import to_iso
from utils.exception_handler import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


PROJECT_TYPES = [
    # Documentation and guides
    {"value": "MANUAL_GUIA", "label": "Manual o Guía", "category": "Documentación y guías"},
    {"value": "TUTORIAL_CURSO", "label": "Tutorial o Curso", "category": "Documentación y guías"},
    {"value": "DOCUMENTACION", "label": "Documentación", "category": "Documentación y guías"},
    {"value": "PLANTILLA_TEMPLATE", "label": "Plantilla o Template", "category": "Documentación y guías"},
    # Development and technology
    {"value": "SISTEMA_APLICACION", "label": "Sistema o Aplicación", "category": "Desarrollo y tecnología"},
    {"value": "CODIGO_FUENTE", "label": "Código Fuente", "category": "Desarrollo y tecnología"},
    {"value": "BASE_DATOS", "label": "Base de Datos", "category": "Desarrollo y tecnología"},
    {"value": "API_SERVICIO", "label": "API o Servicio", "category": "Desarrollo y tecnología"},
    # Analysis and business
    {"value": "PLAN_NEGOCIO", "label": "Plan de Negocio", "category": "Análisis y negocio"},
    {"value": "ANALISIS_CASO", "label": "Análisis de Caso", "category": "Análisis y negocio"},
    {"value": "INVESTIGACION_ESTUDIO", "label": "Investigación o Estudio", "category": "Análisis y negocio"},
    {"value": "ANALISIS_MERCADO", "label": "Análisis de Mercado", "category": "Análisis y negocio"},
    # Design and multimedia
    {"value": "DISEÑO_GRAFICO", "label": "Diseño Gráfico", "category": "Diseño y multimedia"},
    {"value": "PRESENTACION", "label": "Presentación", "category": "Diseño y multimedia"},
    {"value": "VIDEO_AUDIO", "label": "Video o Audio", "category": "Diseño y multimedia"},
    {"value": "MATERIAL_VISUAL", "label": "Material Visual", "category": "Diseño y multimedia"},
    # Other formats
    {"value": "HOJA_CALCULO", "label": "Hoja de Cálculo", "category": "Otros formatos"},
    {"value": "FORMULARIO_FORMATO", "label": "Formulario o Formato", "category": "Otros formatos"},
    {"value": "OTRO", "label": "Otro", "category": "Otros formatos"},
]

PROJECT_TYPE_VALUES = frozenset(t["value"] for t in PROJECT_TYPES)

SORT_KEYS = ("newest", "oldest", "price_asc", "price_desc", "rating", "popular")


@dataclass
class ExploreFilters:
    search: Optional[str] = None
    project_type: Optional[str] = None
    category: Optional[str] = None
    university: Optional[str] = None
    career: Optional[str] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    order_by: str = "newest"
    page: int = 1
    limit: int = 12


# ============================================================================
# Serializers
# ============================================================================

def _price(value) -> float:
    return float(value) if value is not None else 0.0


def avatar_url(name: str) -> str:
    return f"https://ui-avatars.com/api/?name={quote(name or 'U')}&background=10B981&color=ffffff&size=40"


def serialize_seller(seller: Optional[User]) -> Optional[Dict[str, Any]]:
    if seller is None:
        return None
    return {
        "id": seller.id,
        "name": seller.full_name,
        "university": seller.university,
        "avatar": seller.profile_image_url or avatar_url(seller.first_name),
        "rating": float(seller.seller_rating or 0),
        "salesCount": seller.total_sales or 0,
        "verified": seller.is_verified_seller,
    }


def serialize_category(category: Optional[Category]) -> Optional[Dict[str, Any]]:
    if category is None:
        return None
    return {
        "id": category.id,
        "name": category.name,
        "description": category.description,
        "icon": category.icon,
        "colorHex": category.color_hex,
    }


def serialize_project_card(project: Project) -> Dict[str, Any]:
    """Compact listing shape used by explore, featured, recent, cart and favorites"""
    main_image = project.main_image
    return {
        "id": project.id,
        "title": project.title,
        "description": project.description,
        "price": _price(project.price),
        "type": project.project_type,
        "university": project.university,
        "subject": project.subject,
        "category": project.category.name if project.category else "Sin categoría",
        "year": project.year,
        "status": project.status,
        "rating": float(project.seller.seller_rating or 0) if project.seller else 0.0,
        "views": project.views,
        "downloads": project.downloads,
        "tags": project.tag_names,
        "mainImage": {
            "fileName": main_image.file_name,
            "fileUrl": main_image.file_url,
        } if main_image else None,
        "seller": serialize_seller(project.seller),
        "featured": project.is_featured,
        "createdAt": to_iso(project.created_at),
    }


def serialize_project_detail(project: Project) -> Dict[str, Any]:
    data = serialize_project_card(project)
    data.update({
        "category": serialize_category(project.category),
        "images": [
            {
                "id": image.id,
                "fileName": image.file_name,
                "fileUrl": image.file_url,
                "isMain": image.is_main,
                "position": image.position,
            }
            for image in project.images
        ],
        "files": [
            {
                "id": f.id,
                "fileName": f.file_name,
                "fileType": f.file_type,
                "fileSize": f.size_bytes,
                "position": f.position,
            }
            for f in project.files
        ],
        "updatedAt": to_iso(project.updated_at),
    })
    return data


# ============================================================================
# Service
# ============================================================================

class CatalogService:
    """Read side of the listing catalogue"""

    @staticmethod
    def build_explore_predicate(filters: ExploreFilters) -> list:
        """AND-composed conditions shared by the page query and the stats queries"""
        conditions = [Project.status.in_(PURCHASABLE_STATUSES)]

        search = (filters.search or "").strip()
        if search:
            pattern = f"%{search}%"
            tag_match = exists().where(
                ProjectTag.project_id == Project.id,
                func.lower(ProjectTag.tag) == search.lower(),
            )
            conditions.append(or_(Project.title.ilike(pattern), Project.description.ilike(pattern), tag_match))

        if filters.project_type:
            conditions.append(Project.project_type == filters.project_type)

        if filters.university:
            conditions.append(Project.university.ilike(f"%{filters.university.strip()}%"))

        if filters.career:
            conditions.append(Project.subject.ilike(f"%{filters.career.strip()}%"))

        if filters.min_price is not None:
            conditions.append(Project.price >= filters.min_price)
        if filters.max_price is not None:
            conditions.append(Project.price <= filters.max_price)

        if filters.category:
            conditions.append(
                exists().where(
                    Category.id == Project.category_id,
                    Category.name.ilike(f"%{filters.category.strip()}%"),
                )
            )
        return conditions

    @staticmethod
    def _order_clause(order_by: str) -> list:
        if order_by == "oldest":
            return [Project.created_at.asc(), Project.id.asc()]
        if order_by == "price_asc":
            return [Project.price.asc(), Project.id.asc()]
        if order_by == "price_desc":
            return [Project.price.desc(), Project.id.desc()]
        if order_by == "rating":
            rating = select(User.seller_rating).where(User.id == Project.seller_id).scalar_subquery()
            return [rating.desc(), Project.id.desc()]
        if order_by == "popular":
            return [Project.views.desc(), Project.id.desc()]
        return [Project.created_at.desc(), Project.id.desc()]

    async def explore(self, session: AsyncSession, filters: ExploreFilters) -> Dict[str, Any]:
        if filters.page < 1 or filters.limit < 1:
            raise ValidationError("page and limit must be positive")
        if filters.min_price is not None and filters.max_price is not None and filters.min_price > filters.max_price:
            raise ValidationError("minPrice cannot be greater than maxPrice")

        conditions = self.build_explore_predicate(filters)
        offset = (filters.page - 1) * filters.limit

        total = (await session.execute(
            select(func.count(Project.id)).where(*conditions)
        )).scalar() or 0

        rows = await session.execute(
            select(Project)
            .where(*conditions)
            .order_by(*self._order_clause(filters.order_by))
            .offset(offset)
            .limit(filters.limit)
        )
        projects = list(rows.scalars().all())

        universities = (await session.execute(
            select(func.count(func.distinct(Project.university))).where(*conditions)
        )).scalar() or 0
        categories = (await session.execute(
            select(func.count(func.distinct(Project.category_id))).where(*conditions)
        )).scalar() or 0

        total_pages = math.ceil(total / filters.limit) if total else 0
        return {
            "data": [serialize_project_card(p) for p in projects],
            "pagination": {
                "currentPage": filters.page,
                "totalPages": total_pages,
                "totalItems": total,
                "itemsPerPage": filters.limit,
                "hasNextPage": filters.page < total_pages,
                "hasPrevPage": filters.page > 1,
            },
            "stats": {
                "total": total,
                "universities": universities,
                "categories": categories,
            },
        }

    async def featured(self, session: AsyncSession, limit: int = 6) -> List[Project]:
        result = await session.execute(
            select(Project)
            .where(Project.status == ProjectStatus.FEATURED.value)
            .order_by(Project.created_at.desc(), Project.views.desc(), Project.is_featured.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def recent(self, session: AsyncSession, limit: int = 8) -> List[Project]:
        result = await session.execute(
            select(Project)
            .where(Project.status.in_(PURCHASABLE_STATUSES))
            .order_by(Project.created_at.desc(), Project.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_detail(self, session: AsyncSession, project_id: int) -> Project:
        """Load a listing and count the view"""
        project = await session.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project not found")

        await session.execute(
            update(Project).where(Project.id == project_id).values(views=Project.views + 1)
        )
        await session.refresh(project, attribute_names=["views"])
        return project

    async def register_download(self, session: AsyncSession, project_id: int, file_id: int) -> ProjectFile:
        result = await session.execute(
            select(ProjectFile).where(ProjectFile.id == file_id, ProjectFile.project_id == project_id)
        )
        project_file = result.scalar_one_or_none()
        if project_file is None:
            raise NotFoundError("File not found")

        await session.execute(
            update(Project).where(Project.id == project_id).values(downloads=Project.downloads + 1)
        )
        return project_file

    async def active_categories(self, session: AsyncSession) -> List[Category]:
        result = await session.execute(
            select(Category)
            .where(Category.is_active.is_(True))
            .order_by(Category.display_order.asc(), Category.name.asc())
        )
        return list(result.scalars().all())

    async def category_with_count(self, session: AsyncSession, category_id: int) -> Dict[str, Any]:
        category = await session.get(Category, category_id)
        if category is None or not category.is_active:
            raise NotFoundError("Category not found")
        count = (await session.execute(
            select(func.count(Project.id)).where(
                Project.category_id == category_id,
                Project.status.in_(PURCHASABLE_STATUSES),
            )
        )).scalar() or 0
        data = serialize_category(category)
        data["projectCount"] = count
        return data


catalog_service = CatalogService()
