"""
STUDEX Marketplace - Database Schema
====================================

Relational schema for the academic-materials marketplace:
- Accounts (buyers, sellers, admins) with local or Google sign-in
- Listings with tags, images and downloadable files
- Sales with the platform commission split
- Notifications, favorites, cart, comments and search history
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Boolean, Text, Float,
    ForeignKey, UniqueConstraint, Index, CheckConstraint, JSON, text
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column

from utils.datetime_helpers import get_naive_utc_now


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class UserRole(Enum):
    """Account role"""
    USER = "USER"
    SELLER = "SELLER"
    ADMIN = "ADMIN"


class AuthProvider(Enum):
    """How the account signs in"""
    LOCAL = "LOCAL"
    GOOGLE = "GOOGLE"


class ProjectStatus(Enum):
    """Listing lifecycle: draft -> review -> published -> featured"""
    DRAFT = "draft"
    REVIEW = "review"
    PUBLISHED = "published"
    FEATURED = "featured"


# Statuses a buyer can see and purchase
PURCHASABLE_STATUSES = (ProjectStatus.PUBLISHED.value, ProjectStatus.FEATURED.value)


class PaymentMethod(Enum):
    """Local payment rails accepted at checkout"""
    YAPE = "YAPE"
    PLIN = "PLIN"
    BANCARIO = "BANCARIO"


class PaymentStatus(Enum):
    """Sale payment state"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class DeliveryStatus(Enum):
    """Sale delivery state"""
    PENDING = "pending"
    DELIVERED = "delivered"


class NotificationType(Enum):
    """Notification kinds; values are the public wire identifiers"""
    NEW_SALE = "NUEVA_VENTA"
    PURCHASE_SUCCESS = "COMPRA_EXITOSA"
    PURCHASE_ERROR = "COMPRA_ERROR"
    PROJECT_PUBLISHED = "PROYECTO_SUBIDO"
    PROJECT_ERROR = "PROYECTO_ERROR"


# ============================================================================
# CORE ENTITIES
# ============================================================================

class User(Base):
    """Marketplace account - buyer, seller or admin"""
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # NULL for OAuth-only accounts
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    university: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    study_area: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    profile_image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    role: Mapped[str] = mapped_column(String(20), default=UserRole.USER.value, nullable=False)
    auth_provider: Mapped[str] = mapped_column(String(20), default=AuthProvider.LOCAL.value, nullable=False)
    google_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, unique=True)

    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_verified_seller: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Seller metrics
    seller_rating: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_sales: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=get_naive_utc_now, onupdate=get_naive_utc_now, nullable=False
    )
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    __table_args__ = (
        CheckConstraint(
            f"role IN ('{UserRole.USER.value}', '{UserRole.SELLER.value}', '{UserRole.ADMIN.value}')",
            name='ck_user_role_valid'
        ),
        CheckConstraint('total_sales >= 0', name='ck_user_total_sales_positive'),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def is_seller(self) -> bool:
        return self.role == UserRole.SELLER.value


class Category(Base):
    """Listing taxonomy node"""
    __tablename__ = 'categories'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    icon: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    color_hex: Mapped[Optional[str]] = mapped_column(String(7), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)


class Project(Base):
    """A listing: academic project or material for sale"""
    __tablename__ = 'projects'

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    project_type = Column(String(50), nullable=False)
    university = Column(String(200), nullable=False)
    subject = Column(String(200), nullable=False)  # career / course
    year = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default=ProjectStatus.DRAFT.value)

    views = Column(Integer, nullable=False, default=0)
    downloads = Column(Integer, nullable=False, default=0)
    is_featured = Column(Boolean, nullable=False, default=False)

    seller_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey('categories.id'), nullable=False, index=True)

    created_at = Column(DateTime(timezone=False), nullable=False, default=get_naive_utc_now)
    updated_at = Column(DateTime(timezone=False), nullable=False, default=get_naive_utc_now, onupdate=get_naive_utc_now)

    seller = relationship("User", lazy="selectin")
    category = relationship("Category", lazy="selectin")
    tags = relationship("ProjectTag", lazy="selectin", cascade="all, delete-orphan", order_by="ProjectTag.tag")
    images = relationship("ProjectImage", lazy="selectin", cascade="all, delete-orphan", order_by="ProjectImage.position")
    files = relationship("ProjectFile", lazy="selectin", cascade="all, delete-orphan", order_by="ProjectFile.position")

    __table_args__ = (
        CheckConstraint(
            f"status IN ('{ProjectStatus.DRAFT.value}', '{ProjectStatus.REVIEW.value}', "
            f"'{ProjectStatus.PUBLISHED.value}', '{ProjectStatus.FEATURED.value}')",
            name='ck_project_status_valid'
        ),
        CheckConstraint('price >= 0', name='ck_project_price_positive'),
        CheckConstraint('views >= 0', name='ck_project_views_positive'),
        CheckConstraint('downloads >= 0', name='ck_project_downloads_positive'),
        Index('ix_projects_status_created', 'status', 'created_at'),
    )

    @property
    def tag_names(self) -> list:
        return [t.tag for t in self.tags]

    @property
    def main_image(self) -> Optional["ProjectImage"]:
        for image in self.images:
            if image.is_main:
                return image
        return self.images[0] if self.images else None


class ProjectTag(Base):
    """Free-form tag attached to a listing"""
    __tablename__ = 'project_tags'

    project_id: Mapped[int] = mapped_column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), primary_key=True)
    tag: Mapped[str] = mapped_column(String(50), primary_key=True)


class ProjectImage(Base):
    """Preview image hosted on the media store"""
    __tablename__ = 'project_images'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_url: Mapped[str] = mapped_column(String(500), nullable=False)
    public_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    size_bytes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_main: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    __table_args__ = (
        # One main image per listing
        Index(
            'uq_project_images_main', 'project_id', unique=True,
            postgresql_where=text('is_main = true'),
            sqlite_where=text('is_main = 1'),
        ),
    )


class ProjectFile(Base):
    """Downloadable deliverable hosted on the media store"""
    __tablename__ = 'project_files'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_url: Mapped[str] = mapped_column(String(500), nullable=False)
    public_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    file_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    size_bytes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)


# ============================================================================
# SALES
# ============================================================================

class Sale(Base):
    """One purchase of one listing"""
    __tablename__ = 'sales'

    id = Column(Integer, primary_key=True, autoincrement=True)
    sale_code = Column(String(64), nullable=False, unique=True, index=True)

    project_id = Column(Integer, ForeignKey('projects.id'), nullable=True, index=True)
    seller_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)
    buyer_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    # Monetary split - commission + seller_earnings == sale_price
    sale_price = Column(Numeric(10, 2), nullable=False)
    platform_commission = Column(Numeric(10, 2), nullable=False)
    seller_earnings = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="PEN")

    payment_method = Column(String(20), nullable=False)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    delivery_status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING.value)
    payment_receipt = Column(String(100), nullable=True)
    admin_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=False), nullable=False, default=get_naive_utc_now)
    paid_at = Column(DateTime(timezone=False), nullable=True)
    delivered_at = Column(DateTime(timezone=False), nullable=True)

    project = relationship("Project", lazy="selectin")
    seller = relationship("User", foreign_keys=[seller_id], lazy="selectin")
    buyer = relationship("User", foreign_keys=[buyer_id], lazy="selectin")

    __table_args__ = (
        CheckConstraint(
            f"payment_method IN ('{PaymentMethod.YAPE.value}', '{PaymentMethod.PLIN.value}', '{PaymentMethod.BANCARIO.value}')",
            name='ck_sale_payment_method_valid'
        ),
        CheckConstraint(
            f"payment_status IN ('{PaymentStatus.PENDING.value}', '{PaymentStatus.COMPLETED.value}', '{PaymentStatus.FAILED.value}')",
            name='ck_sale_payment_status_valid'
        ),
        CheckConstraint(
            f"delivery_status IN ('{DeliveryStatus.PENDING.value}', '{DeliveryStatus.DELIVERED.value}')",
            name='ck_sale_delivery_status_valid'
        ),
        CheckConstraint('sale_price > 0', name='ck_sale_price_positive'),
        CheckConstraint('platform_commission >= 0', name='ck_sale_commission_positive'),
        CheckConstraint('seller_earnings >= 0', name='ck_sale_earnings_positive'),
        CheckConstraint('abs(platform_commission + seller_earnings - sale_price) < 0.005', name='ck_sale_split_equals_price'),  # Monetary invariant
        CheckConstraint('buyer_id <> seller_id', name='ck_sale_not_self_purchase'),
        Index('ix_sales_buyer_status', 'buyer_id', 'payment_status'),
        Index('ix_sales_status_created', 'payment_status', 'created_at'),
        # At most one completed sale per (buyer, listing)
        Index(
            'uq_sales_buyer_project_completed', 'buyer_id', 'project_id', unique=True,
            postgresql_where=text(f"payment_status = '{PaymentStatus.COMPLETED.value}'"),
            sqlite_where=text(f"payment_status = '{PaymentStatus.COMPLETED.value}'"),
        ),
    )


# ============================================================================
# NOTIFICATIONS & SOCIAL
# ============================================================================

class Notification(Base):
    """User-facing event record, polled by the client"""
    __tablename__ = 'notifications'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    extra_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    __table_args__ = (
        Index('ix_notifications_user_read', 'user_id', 'is_read'),
        Index('ix_notifications_user_created', 'user_id', 'created_at'),
    )


class Favorite(Base):
    """User bookmarked a listing"""
    __tablename__ = 'favorites'

    user_id: Mapped[int] = mapped_column(Integer, ForeignKey('users.id'), primary_key=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    project = relationship("Project", lazy="selectin")


class CartItem(Base):
    """Listing waiting in a user's cart"""
    __tablename__ = 'cart_items'

    user_id: Mapped[int] = mapped_column(Integer, ForeignKey('users.id'), primary_key=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    project = relationship("Project", lazy="selectin")


class Comment(Base):
    """User feedback on a listing"""
    __tablename__ = 'comments'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    author = relationship("User", lazy="selectin")


class SearchHistoryEntry(Base):
    """A user's past search term; soft-deleted through is_active"""
    __tablename__ = 'search_history'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    term: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    searched_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=get_naive_utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'term', name='uq_search_history_user_term'),
        Index('ix_search_history_user_active', 'user_id', 'is_active', 'searched_at'),
    )
