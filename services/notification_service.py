"""
Notification Service for marketplace events
Creates typed notification rows and serves the polled read/unread accessors
"""

import logging
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import ClassVar, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import Notification, NotificationType
from utils.datetime_helpers import get_naive_utc_now, to_iso
from utils.exception_handler import NotFoundError

logger = logging.getLogger(__name__)


# ============================================================================
# Typed payloads stored in Notification.extra_data, tagged by "kind"
# ============================================================================

@dataclass
class NotificationPayload:
    kind: ClassVar[NotificationType]

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


@dataclass
class SaleLine:
    """One listing inside a seller's sale notification"""
    sale_code: str
    project_id: int
    project_title: str
    amount: float


@dataclass
class NewSalePayload(NotificationPayload):
    kind: ClassVar[NotificationType] = NotificationType.NEW_SALE
    buyer_id: int
    buyer_name: str
    items: List[SaleLine] = field(default_factory=list)
    total_amount: float = 0.0


@dataclass
class PurchaseSuccessPayload(NotificationPayload):
    kind: ClassVar[NotificationType] = NotificationType.PURCHASE_SUCCESS
    sale_code: str
    project_id: Optional[int]
    project_title: str
    amount: float
    payment_receipt: Optional[str] = None


@dataclass
class PurchaseErrorPayload(NotificationPayload):
    kind: ClassVar[NotificationType] = NotificationType.PURCHASE_ERROR
    sale_code: str
    project_id: Optional[int]
    reason: str


@dataclass
class ProjectPublishedPayload(NotificationPayload):
    kind: ClassVar[NotificationType] = NotificationType.PROJECT_PUBLISHED
    project_id: int
    project_title: str
    files_uploaded: int = 0
    images_uploaded: int = 0


@dataclass
class ProjectErrorPayload(NotificationPayload):
    kind: ClassVar[NotificationType] = NotificationType.PROJECT_ERROR
    project_title: str
    reason: str


def format_amount(amount) -> str:
    """Render a PEN amount as 'S/ 1,234.50'"""
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    return f"S/ {amount:,.2f}"


def serialize_notification(notification: Notification) -> Dict:
    return {
        "id": notification.id,
        "userId": notification.user_id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.extra_data,
        "isRead": notification.is_read,
        "readAt": to_iso(notification.read_at),
        "createdAt": to_iso(notification.created_at),
    }


class NotificationService:
    """
    Stateless service over the notifications table.

    create() is a plain insert whose failures propagate. Business flows call the
    notify_* helpers, which run after the flow has committed and swallow their
    own failures so a notification problem never fails the operation.
    """

    async def create(
        self,
        session: AsyncSession,
        user_id: int,
        notification_type: NotificationType,
        title: str,
        message: str,
        payload: Optional[NotificationPayload] = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=notification_type.value,
            title=title,
            message=message,
            extra_data=payload.to_dict() if payload is not None else None,
            is_read=False,
        )
        session.add(notification)
        await session.flush()
        logger.info(f"🔔 Notification {notification_type.value} created for user {user_id}")
        return notification

    async def send_best_effort(
        self,
        session: AsyncSession,
        user_id: int,
        notification_type: NotificationType,
        title: str,
        message: str,
        payload: Optional[NotificationPayload] = None,
    ) -> Optional[Notification]:
        """Create and commit one notification; on failure roll back, log and return None"""
        try:
            notification = await self.create(session, user_id, notification_type, title, message, payload)
            await session.commit()
            return notification
        except Exception as e:
            await session.rollback()
            logger.error(f"❌ Failed to send {notification_type.value} notification to user {user_id}: {e}")
            return None

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    async def list_recent(self, session: AsyncSession, user_id: int, limit: int = 10) -> List[Notification]:
        result = await session.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def unread_count(self, session: AsyncSession, user_id: int) -> int:
        result = await session.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar() or 0

    async def mark_read(self, session: AsyncSession, user_id: int, notification_id: int) -> Notification:
        """Mark one notification read; another user's notification is reported as not found"""
        result = await session.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundError("Notification not found")

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = get_naive_utc_now()
            await session.flush()
        return notification

    async def mark_all_read(self, session: AsyncSession, user_id: int) -> int:
        result = await session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=get_naive_utc_now())
        )
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # Domain notifications (best-effort)
    # ------------------------------------------------------------------

    async def notify_sellers_of_sales(
        self,
        session: AsyncSession,
        buyer_id: int,
        buyer_name: str,
        lines_by_seller: Dict[int, List[SaleLine]],
    ) -> int:
        """
        One notification per seller: a single-item message when the seller had
        exactly one listing in the batch, otherwise an aggregate naming every
        listing with the total. Returns how many were delivered.
        """
        delivered = 0
        for seller_id, lines in lines_by_seller.items():
            total = sum((Decimal(str(line.amount)) for line in lines), Decimal("0"))
            payload = NewSalePayload(
                buyer_id=buyer_id,
                buyer_name=buyer_name,
                items=list(lines),
                total_amount=float(total),
            )
            if len(lines) == 1:
                line = lines[0]
                title = "New sale!"
                message = f'{buyer_name} bought your project "{line.project_title}" for {format_amount(line.amount)}.'
            else:
                titles = ", ".join(f'"{line.project_title}"' for line in lines)
                title = f"{len(lines)} new sales!"
                message = f"{buyer_name} bought {len(lines)} of your projects: {titles}. Total: {format_amount(total)}."

            if await self.send_best_effort(session, seller_id, NotificationType.NEW_SALE, title, message, payload):
                delivered += 1
        return delivered

    async def notify_purchase_success(self, session: AsyncSession, buyer_id: int, payload: PurchaseSuccessPayload):
        return await self.send_best_effort(
            session, buyer_id, NotificationType.PURCHASE_SUCCESS,
            "Purchase completed",
            f'Your payment for "{payload.project_title}" was confirmed. You can now download it.',
            payload,
        )

    async def notify_purchase_error(self, session: AsyncSession, buyer_id: int, payload: PurchaseErrorPayload,
                                    project_title: str = "your project"):
        return await self.send_best_effort(
            session, buyer_id, NotificationType.PURCHASE_ERROR,
            "Purchase failed",
            f'We could not complete the payment for "{project_title}". Please try again or contact support.',
            payload,
        )

    async def notify_project_published(self, session: AsyncSession, seller_id: int, payload: ProjectPublishedPayload):
        return await self.send_best_effort(
            session, seller_id, NotificationType.PROJECT_PUBLISHED,
            "Project uploaded",
            f'Your project "{payload.project_title}" was uploaded successfully.',
            payload,
        )

    async def notify_project_error(self, session: AsyncSession, seller_id: int, payload: ProjectErrorPayload):
        return await self.send_best_effort(
            session, seller_id, NotificationType.PROJECT_ERROR,
            "Project upload failed",
            f'We could not publish "{payload.project_title}": {payload.reason}',
            payload,
        )


def group_lines_by_seller(pairs) -> "OrderedDict[int, List[SaleLine]]":
    """Group (seller_id, SaleLine) pairs preserving first-seen seller order"""
    grouped: "OrderedDict[int, List[SaleLine]]" = OrderedDict()
    for seller_id, line in pairs:
        grouped.setdefault(seller_id, []).append(line)
    return grouped


# Global instance
notification_service = NotificationService()
