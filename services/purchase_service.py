"""
Purchase Service - single-listing and cart checkout

Validates eligibility, computes the commission split, persists pending sales
and fans out seller notifications. Payment completion happens later, either in
the simulated payment job or through admin validation.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import Config
from models import (
    CartItem, DeliveryStatus, PaymentMethod, PaymentStatus, Project, Sale, User,
    PURCHASABLE_STATUSES,
)
from services.notification_service import (
    NotificationService, SaleLine, group_lines_by_seller, notification_service,
)
from utils.atomic_transactions import async_atomic_transaction
from utils.datetime_helpers import get_naive_utc_now, to_iso
from utils.exception_handler import (
    AlreadyPurchasedError, NotFoundError, OwnListingPurchaseError, UnavailableError, ValidationError,
)
from utils.fee_calculator import FeeCalculator
from utils.helpers import generate_batch_id, generate_sale_code

logger = logging.getLogger(__name__)

ADMIN_APPROVED_NOTE = "Pago validado por administrador"
ADMIN_REJECTED_NOTE = "Pago rechazado por administrador"


class CompletionScheduler(Protocol):
    """Anything that can queue payment completion for freshly created sales"""

    def schedule_completion(self, sale_ids: Sequence[int]) -> None: ...


@dataclass
class PurchaseLine:
    project_id: int
    amount: Decimal


@dataclass
class _CreatedSale:
    """Plain snapshot of a sale, safe to use after the session rolls back"""
    sale_id: int
    sale_code: str
    project_id: int
    project_title: str
    seller_id: int
    seller_name: str
    amount: Decimal
    created_at: Any


def _money(value) -> float:
    return float(FeeCalculator.to_money(value))


class PurchaseService:
    """Checkout flows for one buyer at a time"""

    def __init__(self, notifications: Optional[NotificationService] = None,
                 completion_scheduler: Optional[CompletionScheduler] = None):
        self.notifications = notifications or notification_service
        self.completion_scheduler = completion_scheduler

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def parse_payment_method(raw: str) -> PaymentMethod:
        try:
            return PaymentMethod(str(raw).upper())
        except ValueError:
            allowed = ", ".join(m.value for m in PaymentMethod)
            raise ValidationError(f"Invalid payment method. Allowed: {allowed}")

    async def has_completed_purchase(self, session: AsyncSession, buyer_id: int, project_id: int) -> Optional[Sale]:
        result = await session.execute(
            select(Sale).where(
                Sale.buyer_id == buyer_id,
                Sale.project_id == project_id,
                Sale.payment_status == PaymentStatus.COMPLETED.value,
            ).limit(1)
        )
        return result.scalar_one_or_none()

    async def check_eligibility(self, session: AsyncSession, buyer_id: int, project_id: int) -> Project:
        """
        Per-listing checks in order, stopping at the first failure:
        exists -> purchasable status -> not own listing -> not already bought.
        """
        project = await session.get(Project, project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        if project.status not in PURCHASABLE_STATUSES:
            raise UnavailableError(f'Project "{project.title}" is not available for purchase')
        if project.seller_id == buyer_id:
            raise OwnListingPurchaseError(f'You cannot buy your own project "{project.title}"')
        if await self.has_completed_purchase(session, buyer_id, project_id):
            raise AlreadyPurchasedError(f'You already purchased "{project.title}"')
        return project

    @staticmethod
    def _validate_amount(project: Project, amount) -> Decimal:
        try:
            quoted = FeeCalculator.to_money(amount)
        except ValueError:
            raise ValidationError("Invalid amount")
        if quoted <= 0:
            raise ValidationError("Amount must be greater than zero")
        if not FeeCalculator.amount_matches_price(quoted, project.price):
            raise ValidationError(
                f'Amount {quoted} does not match the price of "{project.title}" ({FeeCalculator.to_money(project.price)})'
            )
        return quoted

    def _build_sale(self, project: Project, buyer_id: int, amount: Decimal, payment_method: PaymentMethod,
                    currency: str, batch: bool) -> Sale:
        split = FeeCalculator.calculate_commission_split(amount)
        return Sale(
            sale_code=generate_sale_code(project.id, batch=batch),
            project_id=project.id,
            seller_id=project.seller_id,
            buyer_id=buyer_id,
            sale_price=split["sale_price"],
            platform_commission=split["platform_commission"],
            seller_earnings=split["seller_earnings"],
            currency=currency,
            payment_method=payment_method.value,
            payment_status=PaymentStatus.PENDING.value,
            delivery_status=DeliveryStatus.PENDING.value,
            created_at=get_naive_utc_now(),
        )

    @staticmethod
    def _snapshot(sale: Sale, project: Project) -> _CreatedSale:
        return _CreatedSale(
            sale_id=sale.id,
            sale_code=sale.sale_code,
            project_id=project.id,
            project_title=project.title,
            seller_id=project.seller_id,
            seller_name=project.seller.full_name if project.seller else "",
            amount=FeeCalculator.to_money(sale.sale_price),
            created_at=sale.created_at,
        )

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def purchase_single(self, session: AsyncSession, buyer: User, project_id: int, amount,
                              payment_method: str, currency: Optional[str] = None) -> Dict[str, Any]:
        """Create one pending sale for one listing"""
        method = self.parse_payment_method(payment_method)
        currency = (currency or Config.DEFAULT_CURRENCY).upper()
        buyer_id, buyer_name = buyer.id, buyer.full_name

        project = await self.check_eligibility(session, buyer_id, project_id)
        quoted = self._validate_amount(project, amount)

        sale = self._build_sale(project, buyer_id, quoted, method, currency, batch=False)
        session.add(sale)
        await session.flush()
        created = self._snapshot(sale, project)
        await session.commit()

        logger.info(
            f"💰 Sale {created.sale_code} created: buyer={buyer_id} project={project_id} "
            f"amount={created.amount} method={method.value}"
        )

        response = {
            "id": created.sale_code,
            "saleId": created.sale_id,
            "userId": buyer_id,
            "projectId": created.project_id,
            "amount": _money(created.amount),
            "currency": currency,
            "status": "PENDING",
            "paymentMethod": method.value,
            "transactionId": created.sale_code,
            "createdAt": to_iso(created.created_at),
            "completedAt": None,
        }

        await self._after_commit(session, buyer_id, buyer_name, [created])
        return response

    async def purchase_cart(self, session: AsyncSession, buyer: User, lines: List[PurchaseLine],
                            payment_method: str, currency: Optional[str] = None) -> Dict[str, Any]:
        """
        Create one pending sale per listing inside a single transaction.

        Any failing listing rolls back every sale of the batch and the error
        names the listing that triggered it.
        """
        if not lines:
            raise ValidationError("Cart is empty")
        project_ids = [line.project_id for line in lines]
        if len(set(project_ids)) != len(project_ids):
            raise ValidationError("Duplicate projects in cart purchase")

        method = self.parse_payment_method(payment_method)
        currency = (currency or Config.DEFAULT_CURRENCY).upper()
        buyer_id, buyer_name = buyer.id, buyer.full_name

        created: List[_CreatedSale] = []
        async with async_atomic_transaction(session):
            for line in lines:
                project = await self.check_eligibility(session, buyer_id, line.project_id)
                quoted = self._validate_amount(project, line.amount)
                sale = self._build_sale(project, buyer_id, quoted, method, currency, batch=True)
                session.add(sale)
                await session.flush()
                created.append(self._snapshot(sale, project))

            # Purchased listings leave the cart in the same transaction
            await session.execute(
                delete(CartItem).where(CartItem.user_id == buyer_id, CartItem.project_id.in_(project_ids))
            )

        total = sum((c.amount for c in created), Decimal("0"))
        batch_id = generate_batch_id()
        logger.info(
            f"🛒 Cart checkout {batch_id}: buyer={buyer_id} sales={[c.sale_code for c in created]} total={total}"
        )

        response = {
            "purchaseId": batch_id,
            "userId": buyer_id,
            "totalProjects": len(created),
            "totalAmount": _money(total),
            "currency": currency,
            "status": "PENDING",
            "paymentMethod": method.value,
            "sales": [
                {
                    "id": c.sale_code,
                    "saleId": c.sale_id,
                    "projectId": c.project_id,
                    "projectTitle": c.project_title,
                    "amount": _money(c.amount),
                    "vendor": c.seller_name,
                }
                for c in created
            ],
            "createdAt": to_iso(created[0].created_at),
        }

        await self._after_commit(session, buyer_id, buyer_name, created)
        return response

    async def _after_commit(self, session: AsyncSession, buyer_id: int, buyer_name: str,
                            created: List[_CreatedSale]):
        """Best-effort side effects; the sales are already durable"""
        grouped = group_lines_by_seller(
            (c.seller_id, SaleLine(c.sale_code, c.project_id, c.project_title, _money(c.amount)))
            for c in created
        )
        await self.notifications.notify_sellers_of_sales(session, buyer_id, buyer_name, grouped)

        if self.completion_scheduler is not None:
            try:
                self.completion_scheduler.schedule_completion([c.sale_id for c in created])
            except Exception as e:
                # The recovery sweep picks up pending sales that were never scheduled
                logger.error(f"❌ Failed to schedule payment completion for {[c.sale_code for c in created]}: {e}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def purchase_history(self, session: AsyncSession, user_id: int) -> List[Dict[str, Any]]:
        """Completed purchases, newest first"""
        result = await session.execute(
            select(Sale)
            .where(Sale.buyer_id == user_id, Sale.payment_status == PaymentStatus.COMPLETED.value)
            .order_by(Sale.created_at.desc(), Sale.id.desc())
        )
        purchases = []
        for sale in result.scalars().all():
            project = sale.project
            main_image = project.main_image if project else None
            purchases.append({
                "id": sale.sale_code,
                "userId": sale.buyer_id,
                "projectId": sale.project_id,
                "amount": _money(sale.sale_price),
                "currency": sale.currency,
                "status": "COMPLETED",
                "paymentMethod": sale.payment_method,
                "transactionId": sale.sale_code,
                "createdAt": to_iso(sale.created_at),
                "completedAt": to_iso(sale.paid_at),
                "project": {
                    "id": project.id,
                    "title": project.title,
                    "description": project.description,
                    "price": _money(project.price),
                    "seller": {"id": project.seller.id, "name": project.seller.first_name} if project.seller else None,
                    "mainImage": {
                        "fileName": main_image.file_name,
                        "fileUrl": main_image.file_url,
                    } if main_image else None,
                } if project else None,
            })
        return purchases

    async def check_purchase(self, session: AsyncSession, buyer_id: int, project_id: int) -> Dict[str, Any]:
        sale = await self.has_completed_purchase(session, buyer_id, project_id)
        return {
            "hasPurchased": sale is not None,
            "purchaseDate": to_iso(sale.paid_at) if sale else None,
            "saleCode": sale.sale_code if sale else None,
        }

    async def buyer_stats(self, session: AsyncSession, buyer_id: int) -> Dict[str, Any]:
        result = await session.execute(
            select(func.count(Sale.id), func.coalesce(func.sum(Sale.sale_price), 0)).where(
                Sale.buyer_id == buyer_id,
                Sale.payment_status == PaymentStatus.COMPLETED.value,
            )
        )
        count, total = result.one()
        pending = await session.execute(
            select(func.count(Sale.id)).where(
                Sale.buyer_id == buyer_id,
                Sale.payment_status == PaymentStatus.PENDING.value,
            )
        )
        return {
            "totalPurchases": count or 0,
            "totalSpent": _money(total or 0),
            "pendingPurchases": pending.scalar() or 0,
        }

    # ------------------------------------------------------------------
    # Admin validation
    # ------------------------------------------------------------------

    async def validate_payment(self, session: AsyncSession, sale_id: int, approved: bool,
                               payment_receipt: Optional[str] = None, admin_id: Optional[int] = None) -> Sale:
        """
        Approve or reject a pending sale. Approval completes payment and delivery
        and credits the seller's sales counter; rejection marks payment failed.
        No notification is sent from this path.
        """
        sale = await session.get(Sale, sale_id, with_for_update=True)
        if sale is None:
            raise NotFoundError("Sale not found")
        if sale.payment_status != PaymentStatus.PENDING.value:
            raise ValidationError(f"Sale {sale.sale_code} is already {sale.payment_status}")

        now = get_naive_utc_now()
        if approved:
            sale.payment_status = PaymentStatus.COMPLETED.value
            sale.delivery_status = DeliveryStatus.DELIVERED.value
            sale.paid_at = now
            sale.delivered_at = now
            if payment_receipt:
                sale.payment_receipt = payment_receipt
            sale.admin_notes = ADMIN_APPROVED_NOTE
            if sale.seller_id is not None:
                await session.execute(
                    update(User).where(User.id == sale.seller_id).values(total_sales=User.total_sales + 1)
                )
        else:
            sale.payment_status = PaymentStatus.FAILED.value
            sale.admin_notes = ADMIN_REJECTED_NOTE

        await session.flush()
        logger.info(
            f"🛡️ Admin {admin_id} {'approved' if approved else 'rejected'} sale {sale.sale_code}"
        )
        return sale
