"""
Checkout tests for PurchaseService
Single purchase, cart purchase atomicity, eligibility ordering, notifications and buyer queries
"""

from decimal import Decimal
from unittest.mock import AsyncMock, Mock, patch

import pytest
from sqlalchemy import func, select

from models import (
    CartItem, Notification, NotificationType, PaymentStatus, ProjectStatus, Sale, UserRole,
)
from services.notification_service import NotificationService
from services.purchase_service import PurchaseLine, PurchaseService
from utils.exception_handler import (
    AlreadyPurchasedError, NotFoundError, OwnListingPurchaseError, UnavailableError, ValidationError,
)


async def _count(session, model, *conditions):
    result = await session.execute(select(func.count()).select_from(model).where(*conditions))
    return result.scalar()


@pytest.fixture
def purchases():
    return PurchaseService(notifications=NotificationService())


class TestSinglePurchase:
    """purchase_single creates one pending sale and tells the seller"""

    async def test_pending_sale_with_commission_split(self, session, make_user, make_project, purchases):
        seller = await make_user(role=UserRole.SELLER.value, first_name="Sofia")
        buyer = await make_user(first_name="Bruno", last_name="Diaz")
        listing = await make_project(seller, price="100.00", title="Plan de negocio")

        response = await purchases.purchase_single(session, buyer, listing.id, 100, "yape")

        assert response["status"] == "PENDING"
        assert response["amount"] == 100.0
        assert response["paymentMethod"] == "YAPE"
        assert response["currency"] == "PEN"
        assert response["id"].startswith("SALE_")
        assert response["completedAt"] is None

        sale = (await session.execute(select(Sale).where(Sale.id == response["saleId"]))).scalar_one()
        assert sale.payment_status == PaymentStatus.PENDING.value
        assert sale.platform_commission == Decimal("10.00")
        assert sale.seller_earnings == Decimal("90.00")
        assert sale.seller_id == seller.id
        assert sale.buyer_id == buyer.id

        notes = (await session.execute(select(Notification).where(Notification.user_id == seller.id))).scalars().all()
        assert len(notes) == 1
        assert notes[0].type == NotificationType.NEW_SALE.value == "NUEVA_VENTA"
        assert "Plan de negocio" in notes[0].message
        assert notes[0].extra_data["kind"] == "NUEVA_VENTA"
        assert notes[0].extra_data["items"][0]["sale_code"] == response["id"]

    async def test_second_purchase_after_completion_rejected(self, session, make_user, make_project, purchases):
        seller = await make_user(role=UserRole.SELLER.value)
        buyer = await make_user()
        listing = await make_project(seller)

        first = await purchases.purchase_single(session, buyer, listing.id, "100.00", "PLIN")
        sale = await session.get(Sale, first["saleId"])
        sale.payment_status = PaymentStatus.COMPLETED.value
        await session.commit()

        with pytest.raises(AlreadyPurchasedError) as exc_info:
            await purchases.purchase_single(session, buyer, listing.id, "100.00", "PLIN")
        assert exc_info.value.code == "ALREADY_PURCHASED"
        assert exc_info.value.status_code == 409

    async def test_pending_purchase_does_not_block_retry(self, session, make_user, make_project, purchases):
        seller = await make_user(role=UserRole.SELLER.value)
        buyer = await make_user()
        listing = await make_project(seller)

        await purchases.purchase_single(session, buyer, listing.id, 100, "YAPE")
        await purchases.purchase_single(session, buyer, listing.id, 100, "YAPE")

        assert await _count(session, Sale, Sale.buyer_id == buyer.id) == 2

    async def test_own_listing_rejected(self, session, make_user, make_project, purchases):
        seller = await make_user(role=UserRole.SELLER.value)
        listing = await make_project(seller)

        with pytest.raises(OwnListingPurchaseError):
            await purchases.purchase_single(session, seller, listing.id, 100, "YAPE")

    async def test_unpublished_listing_unavailable(self, session, make_user, make_project, purchases):
        seller = await make_user(role=UserRole.SELLER.value)
        buyer = await make_user()
        draft = await make_project(seller, status=ProjectStatus.DRAFT.value)

        with pytest.raises(UnavailableError):
            await purchases.purchase_single(session, buyer, draft.id, 100, "YAPE")

    async def test_featured_listing_is_purchasable(self, session, make_user, make_project, purchases):
        seller = await make_user(role=UserRole.SELLER.value)
        buyer = await make_user()
        listing = await make_project(seller, status=ProjectStatus.FEATURED.value)

        response = await purchases.purchase_single(session, buyer, listing.id, 100, "BANCARIO")
        assert response["status"] == "PENDING"

    async def test_missing_listing(self, session, make_user, purchases):
        buyer = await make_user()
        with pytest.raises(NotFoundError):
            await purchases.purchase_single(session, buyer, 9999, 100, "YAPE")

    async def test_unknown_payment_method(self, session, make_user, make_project, purchases):
        seller = await make_user(role=UserRole.SELLER.value)
        buyer = await make_user()
        listing = await make_project(seller)

        with pytest.raises(ValidationError, match="Invalid payment method"):
            await purchases.purchase_single(session, buyer, listing.id, 100, "BITCOIN")

    async def test_amount_must_match_price(self, session, make_user, make_project, purchases):
        seller = await make_user(role=UserRole.SELLER.value)
        buyer = await make_user()
        listing = await make_project(seller, price="100.00")

        with pytest.raises(ValidationError, match="does not match"):
            await purchases.purchase_single(session, buyer, listing.id, "1.00", "YAPE")
        assert await _count(session, Sale) == 0

    @pytest.mark.parametrize("amount", ["NaN", "Infinity", 1e30, None])
    async def test_malformed_amount_is_a_validation_error(self, session, make_user, make_project, purchases, amount):
        seller = await make_user(role=UserRole.SELLER.value)
        buyer = await make_user()
        listing = await make_project(seller, price="100.00")

        with pytest.raises(ValidationError):
            await purchases.purchase_single(session, buyer, listing.id, amount, "YAPE")
        assert await _count(session, Sale) == 0

    async def test_quoted_amount_within_tolerance_is_recorded(self, session, make_user, make_project, purchases):
        seller = await make_user(role=UserRole.SELLER.value)
        buyer = await make_user()
        listing = await make_project(seller, price="100.00")

        response = await purchases.purchase_single(session, buyer, listing.id, "100.01", "YAPE")

        sale = await session.get(Sale, response["saleId"])
        assert sale.sale_price == Decimal("100.01")
        assert sale.platform_commission + sale.seller_earnings == Decimal("100.01")

    async def test_sale_survives_notification_failure(self, session, make_user, make_project):
        notifications = NotificationService()
        service = PurchaseService(notifications=notifications)
        seller = await make_user(role=UserRole.SELLER.value)
        buyer = await make_user()
        listing = await make_project(seller)

        with patch.object(notifications, "create", AsyncMock(side_effect=RuntimeError("db hiccup"))):
            response = await service.purchase_single(session, buyer, listing.id, 100, "YAPE")

        assert await _count(session, Sale, Sale.id == response["saleId"]) == 1
        assert await _count(session, Notification) == 0

    async def test_completion_is_scheduled(self, session, make_user, make_project):
        scheduler = Mock()
        service = PurchaseService(notifications=NotificationService(), completion_scheduler=scheduler)
        seller = await make_user(role=UserRole.SELLER.value)
        buyer = await make_user()
        listing = await make_project(seller)

        response = await service.purchase_single(session, buyer, listing.id, 100, "YAPE")

        scheduler.schedule_completion.assert_called_once_with([response["saleId"]])

    async def test_scheduler_failure_does_not_fail_checkout(self, session, make_user, make_project):
        scheduler = Mock()
        scheduler.schedule_completion.side_effect = RuntimeError("scheduler stopped")
        service = PurchaseService(notifications=NotificationService(), completion_scheduler=scheduler)
        seller = await make_user(role=UserRole.SELLER.value)
        buyer = await make_user()
        listing = await make_project(seller)

        response = await service.purchase_single(session, buyer, listing.id, 100, "YAPE")
        assert response["status"] == "PENDING"


class TestCartPurchase:
    """purchase_cart is all-or-nothing"""

    async def test_own_listing_in_middle_rolls_back_everything(self, session, make_user, make_project, purchases):
        seller = await make_user(role=UserRole.SELLER.value)
        buyer = await make_user(role=UserRole.SELLER.value)
        first = await make_project(seller, title="Uno", price="10.00")
        own = await make_project(buyer, title="Propio", price="20.00")
        third = await make_project(seller, title="Tres", price="30.00")

        lines = [
            PurchaseLine(first.id, Decimal("10.00")),
            PurchaseLine(own.id, Decimal("20.00")),
            PurchaseLine(third.id, Decimal("30.00")),
        ]
        with pytest.raises(OwnListingPurchaseError, match="Propio"):
            await purchases.purchase_cart(session, buyer, lines, "YAPE")

        assert await _count(session, Sale) == 0
        assert await _count(session, Notification) == 0

    async def test_cart_creates_sales_and_clears_cart(self, session, make_user, make_project, purchases):
        seller = await make_user(role=UserRole.SELLER.value)
        buyer = await make_user()
        first = await make_project(seller, title="Uno", price="10.00")
        second = await make_project(seller, title="Dos", price="20.50")
        session.add_all([CartItem(user_id=buyer.id, project_id=first.id),
                         CartItem(user_id=buyer.id, project_id=second.id)])
        await session.commit()

        response = await purchases.purchase_cart(
            session, buyer, [PurchaseLine(first.id, 10), PurchaseLine(second.id, "20.50")], "plin",
        )

        assert response["totalProjects"] == 2
        assert response["totalAmount"] == 30.5
        assert response["purchaseId"].startswith("BATCH_")
        assert all(s["id"].startswith("CART_") for s in response["sales"])
        assert await _count(session, Sale, Sale.payment_status == PaymentStatus.PENDING.value) == 2
        assert await _count(session, CartItem, CartItem.user_id == buyer.id) == 0

    async def test_one_aggregate_notification_per_seller(self, session, make_user, make_project, purchases):
        seller_a = await make_user(role=UserRole.SELLER.value)
        seller_b = await make_user(role=UserRole.SELLER.value)
        buyer = await make_user(first_name="Bruno", last_name="Diaz")
        a1 = await make_project(seller_a, title="A1", price="10.00")
        a2 = await make_project(seller_a, title="A2", price="15.00")
        b1 = await make_project(seller_b, title="B1", price="5.00")

        await purchases.purchase_cart(
            session, buyer, [PurchaseLine(a1.id, 10), PurchaseLine(b1.id, 5), PurchaseLine(a2.id, 15)], "YAPE",
        )

        notes_a = (await session.execute(select(Notification).where(Notification.user_id == seller_a.id))).scalars().all()
        notes_b = (await session.execute(select(Notification).where(Notification.user_id == seller_b.id))).scalars().all()
        assert len(notes_a) == 1
        assert len(notes_b) == 1
        assert notes_a[0].title == "2 new sales!"
        assert '"A1"' in notes_a[0].message and '"A2"' in notes_a[0].message
        assert "S/ 25.00" in notes_a[0].message
        assert notes_b[0].title == "New sale!"

    async def test_duplicate_listing_in_cart_rejected(self, session, make_user, make_project, purchases):
        seller = await make_user(role=UserRole.SELLER.value)
        buyer = await make_user()
        listing = await make_project(seller)

        with pytest.raises(ValidationError, match="Duplicate"):
            await purchases.purchase_cart(
                session, buyer, [PurchaseLine(listing.id, 100), PurchaseLine(listing.id, 100)], "YAPE",
            )

    async def test_empty_cart_rejected(self, session, make_user, purchases):
        buyer = await make_user()
        with pytest.raises(ValidationError, match="empty"):
            await purchases.purchase_cart(session, buyer, [], "YAPE")


class TestBuyerQueries:
    """History, per-listing check and stats only count completed sales"""

    async def test_history_check_and_stats(self, session, make_user, make_project, purchases):
        seller = await make_user(role=UserRole.SELLER.value)
        buyer = await make_user()
        bought = await make_project(seller, title="Comprado", price="40.00")
        pending = await make_project(seller, title="Pendiente", price="60.00")

        done = await purchases.purchase_single(session, buyer, bought.id, 40, "YAPE")
        await purchases.purchase_single(session, buyer, pending.id, 60, "YAPE")
        sale = await session.get(Sale, done["saleId"])
        sale.payment_status = PaymentStatus.COMPLETED.value
        await session.commit()

        history = await purchases.purchase_history(session, buyer.id)
        assert [h["projectId"] for h in history] == [bought.id]
        assert history[0]["status"] == "COMPLETED"
        assert history[0]["project"]["title"] == "Comprado"

        assert (await purchases.check_purchase(session, buyer.id, bought.id))["hasPurchased"] is True
        assert (await purchases.check_purchase(session, buyer.id, pending.id))["hasPurchased"] is False

        stats = await purchases.buyer_stats(session, buyer.id)
        assert stats == {"totalPurchases": 1, "totalSpent": 40.0, "pendingPurchases": 1}
