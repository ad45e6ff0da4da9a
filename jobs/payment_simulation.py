"""
Simulated payment completion

There is no payment gateway: in simulation mode each new sale is completed a
few seconds after checkout. The Sale row is the job record, so completion is
idempotent per sale id and a periodic sweep finishes any pending sale whose
one-shot job was lost (for example across a restart).
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from apscheduler.triggers.date import DateTrigger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from config import Config
from database import Database
from models import DeliveryStatus, PaymentStatus, Sale, User
from services.notification_service import (
    NotificationService, PurchaseErrorPayload, PurchaseSuccessPayload, notification_service,
)
from utils.datetime_helpers import epoch_millis, get_naive_utc_now

logger = logging.getLogger(__name__)


class CompletionOutcome:
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class PaymentSimulator:
    """Completes pending sales on behalf of a fake payment provider"""

    def __init__(self, db: Database, scheduler=None, notifications: Optional[NotificationService] = None,
                 delay_seconds: Optional[int] = None):
        self.db = db
        self.scheduler = scheduler
        self.notifications = notifications or notification_service
        self.delay_seconds = Config.PAYMENT_SIMULATION_DELAY_SECONDS if delay_seconds is None else delay_seconds

    def schedule_completion(self, sale_ids: Sequence[int]) -> None:
        """Queue one completion job per sale at now + delay"""
        if self.scheduler is None:
            logger.warning(f"⚠️ No scheduler attached - sales {list(sale_ids)} left for the recovery sweep")
            return

        run_date = datetime.now(timezone.utc) + timedelta(seconds=self.delay_seconds)
        for sale_id in sale_ids:
            self.scheduler.add_job(
                self.complete_sale,
                trigger=DateTrigger(run_date=run_date),
                args=[sale_id],
                id=f"complete_sale_{sale_id}",
                name=f"Simulated payment completion for sale {sale_id}",
                replace_existing=True,
                misfire_grace_time=None,
            )
        logger.info(f"⏱️ Scheduled simulated payment completion for sales {list(sale_ids)} in {self.delay_seconds}s")

    async def complete_sale(self, sale_id: int) -> str:
        """
        Complete one pending sale. Never raises.

        Missing sale or non-pending sale -> skipped. Missing seller -> the sale
        still completes but no seller counter is updated. Any failure marks the
        buyer with a purchase-error notification instead.
        """
        buyer_id = None
        sale_code = None
        project_id = None
        project_title = "your project"
        try:
            async with self.db.session() as session:
                sale = await session.get(Sale, sale_id)
                if sale is None:
                    logger.warning(f"⚠️ Sale {sale_id} no longer exists - skipping simulated completion")
                    return CompletionOutcome.SKIPPED
                if sale.payment_status != PaymentStatus.PENDING.value:
                    logger.info(f"ℹ️ Sale {sale.sale_code} already {sale.payment_status} - nothing to do")
                    return CompletionOutcome.SKIPPED

                buyer_id = sale.buyer_id
                sale_code = sale.sale_code
                project_id = sale.project_id
                seller_id = sale.seller_id
                sale_price = sale.sale_price
                if sale.project is not None:
                    project_title = sale.project.title

                now = get_naive_utc_now()
                receipt = f"SIMULATION_{epoch_millis(now)}"
                # Only the run that moves the row out of pending completes it
                claimed = await session.execute(
                    update(Sale)
                    .where(Sale.id == sale_id, Sale.payment_status == PaymentStatus.PENDING.value)
                    .values(
                        payment_status=PaymentStatus.COMPLETED.value,
                        delivery_status=DeliveryStatus.DELIVERED.value,
                        paid_at=now,
                        delivered_at=now,
                        payment_receipt=receipt,
                    )
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount == 0:
                    logger.info(f"ℹ️ Sale {sale_code} was completed by another run - nothing to do")
                    return CompletionOutcome.SKIPPED

                credited = None
                if seller_id is not None:
                    credited = await session.execute(
                        update(User)
                        .where(User.id == seller_id)
                        .values(total_sales=User.total_sales + 1)
                        .execution_options(synchronize_session=False)
                    )
                if credited is None or credited.rowcount == 0:
                    logger.warning(f"⚠️ Seller for sale {sale_code} no longer exists - sales counter not updated")

                success_payload = PurchaseSuccessPayload(
                    sale_code=sale_code,
                    project_id=project_id,
                    project_title=project_title,
                    amount=float(sale_price),
                    payment_receipt=receipt,
                )

            logger.info(f"✅ Simulated payment completed for sale {sale_code}")
            async with self.db.session() as session:
                await self.notifications.notify_purchase_success(session, buyer_id, success_payload)
            return CompletionOutcome.COMPLETED

        except IntegrityError as e:
            # A completed sale for this buyer and listing already exists
            logger.error(f"❌ Duplicate completed purchase for sale {sale_code or sale_id}: {e.orig}")
            await self._mark_failed(sale_id, "duplicate completed purchase")
            await self._notify_failure(buyer_id, sale_code, project_id, project_title, "Duplicate purchase")
            return CompletionOutcome.FAILED
        except Exception as e:
            logger.error(f"❌ Simulated payment completion failed for sale {sale_code or sale_id}: {e}")
            await self._notify_failure(buyer_id, sale_code, project_id, project_title, str(e))
            return CompletionOutcome.FAILED

    async def _mark_failed(self, sale_id: int, note: str):
        try:
            async with self.db.session() as session:
                sale = await session.get(Sale, sale_id)
                if sale is not None and sale.payment_status == PaymentStatus.PENDING.value:
                    sale.payment_status = PaymentStatus.FAILED.value
                    sale.admin_notes = f"Simulation: {note}"
        except Exception as e:
            logger.error(f"❌ Could not mark sale {sale_id} as failed: {e}")

    async def _notify_failure(self, buyer_id: Optional[int], sale_code: Optional[str], project_id: Optional[int],
                              project_title: str, reason: str):
        if buyer_id is None:
            return
        try:
            async with self.db.session() as session:
                await self.notifications.notify_purchase_error(
                    session,
                    buyer_id,
                    PurchaseErrorPayload(sale_code=sale_code or "", project_id=project_id, reason=reason),
                    project_title=project_title,
                )
        except Exception as e:
            logger.error(f"❌ Could not notify buyer {buyer_id} about failed sale {sale_code}: {e}")

    async def recover_pending_sales(self, limit: int = 100) -> List[str]:
        """Complete pending sales older than the simulation delay; returns their outcomes"""
        cutoff = get_naive_utc_now() - timedelta(seconds=self.delay_seconds)
        async with self.db.session() as session:
            result = await session.execute(
                select(Sale.id)
                .where(Sale.payment_status == PaymentStatus.PENDING.value, Sale.created_at <= cutoff)
                .order_by(Sale.created_at)
                .limit(limit)
            )
            sale_ids = list(result.scalars().all())

        if not sale_ids:
            return []

        logger.info(f"🔄 Recovering {len(sale_ids)} pending simulated sales")
        outcomes = []
        for sale_id in sale_ids:
            outcomes.append(await self.complete_sale(sale_id))
        return outcomes
