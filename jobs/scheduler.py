"""Background job scheduler for the marketplace API"""

import logging
from datetime import datetime
from typing import Optional, Sequence

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from database import Database
from jobs.featured_rotation import FeaturedRotation
from jobs.payment_simulation import PaymentSimulator

logger = logging.getLogger(__name__)


class MarketplaceScheduler:
    """Owns the AsyncIOScheduler plus the jobs that run on it"""

    def __init__(self, db: Database):
        self.db = db

        jobstores = {
            'default': MemoryJobStore()
        }
        executors = {
            'default': AsyncIOExecutor()
        }
        job_defaults = {
            'coalesce': True,  # Global coalescing to prevent job pileup
            'max_instances': 1,
            'misfire_grace_time': 120
        }

        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )
        self.payment_simulator = PaymentSimulator(db, scheduler=self.scheduler)
        self.featured_rotation = FeaturedRotation(db)

    def setup_jobs(self):
        """Register the recurring jobs enabled in configuration"""
        if Config.PAYMENT_SIMULATION_ENABLED:
            self.scheduler.add_job(
                self.payment_simulator.recover_pending_sales,
                trigger=IntervalTrigger(seconds=Config.PAYMENT_RECOVERY_INTERVAL_SECONDS),
                id="recover_pending_sales",
                name="Recover Pending Simulated Sales",
                next_run_time=datetime.now(self.scheduler.timezone),  # Sweep once at startup
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            logger.info(
                f"💳 Payment simulation enabled: {Config.PAYMENT_SIMULATION_DELAY_SECONDS}s delay, "
                f"recovery every {Config.PAYMENT_RECOVERY_INTERVAL_SECONDS}s"
            )

        if Config.FEATURED_ROTATION_ENABLED:
            self.scheduler.add_job(
                self.featured_rotation.run_rotation,
                trigger=IntervalTrigger(minutes=Config.FEATURED_ROTATION_INTERVAL_MINUTES),
                id="featured_rotation",
                name="Featured Listings Rotation",
                next_run_time=datetime.now(self.scheduler.timezone),  # Run once at startup too
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            logger.info(f"⭐ Featured rotation every {Config.FEATURED_ROTATION_INTERVAL_MINUTES} minutes")

    @property
    def completion_scheduler(self) -> Optional[PaymentSimulator]:
        """What checkout uses to queue completion, None when simulation is off"""
        return self.payment_simulator if Config.PAYMENT_SIMULATION_ENABLED else None

    def schedule_completion(self, sale_ids: Sequence[int]) -> None:
        self.payment_simulator.schedule_completion(sale_ids)

    def start(self):
        self.setup_jobs()
        self.scheduler.start()
        logger.info("✅ Marketplace scheduler started")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("🛑 Marketplace scheduler stopped")
