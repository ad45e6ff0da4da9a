"""Configuration management for the STUDEX marketplace backend"""

import os
import logging
from decimal import Decimal
from typing import List

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower().strip() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class Config:
    """Application configuration"""

    # Environment detection
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"
    CURRENT_ENVIRONMENT = "production" if IS_PRODUCTION else "development"

    # Server
    PORT = int(os.getenv("PORT", "3000"))
    ALLOWED_ORIGINS = _env_list("ALLOWED_ORIGINS", "http://localhost:4200")
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:4200")

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL")
    DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
    DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    DB_ECHO = _env_bool("DB_ECHO", False)

    # Credentials
    TOKEN_SECRET = os.getenv("JWT_SECRET")
    if not TOKEN_SECRET:
        if IS_PRODUCTION:
            logger.error("❌ Production environment detected but no JWT_SECRET found!")
        TOKEN_SECRET = "studex-development-secret"
    TOKEN_TTL_HOURS = int(os.getenv("TOKEN_TTL_HOURS", "24"))
    TOKEN_REMEMBER_ME_DAYS = int(os.getenv("TOKEN_REMEMBER_ME_DAYS", "30"))
    PASSWORD_HASH_ITERATIONS = int(os.getenv("PASSWORD_HASH_ITERATIONS", "260000"))
    MIN_PASSWORD_LENGTH = int(os.getenv("MIN_PASSWORD_LENGTH", "6"))

    # Only institutional addresses may register with a password
    UNIVERSITY_EMAIL_SUFFIXES = _env_list("UNIVERSITY_EMAIL_SUFFIXES", ".edu.pe")
    UNIVERSITY_EMAIL_MARKERS = _env_list("UNIVERSITY_EMAIL_MARKERS", "@pucp.,@uni.,@unmsm.,@upc.")

    # Marketplace economics
    PLATFORM_COMMISSION_RATE = Decimal(os.getenv("PLATFORM_COMMISSION_RATE", "0.10"))
    PURCHASE_AMOUNT_TOLERANCE = Decimal(os.getenv("PURCHASE_AMOUNT_TOLERANCE", "0.01"))
    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "PEN")

    # Simulated payment completion (no real gateway)
    PAYMENT_SIMULATION_ENABLED = _env_bool("PAYMENT_SIMULATION_ENABLED", not IS_PRODUCTION)
    PAYMENT_SIMULATION_DELAY_SECONDS = int(os.getenv("PAYMENT_SIMULATION_DELAY_SECONDS", "2"))
    PAYMENT_RECOVERY_INTERVAL_SECONDS = int(os.getenv("PAYMENT_RECOVERY_INTERVAL_SECONDS", "60"))

    # Featured rotation
    FEATURED_ROTATION_ENABLED = _env_bool("FEATURED_ROTATION_ENABLED", False)
    FEATURED_ROTATION_INTERVAL_MINUTES = int(os.getenv("FEATURED_ROTATION_INTERVAL_MINUTES", "30"))
    FEATURED_ROTATION_SIZE = int(os.getenv("FEATURED_ROTATION_SIZE", "6"))

    # Search history
    SEARCH_HISTORY_MAX_ACTIVE = int(os.getenv("SEARCH_HISTORY_MAX_ACTIVE", "50"))

    # Media host (Cloudinary)
    CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME")
    CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY")
    CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET")
    CLOUDINARY_FOLDER = os.getenv("CLOUDINARY_FOLDER", "studex")
    MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(49 * 1024 * 1024)))
    MAX_PROFILE_IMAGE_BYTES = int(os.getenv("MAX_PROFILE_IMAGE_BYTES", str(5 * 1024 * 1024)))
    MAX_FILES_PER_UPLOAD = 5
    MAX_IMAGES_PER_UPLOAD = 5

    # Google OAuth
    GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
    GOOGLE_CALLBACK_URL = os.getenv(
        "GOOGLE_CALLBACK_URL", "http://localhost:3000/api/auth/google/callback"
    )

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info("🔧 STUDEX Environment Configuration:")
        logger.info(f"   Environment: {Config.CURRENT_ENVIRONMENT.upper()}")
        logger.info(f"   Is Production: {Config.IS_PRODUCTION}")
        logger.info(f"   Payment simulation: {Config.PAYMENT_SIMULATION_ENABLED}")
        logger.info(f"   Featured rotation: {Config.FEATURED_ROTATION_ENABLED}")
        logger.info(f"   Media host configured: {Config.is_media_configured()}")

    @staticmethod
    def is_media_configured() -> bool:
        return bool(
            Config.CLOUDINARY_CLOUD_NAME
            and Config.CLOUDINARY_API_KEY
            and Config.CLOUDINARY_API_SECRET
        )

    @staticmethod
    def is_google_configured() -> bool:
        return bool(Config.GOOGLE_CLIENT_ID and Config.GOOGLE_CLIENT_SECRET)

    @classmethod
    def validate_production_config(cls):
        """Validate critical settings; raises in production when secrets are missing"""
        missing = []
        if not cls.DATABASE_URL:
            missing.append("DATABASE_URL")
        if not os.getenv("JWT_SECRET"):
            missing.append("JWT_SECRET")

        if not missing:
            logger.info("✅ Production configuration validated")
            return

        message = f"Missing required configuration: {', '.join(missing)}"
        if cls.IS_PRODUCTION:
            logger.critical(f"🚨 {message}")
            raise ValueError(message)
        logger.warning(f"⚠️ {message} (development defaults in use)")
