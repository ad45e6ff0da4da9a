"""Account registration, login and profile management"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import Config
from models import AuthProvider, User, UserRole
from services.google_oauth import GoogleProfile
from services.media_store import CloudinaryMediaStore, MediaStoreError, extract_public_id, validate_upload
from utils.credential_security import CredentialSecurity
from utils.datetime_helpers import get_naive_utc_now, to_iso
from utils.exception_handler import AuthError, ConflictError, InternalError, ValidationError
from utils.helpers import is_university_email, mask_email

logger = logging.getLogger(__name__)

PROFILE_IMAGE_FOLDER = "users/profiles"


def serialize_user(user: User) -> Dict[str, Any]:
    """Public account shape - never includes the password hash"""
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "university": user.university,
        "profileImage": user.profile_image_url,
        "userType": user.role,
        "verified": user.is_verified,
        "isVerifiedSeller": user.is_verified_seller,
        "authProvider": user.auth_provider,
        "studyArea": user.study_area,
        "bio": user.bio,
        "createdAt": to_iso(user.created_at),
    }


class AuthService:

    async def find_by_email(self, session: AsyncSession, email: str) -> Optional[User]:
        result = await session.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
        return result.scalar_one_or_none()

    async def register(self, session: AsyncSession, first_name: str, last_name: str, email: str,
                       university: str, password: str) -> User:
        fields = {"firstName": first_name, "lastName": last_name, "email": email,
                  "university": university, "password": password}
        missing = [name for name, value in fields.items() if not isinstance(value, str) or not value.strip()]
        if missing:
            raise ValidationError(f"All fields are required: {', '.join(missing)}")

        email = email.strip().lower()
        if not is_university_email(email):
            raise ValidationError("A valid university email is required")
        if len(password) < Config.MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {Config.MIN_PASSWORD_LENGTH} characters")
        if await self.find_by_email(session, email) is not None:
            raise ConflictError("Email is already registered")

        user = User(
            email=email,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            university=university.strip(),
            password_hash=CredentialSecurity.hash_password(password),
            role=UserRole.USER.value,
            auth_provider=AuthProvider.LOCAL.value,
            is_verified=False,
        )
        session.add(user)
        await session.flush()
        logger.info(f"👤 Registered user {user.id} ({mask_email(email)})")
        return user

    async def login(self, session: AsyncSession, email: str, password: str, remember_me: bool = False):
        """Returns (token, user); wrong email and wrong password are indistinguishable"""
        if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
            raise ValidationError("Email and password are required")

        user = await self.find_by_email(session, email)
        if user is None or not CredentialSecurity.verify_password(password, user.password_hash):
            logger.warning(f"🔒 Failed login for {mask_email(email)}")
            raise AuthError("Invalid credentials")
        if not user.is_active:
            raise AuthError("Account disabled")
        if user.is_blocked:
            raise AuthError("Account blocked")

        user.last_login_at = get_naive_utc_now()
        await session.flush()
        token = CredentialSecurity.issue_token(user.id, user.email, user.role, remember_me=remember_me)
        logger.info(f"🔑 User {user.id} logged in (remember_me={remember_me})")
        return token, user

    async def update_profile(self, session: AsyncSession, user: User, changes: Dict[str, Optional[str]]) -> User:
        column_map = {
            "firstName": "first_name",
            "lastName": "last_name",
            "email": "email",
            "university": "university",
            "studyArea": "study_area",
            "bio": "bio",
        }
        updates = {column_map[k]: v for k, v in changes.items() if k in column_map and isinstance(v, str)}
        if not updates:
            raise ValidationError("No fields to update")

        if "email" in updates:
            new_email = updates["email"].strip().lower()
            if not new_email:
                raise ValidationError("Email cannot be empty")
            if new_email != user.email:
                existing = await self.find_by_email(session, new_email)
                if existing is not None and existing.id != user.id:
                    raise ConflictError("Email is already in use")
            updates["email"] = new_email

        for column, value in updates.items():
            setattr(user, column, value.strip() if isinstance(value, str) and column != "bio" else value)
        await session.flush()
        logger.info(f"👤 User {user.id} updated profile fields {sorted(updates)}")
        return user

    async def change_password(self, session: AsyncSession, user: User, current_password: str, new_password: str):
        if not current_password or not new_password:
            raise ValidationError("Current and new password are required")
        if len(new_password) < Config.MIN_PASSWORD_LENGTH:
            raise ValidationError(f"New password must be at least {Config.MIN_PASSWORD_LENGTH} characters")
        if not CredentialSecurity.verify_password(current_password, user.password_hash):
            raise AuthError("Current password is incorrect")

        user.password_hash = CredentialSecurity.hash_password(new_password)
        await session.flush()
        logger.info(f"🔐 User {user.id} changed password")

    async def update_profile_image(self, session: AsyncSession, user: User, media: CloudinaryMediaStore,
                                   data: bytes, filename: str, content_type: Optional[str]) -> User:
        """Upload the new image, point the user at it, then best-effort delete the old one"""
        validate_upload(filename, content_type, len(data), images_only=True, max_bytes=Config.MAX_PROFILE_IMAGE_BYTES)

        previous_url = user.profile_image_url
        try:
            asset = await media.upload(data, PROFILE_IMAGE_FOLDER, filename, resource_type="image",
                                       content_type=content_type)
        except MediaStoreError as e:
            raise InternalError(f"Error uploading profile image: {e}")

        user.profile_image_url = asset.url
        await session.flush()

        previous_id = extract_public_id(previous_url)
        if previous_id:
            try:
                await media.destroy(previous_id, resource_type="image")
            except Exception as e:
                logger.warning(f"⚠️ Could not delete previous profile image {previous_id}: {e}")
        return user

    async def find_or_create_google_user(self, session: AsyncSession, profile: GoogleProfile) -> User:
        user = await self.find_by_email(session, profile.email)
        now = get_naive_utc_now()

        if user is not None:
            user.google_id = profile.google_id
            user.auth_provider = AuthProvider.GOOGLE.value
            user.last_login_at = now
            await session.flush()
            logger.info(f"🔑 Google login for existing user {user.id}")
            return user

        user = User(
            email=profile.email,
            first_name=profile.first_name or "Usuario",
            last_name=profile.last_name or "",
            profile_image_url=profile.picture,
            google_id=profile.google_id,
            auth_provider=AuthProvider.GOOGLE.value,
            password_hash=None,
            role=UserRole.USER.value,
            is_verified=True,  # Google already verified the address
            last_login_at=now,
        )
        session.add(user)
        await session.flush()
        logger.info(f"👤 Created Google account {user.id} ({mask_email(profile.email)})")
        return user


auth_service = AuthService()
