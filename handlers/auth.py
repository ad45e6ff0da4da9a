"""
Identity routes: registration, login, profile and Google sign-in
"""

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from config import Config
from database import get_db_session
from handlers.common import get_media_store, ok, read_assets, read_json
from middleware.auth_security import get_current_user
from models import User
from services.auth_service import auth_service, serialize_user
from services.google_oauth import GoogleOAuthClient, GoogleOAuthError
from utils.credential_security import CredentialSecurity
from utils.exception_handler import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register")
async def register(request: Request, session: AsyncSession = Depends(get_db_session)):
    body = await read_json(request)
    user = await auth_service.register(
        session,
        first_name=body.get("firstName"),
        last_name=body.get("lastName"),
        email=body.get("email"),
        university=body.get("university"),
        password=body.get("password"),
    )
    await session.commit()
    return ok(serialize_user(user), "User registered successfully", status_code=201)


@router.post("/login")
async def login(request: Request, session: AsyncSession = Depends(get_db_session)):
    body = await read_json(request)
    token, user = await auth_service.login(
        session,
        email=body.get("email"),
        password=body.get("password"),
        remember_me=bool(body.get("rememberMe", False)),
    )
    await session.commit()
    return ok({"token": token, "user": serialize_user(user)}, "Login successful")


@router.get("/verify")
async def verify(user: User = Depends(get_current_user)):
    return ok({"user": serialize_user(user)}, "Valid token")


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return ok(serialize_user(user))


@router.put("/profile")
async def update_profile(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    body = await read_json(request)
    user = await auth_service.update_profile(session, user, body)
    await session.commit()
    return ok(serialize_user(user), "Profile updated successfully")


@router.put("/password")
async def change_password(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    body = await read_json(request)
    await auth_service.change_password(session, user, body.get("currentPassword"), body.get("newPassword"))
    await session.commit()
    return ok(message="Password updated successfully")


@router.post("/profile/image")
async def upload_profile_image(
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
):
    form = await request.form()
    images = await read_assets(form, "profileImage")
    if not images:
        raise ValidationError("No image was provided")

    image = images[0]
    user = await auth_service.update_profile_image(
        session, user, get_media_store(request), image.data, image.filename, image.content_type,
    )
    await session.commit()
    return ok(
        {"profileImage": user.profile_image_url, "user": serialize_user(user)},
        "Profile image updated successfully",
    )


# ----------------------------------------------------------------------------
# Google sign-in
# ----------------------------------------------------------------------------

def _frontend_redirect(**params) -> RedirectResponse:
    return RedirectResponse(f"{Config.FRONTEND_URL}/auth/callback?{urlencode(params)}", status_code=302)


@router.get("/google")
async def google_login(request: Request):
    client: GoogleOAuthClient = request.app.state.google_oauth
    if not client.is_available():
        logger.warning("Google sign-in requested but OAuth is not configured")
        return _frontend_redirect(error="google_not_configured")
    return RedirectResponse(client.authorization_url(), status_code=302)


@router.get("/google/callback")
async def google_callback(request: Request, session: AsyncSession = Depends(get_db_session)):
    code = request.query_params.get("code")
    if not code:
        return _frontend_redirect(error=request.query_params.get("error", "missing_code"))

    client: GoogleOAuthClient = request.app.state.google_oauth
    try:
        profile = await client.fetch_profile(code)
    except GoogleOAuthError as e:
        logger.error(f"❌ Google sign-in failed: {e}")
        return _frontend_redirect(error="auth_failed")

    user = await auth_service.find_or_create_google_user(session, profile)
    await session.commit()

    if not user.is_active or user.is_blocked:
        return _frontend_redirect(error="account_disabled")

    token = CredentialSecurity.issue_token(user.id, user.email, user.role)
    return _frontend_redirect(token=token)
