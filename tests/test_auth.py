"""
Identity tests
Bearer tokens, password hashing, account service rules and the HTTP auth gate
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from models import AuthProvider, User, UserRole
from services.auth_service import AuthService, serialize_user
from services.google_oauth import GoogleOAuthError, GoogleProfile
from utils.credential_security import CredentialSecurity, TokenError
from utils.exception_handler import AuthError, ConflictError, ValidationError
from utils.helpers import is_university_email


class TestCredentialSecurity:
    """HMAC bearer tokens and PBKDF2 password hashes"""

    def test_token_round_trip_claims(self):
        token = CredentialSecurity.issue_token(7, "ana@pucp.edu.pe", "SELLER")
        claims = CredentialSecurity.verify_token(token)
        assert (claims.user_id, claims.email, claims.role) == (7, "ana@pucp.edu.pe", "SELLER")
        assert claims.expires_at - claims.issued_at == 24 * 3600

    def test_remember_me_extends_lifetime(self):
        claims = CredentialSecurity.verify_token(
            CredentialSecurity.issue_token(7, "ana@pucp.edu.pe", "USER", remember_me=True)
        )
        assert claims.expires_at - claims.issued_at == 30 * 24 * 3600

    def test_tampered_token_rejected(self):
        token = CredentialSecurity.issue_token(7, "ana@pucp.edu.pe", "USER")
        forged = CredentialSecurity.issue_token(1, "admin@pucp.edu.pe", "ADMIN")
        with pytest.raises(TokenError, match="signature"):
            CredentialSecurity.verify_token(forged.split(".")[0] + "." + token.split(".")[1])

    def test_expired_token_flagged(self):
        issued = datetime.now(timezone.utc) - timedelta(days=2)
        token = CredentialSecurity.issue_token(7, "ana@pucp.edu.pe", "USER", now=issued)
        with pytest.raises(TokenError) as exc_info:
            CredentialSecurity.verify_token(token)
        assert exc_info.value.expired is True

    @pytest.mark.parametrize("token", ["", "no-dot", None])
    def test_malformed_token(self, token):
        with pytest.raises(TokenError):
            CredentialSecurity.verify_token(token)

    def test_password_hash_and_verify(self):
        stored = CredentialSecurity.hash_password("clave-segura")
        assert stored.startswith("pbkdf2_sha256$")
        assert CredentialSecurity.verify_password("clave-segura", stored)
        assert not CredentialSecurity.verify_password("otra-clave", stored)
        assert not CredentialSecurity.verify_password("clave-segura", None)
        assert not CredentialSecurity.verify_password("clave-segura", "md5$garbage")

    @pytest.mark.parametrize("email,expected", [
        ("ana@pucp.edu.pe", True),
        ("luis@uni.edu.pe", True),
        ("maria@unmsm.edu.pe", True),
        ("jose@upc.pe", True),
        ("someone@gmail.com", False),
        ("broken@@pucp.edu.pe", False),
        ("", False),
    ])
    def test_university_email(self, email, expected):
        assert is_university_email(email) is expected


class TestAuthService:

    async def test_register_normalizes_and_hashes(self, session):
        user = await AuthService().register(session, "Ana", "Quispe", " Ana@PUCP.edu.pe ", "PUCP", "secret123")

        assert user.email == "ana@pucp.edu.pe"
        assert user.role == UserRole.USER.value
        assert user.auth_provider == AuthProvider.LOCAL.value
        assert user.password_hash != "secret123"
        assert "password" not in str(serialize_user(user)).lower()

    async def test_register_requires_every_field(self, session):
        with pytest.raises(ValidationError, match="lastName"):
            await AuthService().register(session, "Ana", None, "ana@pucp.edu.pe", "PUCP", "secret123")

    async def test_register_rejects_non_university_email(self, session):
        with pytest.raises(ValidationError, match="university email"):
            await AuthService().register(session, "Ana", "Q", "ana@gmail.com", "PUCP", "secret123")

    async def test_register_rejects_short_password(self, session):
        with pytest.raises(ValidationError, match="at least"):
            await AuthService().register(session, "Ana", "Q", "ana@pucp.edu.pe", "PUCP", "123")

    async def test_duplicate_email_conflicts_case_insensitively(self, session, make_user):
        await make_user(email="ana@pucp.edu.pe")
        with pytest.raises(ConflictError):
            await AuthService().register(session, "Ana", "Q", "ANA@pucp.edu.pe", "PUCP", "secret123")

    async def test_login_success_and_failures(self, session, make_user):
        service = AuthService()
        user = await make_user(email="luis@uni.edu.pe", password="secret123")

        token, logged_in = await service.login(session, "LUIS@uni.edu.pe", "secret123")
        assert logged_in.id == user.id
        assert logged_in.last_login_at is not None
        assert CredentialSecurity.verify_token(token).user_id == user.id

        with pytest.raises(AuthError, match="Invalid credentials"):
            await service.login(session, "luis@uni.edu.pe", "wrong-pass")
        with pytest.raises(AuthError, match="Invalid credentials"):
            await service.login(session, "nobody@uni.edu.pe", "secret123")

    async def test_blocked_account_cannot_login(self, session, make_user):
        await make_user(email="bloq@pucp.edu.pe", password="secret123", is_blocked=True)
        with pytest.raises(AuthError, match="blocked"):
            await AuthService().login(session, "bloq@pucp.edu.pe", "secret123")

    async def test_update_profile_and_email_conflict(self, session, make_user):
        service = AuthService()
        await make_user(email="taken@pucp.edu.pe")
        user = await make_user(email="me@pucp.edu.pe")

        updated = await service.update_profile(session, user, {"firstName": " Carla ", "bio": "Ingeniera", "role": "ADMIN"})
        assert updated.first_name == "Carla"
        assert updated.bio == "Ingeniera"
        assert updated.role == UserRole.USER.value

        with pytest.raises(ConflictError):
            await service.update_profile(session, user, {"email": "TAKEN@pucp.edu.pe"})
        with pytest.raises(ValidationError):
            await service.update_profile(session, user, {})

    async def test_change_password(self, session, make_user):
        service = AuthService()
        user = await make_user(password="secret123")

        with pytest.raises(AuthError):
            await service.change_password(session, user, "wrong", "nueva-clave")
        await service.change_password(session, user, "secret123", "nueva-clave")
        assert CredentialSecurity.verify_password("nueva-clave", user.password_hash)

    async def test_profile_image_replaces_and_destroys_old(self, session, make_user, media_store):
        old_url = "https://res.cloudinary.com/demo/image/upload/v99/studex/users/profiles/old_avatar.png"
        user = await make_user(profile_image_url=old_url)

        updated = await AuthService().update_profile_image(
            session, user, media_store, b"\x89PNG...", "avatar.png", "image/png",
        )

        assert updated.profile_image_url != old_url
        assert media_store.uploads[0]["folder"] == "users/profiles"
        assert media_store.destroyed == ["studex/users/profiles/old_avatar"]

    async def test_profile_image_must_be_an_image(self, session, make_user, media_store):
        user = await make_user()
        with pytest.raises(ValidationError):
            await AuthService().update_profile_image(session, user, media_store, b"%PDF", "cv.pdf", "application/pdf")

    async def test_google_user_created_then_linked(self, session, make_user):
        service = AuthService()
        profile = GoogleProfile(google_id="g-1", email="nuevo@gmail.com", first_name="Nuevo", last_name="",
                                picture="https://lh3.googleusercontent.com/a")
        created = await service.find_or_create_google_user(session, profile)
        assert created.auth_provider == AuthProvider.GOOGLE.value
        assert created.password_hash is None
        assert created.is_verified is True

        existing = await make_user(email="ana@pucp.edu.pe")
        linked = await service.find_or_create_google_user(
            session, GoogleProfile(google_id="g-2", email="ana@pucp.edu.pe", first_name="Ana", last_name="Q", picture=None),
        )
        assert linked.id == existing.id
        assert linked.google_id == "g-2"


class TestAuthRoutes:
    """Bearer gate semantics over HTTP"""

    async def test_missing_token_is_401(self, client):
        response = await client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "Access token required"}

    async def test_bad_token_is_403(self, client):
        response = await client.get("/api/auth/me", headers={"Authorization": "Bearer not.valid"})
        assert response.status_code == 403

    async def test_token_for_deleted_user_is_401(self, client):
        token = CredentialSecurity.issue_token(9999, "ghost@pucp.edu.pe", "USER")
        response = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    async def test_register_login_me(self, client):
        registered = await client.post("/api/auth/register", json={
            "firstName": "Ana", "lastName": "Quispe", "email": "ana@pucp.edu.pe",
            "university": "PUCP", "password": "secret123",
        })
        assert registered.status_code == 201
        assert registered.json()["data"]["email"] == "ana@pucp.edu.pe"

        duplicate = await client.post("/api/auth/register", json={
            "firstName": "Ana", "lastName": "Quispe", "email": "ana@pucp.edu.pe",
            "university": "PUCP", "password": "secret123",
        })
        assert duplicate.status_code == 409

        login = await client.post("/api/auth/login", json={"email": "ana@pucp.edu.pe", "password": "secret123"})
        assert login.status_code == 200
        token = login.json()["data"]["token"]

        me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.json()["data"]["firstName"] == "Ana"

    async def test_bad_login_is_401(self, client, make_user):
        await make_user(email="ana@pucp.edu.pe", password="secret123")
        response = await client.post("/api/auth/login", json={"email": "ana@pucp.edu.pe", "password": "nope"})
        assert response.status_code == 401

    async def test_malformed_json_is_400(self, client):
        response = await client.post(
            "/api/auth/login", content=b"{not json", headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400

    async def test_google_not_configured_redirects_with_error(self, client):
        response = await client.get("/api/auth/google")
        assert response.status_code == 302
        assert "error=google_not_configured" in response.headers["location"]

    async def test_google_callback_issues_token(self, client):
        profile = GoogleProfile(google_id="g-9", email="nuevo@gmail.com", first_name="Nuevo", last_name="", picture=None)
        with patch("services.google_oauth.GoogleOAuthClient.fetch_profile", AsyncMock(return_value=profile)):
            response = await client.get("/api/auth/google/callback", params={"code": "abc"})

        assert response.status_code == 302
        location = response.headers["location"]
        assert "/auth/callback?token=" in location

    async def test_google_callback_failure(self, client):
        with patch("services.google_oauth.GoogleOAuthClient.fetch_profile",
                   AsyncMock(side_effect=GoogleOAuthError("bad code"))):
            response = await client.get("/api/auth/google/callback", params={"code": "abc"})
        assert "error=auth_failed" in response.headers["location"]

    async def test_profile_image_upload(self, client, make_user, auth_headers, media_store):
        user = await make_user()
        response = await client.post(
            "/api/auth/profile/image",
            files={"profileImage": ("me.png", b"\x89PNG-bytes", "image/png")},
            headers=auth_headers(user),
        )
        assert response.status_code == 200
        assert response.json()["data"]["profileImage"].startswith("https://res.cloudinary.com/")
        assert media_store.uploads[0]["resource_type"] == "image"
