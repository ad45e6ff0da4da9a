"""
Seller tests
Seller onboarding, listing authoring and partial-failure asset uploads
"""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from models import Notification, NotificationType, Project, ProjectImage, ProjectStatus, UserRole
from services.notification_service import NotificationService
from services.seller_service import ListingDraft, SellerService, parse_tags
from utils.exception_handler import ForbiddenError, InternalError, ValidationError


def _form(category_id, **overrides):
    data = {
        "titulo": "Sistema de ventas",
        "descripcion": "Codigo fuente y manual",
        "precio": "45.50",
        "tipo": "CODIGO_FUENTE",
        "categoryId": str(category_id),
        "universidad": "UNI",
        "career": "Ingenieria de Sistemas",
        "year": "2023",
        "tags": '["python", "fastapi"]',
    }
    data.update(overrides)
    return data


class TestParseTags:

    @pytest.mark.parametrize("raw,expected", [
        ('["excel", "vba", "excel"]', ["excel", "vba"]),
        ("excel, vba ,", ["excel", "vba"]),
        (["  uml "], ["uml"]),
        ("", []),
        (None, []),
        ('{"not": "a list"}', []),
    ])
    def test_parse_tags(self, raw, expected):
        assert parse_tags(raw) == expected


class TestSellerService:

    async def test_become_seller_once(self, session, make_user):
        service = SellerService(notifications=NotificationService())
        user = await make_user()

        await service.become_seller(session, user)
        assert user.role == UserRole.SELLER.value
        with pytest.raises(ValidationError):
            await service.become_seller(session, user)

    async def test_admin_cannot_become_seller(self, session, make_user):
        admin = await make_user(role=UserRole.ADMIN.value)
        with pytest.raises(ValidationError):
            await SellerService().become_seller(session, admin)

    async def test_draft_requires_seller(self, session, make_user, make_category):
        category = await make_category()
        user = await make_user()
        draft = ListingDraft(title="Plantilla", description="Formato APA", price="5", project_type="PLANTILLA_TEMPLATE",
                             category_id=category.id)

        with pytest.raises(ForbiddenError):
            await SellerService().create_listing(session, user, draft, ProjectStatus.DRAFT)

    async def test_validation_errors(self, session, make_user, make_category):
        service = SellerService()
        category = await make_category()
        user = await make_user(role=UserRole.SELLER.value)

        bad_type = ListingDraft(title="T", description="D", price="5", project_type="NOPE", category_id=category.id)
        with pytest.raises(ValidationError, match="Unknown project type"):
            await service.create_listing(session, user, bad_type)

        bad_price = ListingDraft(title="T", description="D", price="0", project_type="OTRO", category_id=category.id)
        with pytest.raises(ValidationError, match="price"):
            await service.create_listing(session, user, bad_price)

        bad_category = ListingDraft(title="T", description="D", price="5", project_type="OTRO", category_id=999)
        with pytest.raises(ValidationError, match="Category"):
            await service.create_listing(session, user, bad_category)

    @pytest.mark.parametrize("price", ["NaN", "Infinity", "1e30", None])
    async def test_non_finite_price_rejected(self, session, make_user, make_category, price):
        category = await make_category()
        user = await make_user(role=UserRole.SELLER.value)
        draft = ListingDraft(title="T", description="D", price=price, project_type="OTRO", category_id=category.id)

        with pytest.raises(ValidationError, match="price"):
            await SellerService().create_listing(session, user, draft)

    async def test_published_listing_notifies_author(self, session, make_user, make_category):
        service = SellerService(notifications=NotificationService())
        category = await make_category()
        user = await make_user()
        draft = ListingDraft(title="Resumen de Fisica", description="Apuntes", price="12", project_type="OTRO",
                             category_id=category.id, tags="fisica,apuntes")

        project = await service.create_listing(session, user, draft)

        assert project.status == ProjectStatus.PUBLISHED.value
        assert project.university == "Sin universidad"
        assert project.tag_names == ["apuntes", "fisica"]
        notes = (await session.execute(select(Notification).where(Notification.user_id == user.id))).scalars().all()
        assert [n.type for n in notes] == [NotificationType.PROJECT_PUBLISHED.value]

    async def test_creation_failure_notifies_and_raises(self, session, make_user, make_category):
        service = SellerService(notifications=NotificationService())
        category = await make_category()
        user = await make_user(role=UserRole.SELLER.value)
        user_id = user.id
        draft = ListingDraft(title="Roto", description="D", price="5", project_type="OTRO", category_id=category.id)

        with patch.object(SellerService, "_insert_listing", AsyncMock(side_effect=RuntimeError("disk full"))):
            with pytest.raises(InternalError):
                await service.create_listing(session, user, draft)

        notes = (await session.execute(select(Notification).where(Notification.user_id == user_id))).scalars().all()
        assert [n.type for n in notes] == [NotificationType.PROJECT_ERROR.value]
        assert notes[0].extra_data["project_title"] == "Roto"


class TestSellerRoutes:

    async def test_upload_with_files_partial_failure(self, client, db, make_user, make_category, auth_headers,
                                                     media_store):
        media_store.fail_names.add("broken.png")
        category = await make_category()
        seller = await make_user(role=UserRole.SELLER.value)

        response = await client.post(
            "/api/projects/upload-with-files",
            data=_form(category.id),
            files=[
                ("files", ("codigo.zip", b"PK\x03\x04", "application/zip")),
                ("images", ("broken.png", b"\x89PNG-a", "image/png")),
                ("images", ("captura.png", b"\x89PNG-b", "image/png")),
            ],
            headers=auth_headers(seller),
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["project"]["title"] == "Sistema de ventas"
        assert data["project"]["tags"] == ["fastapi", "python"]
        assert len(data["uploadedFiles"]) == 1
        assert [img["fileName"] for img in data["uploadedImages"]] == ["captura.png"]
        assert data["uploadedImages"][0]["isMain"] is True
        assert data["uploadErrors"] == ["Error uploading broken.png: Upload failed: broken.png rejected"]

        folders = {upload["folder"] for upload in media_store.uploads}
        project_id = data["project"]["id"]
        assert folders == {f"projects/{project_id}/files", f"projects/{project_id}/images"}

        async with db.session_factory() as check:
            images = (await check.execute(select(ProjectImage).where(ProjectImage.project_id == project_id))).scalars().all()
            assert len(images) == 1
            notes = (await check.execute(select(Notification).where(Notification.user_id == seller.id))).scalars().all()
            assert notes[0].type == NotificationType.PROJECT_PUBLISHED.value
            assert notes[0].extra_data["files_uploaded"] == 1

    async def test_upload_with_files_needs_an_asset(self, client, make_user, make_category, auth_headers):
        category = await make_category()
        seller = await make_user(role=UserRole.SELLER.value)

        response = await client.post(
            "/api/projects/upload-with-files", data=_form(category.id), headers=auth_headers(seller),
        )
        assert response.status_code == 400

    async def test_disallowed_file_type_rejected(self, client, make_user, make_category, auth_headers, media_store):
        category = await make_category()
        seller = await make_user(role=UserRole.SELLER.value)

        response = await client.post(
            "/api/projects/upload-with-files",
            data=_form(category.id),
            files=[("files", ("virus.exe", b"MZ", "application/x-msdownload"))],
            headers=auth_headers(seller),
        )
        assert response.status_code == 400
        assert media_store.uploads == []

    async def test_draft_then_upload_moves_to_review(self, client, db, make_user, make_category, auth_headers):
        category = await make_category()
        seller = await make_user(role=UserRole.SELLER.value)
        stranger = await make_user(role=UserRole.SELLER.value)

        created = await client.post("/api/seller/upload-project", json={
            "title": "Analisis de mercado", "description": "Estudio", "price": 30,
            "type": "ANALISIS_MERCADO", "categoryId": category.id,
        }, headers=auth_headers(seller))
        assert created.status_code == 201
        project_id = created.json()["data"]["id"]
        assert created.json()["data"]["status"] == ProjectStatus.DRAFT.value

        denied = await client.post(
            f"/api/seller/upload-files/{project_id}",
            files=[("files", ("informe.pdf", b"%PDF-1.7", "application/pdf"))],
            headers=auth_headers(stranger),
        )
        assert denied.status_code == 403

        uploaded = await client.post(
            f"/api/seller/upload-files/{project_id}",
            files=[("files", ("informe.pdf", b"%PDF-1.7", "application/pdf"))],
            headers=auth_headers(seller),
        )
        assert uploaded.status_code == 200
        assert uploaded.json()["data"]["projectStatus"] == ProjectStatus.REVIEW.value

        async with db.session_factory() as check:
            assert (await check.get(Project, project_id)).status == ProjectStatus.REVIEW.value

    async def test_upload_files_all_failed(self, client, make_user, make_project, auth_headers, media_store):
        media_store.fail_names.add("informe.pdf")
        seller = await make_user(role=UserRole.SELLER.value)
        project = await make_project(seller)

        response = await client.post(
            f"/api/seller/upload-files/{project.id}",
            files=[("files", ("informe.pdf", b"%PDF-1.7", "application/pdf"))],
            headers=auth_headers(seller),
        )
        assert response.status_code == 400
        assert response.json()["errors"] == ["Error uploading informe.pdf: Upload failed: informe.pdf rejected"]

    async def test_seller_onboarding_and_dashboard(self, client, make_user, make_project, auth_headers):
        user = await make_user()
        other = await make_user()

        became = await client.post("/api/seller/become-seller", headers=auth_headers(user))
        assert became.json()["data"]["userType"] == UserRole.SELLER.value
        again = await client.post("/api/seller/become-seller", headers=auth_headers(user))
        assert again.status_code == 400

        await make_project(user, views=10, downloads=2)
        await make_project(user, status=ProjectStatus.DRAFT.value, views=1)

        status = (await client.get(f"/api/seller/status/{user.id}", headers=auth_headers(user))).json()["data"]
        assert status["isSeller"] is True
        assert status["totalProjects"] == 2
        assert status["activeProjects"] == 1

        dashboard = (await client.get(f"/api/seller/my-projects/{user.id}", headers=auth_headers(user))).json()["data"]
        assert dashboard["stats"] == {"total": 2, "published": 1, "totalViews": 11, "totalDownloads": 2}

        peek = await client.get(f"/api/seller/my-projects/{user.id}", headers=auth_headers(other))
        assert peek.status_code == 403

    async def test_json_upload_accepts_spanish_aliases(self, client, make_user, make_category, auth_headers):
        category = await make_category()
        user = await make_user()
        response = await client.post("/api/projects/upload", json={
            "titulo": "Guia de SQL", "descripcion": "Consultas", "precio": "9.90", "tipo": "MANUAL_GUIA",
            "categoryId": category.id, "tags": ["sql"],
        }, headers=auth_headers(user))

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["price"] == 9.9
        assert data["status"] == ProjectStatus.PUBLISHED.value
        assert data["tags"] == ["sql"]
