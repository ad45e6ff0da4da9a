"""
Shared fixtures for the STUDEX marketplace test suites.

Key Components:
1. In-memory SQLite database per test, schema created through Database.create_tables
2. Factories for users, categories and listings
3. Bearer token helper
4. Fake media store standing in for Cloudinary
5. httpx client bound to an application built with create_app
"""

import logging
import os
from decimal import Decimal
from typing import List, Optional

# Settings are read at import time, so they are fixed before the app modules load
os.environ.setdefault("PASSWORD_HASH_ITERATIONS", "1000")
os.environ.setdefault("JWT_SECRET", "studex-test-secret")
os.environ.setdefault("PAYMENT_SIMULATION_DELAY_SECONDS", "0")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select

from api_server import create_app
from database import Database
from models import Category, Project, ProjectFile, ProjectStatus, User, UserRole
from services.google_oauth import GoogleOAuthClient
from services.media_store import MediaStoreError, UploadedAsset
from utils.credential_security import CredentialSecurity

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class FakeMediaStore:
    """Records uploads in memory; names listed in fail_names raise MediaStoreError"""

    def __init__(self, fail_names: Optional[List[str]] = None):
        self.fail_names = set(fail_names or [])
        self.uploads = []
        self.destroyed = []

    def is_available(self) -> bool:
        return True

    async def upload(self, data, folder, original_name, resource_type="auto", content_type=None):
        if original_name in self.fail_names:
            raise MediaStoreError(f"Upload failed: {original_name} rejected")
        public_id = f"studex/{folder}/{len(self.uploads) + 1}_{original_name.rsplit('.', 1)[0]}"
        self.uploads.append({"folder": folder, "name": original_name, "resource_type": resource_type})
        return UploadedAsset(
            url=f"https://res.cloudinary.com/demo/{resource_type}/upload/v1/{public_id}",
            public_id=public_id,
            size_bytes=len(data),
            resource_type=resource_type,
        )

    async def destroy(self, public_id, resource_type="image"):
        self.destroyed.append(public_id)
        return True


@pytest_asyncio.fixture
async def db():
    database = Database("sqlite+aiosqlite:///:memory:")
    await database.create_tables()
    yield database
    await database.dispose()


@pytest_asyncio.fixture
async def session(db):
    async with db.session_factory() as session:
        yield session


@pytest.fixture
def media_store():
    return FakeMediaStore()


@pytest_asyncio.fixture
async def client(db, media_store):
    app = create_app(
        db=db,
        start_scheduler=False,
        media_store=media_store,
        google_oauth=GoogleOAuthClient(client_id="", client_secret=""),
    )
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


# ============================================================================
# Factories
# ============================================================================

@pytest.fixture
def make_user(session):
    counter = {"n": 0}

    async def _make_user(email: Optional[str] = None, role: str = UserRole.USER.value,
                         password: str = "secret123", first_name: str = "Ana", last_name: str = "Quispe",
                         **fields) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@pucp.edu.pe",
            password_hash=CredentialSecurity.hash_password(password),
            first_name=first_name,
            last_name=last_name,
            university="PUCP",
            role=role,
            **fields,
        )
        session.add(user)
        await session.commit()
        return user

    return _make_user


@pytest.fixture
def make_category(session):
    counter = {"n": 0}

    async def _make_category(name: Optional[str] = None, **fields) -> Category:
        counter["n"] += 1
        category = Category(name=name or f"Categoria {counter['n']}", **fields)
        session.add(category)
        await session.commit()
        return category

    return _make_category


@pytest.fixture
def make_project(session, make_category):
    async def _make_project(seller: User, price="100.00", title: str = "Sistema de inventario",
                            status: str = ProjectStatus.PUBLISHED.value, category: Optional[Category] = None,
                            with_file: bool = False, **fields) -> Project:
        category = category or await make_category()
        values = {
            "description": "Proyecto final del curso",
            "project_type": "SISTEMA_APLICACION",
            "university": "PUCP",
            "subject": "Ingenieria de Sistemas",
            "year": 2024,
        }
        values.update(fields)
        project = Project(
            title=title,
            price=Decimal(str(price)),
            status=status,
            seller_id=seller.id,
            category_id=category.id,
            **values,
        )
        if with_file:
            project.files = [ProjectFile(file_name="informe.pdf", file_url="https://files.test/informe.pdf",
                                         file_type="application/pdf", size_bytes=2048, position=1)]
        session.add(project)
        await session.commit()
        # Load seller, category and asset collections up front so no lazy load happens later
        result = await session.execute(
            select(Project).where(Project.id == project.id).execution_options(populate_existing=True)
        )
        return result.scalar_one()

    return _make_project


def bearer(user: User) -> dict:
    token = CredentialSecurity.issue_token(user.id, user.email, user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return bearer
