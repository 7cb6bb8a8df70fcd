"""Shared pytest configuration and fixtures."""

import os
from typing import Dict, Optional

# Settings are read at import time
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-zenscribe")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("OPENAI_API_KEY", "sk-test-key")
os.environ.setdefault("AUTH_RETRY_BACKOFF", "0")
os.environ.setdefault("AUTH_RETRY_MAX_BACKOFF", "0")
os.environ.setdefault("TRANSCRIPTION_RETRY_DELAY", "0")
os.environ.setdefault("TRANSCRIPTION_RETRY_MAX_DELAY", "0")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from zenscribe.crud.crud_patient import patient_crud
from zenscribe.crud.crud_subscription import plan_crud
from zenscribe.crud.crud_user import user_crud
from zenscribe.db.base_class import Base
from zenscribe.db.session import get_db
from zenscribe.main import app
from zenscribe.models.models import UserRole
from zenscribe.schemas.patient import PatientCreate
from zenscribe.schemas.user import UserCreate
from zenscribe.services.token_service import token_service

BOUNDARY = "----ZenScribeBoundary7MA4YWxkTrZu0gW"


def build_multipart(
    file_bytes: bytes,
    filename: Optional[str] = "registrazione.webm",
    content_type: Optional[str] = "audio/webm",
    fields: Optional[Dict[str, str]] = None,
    boundary: str = BOUNDARY,
) -> bytes:
    """multipart/form-data body with fields first and one file part"""
    delimiter = f"--{boundary}".encode()
    chunks = []
    for name, value in (fields or {}).items():
        chunks += [
            delimiter,
            f'\r\nContent-Disposition: form-data; name="{name}"\r\n\r\n'.encode(),
            value.encode(),
            b"\r\n",
        ]
    disposition = 'Content-Disposition: form-data; name="file"'
    if filename is not None:
        disposition += f'; filename="{filename}"'
    headers = f"\r\n{disposition}\r\n"
    if content_type is not None:
        headers += f"Content-Type: {content_type}\r\n"
    chunks += [delimiter, headers.encode(), b"\r\n", file_bytes, b"\r\n", delimiter, b"--\r\n"]
    return b"".join(chunks)


@pytest.fixture
def multipart_body():
    return build_multipart


@pytest.fixture
def multipart_content_type():
    return f"multipart/form-data; boundary={BOUNDARY}"


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        await plan_crud.ensure_defaults(session)
        await session.commit()
    return factory


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def doctor(db):
    return await user_crud.create(
        db, obj_in=UserCreate(email="doctor@zenscribe.it", password="password123", full_name="Giulia Rossi")
    )


@pytest_asyncio.fixture
async def other_doctor(db):
    return await user_crud.create(
        db, obj_in=UserCreate(email="colleague@zenscribe.it", password="password123", full_name="Marco Bianchi")
    )


@pytest_asyncio.fixture
async def admin(db):
    return await user_crud.create(
        db,
        obj_in=UserCreate(email="admin@zenscribe.it", password="password123", full_name="Admin User"),
        role=UserRole.ADMIN,
    )


@pytest_asyncio.fixture
async def patient(db, doctor):
    patient = await patient_crud.create(
        db,
        obj_in=PatientCreate(first_name="Anna", last_name="Verdi", birth_date="1985-04-12", gender="F"),
        user_id=doctor.id,
    )
    await db.commit()
    return patient


def auth_headers(user) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token_service.create_access_token(user.id)}"}


@pytest_asyncio.fixture
async def doctor_headers(doctor):
    return auth_headers(doctor)


@pytest_asyncio.fixture
async def other_doctor_headers(other_doctor):
    return auth_headers(other_doctor)


@pytest_asyncio.fixture
async def admin_headers(admin):
    return auth_headers(admin)


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
