"""
Shared fixtures: a throwaway SQLite database per test, a recording blob
store, seeded users and an HTTP client bound to the app.
"""
import os

# Must be set before src.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["IMAGEKIT_URL_ENDPOINT"] = "https://ik.imagekit.io/test"
os.environ["ORPHAN_POLICY"] = "retain"

from datetime import datetime
from typing import Optional

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select, func

from src.main import app
from src.auth.models import UserModel
from src.auth.jwt import create_access_token
from src.infrastructure.database import Base, build_engine, build_session_factory, get_db
from src.infrastructure.blob_store import BlobStore, BlobDeletionResult, get_blob_store
from src.infrastructure.location_store import LocationStore
from src.infrastructure.models import LocationModel, UserSaveModel, PhotoModel


class FakeBlobStore(BlobStore):
    """Records every delete; ids in `failing` fail, ids in `absent` are already gone."""

    def __init__(self):
        self.calls: list[str] = []
        self.failing: set[str] = set()
        self.absent: set[str] = set()

    async def delete_blob(self, file_id: str) -> BlobDeletionResult:
        self.calls.append(file_id)
        if file_id in self.failing:
            return BlobDeletionResult(file_id=file_id, success=False, error="http 500")
        if file_id in self.absent:
            return BlobDeletionResult(file_id=file_id, success=True, already_absent=True)
        return BlobDeletionResult(file_id=file_id, success=True)


class Seeder:
    """Writes fixture rows through its own session and commits each step."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def user(self, email: str, role: str = "user", is_admin: bool = False) -> UserModel:
        async with self.session_factory() as db:
            user = UserModel(email=email, username=email.split("@")[0], role=role, is_admin=is_admin)
            db.add(user)
            await db.commit()
            return user

    async def location(
        self,
        creator: UserModel,
        place_id: str = "place-pont-neuf",
        name: str = "Pont Neuf",
        **fields,
    ) -> LocationModel:
        async with self.session_factory() as db:
            location = await LocationStore(db).create_location(
                {"place_id": place_id, "name": name, "lat": 48.8566, "lng": 2.3412, **fields},
                creator_id=creator.id,
            )
            await db.commit()
            return location

    async def save(self, user: UserModel, location: LocationModel, **fields) -> UserSaveModel:
        async with self.session_factory() as db:
            user_save = await LocationStore(db).create_user_save(user.id, location.id, fields)
            await db.commit()
            return user_save

    async def photo(
        self,
        location: LocationModel,
        uploader: UserModel,
        file_id: str,
        uploaded_at: Optional[datetime] = None,
        is_primary: bool = False,
    ) -> PhotoModel:
        async with self.session_factory() as db:
            photos = await LocationStore(db).upsert_photos(
                location,
                uploader_id=uploader.id,
                descriptors=[{"file_id": file_id, "file_path": f"/locations/{file_id}.jpg"}],
            )
            photo = photos[0]
            photo.is_primary = is_primary
            if uploaded_at is not None:
                photo.uploaded_at = uploaded_at
            await db.commit()
            return photo


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'locations.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    """Session handed to the code under test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def count_rows(session_factory):
    """Count rows straight from the database, bypassing any session cache."""
    async def _count(model, *criteria) -> int:
        async with session_factory() as session:
            stmt = select(func.count()).select_from(model)
            if criteria:
                stmt = stmt.where(*criteria)
            result = await session.execute(stmt)
            return result.scalar_one()
    return _count


@pytest.fixture
def fetch_one(session_factory):
    """Load a fresh copy of a row, or None."""
    async def _fetch(model, *criteria):
        async with session_factory() as session:
            result = await session.execute(select(model).where(*criteria))
            return result.scalar_one_or_none()
    return _fetch


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
async def creator(seed):
    return await seed.user("alice@example.com")


@pytest.fixture
async def other_user(seed):
    return await seed.user("bob@example.com")


@pytest.fixture
async def staffer(seed):
    return await seed.user("carol@example.com", role="staffer")


@pytest.fixture
def auth_headers():
    def _headers(user: UserModel) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}
    return _headers


@pytest.fixture
async def client(session_factory, blob_store):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
