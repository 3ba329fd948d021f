import os
import uuid
from datetime import timedelta

# Tests never talk to Postgres; point the app engine at SQLite before importing it
TEST_DATABASE_URL = "sqlite+aiosqlite://"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ.pop("OPENAI_API_KEY", None)

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.core import models
from app.core.database import Base, get_db
from app.ai_feature.retriever import Capabilities
from app.ai_feature.service import get_capabilities

from tests.fakes import NOW, FakeKnowledge, FakeOperational


# =========================
# Database
# =========================
@pytest_asyncio.fixture(scope="function")
async def test_engine():
    # One shared in-memory connection so every session sees the same tables
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


# Devices + readings, including placeholder rows the executor must drop
@pytest_asyncio.fixture(scope="function")
async def sensor_data(db_session: AsyncSession):
    north = models.Device(name="North Ridge", latitude=37.9, longitude=-122.3)
    south = models.Device(name="South Valley", latitude=37.1, longitude=-122.0)
    db_session.add_all([north, south])
    await db_session.flush()

    readings = []
    for i in range(10):
        readings.append(
            models.SensorReading(
                device_id=north.id if i % 2 == 0 else south.id,
                timestamp=NOW - timedelta(hours=i),
                pm25=5.0 + i,
                pm10=10.0 + i,
                temperature=15.0 + i,
                humidity=30.0 + i,
            )
        )
    # placeholder rows
    readings.append(
        models.SensorReading(
            device_id=north.id, timestamp=NOW, pm25=1.0, temperature=0, humidity=50.0
        )
    )
    readings.append(
        models.SensorReading(
            device_id=south.id, timestamp=NOW, pm25=1.0, temperature=20.0, humidity=0
        )
    )
    db_session.add_all(readings)
    await db_session.commit()
    return {"north": north, "south": south}


@pytest_asyncio.fixture(scope="function")
async def air_quality_data(db_session: AsyncSession):
    rows = [
        models.AirQuality(
            datetime=NOW - timedelta(hours=i),
            from_node=f"node-{i}",
            pm25standard=8.0 + i,
            pm10standard=20.0 + i,
            temperature=18.0 + i,
            relativehumidity=45.0,
            latitude=37.0 + i / 10,
            longitude=-121.5,
        )
        for i in range(5)
    ]
    rows += [
        # no coordinates
        models.AirQuality(
            datetime=NOW, pm25standard=99.0, temperature=25.0,
            relativehumidity=40.0, latitude=None, longitude=None,
        ),
        # zero coordinates
        models.AirQuality(
            datetime=NOW, pm25standard=99.0, temperature=25.0,
            relativehumidity=40.0, latitude=0, longitude=0,
        ),
        # placeholder temperature
        models.AirQuality(
            datetime=NOW, pm25standard=99.0, temperature=0,
            relativehumidity=40.0, latitude=37.2, longitude=-121.5,
        ),
    ]
    db_session.add_all(rows)
    await db_session.commit()
    return rows


@pytest_asyncio.fixture(scope="function")
async def upload_session(db_session: AsyncSession):
    """Factory for upload sessions with rows."""

    async def create(created_at=NOW - timedelta(hours=1), expires_in=timedelta(hours=23),
                     status="active", rows=3, device_prefix="Upload"):
        session = models.UploadSession(
            id=uuid.uuid4(),
            created_at=created_at,
            expires_at=created_at + expires_in,
            file_name="upload.csv",
            status=status,
        )
        db_session.add(session)
        await db_session.flush()
        for i in range(rows):
            db_session.add(
                models.SessionData(
                    session_id=session.id,
                    datetime=created_at - timedelta(minutes=i),
                    pm25standard=10.0 + i,
                    pm10standard=25.0,
                    pm1standard=4.0,
                    temperature=22.0,
                    relativehumidity=35.0,
                    latitude=38.0,
                    longitude=-121.0,
                    device_name=f"{device_prefix} {i}",
                    created_at=created_at,
                )
            )
        await db_session.commit()
        return session

    return create


# =========================
# Capabilities
# =========================
@pytest.fixture
def failing_capabilities():
    """Every collaborator unavailable or broken."""
    return Capabilities(
        knowledge=FakeKnowledge(
            vector_error=ConnectionError("vector store down"),
            text_error=ConnectionError("text search down"),
        ),
        operational=FakeOperational(),
        embedder=None,
        completion=None,
        tier_timeout=1.0,
    )


# Client
@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, failing_capabilities):
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_capabilities] = lambda: failing_capabilities

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
