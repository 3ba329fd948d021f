from datetime import timedelta

import pytest

from app.core import models
from app.ai_feature.operational import (
    OperationalDataSource,
    SessionExpiryPolicy,
    to_operational_record,
)

from tests.fakes import NOW


@pytest.fixture
def source(session_factory):
    return OperationalDataSource(session_factory, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_latest_fresh_session_rows(source, upload_session):
    await upload_session(rows=3)

    records = await source.fetch()

    assert len(records) == 3
    first = records[0]
    # newest reading first, canonical field names
    assert first["pm25"] == 10.0
    assert first["pm10"] == 25.0
    assert first["humidity"] == 35.0
    assert first["device_name"] == "Upload 0"
    assert first["location"] == [38.0, -121.0]
    assert first["source"] == "session_upload"
    assert "pm25standard" not in first
    assert "relativehumidity" not in first
    assert isinstance(first["timestamp"], str)


@pytest.mark.asyncio
async def test_limit_is_respected(source, upload_session):
    await upload_session(rows=6)
    assert len(await source.fetch(limit=4)) == 4


@pytest.mark.asyncio
async def test_most_recent_session_wins(source, upload_session):
    await upload_session(created_at=NOW - timedelta(hours=5), device_prefix="Old")
    await upload_session(created_at=NOW - timedelta(minutes=10), device_prefix="New")

    records = await source.fetch()
    assert {r["device_name"] for r in records} == {"New 0", "New 1", "New 2"}


@pytest.mark.asyncio
async def test_explicit_session_preferred(source, upload_session):
    older = await upload_session(created_at=NOW - timedelta(hours=3), device_prefix="Mine")
    await upload_session(created_at=NOW - timedelta(minutes=10), device_prefix="Other")

    records = await source.fetch(session_id=older.id)
    assert records[0]["device_name"] == "Mine 0"


@pytest.mark.asyncio
async def test_stale_explicit_session_falls_back_to_recent(source, upload_session):
    stale = await upload_session(
        created_at=NOW - timedelta(hours=30),
        expires_in=timedelta(hours=48),
        device_prefix="Stale",
    )
    await upload_session(created_at=NOW - timedelta(hours=1), device_prefix="Fresh")

    records = await source.fetch(session_id=stale.id)
    assert records[0]["device_name"] == "Fresh 0"


@pytest.mark.asyncio
async def test_expired_session_ignored(source, upload_session):
    await upload_session(created_at=NOW - timedelta(hours=1), expires_in=timedelta(minutes=30))
    assert await source.fetch() == []


@pytest.mark.asyncio
async def test_inactive_session_ignored(source, upload_session):
    await upload_session(status="archived")
    assert await source.fetch() == []


@pytest.mark.asyncio
async def test_no_sessions_at_all(source):
    assert await source.fetch() == []


@pytest.mark.asyncio
async def test_max_age_comes_from_policy(session_factory, upload_session):
    await upload_session(created_at=NOW - timedelta(hours=3))

    strict = OperationalDataSource(
        session_factory,
        policy=SessionExpiryPolicy(max_age=timedelta(hours=2)),
        clock=lambda: NOW,
    )
    relaxed = OperationalDataSource(session_factory, clock=lambda: NOW)

    assert await strict.fetch() == []
    assert len(await relaxed.fetch()) == 3


@pytest.mark.asyncio
async def test_rows_without_coordinates_skipped(source, upload_session, db_session):
    session = await upload_session(rows=2)
    db_session.add(
        models.SessionData(
            session_id=session.id,
            datetime=NOW,
            pm25standard=50.0,
            temperature=22.0,
            latitude=None,
            longitude=-121.0,
            device_name="No GPS",
        )
    )
    await db_session.commit()

    records = await source.fetch()
    assert len(records) == 2
    assert "No GPS" not in {r["device_name"] for r in records}


def test_policy_checks_status_expiry_and_age():
    policy = SessionExpiryPolicy(max_age=timedelta(hours=24))

    def session(**overrides):
        values = {
            "status": "active",
            "created_at": NOW - timedelta(hours=1),
            "expires_at": NOW + timedelta(hours=1),
        }
        values.update(overrides)
        return models.UploadSession(**values)

    assert policy.is_fresh(session(), NOW)
    assert not policy.is_fresh(session(status="archived"), NOW)
    assert not policy.is_fresh(session(expires_at=NOW), NOW)
    assert not policy.is_fresh(session(created_at=NOW - timedelta(hours=25)), NOW)
    # naive datetimes are read as UTC
    naive = session(
        created_at=(NOW - timedelta(hours=1)).replace(tzinfo=None),
        expires_at=(NOW + timedelta(hours=1)).replace(tzinfo=None),
    )
    assert policy.is_fresh(naive, NOW)


def test_operational_record_shape():
    row = models.SessionData(
        id=7,
        datetime=NOW,
        temperature=21.5,
        relativehumidity=33.0,
        pm25standard=14.0,
        pm10standard=28.0,
        pm1standard=6.0,
        device_name="Ridge Top",
        latitude=38.2,
        longitude=-120.9,
    )

    record = to_operational_record(row)

    assert record == {
        "id": 7,
        "timestamp": NOW.isoformat(),
        "temperature": 21.5,
        "humidity": 33.0,
        "pm25": 14.0,
        "pm10": 28.0,
        "pm1": 6.0,
        "device_name": "Ridge Top",
        "latitude": 38.2,
        "longitude": -120.9,
        "location": [38.2, -120.9],
        "source": "session_upload",
    }
