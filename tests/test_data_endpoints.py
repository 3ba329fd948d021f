import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_query_air_quality(client: AsyncClient, air_quality_data):
    payload = {
        "table": "air_quality",
        "filters": [{"field": "PM2.5", "operator": "gte", "value": 11}],
        "orderBy": "pm25",
        "orderDirection": "asc",
    }
    response = await client.post("/data/query", json=payload)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["table"] == "air_quality"
    assert [row["pm25standard"] for row in data["data"]] == [11.0, 12.0]


@pytest.mark.asyncio
async def test_query_injected_table_runs_fallback(client: AsyncClient, air_quality_data):
    """A disallowed table never reaches the store; the default query runs instead"""
    response = await client.post(
        "/data/query", json={"table": "users; DROP TABLE users", "limit": 3}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["table"] == "air_quality"
    assert data["count"] == 3


@pytest.mark.asyncio
async def test_query_disallowed_field_dropped(client: AsyncClient, sensor_data):
    response = await client.post(
        "/data/query",
        json={
            "table": "sensor_readings",
            "filters": [{"field": "password", "operator": "eq", "value": "x"}],
        },
    )
    data = response.json()
    assert data["success"] is True
    assert data["table"] == "sensor_readings"
    assert data["count"] == 10


@pytest.mark.asyncio
async def test_query_bad_shape_rejected(client: AsyncClient):
    response = await client.post(
        "/data/query", json={"table": "air_quality", "filters": "temperature > 20"}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_status_on_plain_store(client: AsyncClient):
    """Tables exist, search functions do not"""
    response = await client.get("/data/status")

    assert response.status_code == 200
    assert response.json() == {
        "connected": True,
        "normalized_schema": True,
        "legacy_schema": True,
        "vector_search": False,
        "knowledge_base": False,
    }
