"""
Tests for the ops API: health checks and queue inspection.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest
from conftest import FakeRedis
from fastapi.testclient import TestClient

from groupkeeper.main import app

client = TestClient(app)


def test_healthz_endpoint():
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_readyz_all_services_healthy():
    db_health = {"healthy": True, "pool_stats": {"pool_size": 2, "pool_available": 1}}
    with (
        patch("groupkeeper.routes.health.redis_client.ping", AsyncMock(return_value=True)),
        patch("groupkeeper.routes.health.db_health_check", AsyncMock(return_value=db_health)),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True
    assert data["checks"]["redis"]["ok"] is True
    assert data["checks"]["database"]["ok"] is True
    assert data["checks"]["database"]["pool_size"] == 2


def test_readyz_redis_unhealthy():
    with (
        patch("groupkeeper.routes.health.redis_client.ping", AsyncMock(return_value=False)),
        patch(
            "groupkeeper.routes.health.db_health_check",
            AsyncMock(return_value={"healthy": True}),
        ),
    ):
        response = client.get("/readyz")

    assert response.status_code == 503
    assert response.json()["checks"]["redis"]["ok"] is False


def test_readyz_database_error():
    with (
        patch("groupkeeper.routes.health.redis_client.ping", AsyncMock(return_value=True)),
        patch(
            "groupkeeper.routes.health.db_health_check",
            AsyncMock(side_effect=RuntimeError("pool exhausted")),
        ),
    ):
        response = client.get("/readyz")

    assert response.status_code == 503
    assert "pool exhausted" in response.json()["checks"]["database"]["error"]


@pytest.fixture
def queues():
    fake = FakeRedis()
    fake.lists["addQueue"] = [
        json.dumps(
            {"request_id": 1, "registration_id": 501, "group_id": "120363@g.us", "group_type": "RJB"}
        ),
        "garbage",
    ]
    fake.lists["removeQueue"] = []
    with patch("groupkeeper.routes.queues.redis_client", fake):
        yield fake


def test_list_queues(queues):
    response = client.get("/queues")

    assert response.status_code == 200
    data = response.json()
    assert data["add"] == {"key": "addQueue", "length": 2}
    assert data["remove"]["length"] == 0


def test_get_queue_items(queues):
    response = client.get("/queues/add")

    assert response.status_code == 200
    items = response.json()["items"]
    assert items[0]["valid"] is True
    assert items[0]["group_type"] == "RJB"
    assert items[1]["valid"] is False
    # inspection never consumes items
    assert len(queues.lists["addQueue"]) == 2


def test_get_queue_limit(queues):
    response = client.get("/queues/add", params={"limit": 1})

    assert len(response.json()["items"]) == 1


def test_unknown_queue(queues):
    assert client.get("/queues/other").status_code == 404
