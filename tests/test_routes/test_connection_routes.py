# tests/test_routes/test_connection_routes.py
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.core.exceptions import ValidationError
from app.core.security import get_current_username
from app.dependencies import get_connection_service
from app.main import app
from app.models.connection import MarketplaceConnection

from tests.conftest import NOW

client = TestClient(app)

ORG_HEADERS = {"x-organization-id": "org-1"}


def make_connection(connection_id="c1", organization_id="org-1", **overrides) -> MarketplaceConnection:
    values = dict(
        id=connection_id,
        tenant_id="tenant-1",
        organization_id=organization_id,
        marketplace_id="shopify",
        credential_reference="cred-shopify",
        status="connected",
        sync_status="success",
        last_synced_at=NOW,
        last_checked=NOW,
        created_at=NOW,
    )
    values.update(overrides)
    return MarketplaceConnection(**values)


@pytest.fixture
def connections():
    service = MagicMock()
    service.list_connections = AsyncMock(return_value=[make_connection()])
    service.get = AsyncMock(return_value=make_connection())
    service.create = AsyncMock(return_value=make_connection(sync_status="idle", last_synced_at=None))
    service.update = AsyncMock(return_value=make_connection(status="disconnected"))
    service.delete = AsyncMock(return_value=True)

    app.dependency_overrides[get_connection_service] = lambda: service
    app.dependency_overrides[get_current_username] = lambda: "tester"
    yield service
    app.dependency_overrides.clear()


def test_list_connections(connections):
    response = client.get("/connections", headers=ORG_HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body[0]["marketplaceId"] == "shopify"
    assert body[0]["syncStatus"] == "success"
    assert "credentialReference" not in body[0]
    connections.list_connections.assert_awaited_once_with(organization_id="org-1")


def test_create_connection(connections):
    payload = {"tenantId": "tenant-1", "marketplaceId": "shopify", "credentialReference": "cred-shopify"}

    response = client.post("/connections", json=payload, headers=ORG_HEADERS)

    assert response.status_code == 201
    assert response.json()["syncStatus"] == "idle"
    connections.create.assert_awaited_once_with(
        tenant_id="tenant-1",
        organization_id="org-1",
        marketplace_id="shopify",
        credential_reference="cred-shopify",
        status="connected",
    )


def test_create_duplicate_connection_is_400(connections):
    connections.create.side_effect = ValidationError("Tenant tenant-1 already has a shopify connection")
    payload = {"tenantId": "tenant-1", "marketplaceId": "shopify", "credentialReference": "cred-shopify"}

    response = client.post("/connections", json=payload, headers=ORG_HEADERS)

    assert response.status_code == 400


def test_create_unknown_marketplace_is_422(connections):
    payload = {"tenantId": "tenant-1", "marketplaceId": "ebay", "credentialReference": "cred-ebay"}

    response = client.post("/connections", json=payload, headers=ORG_HEADERS)

    assert response.status_code == 422
    connections.create.assert_not_awaited()


def test_get_connection_scoping(connections):
    assert client.get("/connections/c1", headers=ORG_HEADERS).status_code == 200

    connections.get.return_value = make_connection(organization_id="org-2")
    assert client.get("/connections/c1", headers=ORG_HEADERS).status_code == 403

    connections.get.return_value = None
    assert client.get("/connections/c1", headers=ORG_HEADERS).status_code == 404


def test_update_ignores_sync_state(connections):
    payload = {"status": "disconnected", "syncStatus": "success", "lastSyncedAt": "2030-01-01T00:00:00Z"}

    response = client.patch("/connections/c1", json=payload, headers=ORG_HEADERS)

    assert response.status_code == 200
    assert response.json()["status"] == "disconnected"
    connections.update.assert_awaited_once_with("c1", status="disconnected", credential_reference=None)


def test_delete_connection(connections):
    response = client.delete("/connections/c1", headers=ORG_HEADERS)

    assert response.status_code == 200
    connections.delete.assert_awaited_once_with("c1")


def test_delete_other_organizations_connection_is_403(connections):
    connections.get.return_value = make_connection(organization_id="org-2")

    response = client.delete("/connections/c1", headers=ORG_HEADERS)

    assert response.status_code == 403
    connections.delete.assert_not_awaited()
