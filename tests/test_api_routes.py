"""
tests/test_api_routes.py -- Integration tests for the asset and lifecycle API routes.

These tests exercise the full stack: FastAPI routing -> request validation ->
CMDBStore operations -> response model serialization -> error envelope.

Coverage:
  - Asset CRUD: POST 201, GET list, GET detail, PATCH, 404s, 409 duplicate
  - Documents: POST 201 and its effect on the dispose action check
  - Transitions: 201 record, 409 stale_state, 422 invalid_transition,
    422 precondition_unmet, 404 asset_not_found
  - History (per asset and global), next-states, lifecycle states, dashboard

Fixtures used (from conftest.py):
  - api_client: TestClient against the real app with an in-memory store.
    The store is shared by every test in this module, so each test creates
    its own assets.
"""

from __future__ import annotations

from fastapi.testclient import TestClient

OWNER = {"user_id": "u-1", "upn": "alice@example.com", "display_name": "Alice Example"}
WIPE_CERT = {"doc_type": "WipeCert", "url": "https://docs.example.com/wipe/1.pdf", "uploaded_by": "tech"}


def _create(client: TestClient, **body) -> dict:
    body.setdefault("asset_class", "Laptop")
    body.setdefault("model", "Latitude 7440")
    resp = client.post("/api/v1/assets", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _transition(client: TestClient, asset_id: str, from_state: str, to_state: str, **extra):
    body = {"from_state": from_state, "to_state": to_state, "performed_by": "alice", **extra}
    return client.post(f"/api/v1/assets/{asset_id}/transitions", json=body)


def _walk(client: TestClient, asset_id: str, *states: str) -> None:
    current = client.get(f"/api/v1/assets/{asset_id}").json()["state"]["state"]
    for target in states:
        resp = _transition(client, asset_id, current, target)
        assert resp.status_code == 201, resp.text
        current = target


class TestAssetRoutes:
    def test_create_asset(self, api_client: TestClient) -> None:
        data = _create(api_client, asset_tag="TAG-001", created_by="alice")
        assert data["global_asset_id"].startswith("AS-")
        assert data["state"]["state"] == "Ordered"
        assert data["state"]["color"] == "blue"
        assert data["version"] == 1
        assert [s["state"] for s in data["next_states"]] == ["Received"]

    def test_create_asset_in_service_is_rejected(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/api/v1/assets",
            json={"asset_class": "Laptop", "model": "X1", "state": "In Service"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_create_asset_duplicate_id(self, api_client: TestClient) -> None:
        _create(api_client, global_asset_id="AS-2020-000500")
        resp = api_client.post(
            "/api/v1/assets",
            json={"asset_class": "Laptop", "model": "X1", "global_asset_id": "AS-2020-000500"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "asset_exists"
        assert resp.json()["error"]["message"] == "Asset AS-2020-000500 already exists."

    def test_list_assets_by_state(self, api_client: TestClient) -> None:
        received = _create(api_client, state="Received")["global_asset_id"]
        resp = api_client.get("/api/v1/assets", params={"state": "Received"})
        assert resp.status_code == 200
        rows = resp.json()
        assert received in {r["global_asset_id"] for r in rows}
        assert {r["state"] for r in rows} == {"Received"}

    def test_get_asset_not_found(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/assets/AS-1999-000001")
        assert resp.status_code == 404
        error = resp.json()["error"]
        assert error["code"] == "asset_not_found"
        assert "AS-1999-000001" in error["message"]

    def test_get_asset_id_is_case_insensitive(self, api_client: TestClient) -> None:
        asset_id = _create(api_client)["global_asset_id"]
        resp = api_client.get(f"/api/v1/assets/{asset_id.lower()}")
        assert resp.status_code == 200
        assert resp.json()["global_asset_id"] == asset_id

    def test_patch_owner(self, api_client: TestClient) -> None:
        asset_id = _create(api_client)["global_asset_id"]
        resp = api_client.patch(f"/api/v1/assets/{asset_id}", json={"owner": OWNER, "updated_by": "alice"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["owner"]["upn"] == "alice@example.com"
        assert data["updated_by"] == "alice"

    def test_patch_state_is_refused(self, api_client: TestClient) -> None:
        asset_id = _create(api_client)["global_asset_id"]
        resp = api_client.patch(f"/api/v1/assets/{asset_id}", json={"state": "Disposed"})
        assert resp.status_code == 422
        assert api_client.get(f"/api/v1/assets/{asset_id}").json()["state"]["state"] == "Ordered"

    def test_patch_unknown_asset(self, api_client: TestClient) -> None:
        resp = api_client.patch("/api/v1/assets/AS-1999-000001", json={"asset_tag": "X"})
        assert resp.status_code == 404

    def test_add_document_enables_disposal_check(self, api_client: TestClient) -> None:
        asset_id = _create(api_client)["global_asset_id"]
        before = api_client.get(f"/api/v1/assets/{asset_id}").json()
        assert before["actions"]["dispose"] == {"can": False, "reason": "Data wipe certificate is required"}

        resp = api_client.post(f"/api/v1/assets/{asset_id}/documents", json=WIPE_CERT)
        assert resp.status_code == 201
        assert resp.json()["doc_type"] == "WipeCert"

        after = api_client.get(f"/api/v1/assets/{asset_id}").json()
        assert after["actions"]["dispose"]["can"] is True
        assert [d["doc_type"] for d in after["docs"]] == ["WipeCert"]

    def test_add_document_unknown_asset(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/assets/AS-1999-000001/documents", json=WIPE_CERT)
        assert resp.status_code == 404


class TestTransitionRoutes:
    def test_commit_transition(self, api_client: TestClient) -> None:
        asset_id = _create(api_client)["global_asset_id"]
        resp = _transition(api_client, asset_id, "Ordered", "Received", reason="Delivered")
        assert resp.status_code == 201
        record = resp.json()
        assert record["asset_id"] == asset_id
        assert (record["from_state"], record["to_state"]) == ("Ordered", "Received")
        assert record["performed_by"] == "alice"
        assert record["reason"] == "Delivered"

    def test_stale_state_is_409(self, api_client: TestClient) -> None:
        asset_id = _create(api_client)["global_asset_id"]
        _walk(api_client, asset_id, "Received")
        resp = _transition(api_client, asset_id, "Ordered", "Received")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "stale_state"

    def test_invalid_transition_is_422_with_reason(self, api_client: TestClient) -> None:
        asset_id = _create(api_client)["global_asset_id"]
        resp = _transition(api_client, asset_id, "Ordered", "In Service")
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "invalid_transition"
        assert error["message"] == "Invalid transition from Ordered to In Service"

    def test_owner_required(self, api_client: TestClient) -> None:
        asset_id = _create(api_client)["global_asset_id"]
        _walk(api_client, asset_id, "Received", "In Staging")
        assert api_client.get(f"/api/v1/assets/{asset_id}/next-states").json() == []

        resp = _transition(api_client, asset_id, "In Staging", "In Service")
        assert resp.status_code == 422
        assert resp.json()["error"]["message"] == "Owner is required for this transition"

        api_client.patch(f"/api/v1/assets/{asset_id}", json={"owner": OWNER})
        assert _transition(api_client, asset_id, "In Staging", "In Service").status_code == 201

    def test_disposal_needs_wipe_cert(self, api_client: TestClient) -> None:
        asset_id = _create(api_client, owner=OWNER)["global_asset_id"]
        _walk(api_client, asset_id, "Received", "In Staging", "In Service")

        next_states = [s["state"] for s in api_client.get(f"/api/v1/assets/{asset_id}/next-states").json()]
        assert "Disposed" in next_states

        resp = _transition(api_client, asset_id, "In Service", "Disposed")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "precondition_unmet"

        api_client.post(f"/api/v1/assets/{asset_id}/documents", json=WIPE_CERT)
        assert _transition(api_client, asset_id, "In Service", "Disposed").status_code == 201
        assert api_client.get(f"/api/v1/assets/{asset_id}/next-states").json() == []

    def test_unknown_asset_is_404(self, api_client: TestClient) -> None:
        resp = _transition(api_client, "AS-1999-000001", "Ordered", "Received")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "asset_not_found"

    def test_unknown_state_name_is_validation_error(self, api_client: TestClient) -> None:
        asset_id = _create(api_client)["global_asset_id"]
        resp = _transition(api_client, asset_id, "Ordered", "Shredded")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_performed_by_is_required(self, api_client: TestClient) -> None:
        asset_id = _create(api_client)["global_asset_id"]
        resp = api_client.post(
            f"/api/v1/assets/{asset_id}/transitions",
            json={"from_state": "Ordered", "to_state": "Received"},
        )
        assert resp.status_code == 422


class TestHistoryRoutes:
    def test_asset_history_newest_first(self, api_client: TestClient) -> None:
        asset_id = _create(api_client, owner=OWNER)["global_asset_id"]
        _walk(api_client, asset_id, "Received", "In Staging", "In Service")
        resp = api_client.get(f"/api/v1/assets/{asset_id}/history")
        assert resp.status_code == 200
        assert [r["to_state"] for r in resp.json()] == ["In Service", "In Staging", "Received"]

    def test_asset_history_unknown_asset(self, api_client: TestClient) -> None:
        assert api_client.get("/api/v1/assets/AS-1999-000001/history").status_code == 404

    def test_global_history_filters(self, api_client: TestClient) -> None:
        asset_id = _create(api_client)["global_asset_id"]
        api_client.post(
            f"/api/v1/assets/{asset_id}/transitions",
            json={"from_state": "Ordered", "to_state": "Received", "performed_by": "receiving-dock"},
        )
        resp = api_client.get("/api/v1/history", params={"performed_by": "receiving-dock"})
        assert resp.status_code == 200
        assert [r["asset_id"] for r in resp.json()] == [asset_id]

        resp = api_client.get("/api/v1/history", params={"to_state": "Received", "limit": 1})
        assert len(resp.json()) == 1

    def test_global_history_limit_bounds(self, api_client: TestClient) -> None:
        assert api_client.get("/api/v1/history", params={"limit": 0}).status_code == 422


class TestLifecycleAndDashboard:
    def test_lifecycle_states(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/lifecycle/states")
        assert resp.status_code == 200
        rows = {r["state"]["state"]: r for r in resp.json()}
        assert len(rows) == 9
        assert rows["Disposed"]["terminal"] is True
        assert rows["Disposed"]["next_states"] == []
        assert [s["state"] for s in rows["Lost"]["next_states"]] == ["In Service", "Disposed"]
        assert rows["Lost"]["state"]["color"] == "red"

    def test_dashboard(self, api_client: TestClient) -> None:
        _create(api_client)
        resp = api_client.get("/api/v1/dashboard")
        assert resp.status_code == 200
        data = resp.json()
        assert data["total_assets"] == sum(data["state_counts"].values())
        assert data["total_assets"] >= 1
        assert set(data["state_counts"]) >= {"Ordered", "Lost", "Disposed"}
        assert isinstance(data["lost_overdue"], list)
        assert isinstance(data["lost_approaching"], list)
        assert len(data["recent_transitions"]) <= 10
