"""
End-to-end company lifecycle through the ASGI app:
create -> update (audited) -> role-gated delete -> not found.
"""

from datetime import datetime

import pytest
from sqlalchemy import update

from crm.models.audit_log import AuditLog


@pytest.mark.asyncio
async def test_company_lifecycle(client, editor_headers, admin_headers):
    # 1. Create with only a name
    resp = await client.post("/api/v1/companies", json={"name": "Acme Cranes"}, headers=editor_headers)
    assert resp.status_code == 201, resp.text
    company = resp.json()
    assert company["name"] == "Acme Cranes"
    assert company["address"] is None
    assert company["email"] is None
    assert company["billing_flag"] is False
    company_id = company["id"]

    # 2. Update two fields -> one multi-field audit entry
    resp = await client.patch(
        f"/api/v1/companies/{company_id}",
        json={"address": "東京都千代田区", "phone": "03-1234-5678"},
        headers=editor_headers,
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["address"] == "東京都千代田区"

    resp = await client.get(
        "/api/v1/audit-logs",
        params={"entity_type": "Company", "entity_id": company_id},
        headers=editor_headers,
    )
    assert resp.status_code == 200
    logs = resp.json()["data"]
    assert [log["action"] for log in logs] == ["UPDATE", "CREATE"]
    update = logs[0]
    assert update["field"] is None
    assert {c["field"] for c in update["multiple_changes"]} == {"address", "phone"}
    address_change = next(c for c in update["multiple_changes"] if c["field"] == "address")
    assert address_change["field_label"] == "住所"
    assert address_change["old_display"] == "空の値"
    assert address_change["new_display"] == "東京都千代田区"
    assert update["user"]["email"] == "editor@example.com"

    # 3. EDITOR cannot delete
    resp = await client.delete(f"/api/v1/companies/{company_id}", headers=editor_headers)
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "INSUFFICIENT_PERMISSIONS"

    # 4. ADMIN deletes; the company is gone
    resp = await client.delete(f"/api/v1/companies/{company_id}", headers=admin_headers)
    assert resp.status_code == 200
    assert "message" in resp.json()

    resp = await client.get(f"/api/v1/companies/{company_id}", headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_patch_without_changes_writes_no_audit_entry(client, editor_headers):
    resp = await client.post(
        "/api/v1/companies", json={"name": "Same", "phone": "03"}, headers=editor_headers
    )
    company_id = resp.json()["id"]

    resp = await client.patch(
        f"/api/v1/companies/{company_id}", json={"name": "Same", "phone": "03"}, headers=editor_headers
    )
    assert resp.status_code == 200

    resp = await client.get(
        "/api/v1/audit-logs",
        params={"entity_type": "Company", "entity_id": company_id},
        headers=editor_headers,
    )
    assert [log["action"] for log in resp.json()["data"]] == ["CREATE"]


@pytest.mark.asyncio
async def test_single_field_update_is_single_entry(client, editor_headers):
    resp = await client.post("/api/v1/companies", json={"name": "Before"}, headers=editor_headers)
    company_id = resp.json()["id"]

    # PUT is accepted as an alias of PATCH
    resp = await client.put(
        f"/api/v1/companies/{company_id}", json={"name": "After"}, headers=editor_headers
    )
    assert resp.status_code == 200

    resp = await client.get(
        "/api/v1/audit-logs",
        params={"entity_type": "Company", "entity_id": company_id},
        headers=editor_headers,
    )
    update = resp.json()["data"][0]
    assert update["field"] == "name"
    assert update["field_label"] == "会社名"
    assert update["old_value"] == "Before"
    assert update["new_value"] == "After"
    assert update["multiple_changes"] is None


@pytest.mark.asyncio
async def test_blank_email_is_stored_as_null(client, editor_headers):
    resp = await client.post(
        "/api/v1/companies", json={"name": "No Mail", "email": ""}, headers=editor_headers
    )
    assert resp.status_code == 201
    assert resp.json()["email"] is None


@pytest.mark.asyncio
async def test_validation_error_is_400(client, editor_headers):
    resp = await client.post("/api/v1/companies", json={"name": ""}, headers=editor_headers)
    assert resp.status_code == 400
    body = resp.json()["error"]
    assert body["code"] == "VALIDATION_ERROR"
    assert body["details"][0]["loc"][-1] == "name"


@pytest.mark.asyncio
async def test_viewer_is_read_only(client, viewer_headers):
    resp = await client.get("/api/v1/companies", headers=viewer_headers)
    assert resp.status_code == 200
    assert resp.json()["pagination"]["total"] == 0

    resp = await client.post("/api/v1/companies", json={"name": "Nope"}, headers=viewer_headers)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_requests_without_token_are_rejected(client):
    resp = await client.get("/api/v1/companies")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_REQUIRED"

    resp = await client.get("/api/v1/companies", headers={"Authorization": "Bearer nonsense"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_TOKEN_INVALID"


@pytest.mark.asyncio
async def test_company_search_and_detail_counts(client, editor_headers):
    resp = await client.post("/api/v1/companies", json={"name": "北海道クレーン"}, headers=editor_headers)
    company_id = resp.json()["id"]
    await client.post("/api/v1/companies", json={"name": "九州機工"}, headers=editor_headers)
    await client.post(
        "/api/v1/contacts", json={"company_id": company_id, "name": "佐藤"}, headers=editor_headers
    )

    resp = await client.get("/api/v1/companies", params={"search": "北海道"}, headers=editor_headers)
    assert [c["name"] for c in resp.json()["data"]] == ["北海道クレーン"]

    resp = await client.get(f"/api/v1/companies/{company_id}", headers=editor_headers)
    assert resp.json()["contacts_count"] == 1


@pytest.mark.asyncio
async def test_audit_logs_require_entity_filters(client, editor_headers):
    resp = await client.get("/api/v1/audit-logs", params={"entity_type": "Company"}, headers=editor_headers)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_history_order_is_stable_for_equal_timestamps(client, editor_headers, session_factory):
    resp = await client.post("/api/v1/companies", json={"name": "Tie"}, headers=editor_headers)
    company_id = resp.json()["id"]
    await client.patch(f"/api/v1/companies/{company_id}", json={"name": "Tie 2"}, headers=editor_headers)
    await client.patch(f"/api/v1/companies/{company_id}", json={"name": "Tie 3"}, headers=editor_headers)

    async with session_factory() as session:
        await session.execute(
            update(AuditLog)
            .where(AuditLog.entity_id == company_id)
            .values(created_at=datetime(2024, 11, 5, 1, 0))
        )
        await session.commit()

    resp = await client.get(
        "/api/v1/audit-logs",
        params={"entity_type": "Company", "entity_id": company_id},
        headers=editor_headers,
    )
    logs = resp.json()["data"]
    assert [log["action"] for log in logs] == ["UPDATE", "UPDATE", "CREATE"]
    assert [log["new_value"] for log in logs[:2]] == ["Tie 3", "Tie 2"]
