"""
Sales pipeline through the ASGI app: opportunity -> quotes -> contract -> project.
"""

import re
import uuid

import pytest

NUMBER_PATTERN = re.compile(r"^([QC]-\d{6})-(\d{4})$")

ITEMS = [
    {"item_number": 1, "description": "年次点検", "quantity": 3, "unit_price": 100000, "amount": 300000},
    {"item_number": 2, "description": "出張費", "quantity": 1, "unit_price": 30000, "amount": 30000},
]


async def _opportunity(client, headers, title="天井クレーン点検") -> str:
    resp = await client.post("/api/v1/companies", json={"name": "株式会社サンプル"}, headers=headers)
    company_id = resp.json()["id"]
    resp = await client.post(
        "/api/v1/sales-opportunities",
        json={"company_id": company_id, "title": title, "estimated_amount": "330000"},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


@pytest.mark.asyncio
async def test_quote_numbers_are_sequential(client, editor_headers):
    opportunity_id = await _opportunity(client, editor_headers)

    numbers = []
    for _ in range(3):
        resp = await client.post(
            f"/api/v1/sales-opportunities/{opportunity_id}/quotes",
            json={"amount": "330000", "items": ITEMS},
            headers=editor_headers,
        )
        assert resp.status_code == 201, resp.text
        numbers.append(resp.json()["quote_number"])

    matches = [NUMBER_PATTERN.match(n) for n in numbers]
    assert all(matches)
    assert len({m.group(1) for m in matches}) == 1
    assert [int(m.group(2)) for m in matches] == [1, 2, 3]

    resp = await client.get(f"/api/v1/sales-opportunities/{opportunity_id}", headers=editor_headers)
    assert resp.json()["quotes_count"] == 3


@pytest.mark.asyncio
async def test_quote_amount_is_rounded_and_items_replaced(client, editor_headers):
    opportunity_id = await _opportunity(client, editor_headers)
    resp = await client.post(
        f"/api/v1/sales-opportunities/{opportunity_id}/quotes",
        json={"amount": "329999.5", "items": ITEMS},
        headers=editor_headers,
    )
    quote = resp.json()
    assert quote["amount"] == 330000
    assert [i["item_number"] for i in quote["items"]] == [1, 2]

    resp = await client.patch(
        f"/api/v1/sales-opportunities/{opportunity_id}/quotes/{quote['id']}",
        json={"items": [ITEMS[0]], "status": "SENT"},
        headers=editor_headers,
    )
    assert resp.status_code == 200, resp.text
    updated = resp.json()
    assert updated["status"] == "SENT"
    assert [i["description"] for i in updated["items"]] == ["年次点検"]

    resp = await client.get(
        "/api/v1/audit-logs",
        params={"entity_type": "Quote", "entity_id": quote["id"]},
        headers=editor_headers,
    )
    latest = resp.json()["data"][0]
    assert {c["field"] for c in latest["multiple_changes"]} == {"status", "items"}


@pytest.mark.asyncio
async def test_quote_requires_items(client, editor_headers):
    opportunity_id = await _opportunity(client, editor_headers)
    resp = await client.post(
        f"/api/v1/sales-opportunities/{opportunity_id}/quotes",
        json={"amount": "1000", "items": []},
        headers=editor_headers,
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_contract_flow(client, editor_headers, admin_headers):
    opportunity_id = await _opportunity(client, editor_headers)
    resp = await client.post(
        f"/api/v1/sales-opportunities/{opportunity_id}/quotes",
        json={"amount": "330000", "items": ITEMS},
        headers=editor_headers,
    )
    quote_id = resp.json()["id"]

    # Amount defaults to the item total
    resp = await client.post(
        f"/api/v1/sales-opportunities/{opportunity_id}/contracts",
        json={"sales_quote_id": quote_id, "contract_date": "2024-11-20", "items": ITEMS},
        headers=editor_headers,
    )
    assert resp.status_code == 201, resp.text
    contract = resp.json()
    assert NUMBER_PATTERN.match(contract["contract_number"]).group(1).startswith("C-")
    assert contract["contract_number"].endswith("-0001")
    assert contract["amount"] == 330000
    assert contract["sales_quote_id"] == quote_id

    # One contract per opportunity
    resp = await client.post(
        f"/api/v1/sales-opportunities/{opportunity_id}/contracts",
        json={"contract_date": "2024-11-21"},
        headers=editor_headers,
    )
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "CONFLICT"

    resp = await client.get(f"/api/v1/sales-opportunities/{opportunity_id}", headers=editor_headers)
    assert resp.json()["has_contract"] is True

    resp = await client.delete(
        f"/api/v1/sales-opportunities/{opportunity_id}/contracts/{contract['id']}",
        headers=admin_headers,
    )
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_contract_quote_must_belong_to_opportunity(client, editor_headers):
    first = await _opportunity(client, editor_headers, title="A")
    second = await _opportunity(client, editor_headers, title="B")
    resp = await client.post(
        f"/api/v1/sales-opportunities/{first}/quotes",
        json={"amount": "1000", "items": [ITEMS[0]]},
        headers=editor_headers,
    )
    quote_id = resp.json()["id"]

    resp = await client.post(
        f"/api/v1/sales-opportunities/{second}/contracts",
        json={"sales_quote_id": quote_id, "contract_date": "2024-11-20"},
        headers=editor_headers,
    )
    assert resp.status_code == 400

    resp = await client.post(
        f"/api/v1/sales-opportunities/{second}/contracts",
        json={"sales_quote_id": str(uuid.uuid4()), "contract_date": "2024-11-20"},
        headers=editor_headers,
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_one_project_per_opportunity(client, editor_headers):
    opportunity_id = await _opportunity(client, editor_headers)
    resp = await client.get(f"/api/v1/sales-opportunities/{opportunity_id}", headers=editor_headers)
    company_id = resp.json()["company_id"]

    payload = {"company_id": company_id, "sales_opportunity_id": opportunity_id, "title": "点検"}
    resp = await client.post("/api/v1/projects", json=payload, headers=editor_headers)
    assert resp.status_code == 201, resp.text
    assert resp.json()["status"] == "PLANNING"

    resp = await client.post("/api/v1/projects", json=payload, headers=editor_headers)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_missing_opportunity_is_404(client, editor_headers):
    resp = await client.get(
        f"/api/v1/sales-opportunities/{uuid.uuid4()}/quotes", headers=editor_headers
    )
    assert resp.status_code == 404
