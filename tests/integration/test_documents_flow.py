"""
Template upload and document generation through the ASGI app.
"""

import io
import zipfile
from urllib.parse import unquote

import pytest
from docx import Document
from openpyxl import Workbook, load_workbook

from crm.services.document_renderer import DOCX_MIME_TYPE, XLSX_MIME_TYPE


def _quote_docx() -> bytes:
    document = Document()
    document.add_paragraph("{{companyName}} 御中")
    document.add_paragraph("見積番号 {{quoteNumber}}")
    document.add_paragraph("合計 {{totalAmountFormatted}}")
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _report_xlsx() -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet["A1"] = "{{equipmentName}}"
    sheet["A2"] = "{{overallJudgmentLabel}}"
    sheet["A3"] = "{{hoisting_brake_slip}}"
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


async def _upload(client, headers, template_type, content, filename, mime, is_default=False):
    resp = await client.post(
        "/api/v1/document-templates",
        data={"name": f"{template_type} template", "template_type": template_type, "is_default": str(is_default).lower()},
        files={"file": (filename, content, mime)},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _quote_setup(client, headers):
    resp = await client.post("/api/v1/companies", json={"name": "サンプル工業"}, headers=headers)
    company_id = resp.json()["id"]
    resp = await client.post(
        "/api/v1/sales-opportunities",
        json={"company_id": company_id, "title": "点検"},
        headers=headers,
    )
    opportunity_id = resp.json()["id"]
    resp = await client.post(
        f"/api/v1/sales-opportunities/{opportunity_id}/quotes",
        json={
            "amount": "1000",
            "items": [{"item_number": 1, "description": "部品", "amount": 1000}],
        },
        headers=headers,
    )
    return company_id, opportunity_id, resp.json()


async def _work_records(client, headers, company_id, count=2):
    resp = await client.post(
        "/api/v1/equipment",
        json={"company_id": company_id, "name": "5t ホイスト"},
        headers=headers,
    )
    equipment_id = resp.json()["id"]
    ids = []
    for day in range(1, count + 1):
        resp = await client.post(
            "/api/v1/work-records",
            json={
                "equipment_id": equipment_id,
                "inspection_date": f"2024-11-0{day}T01:00:00",
                "overall_judgment": "GOOD",
                "checklist_data": {"hoisting": {"brake": {"slip": "○"}}},
            },
            headers=headers,
        )
        assert resp.status_code == 201, resp.text
        ids.append(resp.json()["id"])
    return ids


@pytest.mark.asyncio
async def test_generate_quote_docx(client, editor_headers):
    template = await _upload(client, editor_headers, "QUOTE", _quote_docx(), "quote.docx", DOCX_MIME_TYPE)
    _, opportunity_id, quote = await _quote_setup(client, editor_headers)

    resp = await client.post(
        f"/api/v1/sales-opportunities/{opportunity_id}/generate-quote",
        json={"template_id": template["id"], "quote_id": quote["id"]},
        headers=editor_headers,
    )

    assert resp.status_code == 200, resp.text
    assert resp.headers["content-type"].startswith(DOCX_MIME_TYPE)
    disposition = resp.headers["content-disposition"]
    assert disposition.startswith("attachment; filename*=UTF-8''")
    assert unquote(disposition.split("''", 1)[1]).startswith("見積書_サンプル工業_")

    texts = [p.text for p in Document(io.BytesIO(resp.content)).paragraphs]
    assert texts == ["サンプル工業 御中", f"見積番号 {quote['quote_number']}", "合計 ¥1,000"]


@pytest.mark.asyncio
async def test_generate_quote_with_wrong_template_type_is_404(client, editor_headers):
    template = await _upload(client, editor_headers, "REPORT", _report_xlsx(), "r.xlsx", XLSX_MIME_TYPE)
    _, opportunity_id, _ = await _quote_setup(client, editor_headers)

    resp = await client.post(
        f"/api/v1/sales-opportunities/{opportunity_id}/generate-quote",
        json={"template_id": template["id"]},
        headers=editor_headers,
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_viewer_cannot_generate(client, editor_headers, viewer_headers):
    template = await _upload(client, editor_headers, "QUOTE", _quote_docx(), "q.docx", DOCX_MIME_TYPE, True)
    _, opportunity_id, _ = await _quote_setup(client, editor_headers)

    resp = await client.post(
        f"/api/v1/sales-opportunities/{opportunity_id}/generate-quote",
        json={"template_id": template["id"]},
        headers=viewer_headers,
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_work_record_document_and_bulk_zip(client, editor_headers):
    template = await _upload(client, editor_headers, "REPORT", _report_xlsx(), "report.xlsx", XLSX_MIME_TYPE)
    company_id, _, _ = await _quote_setup(client, editor_headers)
    record_ids = await _work_records(client, editor_headers, company_id)

    resp = await client.post(
        f"/api/v1/work-records/{record_ids[0]}/generate-document",
        json={"template_id": template["id"]},
        headers=editor_headers,
    )
    assert resp.status_code == 200, resp.text
    sheet = load_workbook(io.BytesIO(resp.content)).active
    assert sheet["A1"].value == "5t ホイスト"
    assert sheet["A2"].value == "良"
    assert sheet["A3"].value == "○"

    resp = await client.post(
        "/api/v1/work-records/bulk-generate-documents",
        json={"template_id": template["id"], "work_record_ids": record_ids},
        headers=editor_headers,
    )
    assert resp.status_code == 200, resp.text
    assert resp.headers["content-type"] == "application/zip"
    with zipfile.ZipFile(io.BytesIO(resp.content)) as archive:
        names = archive.namelist()
    assert len(names) == 2
    assert all(name.endswith(".xlsx") for name in names)


@pytest.mark.asyncio
async def test_missing_work_record_is_404(client, editor_headers):
    template = await _upload(client, editor_headers, "REPORT", _report_xlsx(), "report.xlsx", XLSX_MIME_TYPE)
    resp = await client.post(
        "/api/v1/work-records/00000000-0000-0000-0000-000000000000/generate-document",
        json={"template_id": template["id"]},
        headers=editor_headers,
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_broken_template_is_render_error(client, editor_headers):
    document = Document()
    document.add_paragraph("{{companyName")
    buffer = io.BytesIO()
    document.save(buffer)
    template = await _upload(client, editor_headers, "QUOTE", buffer.getvalue(), "bad.docx", DOCX_MIME_TYPE)
    _, opportunity_id, _ = await _quote_setup(client, editor_headers)

    resp = await client.post(
        f"/api/v1/sales-opportunities/{opportunity_id}/generate-quote",
        json={"template_id": template["id"]},
        headers=editor_headers,
    )
    assert resp.status_code == 500
    error = resp.json()["error"]
    assert error["code"] == "TEMPLATE_RENDER_FAILED"
    assert error["message"]


# ---------------------------------------------------------------------------
# Template management
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_upload_rejects_unsupported_type(client, editor_headers):
    resp = await client.post(
        "/api/v1/document-templates",
        data={"name": "pdf", "template_type": "QUOTE"},
        files={"file": ("quote.pdf", b"%PDF-1.4", "application/pdf")},
        headers=editor_headers,
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "UNSUPPORTED_TEMPLATE_TYPE"


@pytest.mark.asyncio
async def test_upload_falls_back_to_extension(client, editor_headers):
    template = await _upload(
        client, editor_headers, "QUOTE", _quote_docx(), "quote.docx", "application/octet-stream"
    )
    assert template["mime_type"] == DOCX_MIME_TYPE


@pytest.mark.asyncio
async def test_new_default_demotes_previous_default(client, editor_headers):
    first = await _upload(client, editor_headers, "QUOTE", _quote_docx(), "a.docx", DOCX_MIME_TYPE, True)
    second = await _upload(client, editor_headers, "QUOTE", _quote_docx(), "b.docx", DOCX_MIME_TYPE, True)

    resp = await client.get(
        "/api/v1/document-templates", params={"template_type": "QUOTE"}, headers=editor_headers
    )
    defaults = {t["id"]: t["is_default"] for t in resp.json()["data"]}
    assert defaults == {first["id"]: False, second["id"]: True}


@pytest.mark.asyncio
async def test_template_visibility_and_delete(client, editor_headers, admin_headers, viewer_headers):
    private = await _upload(client, editor_headers, "QUOTE", _quote_docx(), "p.docx", DOCX_MIME_TYPE)
    shared = await _upload(client, editor_headers, "QUOTE", _quote_docx(), "s.docx", DOCX_MIME_TYPE, True)

    # Other users only see defaults
    resp = await client.get("/api/v1/document-templates", headers=viewer_headers)
    assert [t["id"] for t in resp.json()["data"]] == [shared["id"]]

    resp = await client.get(f"/api/v1/document-templates/{shared['id']}", headers=viewer_headers)
    assert resp.status_code == 200
    assert resp.content.startswith(b"PK")

    resp = await client.get(f"/api/v1/document-templates/{private['id']}", headers=admin_headers)
    assert resp.status_code == 404

    # Owner deletes own template; soft-deleted templates disappear
    resp = await client.delete(f"/api/v1/document-templates/{private['id']}", headers=editor_headers)
    assert resp.status_code == 200
    resp = await client.get(f"/api/v1/document-templates/{private['id']}", headers=editor_headers)
    assert resp.status_code == 404

    # A default owned by someone else needs ADMIN
    resp = await client.post(
        "/api/v1/users",
        json={"email": "second.editor@example.com", "password": "Password123", "name": "Two", "role": "EDITOR"},
        headers=admin_headers,
    )
    assert resp.status_code == 201, resp.text
    login = await client.post(
        "/auth/login", json={"email": "second.editor@example.com", "password": "Password123"}
    )
    other_editor = {"Authorization": f"Bearer {login.json()['access_token']}"}

    resp = await client.delete(f"/api/v1/document-templates/{shared['id']}", headers=other_editor)
    assert resp.status_code == 403
    resp = await client.delete(f"/api/v1/document-templates/{shared['id']}", headers=admin_headers)
    assert resp.status_code == 200
