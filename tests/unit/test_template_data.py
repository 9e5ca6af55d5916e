"""
Unit tests for crm/services/template_data.py and crm/services/labels.py
"""

import json
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

from crm.services.labels import format_value, format_yen, get_field_display_name
from crm.services.template_data import (
    ITEM_SLOT_FIELDS,
    build_contract_template_data,
    build_quote_template_data,
    build_work_record_template_data,
    contract_file_name,
    flatten_checklist,
    line_item_slots,
    parse_checklist,
    quote_file_name,
    work_record_file_name,
)


def _company(**overrides):
    values = dict(
        name="株式会社サンプル",
        postal_code="100-0001",
        address="東京都千代田区",
        phone="03-0000-0000",
        email=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _opportunity(**overrides):
    values = dict(
        title="天井クレーン点検",
        status="ESTIMATING",
        estimated_amount=Decimal("1500000.00"),
        crane_count=3,
        crane_info=None,
        notes=None,
        occurred_at=date(2024, 11, 5),
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _item(n, amount, unit_price=None, quantity=None):
    return SimpleNamespace(
        item_number=n,
        description=f"作業{n}",
        quantity=quantity,
        unit_price=unit_price,
        amount=amount,
        notes=None,
    )


def _quote(**overrides):
    values = dict(
        quote_number="Q-202411-0001",
        amount=330000,
        status="SENT",
        conditions="現金払い",
        valid_until=date(2024, 12, 31),
        notes=None,
        created_at=datetime(2024, 11, 5, 1, 0),
        updated_at=datetime(2024, 11, 5, 1, 0),
    )
    values.update(overrides)
    return SimpleNamespace(**values)


# ---------------------------------------------------------------------------
# Line item slots
# ---------------------------------------------------------------------------


def test_slots_always_cover_ten_items():
    data = line_item_slots([_item(1, 300000, unit_price=100000, quantity=3)])

    assert len(data) == 10 * len(ITEM_SLOT_FIELDS)
    assert data["item1Number"] == "1"
    assert data["item1Quantity"] == "3"
    assert data["item1UnitPriceFormatted"] == "¥100,000"
    assert data["item1AmountFormatted"] == "¥300,000"
    assert data["item2Description"] == ""
    assert data["item10AmountFormatted"] == ""


def test_slots_ignore_items_past_the_limit():
    data = line_item_slots([_item(n, 1000) for n in range(1, 13)])
    assert data["item10Number"] == "10"
    assert "item11Number" not in data


def test_missing_unit_price_is_blank():
    data = line_item_slots([_item(1, 5000)])
    assert data["item1UnitPrice"] == ""
    assert data["item1UnitPriceFormatted"] == ""


# ---------------------------------------------------------------------------
# Quote / contract dictionaries
# ---------------------------------------------------------------------------


def test_quote_data():
    items = [_item(1, 300000), _item(2, 30000)]
    data = build_quote_template_data(
        _opportunity(), _company(), quote=_quote(), items=items, quote_count=2
    )

    assert data["companyName"] == "株式会社サンプル"
    assert data["companyEmail"] == ""
    assert data["opportunityTitle"] == "天井クレーン点検"
    assert data["statusLabel"] == "見積中"
    assert data["estimatedAmount"] == "1,500,000"
    assert data["estimatedAmountFormatted"] == "¥1,500,000"
    assert data["occurredAt"] == "2024/11/5"
    assert data["quoteNumber"] == "Q-202411-0001"
    assert data["quoteStatusLabel"] == "送信済み"
    assert data["quoteValidUntil"] == "2024/12/31"
    # 01:00 UTC is 10:00 in Tokyo
    assert data["quoteCreatedAtDateTime"] == "2024/11/5 10:00"
    assert data["itemsCount"] == "2"
    assert data["totalAmount"] == "330000"
    assert data["totalAmountFormatted"] == "¥330,000"
    assert data["quoteCount"] == "2"
    assert data["contractNumber"] == ""
    assert data["projectTitle"] == ""


def test_quote_data_without_quote_is_blank():
    data = build_quote_template_data(_opportunity(estimated_amount=None), _company())

    assert data["quoteNumber"] == ""
    assert data["estimatedAmount"] == ""
    assert data["itemsCount"] == "0"
    assert data["totalAmountFormatted"] == "¥0"


def test_contract_data_includes_creator_and_project():
    contract = SimpleNamespace(
        contract_number="C-202411-0003",
        amount=500000,
        status="CONFIRMED",
        conditions=None,
        contract_date=date(2024, 11, 20),
        created_at=datetime(2024, 11, 20, 0, 0),
        updated_at=datetime(2024, 11, 20, 0, 0),
    )
    creator = SimpleNamespace(name="営業担当", email="editor@example.com")
    project = SimpleNamespace(title="点検プロジェクト", status="IN_PROGRESS")

    data = build_contract_template_data(
        _opportunity(status="WON"),
        _company(),
        contract=contract,
        items=[_item(1, 500000)],
        created_by=creator,
        contract_count=1,
        project=project,
    )

    assert data["contractNumber"] == "C-202411-0003"
    assert data["contractStatusLabel"] == "確定"
    assert data["contractDate"] == "2024/11/20"
    assert data["contractCreatedBy"] == "営業担当"
    assert data["statusLabel"] == "受注"
    assert data["projectStatusLabel"] == "進行中"
    assert data["item1AmountFormatted"] == "¥500,000"


# ---------------------------------------------------------------------------
# Work records
# ---------------------------------------------------------------------------


def test_flatten_checklist():
    checklist = {
        "hoisting": {
            "brake": {"lining_wear": "○", "slip": "×", "slip_defect": "01"},
        }
    }

    data = flatten_checklist(checklist)

    assert data["hoisting_brake_lining_wear"] == "○"
    assert data["hoisting_brake_slip"] == "×"
    assert data["hoisting_brake_slip_defect_label"] == "01. 摩耗"
    assert data["hoisting_brake_lining_wear_defect_label"] == ""
    # Every catalogue item gets a key even when the sheet is empty
    assert data["other_magnet_switch_operation_check"] == ""


def test_flatten_checklist_tolerates_malformed_sections():
    data = flatten_checklist({"hoisting": "oops", "lateral": {"trolley": None}})
    assert data["hoisting_brake_slip"] == ""
    assert data["lateral_trolley_lateral_motor_reducer"] == ""


def test_parse_checklist_bad_json():
    assert parse_checklist(None) == {}
    assert parse_checklist("{broken") == {}
    assert parse_checklist("[1, 2]") == {}


def test_work_record_data():
    record = SimpleNamespace(
        work_type="INSPECTION",
        inspection_date=datetime(2024, 11, 4, 23, 30),
        overall_judgment="CAUTION",
        findings="ブレーキライニング摩耗",
        summary=None,
        additional_notes=None,
        document_number="R-001",
        installation_factory="第1工場",
        checklist_data=json.dumps({"hoisting": {"brake": {"slip": "△"}}}),
    )
    equipment = SimpleNamespace(
        name="10t 天井クレーン", model="OHC-10", serial_number="SN-1", location="A棟", specifications=None
    )
    user = SimpleNamespace(name="点検者", email="tech@example.com", phone=None)

    data = build_work_record_template_data(record, equipment, _company(), user=user)

    assert data["workTypeLabel"] == "点検"
    assert data["overallJudgmentLabel"] == "注意"
    # 23:30 UTC on the 4th is the 5th in Tokyo
    assert data["inspectionDate"] == "2024/11/5"
    assert data["equipmentName"] == "10t 天井クレーン"
    assert data["userName"] == "点検者"
    assert data["projectTitle"] == ""
    assert data["hoisting_brake_slip"] == "△"


# ---------------------------------------------------------------------------
# File names and labels
# ---------------------------------------------------------------------------


def test_file_names():
    assert quote_file_name("サンプル", "docx", on=date(2024, 11, 5)) == "見積書_サンプル_2024-11-05.docx"
    assert contract_file_name("サンプル", "xlsx", on=date(2024, 11, 5)) == "受注書_サンプル_2024-11-05.xlsx"
    assert (
        work_record_file_name("サンプル", "クレーン", datetime(2024, 11, 4, 23, 30), "docx")
        == "作業記録_サンプル_クレーン_2024-11-05.docx"
    )


def test_labels():
    assert format_yen(1000) == "¥1,000"
    assert format_value(None) == "空の値"
    assert format_value(True) == "有効"
    assert format_value(False) == "無効"
    assert format_value(1000, "amount") == "¥1,000"
    assert format_value("2024-11-05") == "2024/11/5"
    assert format_value("WON", "status") == "受注"
    assert get_field_display_name("Company", "name") == "会社名"
    assert get_field_display_name("Company", "unknown_field") == "unknown_field"
