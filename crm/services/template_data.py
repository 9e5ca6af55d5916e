"""
Placeholder dictionaries for generated documents.

Each ``build_*_template_data`` function flattens an entity graph into the
``{name: value}`` mapping consumed by ``document_renderer.render_document``.
Every key is always present so that a template never shows a raw tag; absent
values become empty strings.
"""

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo

import structlog

from crm.config import settings
from crm.services.labels import (
    CONTRACT_STATUS_LABELS,
    JUDGMENT_LABELS,
    OPPORTUNITY_STATUS_LABELS,
    PROJECT_STATUS_LABELS,
    QUOTE_STATUS_LABELS,
    WORK_TYPE_LABELS,
    format_date,
    format_date_time,
    format_yen,
)

logger = structlog.get_logger()

BULK_ARCHIVE_NAME = "作業記録一括印刷.zip"

ITEM_SLOT_FIELDS = (
    "Number",
    "Description",
    "Quantity",
    "UnitPrice",
    "UnitPriceFormatted",
    "Amount",
    "AmountFormatted",
    "Notes",
)

DEFECT_LABELS = {
    "01": "01. 摩耗",
    "02": "02. 変形",
    "03": "03. 破損",
    "04": "04. 亀裂",
    "05": "05. 傷",
    "06": "06. 異音",
    "07": "07. 焼損",
    "08": "08. 断線",
    "09": "09. 劣化",
    "10": "10. 弛み",
    "11": "11. 脱落",
    "12": "12. 汚損",
    "13": "13. 錆",
    "14": "14. 素線切れ",
    "15": "15. キンク",
    "16": "16. 陥没",
    "17": "17. 腐食",
    "18": "18. その他",
}

# Crane inspection sheet: section -> category -> item ids
INSPECTION_ITEMS = {
    "hoisting": {
        "brake": ("lining_wear", "slip", "solenoid_shoe_pin"),
        "limit_switch": ("limit_lever_gap", "contact_wear_limit"),
        "frame": ("crack_deform",),
        "wire_rope": ("wear", "wire_break", "rope_end_equalizer"),
        "load_block": ("hook_retainer_deform", "sheave_pin_wear", "hook_wear"),
    },
    "lateral": {
        "trolley": ("wheel_guide_roller_wear", "lateral_motor_reducer"),
        "brake_lateral": ("lining_wear_lateral", "solenoid_shoe_pin_lateral"),
        "lateral_rail": ("rail_curvature_lateral", "stopper_lateral"),
    },
    "traveling": {
        "traveling_rail": ("obstacle", "rail_curvature", "rail_end_stopper", "rail_bolt"),
        "girder_saddle": (
            "girder_saddle_bolt",
            "guide_roller_wear",
            "wheel_gear_oil",
            "wheel_axle_wear",
            "wheel_axle_keep",
            "saddle_buffer",
        ),
        "traveling_mechanical": (
            "traveling_motor_reducer",
            "chain_gear_coupling",
            "lining_wear_mechanical",
            "solenoid_shoe_pin_mechanical",
        ),
    },
    "traveling_electrical": {
        "collector": (
            "cushion_starter",
            "collector_trolley",
            "cabtyre_carrier",
            "control_panel",
            "limit_switch_lever",
        ),
        "lubrication": ("hoisting_traveling_oil",),
    },
    "other": {
        "insulation_resistance": ("insulation_resistance_value",),
        "push_button": ("contact_wear_button", "wiring_screw", "case_insulation", "cabtyre_aging"),
        "magnet_switch": ("contact_wear_magnet", "wiring_screw_magnet", "operation_check"),
    },
}


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _plain_number(value) -> str:
    if value is None:
        return ""
    if isinstance(value, Decimal) and value == value.to_integral_value():
        return str(int(value))
    return str(value)


def _grouped(value) -> str:
    if isinstance(value, Decimal) and value != value.to_integral_value():
        return f"{value:,}"
    return f"{int(value):,}"


def to_local(value: datetime) -> datetime:
    """Stored timestamps are naive UTC; documents show them in the business timezone."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(ZoneInfo(settings.DOCUMENT_TIMEZONE))


def _date(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        value = to_local(value)
    return format_date(value)


def _date_time(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return format_date_time(to_local(value))


def _label(labels: dict, value: Optional[str]) -> str:
    if not value:
        return ""
    return labels.get(value, "")


def today_local() -> date:
    return datetime.now(ZoneInfo(settings.DOCUMENT_TIMEZONE)).date()


# ---------------------------------------------------------------------------
# Shared sections
# ---------------------------------------------------------------------------


def line_item_slots(items: Iterable[Any], slots: Optional[int] = None) -> dict:
    """Fixed ``item1..itemN`` placeholders; slots past the real items are blank."""
    slots = slots or settings.DOCUMENT_MAX_LINE_ITEMS
    data = {f"item{n}{field}": "" for n in range(1, slots + 1) for field in ITEM_SLOT_FIELDS}
    for n, item in enumerate(list(items)[:slots], start=1):
        data[f"item{n}Number"] = str(item.item_number)
        data[f"item{n}Description"] = _text(item.description)
        data[f"item{n}Quantity"] = _plain_number(item.quantity)
        data[f"item{n}UnitPrice"] = _plain_number(item.unit_price)
        data[f"item{n}UnitPriceFormatted"] = (
            format_yen(item.unit_price) if item.unit_price is not None else ""
        )
        data[f"item{n}Amount"] = _plain_number(item.amount)
        data[f"item{n}AmountFormatted"] = format_yen(item.amount)
        data[f"item{n}Notes"] = _text(item.notes)
    return data


def _company_fields(company) -> dict:
    return {
        "companyName": _text(company.name),
        "companyPostalCode": _text(company.postal_code),
        "companyAddress": _text(company.address),
        "companyPhone": _text(company.phone),
        "companyEmail": _text(company.email),
    }


def _opportunity_fields(opportunity) -> dict:
    amount = opportunity.estimated_amount
    return {
        "opportunityTitle": _text(opportunity.title),
        "status": _text(opportunity.status),
        "statusLabel": _label(OPPORTUNITY_STATUS_LABELS, opportunity.status),
        "estimatedAmount": _grouped(amount) if amount else "",
        "estimatedAmountFormatted": format_yen(amount) if amount else "",
        "craneCount": _text(opportunity.crane_count),
        "craneInfo": _text(opportunity.crane_info),
        "notes": _text(opportunity.notes),
        "occurredAt": _date(opportunity.occurred_at),
    }


def _project_fields(project) -> dict:
    if project is None:
        return {"projectTitle": "", "projectStatus": "", "projectStatusLabel": ""}
    return {
        "projectTitle": _text(project.title),
        "projectStatus": _text(project.status),
        "projectStatusLabel": _label(PROJECT_STATUS_LABELS, project.status),
    }


def _totals(items: list, total: int) -> dict:
    return {
        "itemsCount": str(len(items)),
        "totalAmount": str(total),
        "totalAmountFormatted": format_yen(total),
    }


# ---------------------------------------------------------------------------
# Quote / contract
# ---------------------------------------------------------------------------


def build_quote_template_data(
    opportunity,
    company,
    quote=None,
    items: Iterable[Any] = (),
    quote_count: int = 0,
    contract=None,
    project=None,
) -> dict:
    items = list(items)
    total = int(quote.amount) if quote is not None else 0

    data = {**_company_fields(company), **_opportunity_fields(opportunity)}
    data.update(
        {
            "quoteNumber": quote.quote_number if quote else "",
            "quoteAmount": str(quote.amount) if quote else "",
            "quoteAmountFormatted": format_yen(quote.amount) if quote else "",
            "quoteStatus": quote.status if quote else "",
            "quoteStatusLabel": _label(QUOTE_STATUS_LABELS, quote.status) if quote else "",
            "quoteConditions": _text(quote.conditions) if quote else "",
            "quoteValidUntil": _date(quote.valid_until) if quote else "",
            "quoteNotes": _text(quote.notes) if quote else "",
            "quoteCreatedAt": _date(quote.created_at) if quote else "",
            "quoteCreatedAtDateTime": _date_time(quote.created_at) if quote else "",
            "quoteUpdatedAt": _date(quote.updated_at) if quote else "",
            "quoteUpdatedAtDateTime": _date_time(quote.updated_at) if quote else "",
        }
    )
    data.update(line_item_slots(items))
    data.update(_totals(items, total))
    data.update(
        {
            "quoteCount": str(quote_count),
            "contractNumber": contract.contract_number if contract else "",
            "contractDate": _date(contract.contract_date) if contract else "",
        }
    )
    data.update(_project_fields(project))
    return data


def build_contract_template_data(
    opportunity,
    company,
    contract=None,
    items: Iterable[Any] = (),
    created_by=None,
    contract_count: int = 0,
    project=None,
) -> dict:
    items = list(items)
    total = int(contract.amount) if contract is not None else 0
    creator = ""
    if created_by is not None:
        creator = created_by.name or created_by.email or ""

    data = {**_company_fields(company), **_opportunity_fields(opportunity)}
    data.update(
        {
            "contractNumber": contract.contract_number if contract else "",
            "contractAmount": str(contract.amount) if contract else "",
            "contractAmountFormatted": format_yen(contract.amount) if contract else "",
            "contractStatus": contract.status if contract else "",
            "contractStatusLabel": (
                _label(CONTRACT_STATUS_LABELS, contract.status) if contract else ""
            ),
            "contractConditions": _text(contract.conditions) if contract else "",
            "contractDate": _date(contract.contract_date) if contract else "",
            "contractCreatedAt": _date(contract.created_at) if contract else "",
            "contractCreatedAtDateTime": _date_time(contract.created_at) if contract else "",
            "contractUpdatedAt": _date(contract.updated_at) if contract else "",
            "contractUpdatedAtDateTime": _date_time(contract.updated_at) if contract else "",
            "contractCreatedBy": creator,
        }
    )
    data.update(line_item_slots(items))
    data.update(_totals(items, total))
    data["contractCount"] = str(contract_count)
    data.update(_project_fields(project))
    return data


# ---------------------------------------------------------------------------
# Work records
# ---------------------------------------------------------------------------


def parse_checklist(raw: Optional[str]) -> dict:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("checklist_parse_failed")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def flatten_checklist(checklist: dict) -> dict:
    """
    ``<section>_<category>_<item>`` -> judgment symbol and
    ``<section>_<category>_<item>_defect_label`` -> labelled defect code,
    for every item of the inspection sheet.
    """
    data = {}
    for section_id, categories in INSPECTION_ITEMS.items():
        section = checklist.get(section_id)
        if not isinstance(section, dict):
            section = {}
        for category_id, item_ids in categories.items():
            category = section.get(category_id)
            if not isinstance(category, dict):
                category = {}
            for item_id in item_ids:
                key = f"{section_id}_{category_id}_{item_id}"
                data[key] = _text(category.get(item_id))
                defect = category.get(f"{item_id}_defect")
                data[f"{key}_defect_label"] = DEFECT_LABELS.get(defect, defect) if defect else ""
    return data


def build_work_record_template_data(record, equipment, company, project=None, user=None) -> dict:
    data = {
        "workType": _text(record.work_type),
        "workTypeLabel": WORK_TYPE_LABELS.get(record.work_type, _text(record.work_type)),
        "inspectionDate": _date(record.inspection_date),
        "inspectionDateDateTime": _date_time(record.inspection_date),
        "overallJudgment": _text(record.overall_judgment),
        "overallJudgmentLabel": _label(JUDGMENT_LABELS, record.overall_judgment),
        "findings": _text(record.findings),
        "summary": _text(record.summary),
        "additionalNotes": _text(record.additional_notes),
        "documentNumber": _text(record.document_number),
        "installationFactory": _text(record.installation_factory),
        "equipmentName": _text(equipment.name),
        "equipmentModel": _text(equipment.model),
        "equipmentSerialNumber": _text(equipment.serial_number),
        "equipmentLocation": _text(equipment.location),
        "equipmentSpecifications": _text(equipment.specifications),
        **_company_fields(company),
        **_project_fields(project),
        "projectStartDate": _date(project.start_date) if project else "",
        "projectEndDate": _date(project.end_date) if project else "",
        "projectAmount": _plain_number(project.amount) if project and project.amount else "",
        "projectAmountFormatted": (
            format_yen(project.amount) if project and project.amount else ""
        ),
        "userName": _text(user.name) if user else "",
        "userEmail": _text(user.email) if user else "",
        "userPhone": _text(user.phone) if user else "",
        "checklistData": _text(record.checklist_data),
    }
    data.update(flatten_checklist(parse_checklist(record.checklist_data)))
    return data


# ---------------------------------------------------------------------------
# File names
# ---------------------------------------------------------------------------


def quote_file_name(company_name: str, extension: str, on: Optional[date] = None) -> str:
    return f"見積書_{company_name}_{(on or today_local()).isoformat()}.{extension}"


def contract_file_name(company_name: str, extension: str, on: Optional[date] = None) -> str:
    return f"受注書_{company_name}_{(on or today_local()).isoformat()}.{extension}"


def work_record_file_name(
    company_name: str, equipment_name: str, inspection_date: datetime, extension: str
) -> str:
    day = to_local(inspection_date).date().isoformat()
    return f"作業記録_{company_name}_{equipment_name}_{day}.{extension}"
