"""
Display labels shared by the history timeline and generated documents.

Documents and the timeline are printed for Japanese customers, so labels are
Japanese while stored enum values stay in English.
"""

import json
from datetime import date, datetime

OPPORTUNITY_STATUS_LABELS = {
    "ESTIMATING": "見積中",
    "WON": "受注",
    "LOST": "失注",
}

QUOTE_STATUS_LABELS = {
    "DRAFT": "下書き",
    "SENT": "送信済み",
    "ACCEPTED": "承認済み",
    "REJECTED": "却下",
}

CONTRACT_STATUS_LABELS = {
    "DRAFT": "下書き",
    "CONFIRMED": "確定",
    "CANCELLED": "キャンセル",
}

PROJECT_STATUS_LABELS = {
    "PLANNING": "計画中",
    "IN_PROGRESS": "進行中",
    "ON_HOLD": "保留",
    "COMPLETED": "完了",
}

WORK_TYPE_LABELS = {
    "INSPECTION": "点検",
    "REPAIR": "修理",
    "MAINTENANCE": "メンテナンス",
    "OTHER": "その他",
}

JUDGMENT_LABELS = {
    "GOOD": "良",
    "CAUTION": "注意",
    "BAD": "不良",
    "REPAIR": "修理",
}

# Status values shown in the history timeline (opportunity + project)
_TIMELINE_STATUS_LABELS = {**OPPORTUNITY_STATUS_LABELS, **PROJECT_STATUS_LABELS}

FIELD_DISPLAY_NAMES = {
    "Company": {
        "name": "会社名",
        "postal_code": "郵便番号",
        "address": "住所",
        "phone": "電話番号",
        "email": "メールアドレス",
        "industry_type": "業種",
        "billing_flag": "請求フラグ",
        "notes": "備考",
    },
    "SalesOpportunity": {
        "title": "案件名",
        "status": "ステージ",
        "estimated_amount": "売上の期待値",
        "crane_count": "対象クレーン台数",
        "crane_info": "クレーン情報",
        "occurred_at": "発生日",
        "notes": "備考",
    },
    "Project": {
        "title": "プロジェクトタイトル",
        "status": "ステータス",
        "start_date": "開始日",
        "end_date": "終了日",
        "amount": "金額",
        "notes": "備考",
    },
    "Contact": {
        "name": "氏名",
        "position": "役職",
        "phone": "電話番号",
        "email": "メール",
        "notes": "対応履歴メモ",
    },
    "Equipment": {
        "name": "機器名称",
        "model": "機種・型式",
        "serial_number": "製造番号",
        "location": "設置場所",
        "specifications": "仕様情報",
        "notes": "備考",
    },
    "WorkRecord": {
        "equipment_id": "機器",
        "user_id": "担当者",
        "work_type": "作業タイプ",
        "inspection_date": "作業日",
        "overall_judgment": "総合判定",
        "findings": "所見",
        "summary": "要約",
        "additional_notes": "追加メモ",
        "checklist_data": "チェックリスト",
        "photos": "写真",
    },
}

_MONEY_FIELDS = {"estimated_amount", "amount"}


def format_yen(value) -> str:
    """12345 -> '¥12,345'."""
    return f"¥{int(value):,}"


def format_date(value) -> str:
    """Japanese short date without zero padding: 2024/11/5."""
    return f"{value.year}/{value.month}/{value.day}"


def format_date_time(value: datetime) -> str:
    return f"{format_date(value)} {value:%H:%M}"


def get_field_display_name(entity_type: str, field_name: str) -> str:
    return FIELD_DISPLAY_NAMES.get(entity_type, {}).get(field_name, field_name)


def format_value(value, field_name=None) -> str:
    """Render an audited value for the history timeline."""
    if value is None:
        return "空の値"
    if isinstance(value, bool):
        return "有効" if value else "無効"
    if field_name == "status" and isinstance(value, str) and value in _TIMELINE_STATUS_LABELS:
        return _TIMELINE_STATUS_LABELS[value]
    if isinstance(value, (date, datetime)):
        return format_date(value)
    if isinstance(value, str) and len(value) >= 10 and value[4] == "-" and value[7] == "-":
        try:
            return format_date(date.fromisoformat(value[:10]))
        except ValueError:
            return value
    if isinstance(value, (int, float)):
        if field_name in _MONEY_FIELDS:
            return format_yen(value)
        return f"{value:,}"
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return str(value)
