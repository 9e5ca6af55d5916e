"""
Seed script: creates one user per role plus a small demo pipeline
(company, contact, opportunity, quote, project, crane, inspection record).
Run from the project root: python -m scripts.seed
"""
import asyncio
import sys
import os
import uuid
from datetime import date, datetime

# Ensure the project root is on sys.path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select
from crm.database import AsyncSessionLocal, init_db
from crm.models.company import Company
from crm.models.contact import Contact
from crm.models.equipment import Equipment
from crm.models.inspection_record import InspectionRecord
from crm.models.project import Project
from crm.models.quote import Quote, QuoteItem
from crm.models.sales_opportunity import SalesOpportunity
from crm.models.user import User
from crm.services.auth_service import hash_password
from crm.services.numbering_service import next_quote_number

# ---------- Fixed UUIDs ----------

USER_ADMIN_ID = uuid.UUID("a0000000-0000-0000-0000-000000000001")
USER_EDITOR_ID = uuid.UUID("a0000000-0000-0000-0000-000000000002")
USER_VIEWER_ID = uuid.UUID("a0000000-0000-0000-0000-000000000003")

COMPANY_ID = uuid.UUID("c0000000-0000-0000-0000-000000000001")
OPPORTUNITY_ID = uuid.UUID("d0000000-0000-0000-0000-000000000001")
PROJECT_ID = uuid.UUID("e0000000-0000-0000-0000-000000000001")
EQUIPMENT_ID = uuid.UUID("f0000000-0000-0000-0000-000000000001")

DEFAULT_PASSWORD = "CraneCrm123!"


async def seed():
    await init_db()
    async with AsyncSessionLocal() as db:
        # Check if already seeded
        result = await db.execute(select(User).where(User.id == USER_ADMIN_ID))
        if result.scalar_one_or_none():
            print("Seed data already exists. Skipping.")
            return

        hashed_pw = hash_password(DEFAULT_PASSWORD)

        # --- Users ---
        db.add_all([
            User(id=USER_ADMIN_ID, email="admin@example.com", password_hash=hashed_pw,
                 name="管理者", role="ADMIN"),
            User(id=USER_EDITOR_ID, email="editor@example.com", password_hash=hashed_pw,
                 name="営業担当", role="EDITOR"),
            User(id=USER_VIEWER_ID, email="viewer@example.com", password_hash=hashed_pw,
                 name="閲覧者", role="VIEWER"),
        ])
        await db.flush()

        # --- Customer ---
        db.add(Company(id=COMPANY_ID, name="株式会社サンプル製作所", postal_code="100-0001",
                       address="東京都千代田区千代田1-1", phone="03-0000-0000",
                       industry_type="製造業"))
        await db.flush()
        db.add(Contact(company_id=COMPANY_ID, name="山田 太郎", position="工場長",
                       email="yamada@example.com"))

        # --- Sales pipeline ---
        db.add(SalesOpportunity(id=OPPORTUNITY_ID, company_id=COMPANY_ID,
                                title="天井クレーン年次点検", status="ESTIMATING",
                                estimated_amount=330000, crane_count=3,
                                occurred_at=date.today()))
        await db.flush()

        quote = Quote(sales_opportunity_id=OPPORTUNITY_ID, quote_number=await next_quote_number(db),
                      amount=330000, status="DRAFT")
        db.add(quote)
        await db.flush()
        db.add_all([
            QuoteItem(quote_id=quote.id, item_number=1, description="年次点検作業",
                      quantity=3, unit_price=100000, amount=300000),
            QuoteItem(quote_id=quote.id, item_number=2, description="出張費",
                      quantity=1, unit_price=30000, amount=30000),
        ])

        # --- Delivery ---
        db.add(Project(id=PROJECT_ID, company_id=COMPANY_ID, sales_opportunity_id=OPPORTUNITY_ID,
                       assigned_user_id=USER_EDITOR_ID, title="年次点検 2026", status="PLANNING"))
        await db.flush()
        db.add(Equipment(id=EQUIPMENT_ID, company_id=COMPANY_ID, project_id=PROJECT_ID,
                         name="10t 天井クレーン", model="OHC-10", serial_number="SN-0001",
                         location="第1工場"))
        await db.flush()
        db.add(InspectionRecord(equipment_id=EQUIPMENT_ID, user_id=USER_EDITOR_ID,
                                work_type="INSPECTION", inspection_date=datetime.utcnow(),
                                overall_judgment="GOOD", summary="異常なし"))

        await db.commit()
        print("Seed data inserted successfully!")
        print(f"  Users: 3 (password: {DEFAULT_PASSWORD})")
        print(f"  Quote: {quote.quote_number}")


if __name__ == "__main__":
    asyncio.run(seed())
