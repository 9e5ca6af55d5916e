"""Central model registry: import all models so Alembic autodiscover works."""

from crm.database import Base  # noqa: F401

from crm.models.user import User  # noqa: F401
from crm.models.company import Company  # noqa: F401
from crm.models.contact import Contact  # noqa: F401
from crm.models.sales_opportunity import SalesOpportunity  # noqa: F401
from crm.models.quote import Quote, QuoteItem  # noqa: F401
from crm.models.contract import Contract, ContractItem  # noqa: F401
from crm.models.project import Project  # noqa: F401
from crm.models.equipment import Equipment  # noqa: F401
from crm.models.inspection_record import InspectionRecord  # noqa: F401
from crm.models.document_template import DocumentTemplate  # noqa: F401
from crm.models.document_sequence import DocumentSequence  # noqa: F401
from crm.models.audit_log import AuditLog  # noqa: F401
