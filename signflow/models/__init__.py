"""
All SQLAlchemy models. Schema is the source of truth for new DBs.
Base.metadata.create_all() creates every table; no migration scripts needed for fresh installs.
"""
from signflow.models.document import DocumentRecord
from signflow.models.audit_log import AuditLog

__all__ = [
    "DocumentRecord",
    "AuditLog",
]
