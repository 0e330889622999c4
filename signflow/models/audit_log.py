"""Append-only audit log mirror of each document's audit trail.
No updates or deletes - every record is permanent."""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey

from signflow.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    # Entry id generated by the ledger (never reused)
    id = Column(String(32), primary_key=True)

    document_id = Column(String(32), ForeignKey("documents.id"), nullable=False, index=True)
    # Position in the document's trail; keeps insertion order when timestamps tie
    sequence = Column(Integer, nullable=False)

    # closed vocabulary: document_created | field_placed | field_moved | field_signed | ...
    action = Column(String(32), nullable=False, index=True)
    details = Column(Text, nullable=False)

    # Who did it and from where
    actor = Column(String(255), nullable=False)
    ip_address = Column(String(64), nullable=True)

    # UTC, taken from the command that produced the entry
    created_at = Column(DateTime(timezone=True), nullable=False)
