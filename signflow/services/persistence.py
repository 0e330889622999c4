"""Persistence collaborator: writes coordinator snapshots to SQL and reads them back.

Every call opens its own session and commits or rolls back before returning.
Errors propagate to the coordinator, which reports them as PersistenceError
and schedules a full re-save.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Sequence

from sqlalchemy.orm import Session, sessionmaker

from signflow.models.audit_log import AuditLog
from signflow.models.document import DocumentRecord
from signflow.services.entities import (
    AuditAction,
    AuditEntry,
    Document,
    DocumentStatus,
    Signature,
    SignatureField,
    Signer,
    field_from_dict,
    field_to_dict,
    signature_from_dict,
    signature_to_dict,
    signer_from_dict,
    signer_to_dict,
)
from signflow.services.geometry import PageSize


def _utc(v: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; everything stored is UTC."""
    if v is not None and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


class SqlDocumentStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _session(self) -> Session:
        return self.session_factory()

    def _record(self, db: Session, document_id: str) -> DocumentRecord:
        rec = db.get(DocumentRecord, document_id)
        if rec is None:
            raise LookupError(f"document {document_id} has not been saved")
        return rec

    def save_document(self, document: Document) -> None:
        """Upsert the whole snapshot and append any audit entries not yet stored."""
        db = self._session()
        try:
            rec = db.get(DocumentRecord, document.id) or DocumentRecord(id=document.id)
            rec.name = document.name
            rec.owner = document.owner
            rec.size = document.size
            rec.status = document.status.value
            rec.page_count = document.page_count
            rec.page_width = document.page_size.width
            rec.page_height = document.page_size.height
            rec.public_link = document.public_link
            rec.signers = [signer_to_dict(s) for s in document.signers]
            rec.fields = [field_to_dict(f) for f in document.fields]
            rec.signatures = [signature_to_dict(s) for s in document.signatures]
            rec.created_at = document.created_at
            rec.updated_at = document.updated_at
            db.add(rec)
            db.flush()
            stored = {row[0] for row in db.query(AuditLog.id).filter(AuditLog.document_id == document.id)}
            self._add_audit_rows(db, document.id, document.audit_trail, stored)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def save_fields(
        self,
        document_id: str,
        fields: Sequence[SignatureField],
        signatures: Sequence[Signature] = (),
        updated_at: datetime | None = None,
    ) -> None:
        db = self._session()
        try:
            rec = self._record(db, document_id)
            rec.fields = [field_to_dict(f) for f in fields]
            rec.signatures = [signature_to_dict(s) for s in signatures]
            if updated_at:
                rec.updated_at = updated_at
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def save_status(
        self,
        document_id: str,
        status: DocumentStatus,
        signers: Sequence[Signer] = (),
        updated_at: datetime | None = None,
    ) -> None:
        db = self._session()
        try:
            rec = self._record(db, document_id)
            rec.status = DocumentStatus(status).value
            if signers:
                rec.signers = [signer_to_dict(s) for s in signers]
            if updated_at:
                rec.updated_at = updated_at
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def append_audit(self, document_id: str, entries: Sequence[AuditEntry], start: int) -> None:
        """Insert entries; ``start`` is the position of the first one in the trail."""
        if not entries:
            return
        db = self._session()
        try:
            for offset, e in enumerate(entries):
                db.add(self._audit_row(document_id, e, start + offset))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _add_audit_rows(self, db: Session, document_id: str, trail: Iterable[AuditEntry], stored: set[str]) -> None:
        for seq, e in enumerate(trail):
            if e.id not in stored:
                db.add(self._audit_row(document_id, e, seq))

    @staticmethod
    def _audit_row(document_id: str, e: AuditEntry, sequence: int) -> AuditLog:
        return AuditLog(
            id=e.id,
            document_id=document_id,
            sequence=sequence,
            action=e.action.value,
            details=e.details,
            actor=e.user,
            ip_address=e.ip_address,
            created_at=e.timestamp,
        )

    def fetch_document(self, document_id: str) -> Document | None:
        db = self._session()
        try:
            rec = db.get(DocumentRecord, document_id)
            if rec is None:
                return None
            rows = (
                db.query(AuditLog)
                .filter(AuditLog.document_id == document_id)
                .order_by(AuditLog.sequence.asc())
                .all()
            )
            trail = tuple(
                AuditEntry(
                    id=r.id,
                    document_id=r.document_id,
                    action=AuditAction(r.action),
                    user=r.actor,
                    timestamp=_utc(r.created_at),
                    ip_address=r.ip_address,
                    details=r.details,
                )
                for r in rows
            )
            return Document(
                id=rec.id,
                name=rec.name,
                owner=rec.owner,
                size=rec.size or 0,
                page_count=rec.page_count,
                page_size=PageSize(rec.page_width, rec.page_height),
                status=DocumentStatus(rec.status),
                created_at=_utc(rec.created_at),
                updated_at=_utc(rec.updated_at),
                signers=tuple(signer_from_dict(d) for d in rec.signers or []),
                fields=tuple(field_from_dict(d) for d in rec.fields or []),
                signatures=tuple(signature_from_dict(d) for d in rec.signatures or []),
                audit_trail=trail,
                public_link=rec.public_link,
            )
        finally:
            db.close()

    def list_document_ids(self) -> list[str]:
        db = self._session()
        try:
            return [row[0] for row in db.query(DocumentRecord.id).order_by(DocumentRecord.created_at.desc())]
        finally:
            db.close()
