"""Append-only audit ledger. Never update or delete - immutable audit trail.

Entries live on the Document snapshot (and are mirrored to the audit_logs table
by the store). Details are built here from command parameters only; no
client-supplied text is copied in verbatim.
"""
from __future__ import annotations

import csv
import heapq
import io
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable

from signflow.services.entities import (
    AuditAction,
    AuditEntry,
    Document,
    SignatureField,
    Signer,
    new_id,
)
from signflow.services.geometry import to_units

# Column limits (match model)
_USER_LEN = 255
_IP_LEN = 64
_DETAILS_LEN = 2000


def record(
    document: Document,
    action: AuditAction,
    details: str,
    *,
    user: str,
    now: datetime,
    ip_address: str | None = None,
) -> Document:
    """Append one immutable entry and return the new snapshot."""
    entry = AuditEntry(
        id=new_id(),
        document_id=document.id,
        action=AuditAction(action),
        user=(user or "")[:_USER_LEN].strip() or "unknown",
        timestamp=now,
        ip_address=(ip_address[:_IP_LEN] if ip_address else None) or None,
        details=(details or "")[:_DETAILS_LEN].strip() or "-",
    )
    return replace(document, audit_trail=document.audit_trail + (entry,), updated_at=now)


# --- Deterministic details ---


def _where(document: Document, f: SignatureField) -> str:
    u = to_units(document.page_size, f.placement)
    return f"page {f.placement.page} at ({u['x']:.0f}, {u['y']:.0f})"


def describe_created(document: Document) -> str:
    names = ", ".join(s.name for s in sorted(document.signers, key=lambda s: s.order)) or "none"
    return f"Document {document.name} created with {len(document.signers)} signer(s): {names}"


def describe_placed(document: Document, f: SignatureField, signer: Signer) -> str:
    req = "required" if f.required else "optional"
    return f"{req.capitalize()} {f.type.value} field placed on {_where(document, f)} for {signer.name}"


def describe_moved(document: Document, f: SignatureField) -> str:
    return f"{f.type.value.capitalize()} field {f.id} moved to {_where(document, f)}"


def describe_signed(document: Document, f: SignatureField, signer: Signer) -> str:
    return f"{signer.name} signed {f.type.value} field on page {f.placement.page} ({f.signature_type.value})"


def describe_unsigned(document: Document, f: SignatureField, signer: Signer | None) -> str:
    who = signer.name if signer else f.assigned_to
    return f"Signature cleared from {f.type.value} field on page {f.placement.page} assigned to {who}"


def describe_confirmed(document: Document, signer: Signer) -> str:
    count = len(document.fields_for(signer.id))
    return f"{signer.name} finished signing ({count} field(s))"


def describe_completed(document: Document) -> str:
    return f"All signatures collected ({sum(1 for f in document.fields if f.required)} required field(s))"


def describe_rejected(document: Document, signer: Signer) -> str:
    return f"{signer.name} declined to sign"


# --- Read-only projections ---


@dataclass(frozen=True)
class TaggedEntry:
    document_id: str
    document_name: str
    entry: AuditEntry


def entries_for(document: Document) -> list[AuditEntry]:
    return list(document.audit_trail)


def entries_across(documents: Iterable[Document]) -> list[TaggedEntry]:
    """Merge every document's (already ordered) trail by timestamp, oldest first."""
    streams = [
        [TaggedEntry(doc.id, doc.name, e) for e in doc.audit_trail]
        for doc in documents
    ]
    return list(heapq.merge(*streams, key=lambda t: t.entry.timestamp))


def search(entries: Iterable[TaggedEntry], term: str | None) -> list[TaggedEntry]:
    """Case-insensitive match on action, user, details or document name."""
    needle = (term or "").strip().lower()
    if not needle:
        return list(entries)
    return [
        t for t in entries
        if needle in t.entry.action.value.lower()
        or needle in t.entry.user.lower()
        or needle in t.entry.details.lower()
        or needle in t.document_name.lower()
    ]


def to_csv(entries: Iterable[TaggedEntry]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(["timestamp", "document_id", "document_name", "action", "user", "ip_address", "details"])
    for t in entries:
        e = t.entry
        writer.writerow([e.timestamp.isoformat(), t.document_id, t.document_name, e.action.value, e.user, e.ip_address or "", e.details])
    return buf.getvalue()
