"""In-memory data model of a signing workflow.

Every entity is a frozen dataclass; commands build a new Document instead of
mutating the old one, so a snapshot handed to a caller never changes under it.
"""
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from signflow.services.geometry import PageSize, Placement


class DocumentStatus(str, enum.Enum):
    draft = "draft"
    pending = "pending"
    signed = "signed"
    rejected = "rejected"
    completed = "completed"


TERMINAL_DOCUMENT_STATUSES = frozenset({DocumentStatus.completed, DocumentStatus.rejected})


class SignerStatus(str, enum.Enum):
    pending = "pending"
    signed = "signed"
    rejected = "rejected"


class FieldType(str, enum.Enum):
    signature = "signature"
    date = "date"


class CaptureMethod(str, enum.Enum):
    typed = "typed"
    drawn = "drawn"
    uploaded = "uploaded"


class SignatureKind(str, enum.Enum):
    signature = "signature"
    initial = "initial"
    date = "date"
    text = "text"


class AuditAction(str, enum.Enum):
    document_created = "document_created"
    field_placed = "field_placed"
    field_moved = "field_moved"
    field_signed = "field_signed"
    field_unsigned = "field_unsigned"
    document_signed = "document_signed"
    document_completed = "document_completed"
    document_rejected = "document_rejected"


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Signer:
    id: str
    name: str
    email: str
    order: int
    status: SignerStatus = SignerStatus.pending
    signed_at: datetime | None = None
    # Set by the signer's explicit "finish signing" command
    confirmed: bool = False
    rejection_reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != SignerStatus.pending


@dataclass(frozen=True)
class SignatureField:
    id: str
    type: FieldType
    placement: Placement
    assigned_to: str
    required: bool = True
    signed: bool = False
    signature_type: CaptureMethod | None = None
    signature_text: str | None = None
    signature_image: str | None = None

    def cleared(self) -> "SignatureField":
        return replace(self, signed=False, signature_type=None, signature_text=None, signature_image=None)


@dataclass(frozen=True)
class Signature:
    """Permanent record of one signing act; placement is copied from the field at signing time."""
    id: str
    signer_id: str
    document_id: str
    field_id: str
    placement: Placement
    type: SignatureKind
    created_at: datetime
    value: str | None = None
    image_data: str | None = None


@dataclass(frozen=True)
class AuditEntry:
    id: str
    document_id: str
    action: AuditAction
    user: str
    timestamp: datetime
    ip_address: str | None
    details: str


@dataclass(frozen=True)
class Document:
    id: str
    name: str
    owner: str
    size: int
    page_count: int
    page_size: PageSize
    status: DocumentStatus
    created_at: datetime
    updated_at: datetime
    signers: tuple[Signer, ...] = ()
    fields: tuple[SignatureField, ...] = ()
    signatures: tuple[Signature, ...] = ()
    audit_trail: tuple[AuditEntry, ...] = ()
    public_link: str | None = None

    @property
    def is_locked(self) -> bool:
        return self.status in TERMINAL_DOCUMENT_STATUSES

    def signer(self, signer_id: str) -> Signer | None:
        return next((s for s in self.signers if s.id == signer_id), None)

    def field(self, field_id: str) -> SignatureField | None:
        return next((f for f in self.fields if f.id == field_id), None)

    def fields_for(self, signer_id: str) -> list[SignatureField]:
        return [f for f in self.fields if f.assigned_to == signer_id]

    def with_field(self, updated: SignatureField) -> "Document":
        return replace(self, fields=tuple(updated if f.id == updated.id else f for f in self.fields))

    def with_signer(self, updated: Signer) -> "Document":
        return replace(self, signers=tuple(updated if s.id == updated.id else s for s in self.signers))


# --- JSON-compatible snapshot shape ---


def _ts(v: datetime | None) -> str | None:
    return v.isoformat() if v else None


def _parse_ts(v: str | None) -> datetime | None:
    return datetime.fromisoformat(v) if v else None


def placement_to_dict(p: Placement) -> dict[str, Any]:
    return {"page": p.page, "x": p.x, "y": p.y, "width": p.width, "height": p.height}


def placement_from_dict(d: dict[str, Any]) -> Placement:
    return Placement(page=int(d["page"]), x=float(d["x"]), y=float(d["y"]), width=float(d["width"]), height=float(d["height"]))


def signer_to_dict(s: Signer) -> dict[str, Any]:
    return {
        "id": s.id,
        "name": s.name,
        "email": s.email,
        "order": s.order,
        "status": s.status.value,
        "signed_at": _ts(s.signed_at),
        "confirmed": s.confirmed,
        "rejection_reason": s.rejection_reason,
    }


def signer_from_dict(d: dict[str, Any]) -> Signer:
    return Signer(
        id=d["id"],
        name=d["name"],
        email=d["email"],
        order=int(d["order"]),
        status=SignerStatus(d.get("status", "pending")),
        signed_at=_parse_ts(d.get("signed_at")),
        confirmed=bool(d.get("confirmed", False)),
        rejection_reason=d.get("rejection_reason"),
    )


def field_to_dict(f: SignatureField) -> dict[str, Any]:
    return {
        "id": f.id,
        "type": f.type.value,
        **placement_to_dict(f.placement),
        "required": f.required,
        "assigned_to": f.assigned_to,
        "signed": f.signed,
        "signature_type": f.signature_type.value if f.signature_type else None,
        "signature_text": f.signature_text,
        "signature_image": f.signature_image,
    }


def field_from_dict(d: dict[str, Any]) -> SignatureField:
    return SignatureField(
        id=d["id"],
        type=FieldType(d["type"]),
        placement=placement_from_dict(d),
        assigned_to=d["assigned_to"],
        required=bool(d.get("required", True)),
        signed=bool(d.get("signed", False)),
        signature_type=CaptureMethod(d["signature_type"]) if d.get("signature_type") else None,
        signature_text=d.get("signature_text"),
        signature_image=d.get("signature_image"),
    )


def signature_to_dict(s: Signature) -> dict[str, Any]:
    return {
        "id": s.id,
        "signer_id": s.signer_id,
        "document_id": s.document_id,
        "field_id": s.field_id,
        **placement_to_dict(s.placement),
        "type": s.type.value,
        "value": s.value,
        "image_data": s.image_data,
        "created_at": _ts(s.created_at),
    }


def signature_from_dict(d: dict[str, Any]) -> Signature:
    return Signature(
        id=d["id"],
        signer_id=d["signer_id"],
        document_id=d["document_id"],
        field_id=d["field_id"],
        placement=placement_from_dict(d),
        type=SignatureKind(d["type"]),
        value=d.get("value"),
        image_data=d.get("image_data"),
        created_at=_parse_ts(d["created_at"]),
    )


def audit_entry_to_dict(e: AuditEntry) -> dict[str, Any]:
    return {
        "id": e.id,
        "document_id": e.document_id,
        "action": e.action.value,
        "user": e.user,
        "timestamp": _ts(e.timestamp),
        "ip_address": e.ip_address,
        "details": e.details,
    }


def document_to_dict(doc: Document) -> dict[str, Any]:
    """Persisted snapshot shape: plain JSON types only."""
    return {
        "id": doc.id,
        "name": doc.name,
        "status": doc.status.value,
        "owner": doc.owner,
        "size": doc.size,
        "page_count": doc.page_count,
        "page_width": doc.page_size.width,
        "page_height": doc.page_size.height,
        "created_at": _ts(doc.created_at),
        "updated_at": _ts(doc.updated_at),
        "signers": [signer_to_dict(s) for s in doc.signers],
        "fields": [field_to_dict(f) for f in doc.fields],
        "signatures": [signature_to_dict(s) for s in doc.signatures],
        "audit_trail": [audit_entry_to_dict(e) for e in doc.audit_trail],
        "public_link": doc.public_link,
    }
