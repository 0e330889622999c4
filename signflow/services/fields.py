"""Field store: placing, moving, signing and clearing signature/date fields.

Functions take a Document and return a new one; identifiers are generated here
when a field or signature record is created.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from signflow.services.capture import CaptureResult
from signflow.services.entities import (
    CaptureMethod,
    Document,
    FieldType,
    Signature,
    SignatureField,
    SignatureKind,
    new_id,
)
from signflow.services.exceptions import (
    EmptyInput,
    InvalidAssignment,
    InvalidTransition,
    NotFound,
)
from signflow.services.geometry import (
    DEFAULT_FIELD_HEIGHT,
    DEFAULT_FIELD_WIDTH,
    check_placement,
    to_placement,
)
from signflow.services.state_machine import ensure_unlocked

_SIGNATURE_KIND = {
    FieldType.signature: SignatureKind.signature,
    FieldType.date: SignatureKind.date,
}


def get_field(document: Document, field_id: str) -> SignatureField:
    f = document.field(field_id)
    if f is None:
        raise NotFound("field", field_id)
    return f


def place_field(
    document: Document,
    *,
    page: int,
    x: float,
    y: float,
    field_type: FieldType,
    assigned_to: str,
    required: bool = True,
    width: float = DEFAULT_FIELD_WIDTH,
    height: float = DEFAULT_FIELD_HEIGHT,
) -> tuple[Document, SignatureField]:
    """Create an unsigned field at (x, y) page units on ``page``."""
    ensure_unlocked(document)
    if document.signer(assigned_to) is None:
        raise InvalidAssignment(
            f"Field cannot be assigned to unknown signer {assigned_to}",
            assigned_to=assigned_to,
        )
    placement = check_placement(
        to_placement(document.page_size, page, x, y, width, height),
        document.page_count,
    )
    new_field = SignatureField(
        id=new_id(),
        type=FieldType(field_type),
        placement=placement,
        assigned_to=assigned_to,
        required=required,
    )
    return replace(document, fields=document.fields + (new_field,)), new_field


def move_field(document: Document, field_id: str, x: float, y: float) -> tuple[Document, SignatureField]:
    """Move a field to new page-unit coordinates, keeping its page and size."""
    current = get_field(document, field_id)
    ensure_unlocked(document)
    target = to_placement(document.page_size, current.placement.page, x, y)
    placement = check_placement(current.placement.moved_to(target.x, target.y), document.page_count)
    moved = replace(current, placement=placement)
    return document.with_field(moved), moved


def apply_signature(
    document: Document,
    field_id: str,
    signer_id: str,
    result: CaptureResult,
    now: datetime,
) -> tuple[Document, Signature]:
    """Store the signed payload on the field and append the permanent Signature record."""
    current = get_field(document, field_id)
    if current.signed:
        raise InvalidTransition(f"Field {field_id} is already signed", field_id=field_id)
    if not result.signature_image:
        raise EmptyInput("Signature image is empty")
    signed = replace(
        current,
        signed=True,
        signature_type=result.signature_type,
        signature_text=result.signature_text if result.signature_type == CaptureMethod.typed else None,
        signature_image=result.signature_image,
    )
    record = Signature(
        id=new_id(),
        signer_id=signer_id,
        document_id=document.id,
        field_id=field_id,
        placement=current.placement,
        type=_SIGNATURE_KIND[current.type],
        value=result.signature_text,
        image_data=result.signature_image,
        created_at=now,
    )
    document = document.with_field(signed)
    return replace(document, signatures=document.signatures + (record,)), record


def clear_signature(document: Document, field_id: str) -> tuple[Document, SignatureField]:
    """Reset the signed payload; placement and assignment stay. Signature records are kept."""
    current = get_field(document, field_id)
    if not current.signed:
        raise InvalidTransition(f"Field {field_id} is not signed", field_id=field_id)
    cleared = current.cleared()
    return document.with_field(cleared), cleared
