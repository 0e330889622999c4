"""Signer and document status derivation.

Status is never stored independently of the fields: after every mutation the
coordinator calls ``refresh`` which re-derives each signer's status and then the
document's. Rejection is the only status set by a command, and it is terminal.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from signflow.services.entities import (
    Document,
    DocumentStatus,
    Signer,
    SignerStatus,
)
from signflow.services.exceptions import (
    DocumentLocked,
    InvalidTransition,
    NotFound,
    OrderViolation,
    WrongSigner,
)


def required_fields_complete(document: Document, signer_id: str) -> bool:
    return all(f.signed for f in document.fields_for(signer_id) if f.required)


def derive_signer_status(document: Document, signer: Signer) -> SignerStatus:
    if signer.status == SignerStatus.rejected:
        return SignerStatus.rejected
    required = [f for f in document.fields_for(signer.id) if f.required]
    if required and all(f.signed for f in required):
        return SignerStatus.signed
    # A signer with nothing required becomes signed by confirming
    if not required and signer.confirmed:
        return SignerStatus.signed
    return SignerStatus.pending


def derive_document_status(document: Document) -> DocumentStatus:
    """Document status as a pure function of signer and field state.

    completed  every required field signed (and there is at least one)
    rejected   any signer rejected
    signed     some required field signed, not all
    pending    nothing required signed yet (draft stays draft)
    """
    if any(s.status == SignerStatus.rejected for s in document.signers):
        return DocumentStatus.rejected
    required = [f for f in document.fields if f.required]
    if required and all(f.signed for f in required):
        return DocumentStatus.completed
    if any(f.signed for f in required):
        return DocumentStatus.signed
    if document.status == DocumentStatus.draft:
        return DocumentStatus.draft
    return DocumentStatus.pending


def refresh(document: Document, now: datetime) -> Document:
    """Re-derive every signer status, then the document status."""
    signers = []
    for signer in document.signers:
        status = derive_signer_status(document, signer)
        if status == signer.status:
            signers.append(signer)
            continue
        signed_at = now if status == SignerStatus.signed else None
        # Leaving "signed" through unsign also drops the confirmation
        confirmed = signer.confirmed and status == SignerStatus.signed
        signers.append(replace(signer, status=status, signed_at=signed_at, confirmed=confirmed))
    document = replace(document, signers=tuple(signers))
    return replace(document, status=derive_document_status(document))


def ensure_unlocked(document: Document) -> None:
    if document.is_locked:
        raise DocumentLocked(
            f"Document is {document.status.value}; no further changes are accepted",
            status=document.status.value,
        )


def get_signer(document: Document, signer_id: str) -> Signer:
    signer = document.signer(signer_id)
    if signer is None:
        raise NotFound("signer", signer_id)
    return signer


def check_order(document: Document, signer: Signer) -> None:
    """Sequential signing: every signer with a lower order must already be signed."""
    blocking = [
        s for s in document.signers
        if s.order < signer.order and s.status != SignerStatus.signed
    ]
    if blocking:
        first = min(blocking, key=lambda s: s.order)
        raise OrderViolation(
            f"{first.name} (order {first.order}) must sign before {signer.name} (order {signer.order})",
            waiting_on=first.id,
        )


def ensure_can_sign(document: Document, signer: Signer, *, enforce_order: bool) -> None:
    """Preconditions shared by submitting a signature and confirming completion."""
    ensure_unlocked(document)
    if document.status == DocumentStatus.draft:
        raise InvalidTransition("Document has not been sent for signing yet")
    if signer.status == SignerStatus.rejected:
        raise InvalidTransition(f"{signer.name} has declined to sign", signer_id=signer.id)
    if enforce_order:
        check_order(document, signer)


def ensure_field_owner(field_assigned_to: str, signer_id: str, field_id: str) -> None:
    if field_assigned_to != signer_id:
        raise WrongSigner(
            f"Field {field_id} is assigned to a different signer",
            field_id=field_id,
            signer_id=signer_id,
        )


def confirm_signer(document: Document, signer_id: str, now: datetime, *, enforce_order: bool) -> Document:
    """The signer's explicit "finish signing": all their required fields must be signed."""
    signer = get_signer(document, signer_id)
    ensure_can_sign(document, signer, enforce_order=enforce_order)
    if signer.confirmed:
        raise InvalidTransition(f"{signer.name} has already finished signing", signer_id=signer_id)
    if not required_fields_complete(document, signer_id):
        raise InvalidTransition(
            f"{signer.name} still has required fields to sign",
            signer_id=signer_id,
        )
    document = document.with_signer(replace(signer, confirmed=True))
    return refresh(document, now)


def reject_signer(document: Document, signer_id: str, reason: str | None, now: datetime) -> Document:
    """pending -> rejected for the signer; drives the document to rejected."""
    signer = get_signer(document, signer_id)
    ensure_unlocked(document)
    if signer.is_terminal:
        raise InvalidTransition(
            f"{signer.name} is already {signer.status.value}",
            signer_id=signer_id,
        )
    rejected = replace(signer, status=SignerStatus.rejected, rejection_reason=(reason or "").strip() or None)
    return refresh(document.with_signer(rejected), now)
