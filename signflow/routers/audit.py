"""Audit trail endpoints: per-document trail, cross-document report, exports."""
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from signflow.dependencies import Actor, get_coordinator, get_current_actor, load_for_actor
from signflow.schemas.documents import AuditEntryResponse
from signflow.services import audit_log
from signflow.services.audit_log import TaggedEntry
from signflow.services.coordinator import WorkflowCoordinator
from signflow.services.reports import audit_report_pdf

router = APIRouter(prefix="/audit", tags=["audit"])


def _entry_view(t: TaggedEntry) -> AuditEntryResponse:
    e = t.entry
    return AuditEntryResponse(
        id=e.id,
        document_id=t.document_id,
        document_name=t.document_name,
        action=e.action.value,
        user=e.user,
        timestamp=e.timestamp,
        ip_address=e.ip_address,
        details=e.details,
    )


def _document_entries(coordinator: WorkflowCoordinator, document_id: str, actor: Actor) -> tuple[str, list[TaggedEntry]]:
    doc = load_for_actor(coordinator, document_id, actor)
    return doc.name, audit_log.entries_across([doc])


@router.get("/", response_model=list[AuditEntryResponse])
def list_entries(
    document_id: list[str] | None = Query(None),
    q: str | None = Query(None, max_length=200),
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
    actor: Actor = Depends(get_current_actor),
):
    """Entries across the caller's documents (optionally only the given ids), oldest first."""
    visible = {
        d.id for d in coordinator.list_documents()
        if d.owner == actor.user or any(s.email == actor.user for s in d.signers)
    }
    ids = [i for i in (document_id or sorted(visible)) if i in visible]
    entries = audit_log.search(coordinator.entries_across(ids), q)
    return [_entry_view(t) for t in entries]


@router.get("/{document_id}", response_model=list[AuditEntryResponse])
def document_entries(
    document_id: str,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
    actor: Actor = Depends(get_current_actor),
):
    _, entries = _document_entries(coordinator, document_id, actor)
    return [_entry_view(t) for t in entries]


@router.get("/{document_id}/export.csv")
def export_csv(
    document_id: str,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
    actor: Actor = Depends(get_current_actor),
):
    _, entries = _document_entries(coordinator, document_id, actor)
    filename = f"audit-{document_id}.csv"
    return Response(
        content=audit_log.to_csv(entries),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/{document_id}/export.pdf")
def export_pdf(
    document_id: str,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
    actor: Actor = Depends(get_current_actor),
):
    name, entries = _document_entries(coordinator, document_id, actor)
    pdf_bytes = audit_report_pdf(f"Audit Trail - {name}", entries)
    filename = f"audit-{document_id}.pdf"
    return Response(content=pdf_bytes, media_type="application/pdf", headers={"Content-Disposition": f'inline; filename="{filename}"'})
