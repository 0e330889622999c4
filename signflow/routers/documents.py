"""Document preparation and signing endpoints (authenticated owner and signers)."""
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from signflow.dependencies import (
    Actor,
    client_ip,
    get_coordinator,
    get_current_actor,
    load_for_actor,
    unwrap_result,
)
from signflow.schemas.documents import (
    DashboardStats,
    DocumentCreate,
    DocumentResponse,
    DocumentSummary,
    FieldMoveRequest,
    FieldPlaceRequest,
    PublicLinkRequest,
    PublicLinkResponse,
    RejectRequest,
    SignatureSubmitRequest,
)
from signflow.services.coordinator import CommandResult, WorkflowCoordinator
from signflow.services.entities import Document, DocumentStatus, SignerStatus

router = APIRouter(prefix="/documents", tags=["documents"])


def _respond(result: CommandResult) -> DocumentResponse:
    doc = unwrap_result(result)
    return DocumentResponse.from_document(doc, persisted=result.ok)


def _visible_to(doc: Document, actor: Actor) -> bool:
    return doc.owner == actor.user or any(s.email == actor.user for s in doc.signers)


def _ensure_actor_is_signer(doc: Document, signer_id: str, actor: Actor) -> None:
    """Authenticated signing routes act only for the caller's own signer slot (owner may not sign for others)."""
    signer = doc.signer(signer_id)
    if signer is not None and signer.email != actor.user:
        raise HTTPException(status_code=403, detail="You can only sign or decline as yourself")


@router.post("/", response_model=DocumentResponse)
def create_document(
    request: Request,
    data: DocumentCreate,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
    actor: Actor = Depends(get_current_actor),
):
    result = coordinator.create_document(
        name=data.name,
        owner=actor.user,
        signers=[s.to_spec() for s in data.signers],
        page_count=data.page_count,
        page_width=data.page_width,
        page_height=data.page_height,
        size=data.size,
        public_link=data.public_link,
        ip_address=client_ip(request),
    )
    return _respond(result)


@router.get("/", response_model=list[DocumentSummary])
def list_documents(
    status: DocumentStatus | None = Query(None),
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
    actor: Actor = Depends(get_current_actor),
):
    docs = coordinator.list_documents(status=status)
    return [DocumentSummary.from_document(d) for d in docs if _visible_to(d, actor)]


@router.get("/stats", response_model=DashboardStats)
def document_stats(
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
    actor: Actor = Depends(get_current_actor),
):
    """Counts per status over the caller's documents, plus how many wait on the caller's signature."""
    docs = [d for d in coordinator.list_documents() if _visible_to(d, actor)]
    by_status = {s.value: 0 for s in DocumentStatus}
    awaiting = 0
    for d in docs:
        by_status[d.status.value] += 1
        if not d.is_locked and any(s.email == actor.user and s.status == SignerStatus.pending for s in d.signers):
            awaiting += 1
    return DashboardStats(total=len(docs), by_status=by_status, awaiting_me=awaiting)


@router.get("/{document_id}", response_model=DocumentResponse)
def get_document(
    document_id: str,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
    actor: Actor = Depends(get_current_actor),
):
    return DocumentResponse.from_document(load_for_actor(coordinator, document_id, actor))


@router.post("/{document_id}/fields", response_model=DocumentResponse)
def place_field(
    request: Request,
    document_id: str,
    data: FieldPlaceRequest,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
    actor: Actor = Depends(get_current_actor),
):
    load_for_actor(coordinator, document_id, actor, owner_only=True)
    result = coordinator.place_field(
        document_id,
        page=data.page,
        x=data.x,
        y=data.y,
        field_type=data.type,
        assigned_to=data.assigned_to,
        required=data.required,
        width=data.width,
        height=data.height,
        actor=actor.name,
        ip_address=client_ip(request),
    )
    return _respond(result)


@router.patch("/{document_id}/fields/{field_id}", response_model=DocumentResponse)
def move_field(
    request: Request,
    document_id: str,
    field_id: str,
    data: FieldMoveRequest,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
    actor: Actor = Depends(get_current_actor),
):
    """Final drop position of a dragged field."""
    load_for_actor(coordinator, document_id, actor, owner_only=True)
    result = coordinator.move_field(document_id, field_id, data.x, data.y, actor=actor.name, ip_address=client_ip(request))
    return _respond(result)


@router.post("/{document_id}/fields/{field_id}/signature", response_model=DocumentResponse)
def submit_signature(
    request: Request,
    document_id: str,
    field_id: str,
    data: SignatureSubmitRequest,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
    actor: Actor = Depends(get_current_actor),
):
    doc = load_for_actor(coordinator, document_id, actor)
    _ensure_actor_is_signer(doc, data.signer_id, actor)
    result = coordinator.submit_signature(
        document_id,
        field_id,
        data.signer_id,
        data.capture.to_capture(),
        actor=actor.name,
        ip_address=client_ip(request),
    )
    return _respond(result)


@router.delete("/{document_id}/fields/{field_id}/signature", response_model=DocumentResponse)
def unsign_field(
    request: Request,
    document_id: str,
    field_id: str,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
    actor: Actor = Depends(get_current_actor),
):
    """Clear a signed field. Allowed for the owner and for the field's own signer."""
    doc = load_for_actor(coordinator, document_id, actor)
    field = doc.field(field_id)
    if doc.owner != actor.user and field is not None:
        _ensure_actor_is_signer(doc, field.assigned_to, actor)
    result = coordinator.unsign(document_id, field_id, actor=actor.name, ip_address=client_ip(request))
    return _respond(result)


@router.post("/{document_id}/signers/{signer_id}/complete", response_model=DocumentResponse)
def complete_signing(
    request: Request,
    document_id: str,
    signer_id: str,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
    actor: Actor = Depends(get_current_actor),
):
    doc = load_for_actor(coordinator, document_id, actor)
    _ensure_actor_is_signer(doc, signer_id, actor)
    result = coordinator.sign_document(document_id, signer_id, actor=actor.name, ip_address=client_ip(request))
    return _respond(result)


@router.post("/{document_id}/signers/{signer_id}/reject", response_model=DocumentResponse)
def reject_document(
    request: Request,
    document_id: str,
    signer_id: str,
    data: RejectRequest,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
    actor: Actor = Depends(get_current_actor),
):
    doc = load_for_actor(coordinator, document_id, actor)
    _ensure_actor_is_signer(doc, signer_id, actor)
    result = coordinator.reject(document_id, signer_id, data.reason, actor=actor.name, ip_address=client_ip(request))
    return _respond(result)


@router.post("/{document_id}/public-links", response_model=PublicLinkResponse)
def issue_public_link(
    document_id: str,
    data: PublicLinkRequest,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
    actor: Actor = Depends(get_current_actor),
):
    """Signing link for one signer; the token itself names the document and signer."""
    load_for_actor(coordinator, document_id, actor, owner_only=True)
    result = coordinator.issue_public_link(document_id, data.signer_id)
    unwrap_result(result)
    return PublicLinkResponse(
        document_id=document_id,
        signer_id=data.signer_id,
        token=result.token,
        url=coordinator.links.url_for(result.token),
    )
