"""Public signing endpoints: a signer acts through their link token, no account needed."""
from fastapi import APIRouter, Depends, HTTPException, Request

from signflow.dependencies import client_ip, get_coordinator, unwrap_result
from signflow.schemas.public import PublicDocumentResponse, PublicRejectRequest, PublicSignRequest
from signflow.services.coordinator import CommandResult, WorkflowCoordinator

router = APIRouter(prefix="/public/documents", tags=["public"])


def _respond(result: CommandResult) -> PublicDocumentResponse:
    doc = unwrap_result(result)
    if result.signer_id is None:
        raise HTTPException(status_code=404, detail="Signing link not found")
    return PublicDocumentResponse.from_document(doc, result.signer_id, persisted=result.ok)


@router.get("/{token}", response_model=PublicDocumentResponse)
def get_public_document(
    token: str,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
):
    return _respond(coordinator.public_document(token))


@router.post("/{token}/fields/{field_id}/sign", response_model=PublicDocumentResponse)
def public_sign_field(
    req: Request,
    token: str,
    field_id: str,
    data: PublicSignRequest,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
):
    result = coordinator.public_submit_signature(token, field_id, data.capture.to_capture(), ip_address=client_ip(req))
    return _respond(result)


@router.post("/{token}/complete", response_model=PublicDocumentResponse)
def public_complete(
    req: Request,
    token: str,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
):
    return _respond(coordinator.public_sign_document(token, ip_address=client_ip(req)))


@router.post("/{token}/reject", response_model=PublicDocumentResponse)
def public_reject(
    req: Request,
    token: str,
    data: PublicRejectRequest,
    coordinator: WorkflowCoordinator = Depends(get_coordinator),
):
    return _respond(coordinator.public_reject(token, data.reason, ip_address=client_ip(req)))
