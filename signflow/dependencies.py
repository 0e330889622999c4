"""Shared dependencies: workflow coordinator, current actor, request origin."""
from dataclasses import dataclass
from functools import lru_cache

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from signflow.config import get_settings
from signflow.database import SessionLocal
from signflow.services.auth import decode_token_with_error
from signflow.services.coordinator import WorkflowCoordinator
from signflow.services.entities import Document
from signflow.services.exceptions import PersistenceError
from signflow.services.persistence import SqlDocumentStore

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    """An already-authenticated user: ``user`` is the identifier documents are owned by."""
    user: str
    name: str


@lru_cache
def get_coordinator() -> WorkflowCoordinator:
    """Process-wide coordinator; the one owner of every document's in-memory state."""
    return WorkflowCoordinator.from_settings(get_settings(), SqlDocumentStore(SessionLocal))


def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Actor:
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    token_str = (credentials.credentials or "").strip()
    payload, _ = decode_token_with_error(token_str)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    if payload.get("kind") != "access" or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    user = str(payload["sub"]).strip().lower()
    return Actor(user=user, name=(payload.get("name") or user))


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def unwrap_result(result) -> Document:
    """Turn a failed CommandResult into an HTTP error; return the snapshot otherwise.

    PersistenceError is not an HTTP error: the change is applied and the snapshot
    is returned (callers read ``result.ok`` to flag it as not yet persisted).
    """
    if result.error is None or (isinstance(result.error, PersistenceError) and result.snapshot is not None):
        return result.snapshot
    raise HTTPException(status_code=result.error.http_status, detail=result.error.to_dict())


def load_for_actor(
    coordinator: WorkflowCoordinator,
    document_id: str,
    actor: Actor,
    *,
    owner_only: bool = False,
) -> Document:
    """Fetch a document the actor may see: its owner, or (unless owner_only) one of its signers."""
    doc = unwrap_result(coordinator.get_document(document_id))
    if doc.owner == actor.user:
        return doc
    if not owner_only and any(s.email == actor.user for s in doc.signers):
        return doc
    if owner_only and any(s.email == actor.user for s in doc.signers):
        raise HTTPException(status_code=403, detail="Only the document owner can do this")
    raise HTTPException(status_code=404, detail={"code": "not_found", "message": f"document not found: {document_id}"})
