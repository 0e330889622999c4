"""Typed failures of the signing workflow.

Components raise these; the workflow coordinator catches them at the command
boundary and hands them back inside a CommandResult. Each carries a stable
``code`` for API clients and the HTTP status the routers answer with.
"""
from __future__ import annotations

from typing import Any


class SigningError(Exception):
    """Base class for every recoverable, per-command workflow failure."""

    code = "signing_error"
    http_status = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        out = {"code": self.code, "message": self.message}
        if self.context:
            out["context"] = {k: str(v) for k, v in self.context.items()}
        return out


class NotFound(SigningError):
    code = "not_found"
    http_status = 404

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}", kind=kind, id=identifier)
        self.kind = kind
        self.identifier = identifier


class InvalidGeometry(SigningError):
    code = "invalid_geometry"
    http_status = 422


class InvalidAssignment(SigningError):
    code = "invalid_assignment"
    http_status = 422


class DocumentLocked(SigningError):
    code = "document_locked"
    http_status = 409


class WrongSigner(SigningError):
    code = "wrong_signer"
    http_status = 403


class OrderViolation(SigningError):
    code = "order_violation"
    http_status = 409


class InvalidTransition(SigningError):
    code = "invalid_transition"
    http_status = 409


class EmptyInput(SigningError):
    code = "empty_input"
    http_status = 422


class UploadTooLarge(SigningError):
    code = "upload_too_large"
    http_status = 413


class UnsupportedFormat(SigningError):
    code = "unsupported_format"
    http_status = 415


class InvalidLink(SigningError):
    code = "invalid_link"
    http_status = 404


class PersistenceError(SigningError):
    """The in-memory transition succeeded but writing it to the store did not.

    ``snapshot`` is the already-applied document so callers can retry the save
    without re-deriving state.
    """

    code = "persistence_error"
    http_status = 503

    def __init__(self, message: str, snapshot=None, cause: BaseException | None = None):
        super().__init__(message)
        self.snapshot = snapshot
        self.cause = cause
