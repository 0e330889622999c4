"""Workflow coordinator: the single entry point for signing commands.

Owns the mapping from document id to the current Document snapshot. Each
command runs under that document's lock, builds the next snapshot from the
field store, state machine and ledger, swaps it in, then writes it through to
the store. Failures come back as CommandResult.error, never as exceptions.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Sequence

from signflow.services import audit_log, fields, state_machine
from signflow.services.capture import Capture, CapturePolicy, CaptureResult, normalize_capture
from signflow.services.entities import (
    AuditAction,
    AuditEntry,
    Document,
    DocumentStatus,
    FieldType,
    Signer,
    new_id,
)
from signflow.services.exceptions import (
    DocumentLocked,
    InvalidAssignment,
    InvalidGeometry,
    InvalidTransition,
    NotFound,
    PersistenceError,
    SigningError,
)
from signflow.services.geometry import DEFAULT_FIELD_HEIGHT, DEFAULT_FIELD_WIDTH, PageSize, validate_page_size
from signflow.services.public_links import PublicLinkIssuer

log = logging.getLogger("uvicorn.error")

Mutation = Callable[[Document, datetime], Document]


@dataclass(frozen=True)
class SignerSpec:
    name: str
    email: str
    order: int


@dataclass(frozen=True)
class CommandResult:
    snapshot: Document | None = None
    error: SigningError | None = None
    # Set by public-link commands and link issuance
    signer_id: str | None = None
    token: str | None = None
    # Set by audit reads
    entries: tuple[AuditEntry, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def applied(self) -> bool:
        """True when the in-memory transition happened, even if saving it failed."""
        return self.error is None or isinstance(self.error, PersistenceError)

    def unwrap(self) -> Document:
        if self.error is not None:
            raise self.error
        return self.snapshot


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _mark_completion(before: Document, after: Document, user: str, now: datetime, ip: str | None) -> Document:
    if before.status != DocumentStatus.completed and after.status == DocumentStatus.completed:
        return audit_log.record(
            after, AuditAction.document_completed, audit_log.describe_completed(after),
            user=user, now=now, ip_address=ip,
        )
    return after


class WorkflowCoordinator:
    def __init__(
        self,
        store=None,
        *,
        enforce_order: bool = False,
        allow_unsign_after_completion: bool = False,
        capture_policy: CapturePolicy | None = None,
        links: PublicLinkIssuer | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.enforce_order = enforce_order
        self.allow_unsign_after_completion = allow_unsign_after_completion
        self.capture_policy = capture_policy or CapturePolicy()
        self.links = links
        self._clock = clock or _utcnow
        self._documents: dict[str, Document] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._dirty: set[str] = set()

    @classmethod
    def from_settings(cls, settings, store=None) -> "WorkflowCoordinator":
        return cls(
            store,
            enforce_order=settings.enforce_signing_order,
            allow_unsign_after_completion=settings.allow_unsign_after_completion,
            capture_policy=CapturePolicy(
                max_upload_bytes=settings.max_upload_bytes,
                max_drawn_bytes=settings.max_drawn_bytes,
                max_image_pixels=settings.max_image_pixels,
            ),
            links=PublicLinkIssuer(
                settings.jwt_secret_key,
                algorithm=settings.jwt_algorithm,
                expire_minutes=settings.public_link_expire_minutes,
                base_url=settings.public_base_url,
            ),
        )

    # --- plumbing ---

    def _lock(self, document_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(document_id)
            if lock is None:
                lock = self._locks[document_id] = threading.Lock()
            return lock

    def _load(self, document_id: str) -> Document:
        doc = self._documents.get(document_id)
        if doc is not None:
            return doc
        if self.store is not None:
            try:
                doc = self.store.fetch_document(document_id)
            except Exception as e:
                log.exception("Loading document %s from the store failed", document_id)
                raise PersistenceError(f"Could not load document {document_id}", cause=e)
            if doc is not None:
                # A command may have cached a newer snapshot while the fetch ran
                return self._documents.setdefault(document_id, doc)
        raise NotFound("document", document_id)

    def _run(self, document_id: str, mutate: Mutation) -> CommandResult:
        with self._lock(document_id):
            try:
                before = self._load(document_id)
                after = mutate(before, self._clock())
            except SigningError as e:
                log.debug("Command on document %s rejected: %s", document_id, e.message)
                return CommandResult(error=e)
            self._documents[document_id] = after
            return self._persist(before, after)

    def _persist(self, before: Document | None, after: Document) -> CommandResult:
        if self.store is None:
            return CommandResult(snapshot=after)
        try:
            if before is None or after.id in self._dirty:
                self.store.save_document(after)
            else:
                if after.fields != before.fields or after.signatures != before.signatures:
                    self.store.save_fields(after.id, after.fields, after.signatures, after.updated_at)
                if after.status != before.status or after.signers != before.signers:
                    self.store.save_status(after.id, after.status, after.signers, after.updated_at)
                start = len(before.audit_trail)
                self.store.append_audit(after.id, after.audit_trail[start:], start)
        except Exception as e:
            log.exception("Saving document %s failed; queued for retry", after.id)
            self._dirty.add(after.id)
            return CommandResult(
                snapshot=after,
                error=PersistenceError(f"Document {after.id} was updated but not saved", snapshot=after, cause=e),
            )
        self._dirty.discard(after.id)
        return CommandResult(snapshot=after)

    def retry_pending_saves(self) -> int:
        """Re-save every snapshot whose last write failed. Returns how many succeeded."""
        saved = 0
        for document_id in sorted(self._dirty):
            with self._lock(document_id):
                doc = self._documents.get(document_id)
                if doc is None or document_id not in self._dirty:
                    continue
                try:
                    self.store.save_document(doc)
                except Exception:
                    log.warning("Retry save of document %s failed", document_id, exc_info=True)
                    continue
                self._dirty.discard(document_id)
                saved += 1
        if saved:
            log.info("Persistence retry: saved %d document(s).", saved)
        return saved

    @property
    def pending_saves(self) -> frozenset[str]:
        return frozenset(self._dirty)

    # --- document setup ---

    def create_document(
        self,
        *,
        name: str,
        owner: str,
        signers: Sequence[SignerSpec],
        page_count: int,
        page_width: float,
        page_height: float,
        size: int = 0,
        public_link: str | None = None,
        ip_address: str | None = None,
    ) -> CommandResult:
        """Register a document handed over for signing; it starts as pending."""
        try:
            page_size = PageSize(float(page_width), float(page_height))
            validate_page_size(page_size)
            if page_count < 1:
                raise InvalidGeometry("Document must have at least one page")
            orders = [s.order for s in signers]
            if any(o < 1 for o in orders) or len(set(orders)) != len(orders):
                raise InvalidAssignment("Signer order values must be unique and start at 1")
            emails = [s.email.strip().lower() for s in signers]
            if len(set(emails)) != len(emails):
                raise InvalidAssignment("Each signer needs a distinct email")
        except SigningError as e:
            return CommandResult(error=e)

        now = self._clock()
        doc = Document(
            id=new_id(),
            name=name.strip(),
            owner=owner,
            size=size,
            page_count=page_count,
            page_size=page_size,
            status=DocumentStatus.pending,
            created_at=now,
            updated_at=now,
            signers=tuple(
                Signer(id=new_id(), name=s.name.strip(), email=s.email.strip().lower(), order=s.order)
                for s in sorted(signers, key=lambda s: s.order)
            ),
            public_link=public_link,
        )
        doc = audit_log.record(
            doc, AuditAction.document_created, audit_log.describe_created(doc),
            user=owner, now=now, ip_address=ip_address,
        )
        with self._lock(doc.id):
            self._documents[doc.id] = doc
            return self._persist(None, doc)

    # --- field commands ---

    def place_field(
        self,
        document_id: str,
        *,
        page: int,
        x: float,
        y: float,
        assigned_to: str,
        field_type: FieldType = FieldType.signature,
        required: bool = True,
        width: float | None = None,
        height: float | None = None,
        actor: str | None = None,
        ip_address: str | None = None,
    ) -> CommandResult:
        def mutate(doc: Document, now: datetime) -> Document:
            state_machine.ensure_unlocked(doc)
            signer = doc.signer(assigned_to)
            if signer is not None and signer.is_terminal:
                raise InvalidAssignment(
                    f"{signer.name} is already {signer.status.value}; no new fields can be assigned",
                    assigned_to=assigned_to,
                )
            doc, placed = fields.place_field(
                doc,
                page=page,
                x=x,
                y=y,
                field_type=field_type,
                assigned_to=assigned_to,
                required=required,
                width=width if width is not None else DEFAULT_FIELD_WIDTH,
                height=height if height is not None else DEFAULT_FIELD_HEIGHT,
            )
            doc = state_machine.refresh(doc, now)
            return audit_log.record(
                doc, AuditAction.field_placed, audit_log.describe_placed(doc, placed, doc.signer(assigned_to)),
                user=actor or doc.owner, now=now, ip_address=ip_address,
            )

        return self._run(document_id, mutate)

    def move_field(
        self,
        document_id: str,
        field_id: str,
        x: float,
        y: float,
        *,
        actor: str | None = None,
        ip_address: str | None = None,
    ) -> CommandResult:
        def mutate(doc: Document, now: datetime) -> Document:
            doc, moved = fields.move_field(doc, field_id, x, y)
            return audit_log.record(
                doc, AuditAction.field_moved, audit_log.describe_moved(doc, moved),
                user=actor or doc.owner, now=now, ip_address=ip_address,
            )

        return self._run(document_id, mutate)

    # --- signing commands ---

    def submit_signature(
        self,
        document_id: str,
        field_id: str,
        signer_id: str,
        capture: Capture | CaptureResult,
        *,
        actor: str | None = None,
        ip_address: str | None = None,
    ) -> CommandResult:
        def mutate(doc: Document, now: datetime) -> Document:
            target = fields.get_field(doc, field_id)
            signer = state_machine.get_signer(doc, signer_id)
            state_machine.ensure_field_owner(target.assigned_to, signer_id, field_id)
            state_machine.ensure_can_sign(doc, signer, enforce_order=self.enforce_order)
            result = capture if isinstance(capture, CaptureResult) else normalize_capture(capture, self.capture_policy)
            after, _ = fields.apply_signature(doc, field_id, signer_id, result, now)
            after = state_machine.refresh(after, now)
            user = actor or signer.name
            after = audit_log.record(
                after, AuditAction.field_signed, audit_log.describe_signed(after, after.field(field_id), signer),
                user=user, now=now, ip_address=ip_address,
            )
            return _mark_completion(doc, after, user, now, ip_address)

        return self._run(document_id, mutate)

    def unsign(
        self,
        document_id: str,
        field_id: str,
        *,
        actor: str | None = None,
        ip_address: str | None = None,
    ) -> CommandResult:
        def mutate(doc: Document, now: datetime) -> Document:
            target = fields.get_field(doc, field_id)
            if doc.status == DocumentStatus.rejected or (
                doc.status == DocumentStatus.completed and not self.allow_unsign_after_completion
            ):
                raise DocumentLocked(
                    f"Document is {doc.status.value}; signatures can no longer be cleared",
                    status=doc.status.value,
                )
            doc, cleared = fields.clear_signature(doc, field_id)
            doc = state_machine.refresh(doc, now)
            signer = doc.signer(target.assigned_to)
            return audit_log.record(
                doc, AuditAction.field_unsigned, audit_log.describe_unsigned(doc, cleared, signer),
                user=actor or doc.owner, now=now, ip_address=ip_address,
            )

        return self._run(document_id, mutate)

    def sign_document(
        self,
        document_id: str,
        signer_id: str,
        *,
        actor: str | None = None,
        ip_address: str | None = None,
    ) -> CommandResult:
        """The signer declares they are done; every required field of theirs must be signed."""
        def mutate(doc: Document, now: datetime) -> Document:
            after = state_machine.confirm_signer(doc, signer_id, now, enforce_order=self.enforce_order)
            signer = after.signer(signer_id)
            user = actor or signer.name
            after = audit_log.record(
                after, AuditAction.document_signed, audit_log.describe_confirmed(after, signer),
                user=user, now=now, ip_address=ip_address,
            )
            return _mark_completion(doc, after, user, now, ip_address)

        return self._run(document_id, mutate)

    def reject(
        self,
        document_id: str,
        signer_id: str,
        reason: str | None = None,
        *,
        actor: str | None = None,
        ip_address: str | None = None,
    ) -> CommandResult:
        def mutate(doc: Document, now: datetime) -> Document:
            after = state_machine.reject_signer(doc, signer_id, reason, now)
            signer = after.signer(signer_id)
            return audit_log.record(
                after, AuditAction.document_rejected, audit_log.describe_rejected(after, signer),
                user=actor or signer.name, now=now, ip_address=ip_address,
            )

        return self._run(document_id, mutate)

    # --- reads ---

    def get_document(self, document_id: str) -> CommandResult:
        try:
            with self._lock(document_id):
                return CommandResult(snapshot=self._load(document_id))
        except SigningError as e:
            return CommandResult(error=e)

    def list_documents(self, status: DocumentStatus | None = None) -> list[Document]:
        """Every known document, newest first; stored ones are loaded on demand."""
        ids = set(self._documents)
        if self.store is not None:
            try:
                ids.update(self.store.list_document_ids())
            except Exception:
                log.warning("Listing stored documents failed; showing in-memory documents only", exc_info=True)
        docs = []
        for document_id in ids:
            result = self.get_document(document_id)
            if result.snapshot is not None:
                docs.append(result.snapshot)
        if status is not None:
            docs = [d for d in docs if d.status == DocumentStatus(status)]
        return sorted(docs, key=lambda d: d.created_at, reverse=True)

    def entries_for(self, document_id: str) -> CommandResult:
        """Full ordered trail of one document in ``entries``; NotFound for unknown ids."""
        result = self.get_document(document_id)
        if result.error is not None:
            return result
        return CommandResult(snapshot=result.snapshot, entries=tuple(audit_log.entries_for(result.snapshot)))

    def entries_across(self, document_ids: Iterable[str] | None = None) -> list[audit_log.TaggedEntry]:
        """Trails of several documents (all when None) merged by timestamp; unknown ids are skipped."""
        if document_ids is None:
            docs = self.list_documents()
        else:
            docs = [r.snapshot for r in (self.get_document(i) for i in dict.fromkeys(document_ids)) if r.snapshot]
        return audit_log.entries_across(docs)

    # --- public links ---

    def issue_public_link(self, document_id: str, signer_id: str) -> CommandResult:
        try:
            if self.links is None:
                raise InvalidTransition("Public signing links are not configured")
            doc = self._load(document_id)
            signer = state_machine.get_signer(doc, signer_id)
            state_machine.ensure_unlocked(doc)
            if signer.is_terminal:
                raise InvalidTransition(f"{signer.name} is already {signer.status.value}", signer_id=signer_id)
        except SigningError as e:
            return CommandResult(error=e)
        return CommandResult(snapshot=doc, signer_id=signer_id, token=self.links.issue(document_id, signer_id))

    def _resolve(self, token: str):
        if self.links is None:
            raise InvalidTransition("Public signing links are not configured")
        link = self.links.resolve(token)
        doc = self._load(link.document_id)
        state_machine.get_signer(doc, link.signer_id)
        return link

    def public_document(self, token: str) -> CommandResult:
        try:
            link = self._resolve(token)
        except SigningError as e:
            return CommandResult(error=e)
        return CommandResult(snapshot=self._documents[link.document_id], signer_id=link.signer_id)

    def _public(self, token: str, command: Callable[[str, str], CommandResult]) -> CommandResult:
        try:
            link = self._resolve(token)
        except SigningError as e:
            return CommandResult(error=e)
        result = command(link.document_id, link.signer_id)
        return CommandResult(snapshot=result.snapshot, error=result.error, signer_id=link.signer_id)

    def public_submit_signature(self, token: str, field_id: str, capture: Capture, *, ip_address: str | None = None) -> CommandResult:
        return self._public(
            token,
            lambda doc_id, signer_id: self.submit_signature(doc_id, field_id, signer_id, capture, ip_address=ip_address),
        )

    def public_sign_document(self, token: str, *, ip_address: str | None = None) -> CommandResult:
        return self._public(
            token,
            lambda doc_id, signer_id: self.sign_document(doc_id, signer_id, ip_address=ip_address),
        )

    def public_reject(self, token: str, reason: str | None = None, *, ip_address: str | None = None) -> CommandResult:
        return self._public(
            token,
            lambda doc_id, signer_id: self.reject(doc_id, signer_id, reason, ip_address=ip_address),
        )
