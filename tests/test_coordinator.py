"""Workflow coordinator tests: commands, snapshots, audit trail and persistence failures."""

import threading
import time
from dataclasses import replace

import pytest
from PIL import Image

from signflow.services.capture import Capture, CapturePolicy, FontStyle
from signflow.services.coordinator import SignerSpec, WorkflowCoordinator
from signflow.services.entities import AuditAction, CaptureMethod, DocumentStatus, SignerStatus
from signflow.services.exceptions import (
    DocumentLocked,
    EmptyInput,
    InvalidAssignment,
    InvalidGeometry,
    InvalidLink,
    InvalidTransition,
    NotFound,
    OrderViolation,
    PersistenceError,
    UploadTooLarge,
    WrongSigner,
)

from tests.helpers import make_document, png_data_url


def _actions(doc):
    return [e.action for e in doc.audit_trail]


class SlowFetchStore:
    """Wraps a store so the first fetch reads, signals ``fetched``, then stalls before returning."""

    def __init__(self, inner, delay=0.3):
        self.inner = inner
        self.delay = delay
        self.fetched = threading.Event()

    def fetch_document(self, document_id):
        doc = self.inner.fetch_document(document_id)
        if not self.fetched.is_set():
            self.fetched.set()
            time.sleep(self.delay)
        return doc

    def __getattr__(self, name):
        return getattr(self.inner, name)


class FailingStore:
    """Store whose writes fail until ``healthy`` is set; records what it was asked to save."""

    def __init__(self):
        self.healthy = False
        self.saved = []

    def _write(self, name, payload):
        if not self.healthy:
            raise OSError("database unavailable")
        self.saved.append((name, payload))

    def save_document(self, document):
        self._write("document", document)

    def save_fields(self, document_id, fields, signatures=(), updated_at=None):
        self._write("fields", document_id)

    def save_status(self, document_id, status, signers=(), updated_at=None):
        self._write("status", document_id)

    def append_audit(self, document_id, entries, start):
        self._write("audit", document_id)

    def fetch_document(self, document_id):
        return None

    def list_document_ids(self):
        return []


# =============================================================================
# Document Creation
# =============================================================================

class TestCreateDocument:

    def test_creates_pending_document(self, document, alice, bob):
        assert document.status == DocumentStatus.pending
        assert [s.order for s in document.signers] == [1, 2]
        assert alice.status == bob.status == SignerStatus.pending
        assert _actions(document) == [AuditAction.document_created]
        assert document.audit_trail[0].user == "hr@example.com"

    def test_signers_sorted_and_emails_normalized(self, coordinator):
        doc = coordinator.create_document(
            name="  NDA.pdf ",
            owner="hr@example.com",
            signers=[SignerSpec("Bob", "Bob@Example.com", 2), SignerSpec("Alice", "alice@example.com", 1)],
            page_count=1,
            page_width=600,
            page_height=800,
        ).unwrap()
        assert doc.name == "NDA.pdf"
        assert [s.name for s in doc.signers] == ["Alice", "Bob"]
        assert doc.signers[1].email == "bob@example.com"

    def test_duplicate_orders_rejected(self, coordinator):
        result = coordinator.create_document(
            name="x.pdf", owner="o@example.com",
            signers=[SignerSpec("A", "a@example.com", 1), SignerSpec("B", "b@example.com", 1)],
            page_count=1, page_width=600, page_height=800,
        )
        assert isinstance(result.error, InvalidAssignment)
        assert coordinator.list_documents() == []

    def test_bad_page_size(self, coordinator, signer_specs):
        result = coordinator.create_document(
            name="x.pdf", owner="o@example.com", signers=signer_specs,
            page_count=1, page_width=0, page_height=800,
        )
        assert isinstance(result.error, InvalidGeometry)

    def test_unknown_document(self, coordinator):
        result = coordinator.get_document("missing")
        assert isinstance(result.error, NotFound)
        assert result.snapshot is None


# =============================================================================
# Field Placement
# =============================================================================

class TestFields:

    def test_place_field_records_fraction_and_audit(self, prepared):
        doc, a_field, _ = prepared
        assert a_field.placement.x == pytest.approx(100 / 800)
        assert a_field.placement.y == pytest.approx(800 / 1000)
        assert not a_field.signed
        assert _actions(doc) == [AuditAction.document_created, AuditAction.field_placed, AuditAction.field_placed]

    def test_unknown_signer_is_invalid_assignment(self, coordinator, document):
        result = coordinator.place_field(document.id, page=1, x=10, y=10, assigned_to="nobody")
        assert isinstance(result.error, InvalidAssignment)
        assert coordinator.get_document(document.id).snapshot.audit_trail == document.audit_trail

    def test_out_of_bounds_placement(self, coordinator, document, alice):
        result = coordinator.place_field(document.id, page=3, x=10, y=10, assigned_to=alice.id)
        assert isinstance(result.error, InvalidGeometry)

    def test_move_to_negative_x_leaves_field_unchanged(self, coordinator, prepared):
        doc, a_field, _ = prepared
        result = coordinator.move_field(doc.id, a_field.id, -10, 100)
        assert isinstance(result.error, InvalidGeometry)
        current = coordinator.get_document(doc.id).snapshot
        assert current.field(a_field.id).placement == a_field.placement
        assert len(current.audit_trail) == len(doc.audit_trail)

    def test_move_keeps_page_and_size(self, coordinator, prepared):
        doc, a_field, _ = prepared
        moved = coordinator.move_field(doc.id, a_field.id, 300, 500).unwrap().field(a_field.id)
        assert moved.placement.page == a_field.placement.page
        assert moved.placement.width == a_field.placement.width
        assert moved.placement.x == pytest.approx(300 / 800)
        assert coordinator.get_document(doc.id).snapshot.audit_trail[-1].action == AuditAction.field_moved

    def test_move_unknown_field(self, coordinator, prepared):
        doc, _, _ = prepared
        assert isinstance(coordinator.move_field(doc.id, "nope", 0, 0).error, NotFound)

    def test_cannot_assign_to_finished_signer(self, coordinator, prepared, alice, typed_capture):
        doc, a_field, _ = prepared
        coordinator.submit_signature(doc.id, a_field.id, alice.id, typed_capture).unwrap()
        result = coordinator.place_field(doc.id, page=2, x=0, y=0, assigned_to=alice.id)
        assert isinstance(result.error, InvalidAssignment)

    def test_locked_document_rejects_placement(self, coordinator, prepared, alice, bob):
        doc, _, _ = prepared
        coordinator.reject(doc.id, bob.id).unwrap()
        result = coordinator.place_field(doc.id, page=1, x=0, y=0, assigned_to=alice.id)
        assert isinstance(result.error, DocumentLocked)

    def test_snapshots_are_not_mutated(self, coordinator, prepared, alice):
        doc, a_field, _ = prepared
        coordinator.move_field(doc.id, a_field.id, 300, 500).unwrap()
        assert doc.field(a_field.id).placement == a_field.placement


# =============================================================================
# Signing
# =============================================================================

class TestSigning:

    def test_two_signer_scenario(self, coordinator, prepared, alice, bob, typed_capture):
        doc, a_field, b_field = prepared

        doc = coordinator.submit_signature(doc.id, a_field.id, alice.id, typed_capture).unwrap()
        assert doc.status == DocumentStatus.signed
        assert doc.signer(alice.id).status == SignerStatus.signed
        assert doc.signer(bob.id).status == SignerStatus.pending

        bob_capture = Capture(method=CaptureMethod.typed, text="Bob Baker")
        doc = coordinator.submit_signature(doc.id, b_field.id, bob.id, bob_capture).unwrap()
        assert doc.status == DocumentStatus.completed
        assert all(s.status == SignerStatus.signed for s in doc.signers)

        signing = [a for a in _actions(doc) if a != AuditAction.field_placed]
        assert signing == [
            AuditAction.document_created,
            AuditAction.field_signed,
            AuditAction.field_signed,
            AuditAction.document_completed,
        ]

    def test_signature_recorded_on_field_and_document(self, coordinator, prepared, alice, typed_capture):
        doc, a_field, _ = prepared
        doc = coordinator.submit_signature(doc.id, a_field.id, alice.id, typed_capture).unwrap()
        signed = doc.field(a_field.id)
        assert signed.signed
        assert signed.signature_type == CaptureMethod.typed
        assert signed.signature_text == "Alice Able"
        assert signed.signature_image.startswith("data:image/png;base64,")
        [record] = doc.signatures
        assert record.field_id == a_field.id
        assert record.signer_id == alice.id
        assert record.placement == a_field.placement

    def test_drawn_signature_has_no_text(self, coordinator, prepared, alice, drawn_capture):
        doc, a_field, _ = prepared
        signed = coordinator.submit_signature(doc.id, a_field.id, alice.id, drawn_capture).unwrap().field(a_field.id)
        assert signed.signature_type == CaptureMethod.drawn
        assert signed.signature_text is None

    def test_wrong_signer(self, coordinator, prepared, bob, typed_capture):
        doc, a_field, _ = prepared
        result = coordinator.submit_signature(doc.id, a_field.id, bob.id, typed_capture)
        assert isinstance(result.error, WrongSigner)

    def test_empty_capture_leaves_field_unsigned(self, coordinator, prepared, alice):
        doc, a_field, _ = prepared
        result = coordinator.submit_signature(doc.id, a_field.id, alice.id, Capture(method=CaptureMethod.typed, text="  "))
        assert isinstance(result.error, EmptyInput)
        assert not coordinator.get_document(doc.id).snapshot.field(a_field.id).signed

    def test_upload_limit_from_policy(self, clock, signer_specs):
        coord = WorkflowCoordinator(capture_policy=CapturePolicy(max_upload_bytes=50), clock=clock)
        doc = make_document(coord, signer_specs)
        alice = doc.signers[0]
        doc = coord.place_field(doc.id, page=1, x=0, y=0, assigned_to=alice.id).unwrap()
        upload = Capture(method=CaptureMethod.uploaded, image_data=png_data_url(200, 200))
        assert isinstance(coord.submit_signature(doc.id, doc.fields[0].id, alice.id, upload).error, UploadTooLarge)

    def test_already_signed_field(self, coordinator, prepared, alice, typed_capture):
        doc, a_field, _ = prepared
        coordinator.submit_signature(doc.id, a_field.id, alice.id, typed_capture).unwrap()
        result = coordinator.submit_signature(doc.id, a_field.id, alice.id, typed_capture)
        assert isinstance(result.error, InvalidTransition)

    def test_rejection_locks_document(self, coordinator, prepared, alice, bob, typed_capture):
        doc, a_field, _ = prepared
        doc = coordinator.reject(doc.id, bob.id, "Terms changed").unwrap()
        assert doc.status == DocumentStatus.rejected
        assert doc.audit_trail[-1].action == AuditAction.document_rejected

        result = coordinator.submit_signature(doc.id, a_field.id, alice.id, typed_capture)
        assert isinstance(result.error, DocumentLocked)
        assert len(coordinator.get_document(doc.id).snapshot.audit_trail) == len(doc.audit_trail)

    def test_order_enforcement(self, clock, signer_specs, typed_capture):
        coord = WorkflowCoordinator(enforce_order=True, clock=clock)
        doc = make_document(coord, signer_specs)
        alice, bob = doc.signers
        doc = coord.place_field(doc.id, page=1, x=0, y=0, assigned_to=alice.id).unwrap()
        doc = coord.place_field(doc.id, page=1, x=300, y=0, assigned_to=bob.id).unwrap()
        a_field, b_field = doc.fields

        result = coord.submit_signature(doc.id, b_field.id, bob.id, typed_capture)
        assert isinstance(result.error, OrderViolation)

        coord.submit_signature(doc.id, a_field.id, alice.id, typed_capture).unwrap()
        assert coord.submit_signature(doc.id, b_field.id, bob.id, typed_capture).ok

    def test_order_ignored_by_default(self, coordinator, prepared, bob, typed_capture):
        doc, _, b_field = prepared
        assert coordinator.submit_signature(doc.id, b_field.id, bob.id, typed_capture).ok

    def test_stored_draft_can_be_prepared_but_not_signed(self, stored_coordinator, store, clock, signer_specs, typed_capture):
        doc = make_document(stored_coordinator, signer_specs)
        store.save_document(replace(doc, status=DocumentStatus.draft))

        coord = WorkflowCoordinator(store, clock=clock)
        alice = doc.signers[0]
        prepared = coord.place_field(doc.id, page=1, x=0, y=0, assigned_to=alice.id).unwrap()
        assert prepared.status == DocumentStatus.draft
        result = coord.submit_signature(doc.id, prepared.fields[0].id, alice.id, typed_capture)
        assert isinstance(result.error, InvalidTransition)

    def test_oversized_drawing_is_a_typed_failure(self, coordinator, prepared, alice, monkeypatch):
        doc, a_field, _ = prepared
        # Pillow refuses to open anything over twice this many pixels
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
        drawn = Capture(method=CaptureMethod.drawn, image_data=png_data_url(40, 20))
        result = coordinator.submit_signature(doc.id, a_field.id, alice.id, drawn)
        assert isinstance(result.error, UploadTooLarge)
        assert not coordinator.get_document(doc.id).snapshot.field(a_field.id).signed


# =============================================================================
# Unsign / Confirm
# =============================================================================

class TestUnsign:

    def test_unsign_and_resign_yields_same_image(self, coordinator, prepared, alice):
        doc, a_field, _ = prepared
        capture = Capture(method=CaptureMethod.typed, text="Alice Able", font=FontStyle.elegant)
        first = coordinator.submit_signature(doc.id, a_field.id, alice.id, capture).unwrap().field(a_field.id)

        doc = coordinator.unsign(doc.id, a_field.id).unwrap()
        cleared = doc.field(a_field.id)
        assert not cleared.signed
        assert cleared.signature_image is None
        assert cleared.placement == a_field.placement
        assert doc.signer(alice.id).status == SignerStatus.pending
        assert doc.status == DocumentStatus.pending
        assert doc.audit_trail[-1].action == AuditAction.field_unsigned

        second = coordinator.submit_signature(doc.id, a_field.id, alice.id, capture).unwrap().field(a_field.id)
        assert second.signature_image == first.signature_image

    def test_unsign_unsigned_field(self, coordinator, prepared):
        doc, a_field, _ = prepared
        assert isinstance(coordinator.unsign(doc.id, a_field.id).error, InvalidTransition)

    def _complete(self, coord, prepared, alice, bob, capture):
        doc, a_field, b_field = prepared
        coord.submit_signature(doc.id, a_field.id, alice.id, capture).unwrap()
        coord.submit_signature(doc.id, b_field.id, bob.id, capture).unwrap()
        return a_field

    def test_completed_document_keeps_signatures(self, coordinator, prepared, alice, bob, typed_capture):
        a_field = self._complete(coordinator, prepared, alice, bob, typed_capture)
        result = coordinator.unsign(prepared[0].id, a_field.id)
        assert isinstance(result.error, DocumentLocked)

    def test_unsign_after_completion_when_allowed(self, coordinator, prepared, alice, bob, typed_capture):
        coordinator.allow_unsign_after_completion = True
        a_field = self._complete(coordinator, prepared, alice, bob, typed_capture)
        doc = coordinator.unsign(prepared[0].id, a_field.id).unwrap()
        assert doc.status == DocumentStatus.signed


class TestSignDocument:

    def test_confirm_after_signing(self, coordinator, prepared, alice, typed_capture):
        doc, a_field, _ = prepared
        coordinator.submit_signature(doc.id, a_field.id, alice.id, typed_capture).unwrap()
        doc = coordinator.sign_document(doc.id, alice.id).unwrap()
        assert doc.signer(alice.id).confirmed
        assert doc.audit_trail[-1].action == AuditAction.document_signed
        assert doc.audit_trail[-1].user == "Alice Able"

    def test_confirm_with_open_fields(self, coordinator, prepared, alice):
        doc, _, _ = prepared
        assert isinstance(coordinator.sign_document(doc.id, alice.id).error, InvalidTransition)

    def test_unknown_signer(self, coordinator, prepared):
        doc, _, _ = prepared
        assert isinstance(coordinator.sign_document(doc.id, "ghost").error, NotFound)


# =============================================================================
# Reads
# =============================================================================

class TestReads:

    def test_list_newest_first_with_filter(self, coordinator, signer_specs, typed_capture):
        first = make_document(coordinator, signer_specs, name="first.pdf")
        second = make_document(coordinator, signer_specs, name="second.pdf")
        coordinator.reject(first.id, first.signers[0].id).unwrap()

        assert [d.id for d in coordinator.list_documents()] == [second.id, first.id]
        assert [d.id for d in coordinator.list_documents(DocumentStatus.rejected)] == [first.id]

    def test_entries_for(self, coordinator, prepared):
        doc, _, _ = prepared
        result = coordinator.entries_for(doc.id)
        assert result.ok
        assert result.entries == doc.audit_trail

    def test_entries_for_unknown(self, coordinator):
        result = coordinator.entries_for("missing")
        assert isinstance(result.error, NotFound)
        assert result.entries == ()

    def test_entries_across_merges_by_time(self, coordinator, signer_specs):
        first = make_document(coordinator, signer_specs, name="first.pdf")
        second = make_document(coordinator, signer_specs, name="second.pdf")
        coordinator.reject(first.id, first.signers[1].id).unwrap()

        merged = coordinator.entries_across([first.id, second.id, "missing"])
        assert [(t.document_name, t.entry.action) for t in merged] == [
            ("first.pdf", AuditAction.document_created),
            ("second.pdf", AuditAction.document_created),
            ("first.pdf", AuditAction.document_rejected),
        ]


# =============================================================================
# Concurrency
# =============================================================================

class TestConcurrency:

    def test_parallel_placements_all_recorded(self, coordinator, document, alice):
        def place(i):
            coordinator.place_field(document.id, page=1, x=i * 10, y=i * 10, assigned_to=alice.id).unwrap()

        threads = [threading.Thread(target=place, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        doc = coordinator.get_document(document.id).snapshot
        assert len(doc.fields) == 20
        assert len(doc.audit_trail) == 21

    def _slow_read_race(self, coord, slow, read, doc_id, signer_id):
        reader = threading.Thread(target=read)
        reader.start()
        assert slow.fetched.wait(5)
        coord.place_field(doc_id, page=1, x=0, y=0, assigned_to=signer_id).unwrap()
        reader.join()

    def test_slow_first_read_does_not_undo_a_command(self, stored_coordinator, store, clock, signer_specs):
        doc = make_document(stored_coordinator, signer_specs)
        slow = SlowFetchStore(store)
        coord = WorkflowCoordinator(slow, clock=clock)

        self._slow_read_race(coord, slow, lambda: coord.get_document(doc.id), doc.id, doc.signers[0].id)

        assert len(coord.get_document(doc.id).snapshot.fields) == 1
        assert len(store.fetch_document(doc.id).fields) == 1

    def test_slow_public_read_keeps_committed_snapshot(self, stored_coordinator, store, clock, links, signer_specs):
        doc = make_document(stored_coordinator, signer_specs)
        token = links.issue(doc.id, doc.signers[0].id)
        slow = SlowFetchStore(store)
        coord = WorkflowCoordinator(slow, clock=clock, links=links)
        seen = []

        def read():
            seen.append(coord.public_document(token).snapshot)

        self._slow_read_race(coord, slow, read, doc.id, doc.signers[0].id)

        assert len(coord.get_document(doc.id).snapshot.fields) == 1
        assert len(store.fetch_document(doc.id).fields) == 1
        assert len(seen[0].fields) == 1


# =============================================================================
# Persistence Failures
# =============================================================================

class TestPersistenceFailure:

    def test_failure_returns_snapshot_and_retries(self, clock, signer_specs):
        store = FailingStore()
        coord = WorkflowCoordinator(store, clock=clock)

        result = coord.create_document(
            name="x.pdf", owner="o@example.com", signers=signer_specs,
            page_count=1, page_width=600, page_height=800,
        )
        assert isinstance(result.error, PersistenceError)
        assert result.applied
        assert result.error.snapshot is result.snapshot
        doc_id = result.snapshot.id
        assert coord.pending_saves == {doc_id}

        # The in-memory transition stands
        doc = coord.place_field(doc_id, page=1, x=0, y=0, assigned_to=result.snapshot.signers[0].id).snapshot
        assert len(doc.fields) == 1

        assert coord.retry_pending_saves() == 0
        store.healthy = True
        assert coord.retry_pending_saves() == 1
        assert coord.pending_saves == frozenset()
        name, saved = store.saved[-1]
        assert name == "document"
        assert len(saved.fields) == 1

    def test_dirty_document_gets_full_save(self, clock, signer_specs):
        store = FailingStore()
        coord = WorkflowCoordinator(store, clock=clock)
        doc = coord.create_document(
            name="x.pdf", owner="o@example.com", signers=signer_specs,
            page_count=1, page_width=600, page_height=800,
        ).snapshot
        store.healthy = True
        assert coord.place_field(doc.id, page=1, x=0, y=0, assigned_to=doc.signers[0].id).ok
        assert [name for name, _ in store.saved] == ["document"]
        assert coord.pending_saves == frozenset()


# =============================================================================
# Public Links
# =============================================================================

class TestPublicLinks:

    def test_issue_and_view(self, coordinator, prepared, alice):
        doc, _, _ = prepared
        issued = coordinator.issue_public_link(doc.id, alice.id)
        assert issued.ok and issued.token
        assert doc.id not in coordinator.links.url_for(issued.token)

        view = coordinator.public_document(issued.token)
        assert view.snapshot.id == doc.id
        assert view.signer_id == alice.id

    def test_sign_through_link(self, coordinator, prepared, alice, typed_capture):
        doc, a_field, _ = prepared
        token = coordinator.issue_public_link(doc.id, alice.id).token
        result = coordinator.public_submit_signature(token, a_field.id, typed_capture, ip_address="203.0.113.9")
        assert result.ok
        assert result.snapshot.field(a_field.id).signed
        assert result.snapshot.audit_trail[-1].ip_address == "203.0.113.9"
        assert result.snapshot.audit_trail[-1].user == "Alice Able"

    def test_link_cannot_sign_other_field(self, coordinator, prepared, alice, typed_capture):
        doc, _, b_field = prepared
        token = coordinator.issue_public_link(doc.id, alice.id).token
        assert isinstance(coordinator.public_submit_signature(token, b_field.id, typed_capture).error, WrongSigner)

    def test_reject_through_link(self, coordinator, prepared, bob):
        doc, _, _ = prepared
        token = coordinator.issue_public_link(doc.id, bob.id).token
        result = coordinator.public_reject(token, "No")
        assert result.snapshot.status == DocumentStatus.rejected

    def test_bad_token(self, coordinator):
        assert isinstance(coordinator.public_document("not-a-token").error, InvalidLink)

    def test_token_from_other_secret(self, coordinator, prepared, alice):
        from signflow.services.public_links import PublicLinkIssuer

        doc, _, _ = prepared
        forged = PublicLinkIssuer("other-secret").issue(doc.id, alice.id)
        assert isinstance(coordinator.public_document(forged).error, InvalidLink)

    def test_no_link_for_finished_signer(self, coordinator, prepared, alice, typed_capture):
        doc, a_field, _ = prepared
        coordinator.submit_signature(doc.id, a_field.id, alice.id, typed_capture).unwrap()
        assert isinstance(coordinator.issue_public_link(doc.id, alice.id).error, InvalidTransition)
