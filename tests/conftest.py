"""
Pytest Configuration and Fixtures

Shared fixtures for the signing workflow tests.
"""

import os

# Settings are read at import time; point them at throwaway resources first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["PERSISTENCE_RETRY_ENABLED"] = "false"

import pytest
from sqlalchemy.orm import sessionmaker

from signflow.database import Base, make_engine
from signflow.models import AuditLog, DocumentRecord  # noqa: F401
from signflow.services.capture import Capture, FontStyle
from signflow.services.coordinator import SignerSpec, WorkflowCoordinator
from signflow.services.entities import CaptureMethod
from signflow.services.persistence import SqlDocumentStore
from signflow.services.public_links import PublicLinkIssuer

from tests.helpers import FakeClock, make_document, png_data_url


# =============================================================================
# Infrastructure Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def links():
    return PublicLinkIssuer("test-secret", expire_minutes=60, base_url="http://sign.test")


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlDocumentStore(session_factory)


@pytest.fixture
def coordinator(clock, links):
    """In-memory coordinator with no persistence collaborator."""
    return WorkflowCoordinator(clock=clock, links=links)


@pytest.fixture
def stored_coordinator(store, clock, links):
    return WorkflowCoordinator(store, clock=clock, links=links)


# =============================================================================
# Document Fixtures
# =============================================================================

@pytest.fixture
def signer_specs():
    return [
        SignerSpec(name="Alice Able", email="alice@example.com", order=1),
        SignerSpec(name="Bob Baker", email="bob@example.com", order=2),
    ]


@pytest.fixture
def document(coordinator, signer_specs):
    return make_document(coordinator, signer_specs)


@pytest.fixture
def alice(document):
    return document.signers[0]


@pytest.fixture
def bob(document):
    return document.signers[1]


@pytest.fixture
def prepared(coordinator, document, alice, bob):
    """Two required signature fields: one for Alice, one for Bob. Returns (document, alice_field, bob_field)."""
    doc = coordinator.place_field(document.id, page=1, x=100, y=800, assigned_to=alice.id).unwrap()
    doc = coordinator.place_field(doc.id, page=1, x=450, y=800, assigned_to=bob.id).unwrap()
    return doc, doc.fields[0], doc.fields[1]


@pytest.fixture
def typed_capture():
    return Capture(method=CaptureMethod.typed, text="Alice Able", font=FontStyle.cursive)


@pytest.fixture
def drawn_capture():
    return Capture(method=CaptureMethod.drawn, image_data=png_data_url())
