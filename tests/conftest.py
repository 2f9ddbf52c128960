"""
Shared fixtures for the signing tests.

Run with: python -m pytest tests/ -v
"""

import sys
import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from services.signing import (
    BackendUnavailable,
    BulkSendOrchestrator,
    ContactDirectory,
    Document,
    DocumentCache,
    MockSigningBackend,
    Placeholder,
    Signer,
    SignerStatus,
    SigningAPIError,
    SigningService,
)
from services.signing.types import format_datetime


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FlakyBackend(MockSigningBackend):
    """In-memory backend with failure injection and call counting."""

    def __init__(self):
        super().__init__()
        self.fail_create_names = set()
        self.fail_contact_emails = set()
        self.fail_list = False
        self.list_gate = None
        self.list_started = threading.Event()
        self.list_calls = 0
        self.contact_calls = 0
        self._count_lock = threading.Lock()

    def create_document(self, payload):
        name = payload.get('Name', '')
        if any(marker in name for marker in self.fail_create_names):
            raise SigningAPIError(f"Failed to create document '{name}'", status_code=500)
        return super().create_document(payload)

    def create_or_find_contact(self, email, name, phone=None):
        with self._count_lock:
            self.contact_calls += 1
        if email.lower() in self.fail_contact_emails:
            raise BackendUnavailable(f"Failed to create contact {email}: timed out")
        return super().create_or_find_contact(email, name, phone)

    def list_documents(self, limit=1000):
        with self._count_lock:
            self.list_calls += 1
        self.list_started.set()
        if self.list_gate is not None:
            self.list_gate.wait(timeout=5)
        if self.fail_list:
            raise BackendUnavailable("Failed to list documents: connection refused")
        return super().list_documents(limit)


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def build_document(
    signers=(),
    doc_id='doc-1',
    name='Purchase Agreement',
    send_in_order=False,
    expiry_date=None,
    is_declined=False,
    created_at=None,
    description=None,
    assignee_emails=(),
    bulk_send_id=None,
):
    """
    Build a Document from (email, status, order) tuples.

    Each tuple becomes one resolved placeholder and a matching signer.
    """
    placeholders = []
    signer_records = []
    for index, (email, status, order) in enumerate(signers, start=1):
        contact_id = f"c-{email.split('@')[0]}"
        placeholders.append(Placeholder(
            id=f'sig-{index}',
            email=email,
            contact_id=contact_id,
            status=SignerStatus(status),
            order=order,
        ))
        signer_records.append(Signer(
            contact_id=contact_id,
            email=email,
            name=email.split('@')[0].title(),
            order=order,
            status=SignerStatus(status),
        ))
    return Document(
        id=doc_id,
        name=name,
        send_in_order=send_in_order,
        signers=signer_records,
        placeholders=placeholders,
        created_at=created_at or NOW,
        expiry_date=expiry_date,
        is_declined=is_declined,
        description=description,
        assignee_emails=list(assignee_emails),
        bulk_send_id=bulk_send_id,
    )


def document_record(signers=(), name='Purchase Agreement', send_in_order=False, created_at=None, **extra):
    """Backend record (Parse format) for seeding the in-memory backend."""
    placeholders = []
    for index, (email, status, order) in enumerate(signers, start=1):
        placeholders.append({
            'Id': f'sig-{index}',
            'email': email,
            'signerObjId': '',
            'status': status,
            'order': order,
            'pos': {'page': 1, 'x': 100, 'y': 100 * index},
        })
    record = {
        'Name': name,
        'Placeholders': placeholders,
        'Signers': [],
        'SendinOrder': send_in_order,
    }
    if created_at is not None:
        record['createdAt'] = format_datetime(created_at)
    record.update(extra)
    return record


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_document():
    return build_document


@pytest.fixture
def make_record():
    return document_record


@pytest.fixture
def backend():
    return FlakyBackend()


@pytest.fixture
def template_id(backend):
    """Two-placeholder NDA template."""
    return backend.add_template(
        'Mutual NDA',
        [
            {'Id': 'sig-1', 'Role': 'signer', 'pos': {'page': 1, 'x': 120, 'y': 640}},
            {'Id': 'initials-1', 'Role': 'signer', 'pos': {'page': 2, 'x': 40, 'y': 700}},
        ],
        time_to_complete_days=14,
        template_id='tpl-nda',
    )


@pytest.fixture
def contacts(backend):
    return ContactDirectory(backend)


@pytest.fixture
def orchestrator(backend, contacts):
    return BulkSendOrchestrator(backend, contacts)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(backend, clock):
    return DocumentCache(backend, ttl=300, clock=clock)


@pytest.fixture
def service(backend, cache, contacts, orchestrator):
    return SigningService(backend, cache=cache, contacts=contacts, orchestrator=orchestrator)
