"""
Mock Signing Backend

In-memory stand-in for the OpenSign API, used when no API URL is
configured (mock mode) and as the backend in tests. Implements the same
methods as OpenSignClient and stores Parse-style records.
"""

import copy
import logging
import threading
import uuid
from typing import Any, Dict, List, Optional

from .exceptions import DocumentNotFound, SigningAPIError, TemplateNotFound
from .status import compute_status
from .types import (
    Document,
    Template,
    format_datetime,
    normalize_email,
    utcnow,
)

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex[:10]


class MockSigningBackend:
    """
    Thread-safe in-memory backend.

    Usage:
        backend = MockSigningBackend()
        template_id = backend.add_template('NDA', [{'Id': 'sig-1', 'pos': {'x': 10, 'y': 20}}])
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._templates: Dict[str, Dict[str, Any]] = {}
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._contacts: Dict[str, Dict[str, Any]] = {}
        self.links: List[tuple] = []

    # =========================================================================
    # SEEDING
    # =========================================================================

    def add_template(
        self,
        name: str,
        placeholders: List[Dict[str, Any]],
        url: str = None,
        time_to_complete_days: int = None,
        template_id: str = None
    ) -> str:
        """Register a template and return its id."""
        template_id = template_id or _new_id()
        record = {
            'objectId': template_id,
            'Name': name,
            'URL': url or f'https://files.example.com/{template_id}.pdf',
            'Placeholders': copy.deepcopy(placeholders),
        }
        if time_to_complete_days is not None:
            record['TimeToCompleteDays'] = time_to_complete_days
        with self._lock:
            self._templates[template_id] = record
        return template_id

    def add_document(self, record: Dict[str, Any]) -> str:
        """Store a raw document record as-is (timestamps filled in if missing)."""
        with self._lock:
            record = copy.deepcopy(record)
            record.setdefault('objectId', _new_id())
            now = format_datetime(utcnow())
            record.setdefault('createdAt', now)
            record.setdefault('updatedAt', now)
            self._documents[record['objectId']] = record
            return record['objectId']

    def raw_document(self, document_id: str) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._documents[document_id])

    @property
    def document_count(self) -> int:
        return len(self._documents)

    @property
    def contact_count(self) -> int:
        return len(self._contacts)

    # =========================================================================
    # API SURFACE (mirrors OpenSignClient)
    # =========================================================================

    def get_template(self, template_id: str) -> Template:
        with self._lock:
            record = self._templates.get(template_id)
            if record is None:
                raise TemplateNotFound(template_id)
            return Template.from_record(copy.deepcopy(record))

    def create_document(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        document_id = self.add_document(payload)
        logger.debug(f"Mock document created: {document_id}")
        with self._lock:
            return {'id': document_id, 'created_at': self._documents[document_id]['createdAt']}

    def get_document(self, document_id: str) -> Document:
        with self._lock:
            return Document.from_record(self._expanded(document_id))

    def update_document(self, document_id: str, patch: Dict[str, Any]) -> None:
        with self._lock:
            record = self._record(document_id)
            record.update(copy.deepcopy(patch))
            record['updatedAt'] = format_datetime(utcnow())

    def delete_document(self, document_id: str) -> None:
        with self._lock:
            self._record(document_id)
            del self._documents[document_id]

    def list_documents(self, limit: int = 1000) -> List[Document]:
        with self._lock:
            records = [self._expanded(doc_id) for doc_id in self._documents]
        records.sort(key=lambda r: r['createdAt'], reverse=True)
        return [Document.from_record(r) for r in records[:limit]]

    def create_or_find_contact(self, email: str, name: str, phone: Optional[str] = None) -> Dict[str, Any]:
        key = normalize_email(email)
        if not key:
            raise SigningAPIError("Contact email is required", status_code=400)
        with self._lock:
            for contact in self._contacts.values():
                if normalize_email(contact['Email']) == key:
                    break
            else:
                contact = {'objectId': _new_id(), 'Name': name, 'Email': email, 'Phone': phone or ''}
                self._contacts[contact['objectId']] = contact
            return {
                'id': contact['objectId'],
                'name': contact['Name'],
                'email': contact['Email'],
                'phone': contact['Phone'] or None,
            }

    def link_contact_to_document(self, document_id: str, contact_id: str) -> None:
        with self._lock:
            self._record(document_id)
            self.links.append((document_id, contact_id))

    def sign_document(self, document_id: str, signer_email: str, signature: str) -> Dict[str, Any]:
        key = normalize_email(signer_email)
        with self._lock:
            record = self._record(document_id)
            signed_id = None
            now = format_datetime(utcnow())
            for placeholder in record.get('Placeholders') or []:
                if normalize_email(placeholder.get('email')) == key and placeholder.get('status') != 'signed':
                    placeholder['status'] = 'signed'
                    placeholder['signedAt'] = now
                    signed_id = signed_id or placeholder.get('Id')
            if signed_id is None:
                raise SigningAPIError(
                    f"No unsigned placeholder for {signer_email} on document {document_id}",
                    status_code=400
                )
            record['updatedAt'] = now
            status = compute_status(Document.from_record(self._expanded(document_id)))
            return {'new_status': status.value, 'signed_placeholder': signed_id}

    def decline_document(self, document_id: str, signer_email: str, reason: Optional[str] = None) -> None:
        key = normalize_email(signer_email)
        with self._lock:
            record = self._record(document_id)
            for placeholder in record.get('Placeholders') or []:
                if normalize_email(placeholder.get('email')) == key:
                    placeholder['status'] = 'declined'
            record['IsDeclined'] = True
            record['DeclineReason'] = reason or ''
            record['updatedAt'] = format_datetime(utcnow())

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _record(self, document_id: str) -> Dict[str, Any]:
        record = self._documents.get(document_id)
        if record is None:
            raise DocumentNotFound(document_id)
        return record

    def _expanded(self, document_id: str) -> Dict[str, Any]:
        """Copy of a record with signer pointers expanded, like an include= query."""
        record = copy.deepcopy(self._record(document_id))
        signers = []
        for signer in record.get('Signers') or []:
            contact = self._contacts.get(signer.get('objectId'))
            if contact:
                signers.append({**signer, **contact})
            else:
                signers.append(signer)
        record['Signers'] = signers
        return record
