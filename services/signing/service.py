"""
Signing Service

Caller-facing operations for the signing system. Wires the backend
client, contact directory, bulk send orchestrator and document cache
together, and makes sure every mutation invalidates the cache.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .authorizer import DenialReason, SigningDecision, can_sign
from .bulk_send import (
    BulkSend,
    BulkSendOrchestrator,
    BulkSendRequest,
    BulkSendSummary,
    DocumentRequest,
    DEFAULT_TIME_TO_COMPLETE_DAYS,
    group_bulk_sends,
)
from .cache import DEFAULT_TTL, DocumentCache, DocumentFilter, DocumentPage
from .contacts import ContactDirectory
from .exceptions import BulkSendNotFound, ContactNotFound, ValidationError
from .mock_backend import MockSigningBackend
from .opensign_client import DEFAULT_TIMEOUT, OpenSignClient
from .status import signing_progress
from .throttle import ThrottledExecutor
from .types import Document, normalize_email

logger = logging.getLogger(__name__)


@dataclass
class SignResult:
    document_id: str
    signer_email: str
    new_status: Optional[str]
    signed_placeholder: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'document_id': self.document_id,
            'signer_email': self.signer_email,
            'new_status': self.new_status,
            'signed_placeholder': self.signed_placeholder,
        }


class SigningService:
    """
    Facade over the signing components.

    Usage:
        service = SigningService.from_config(app.config)
        page = service.get_documents(DocumentFilter(status='inbox', user_email=email))
        decision = service.can_sign(document_id, email)
    """

    def __init__(
        self,
        client,
        cache: Optional[DocumentCache] = None,
        contacts: Optional[ContactDirectory] = None,
        orchestrator: Optional[BulkSendOrchestrator] = None
    ):
        self.client = client
        self.cache = cache or DocumentCache(client)
        self.contacts = contacts or ContactDirectory(client)
        self.orchestrator = orchestrator or BulkSendOrchestrator(client, self.contacts)

    @classmethod
    def from_config(cls, config) -> 'SigningService':
        """
        Build a service from a Flask config mapping.

        Uses the in-memory backend (mock mode) when no API URL is set.
        """
        api_url = config.get('OPENSIGN_API_URL')
        if api_url:
            client = OpenSignClient(
                api_url,
                app_id=config.get('OPENSIGN_APP_ID', 'opensign'),
                session_token=config.get('OPENSIGN_SESSION_TOKEN'),
                timeout=config.get('OPENSIGN_TIMEOUT', DEFAULT_TIMEOUT),
            )
        else:
            logger.warning("OPENSIGN_API_URL not set, running signing service in mock mode")
            client = MockSigningBackend()

        contacts = ContactDirectory(client)
        executor = ThrottledExecutor(
            max_workers=config.get('BULK_SEND_MAX_WORKERS', 1),
            min_interval=config.get('BULK_SEND_DELAY', 0.0),
        )
        return cls(
            client,
            cache=DocumentCache(
                client,
                ttl=config.get('DOCUMENT_CACHE_TTL', DEFAULT_TTL),
                list_limit=config.get('DOCUMENT_LIST_LIMIT', 1000),
            ),
            contacts=contacts,
            orchestrator=BulkSendOrchestrator(
                client,
                contacts,
                executor=executor,
                time_to_complete_days=config.get('DEFAULT_TIME_TO_COMPLETE_DAYS', DEFAULT_TIME_TO_COMPLETE_DAYS),
            ),
        )

    @property
    def is_mock_mode(self) -> bool:
        return isinstance(self.client, MockSigningBackend)

    # =========================================================================
    # READS
    # =========================================================================

    def get_documents(self, doc_filter: Optional[DocumentFilter] = None, force: bool = False) -> DocumentPage:
        return self.cache.get_documents(doc_filter, force=force)

    def get_document(self, document_id: str) -> Document:
        """Fetch a single document straight from the backend."""
        return self.client.get_document(document_id)

    def document_counts(self, user_email: Optional[str] = None) -> Dict[str, int]:
        return self.cache.counts(user_email)

    def signing_progress(self, document_id: str):
        return signing_progress(self.get_document(document_id))

    def list_bulk_sends(self) -> List[BulkSendSummary]:
        return group_bulk_sends(self.cache.ensure_fresh())

    def get_bulk_send(self, bulk_id: str) -> BulkSendSummary:
        """
        One bulk send with its recipients, rebuilt from the cached documents.

        Raises:
            BulkSendNotFound: If no document belongs to the bulk send
        """
        summary = next((s for s in self.list_bulk_sends() if s.id == bulk_id), None)
        if summary is None:
            raise BulkSendNotFound(bulk_id)
        return summary

    # =========================================================================
    # CREATION
    # =========================================================================

    def create_document(self, request: DocumentRequest) -> Document:
        try:
            return self.orchestrator.create_document(request)
        finally:
            self.cache.invalidate()

    def create_bulk_send(self, request: BulkSendRequest) -> BulkSend:
        try:
            return self.orchestrator.create_bulk_send(request)
        finally:
            self.cache.invalidate()

    # =========================================================================
    # SIGNING
    # =========================================================================

    def can_sign(self, document_id: str, email: str) -> SigningDecision:
        return can_sign(self.get_document(document_id), email)

    def sign_document(self, document_id: str, email: str, signature: str) -> SignResult:
        """
        Sign a document as email.

        The document is re-read from the backend and checked against the
        signing rules first, so an out-of-order or duplicate signature is
        never sent.

        Raises:
            AuthorizationDenied: Not a signer, already signed, or out of order
            AlreadyTerminal: Document is signed, declined or expired
        """
        if not signature:
            raise ValidationError("Signature is required", field='signature')

        document = self.get_document(document_id)
        decision = can_sign(document, email)
        if not decision.allowed:
            logger.info(f"Signing denied for {email} on document {document_id}: {decision.message}")
        decision.raise_for_denial(document_id)

        result = self.client.sign_document(document_id, email, signature)
        self.cache.invalidate()
        logger.info(f"Document {document_id} signed by {email} (now {result.get('new_status')})")
        return SignResult(
            document_id=document_id,
            signer_email=email,
            new_status=result.get('new_status'),
            signed_placeholder=result.get('signed_placeholder'),
        )

    def decline_document(self, document_id: str, email: str, reason: Optional[str] = None) -> Document:
        """
        Decline a document as one of its signers.

        Only signers who have not signed may decline, and only while the
        document is open. Ordering does not apply to declining.
        """
        document = self.get_document(document_id)
        decision = can_sign(document, email)
        if not decision.allowed and decision.reason != DenialReason.OUT_OF_ORDER:
            decision.raise_for_denial(document_id)

        self.client.decline_document(document_id, email, reason)
        self.cache.invalidate()
        logger.info(f"Document {document_id} declined by {email}")
        return self.get_document(document_id)

    # =========================================================================
    # UPDATES
    # =========================================================================

    def update_document(self, document_id: str, patch: Dict[str, Any]) -> Document:
        """
        Apply a raw backend patch. Status fields are rejected; status is derived.

        Turning sequential signing on requires the current orders to be
        positive and unique.
        """
        if any(key in patch for key in ('Status', 'status')):
            raise ValidationError("Document status is derived and cannot be set", field='status')
        if patch.get('SendinOrder') is True:
            document = self.get_document(document_id)
            if not document.send_in_order:
                _check_sequential_orders(document)
        self.client.update_document(document_id, patch)
        self.cache.invalidate()
        return self.get_document(document_id)

    def delete_document(self, document_id: str) -> None:
        self.client.delete_document(document_id)
        self.cache.remove(document_id)
        self.cache.invalidate()
        logger.info(f"Deleted document {document_id}")

    def remove_signer(self, document_id: str, contact_id: str) -> Document:
        """
        Remove a signer from a document.

        Bulk send documents keep the placeholder for re-assignment and only
        clear its contact link; regular documents drop the placeholders.

        Raises:
            ContactNotFound: If the contact is not a signer on the document
        """
        document = self.get_document(document_id)
        if not document.has_signer(contact_id) and not any(
            p.contact_id == contact_id for p in document.placeholders
        ):
            raise ContactNotFound(
                contact_id, f"Contact {contact_id} is not a signer on document {document_id}"
            )
        document.signers = [s for s in document.signers if s.contact_id != contact_id]

        if document.is_bulk_send:
            for placeholder in document.placeholders:
                if placeholder.contact_id == contact_id:
                    placeholder.contact_id = None
        else:
            document.placeholders = [p for p in document.placeholders if p.contact_id != contact_id]

        self.client.update_document(document_id, document.signing_record())
        self.cache.invalidate()
        logger.info(f"Removed contact {contact_id} from document {document_id}")
        return self.get_document(document_id)

    def update_signer_order(self, document_id: str, orders: Dict[str, int]) -> Document:
        """
        Reorder signers.

        Args:
            orders: Mapping of signer email (or contact id) to new order
        """
        document = self.get_document(document_id)
        by_key = {normalize_email(k): int(v) for k, v in orders.items()}

        for placeholder in document.placeholders:
            new_order = by_key.get(normalize_email(placeholder.email))
            if new_order is None and placeholder.contact_id:
                new_order = by_key.get(normalize_email(placeholder.contact_id))
            if new_order is not None:
                placeholder.order = new_order

        for signer in document.signers:
            new_order = by_key.get(normalize_email(signer.email))
            if new_order is None and signer.contact_id:
                new_order = by_key.get(normalize_email(signer.contact_id))
            if new_order is not None:
                signer.order = new_order

        if document.send_in_order:
            _check_sequential_orders(document)

        document.placeholders.sort(key=lambda p: p.order if p.order is not None else 0)
        self.client.update_document(document_id, document.signing_record())
        self.cache.invalidate()
        return self.get_document(document_id)

    def invalidate_cache(self) -> None:
        self.cache.invalidate()


def _check_sequential_orders(document: Document) -> None:
    """Each signer needs a positive order, distinct from every other signer's."""
    per_email = {}
    for placeholder in document.placeholders:
        per_email.setdefault(normalize_email(placeholder.email), set()).add(placeholder.order)
    flat = [o for values in per_email.values() for o in values]
    if any(o is None or o < 1 for o in flat):
        raise ValidationError("Signing orders must be positive", field='order')
    if len(set(flat)) != len(flat):
        raise ValidationError("Signing orders must be unique for sequential documents", field='order')
