"""
Document Signing System

Multi-signer document signing on top of an OpenSign (Parse Server)
backend: template-based bulk send, contact resolution, sequential
signing authorization and a cached, filterable document list.

Usage:
    from services.signing import SigningService, BulkSendRequest, DocumentFilter

    # On app startup
    service = SigningService.from_config(app.config)

    # Sending one template to many recipients
    bulk_send = service.create_bulk_send(BulkSendRequest.from_dict(payload))

    # Listing a user's inbox
    page = service.get_documents(DocumentFilter(status='inbox', user_email=email))

    # Signing
    decision = service.can_sign(document_id, email)
    if decision.allowed:
        service.sign_document(document_id, email, signature)
"""

from .types import (
    Contact,
    Document,
    DocumentStatus,
    Placeholder,
    Signer,
    SignerStatus,
    Template,
    TERMINAL_STATUSES,
)

from .exceptions import (
    SigningError,
    ValidationError,
    NotFound,
    TemplateNotFound,
    DocumentNotFound,
    ContactNotFound,
    BulkSendNotFound,
    AuthorizationDenied,
    AlreadyTerminal,
    PartialBulkFailure,
    SigningAPIError,
    BackendUnavailable,
)

from .status import compute_status, parse_status_filter, signing_progress, signing_roster
from .authorizer import DenialReason, SigningDecision, can_sign, is_in_inbox
from .contacts import ContactDirectory
from .throttle import ThrottledExecutor
from .bulk_send import (
    BulkSend,
    BulkSendOrchestrator,
    BulkSendRequest,
    BulkSendSummary,
    DocumentRequest,
    OutcomeStatus,
    SignerOutcome,
    SignerRequest,
    group_bulk_sends,
)
from .cache import CacheState, DocumentCache, DocumentFilter, DocumentPage, status_counts
from .opensign_client import OpenSignClient
from .mock_backend import MockSigningBackend
from .service import SignResult, SigningService

__all__ = [
    # Types
    'Contact',
    'Document',
    'DocumentStatus',
    'Placeholder',
    'Signer',
    'SignerStatus',
    'Template',
    'TERMINAL_STATUSES',

    # Exceptions
    'SigningError',
    'ValidationError',
    'NotFound',
    'TemplateNotFound',
    'DocumentNotFound',
    'ContactNotFound',
    'BulkSendNotFound',
    'AuthorizationDenied',
    'AlreadyTerminal',
    'PartialBulkFailure',
    'SigningAPIError',
    'BackendUnavailable',

    # Status and authorization
    'compute_status',
    'parse_status_filter',
    'signing_progress',
    'signing_roster',
    'DenialReason',
    'SigningDecision',
    'can_sign',
    'is_in_inbox',

    # Bulk send
    'BulkSend',
    'BulkSendOrchestrator',
    'BulkSendRequest',
    'BulkSendSummary',
    'DocumentRequest',
    'OutcomeStatus',
    'SignerOutcome',
    'SignerRequest',
    'group_bulk_sends',

    # Cache
    'CacheState',
    'DocumentCache',
    'DocumentFilter',
    'DocumentPage',
    'status_counts',

    # Services
    'ContactDirectory',
    'ThrottledExecutor',
    'OpenSignClient',
    'MockSigningBackend',
    'SignResult',
    'SigningService',
]
