"""
Signing System Exceptions

Custom exceptions for document signing, bulk send and backend errors.
Every exception carries enough context (document id, signer email,
blocking signer) to explain why an operation failed.
"""

from typing import Any, Dict


class SigningError(Exception):
    """Base exception for all signing system errors."""

    def to_dict(self) -> Dict[str, Any]:
        """Context for JSON error responses."""
        return {'error_type': type(self).__name__}


class ValidationError(SigningError):
    """
    Raised when a request is malformed.

    Examples: blank signer email, duplicate signing orders on a
    sequential document, empty bulk send.
    """
    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data['field'] = self.field
        return data


class NotFound(SigningError):
    """Raised when a template, document or contact does not exist."""

    resource = 'resource'

    def __init__(self, resource_id: Any, message: str = None):
        self.resource_id = resource_id
        super().__init__(message or f"{self.resource.replace('_', ' ').capitalize()} {resource_id} not found")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data[f'{self.resource}_id'] = self.resource_id
        return data


class TemplateNotFound(NotFound):
    resource = 'template'


class DocumentNotFound(NotFound):
    resource = 'document'


class ContactNotFound(NotFound):
    resource = 'contact'


class BulkSendNotFound(NotFound):
    resource = 'bulk_send'


class AuthorizationDenied(SigningError):
    """
    Raised when a signer is not entitled to act on a document now.

    Covers signers that are not on the document, signers that already
    signed, and sequential documents where an earlier signer has not
    signed yet (blocking_signer names that signer).
    """
    def __init__(
        self,
        message: str,
        document_id: str = None,
        signer_email: str = None,
        reason: str = None,
        blocking_signer=None
    ):
        self.document_id = document_id
        self.signer_email = signer_email
        self.reason = reason
        self.blocking_signer = blocking_signer
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            'document_id': self.document_id,
            'signer_email': self.signer_email,
            'reason': self.reason,
        })
        if self.blocking_signer is not None:
            data['blocking_signer'] = self.blocking_signer.to_dict()
        return data


class AlreadyTerminal(SigningError):
    """Raised when a document is already signed, declined or expired."""

    def __init__(self, document_id: str, status: str, signer_email: str = None):
        self.document_id = document_id
        self.status = status
        self.signer_email = signer_email
        super().__init__(f"Document {document_id} is already {status}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            'document_id': self.document_id,
            'status': self.status,
            'signer_email': self.signer_email,
        })
        return data


class PartialBulkFailure(SigningError):
    """
    Raised by BulkSend.raise_for_failures() when one or more signers failed.

    The bulk send itself is attached so callers can retry the failed
    signers individually.
    """
    def __init__(self, bulk_send):
        self.bulk_send = bulk_send
        failed = [o.email for o in bulk_send.failed_outcomes]
        super().__init__(
            f"Bulk send '{bulk_send.name}': {len(failed)} of "
            f"{len(bulk_send.outcomes)} signer(s) failed ({', '.join(failed)})"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['bulk_send'] = self.bulk_send.to_dict()
        return data


class SigningAPIError(SigningError):
    """
    Raised when signing backend API calls fail.

    Wraps the underlying API error with context.
    """
    def __init__(self, message: str, status_code: int = None, response_body: str = None):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['status_code'] = self.status_code
        return data


class BackendUnavailable(SigningAPIError):
    """Raised on transport failures and timeouts."""
    pass
