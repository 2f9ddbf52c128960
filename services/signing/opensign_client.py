"""
OpenSign Client

Thin wrapper around the OpenSign (Parse Server) REST API for the
operations the signing system needs: document CRUD, templates, contacts,
signing and declining. Handles authentication headers, timeouts and
error wrapping.

Session handling is not done here: the session token is supplied by
configuration.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from .exceptions import (
    BackendUnavailable,
    DocumentNotFound,
    SigningAPIError,
    TemplateNotFound,
)
from .types import TEMPLATE_CLASS, Document, Template

logger = logging.getLogger(__name__)

DOCUMENT_CLASS = 'contracts_Document'

# Request timeout (seconds)
DEFAULT_TIMEOUT = 30
DEFAULT_LIST_LIMIT = 1000


class OpenSignClient:
    """
    Client for OpenSign API operations.

    Provides methods for:
        - Fetching templates
        - Creating, reading, updating, deleting and listing documents
        - Creating or finding contacts and linking them to documents
        - Signing and declining documents
    """

    def __init__(
        self,
        base_url: str,
        app_id: str = 'opensign',
        session_token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.app_id = app_id
        self.session_token = session_token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get_headers(self) -> Dict[str, str]:
        """Get request headers with auth."""
        headers = {
            'X-Parse-Application-Id': self.app_id,
            'Content-Type': 'application/json'
        }
        if self.session_token:
            headers['X-Parse-Session-Token'] = self.session_token
        return headers

    def _request(
        self,
        method: str,
        path: str,
        description: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Perform a request and return the decoded JSON body.

        Transport failures and timeouts raise BackendUnavailable; HTTP
        errors raise SigningAPIError with the status code and body.
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(
                method,
                url,
                headers=self._get_headers(),
                params=params,
                json=json,
                timeout=self.timeout
            )
            response.raise_for_status()
            if not response.content:
                return {}
            return response.json()

        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            logger.error(f"OpenSign unreachable ({description}): {e}")
            raise BackendUnavailable(f"Failed to {description}: {e}")

        except requests.exceptions.RequestException as e:
            error_body = None
            status_code = None

            if getattr(e, 'response', None) is not None:
                status_code = e.response.status_code
                error_body = e.response.text

            logger.error(f"OpenSign request failed ({description}): {e}")
            if error_body:
                logger.error(f"Response body: {error_body}")

            raise SigningAPIError(
                f"Failed to {description}: {e}",
                status_code=status_code,
                response_body=error_body
            )

    def _call_function(self, name: str, payload: Dict[str, Any], description: str) -> Any:
        """Call a cloud function; Parse wraps results in {"result": ...}."""
        data = self._request('POST', f'functions/{name}', description, json=payload)
        if isinstance(data, dict) and data.get('error'):
            raise SigningAPIError(f"Failed to {description}: {data['error']}")
        if isinstance(data, dict) and 'result' in data:
            return data['result']
        return data

    # =========================================================================
    # TEMPLATES
    # =========================================================================

    def get_template(self, template_id: str) -> Template:
        """
        Fetch a template with its placeholder layout.

        Raises:
            TemplateNotFound: If the template does not exist
        """
        try:
            data = self._request(
                'GET', f'classes/{TEMPLATE_CLASS}/{template_id}',
                f'fetch template {template_id}'
            )
        except SigningAPIError as e:
            if e.status_code == 404:
                raise TemplateNotFound(template_id)
            raise
        if not data:
            raise TemplateNotFound(template_id)
        return Template.from_record(data)

    # =========================================================================
    # DOCUMENTS
    # =========================================================================

    def create_document(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a document.

        Returns:
            Dict with 'id' and 'created_at'
        """
        data = self._request(
            'POST', f'classes/{DOCUMENT_CLASS}',
            f"create document '{payload.get('Name')}'", json=payload
        )
        if not data.get('objectId'):
            raise SigningAPIError(f"Document '{payload.get('Name')}' created without an objectId")
        return {'id': data['objectId'], 'created_at': data.get('createdAt')}

    def get_document(self, document_id: str) -> Document:
        """Fetch a document with placeholders and expanded signers."""
        try:
            data = self._request(
                'GET', f'classes/{DOCUMENT_CLASS}/{document_id}',
                f'fetch document {document_id}',
                params={'include': 'Placeholders,Signers'}
            )
        except SigningAPIError as e:
            if e.status_code == 404:
                raise DocumentNotFound(document_id)
            raise
        if not data:
            raise DocumentNotFound(document_id)
        return Document.from_record(data)

    def update_document(self, document_id: str, patch: Dict[str, Any]) -> None:
        try:
            self._request(
                'PUT', f'classes/{DOCUMENT_CLASS}/{document_id}',
                f'update document {document_id}', json=patch
            )
        except SigningAPIError as e:
            if e.status_code == 404:
                raise DocumentNotFound(document_id)
            raise

    def delete_document(self, document_id: str) -> None:
        try:
            self._request(
                'DELETE', f'classes/{DOCUMENT_CLASS}/{document_id}',
                f'delete document {document_id}'
            )
        except SigningAPIError as e:
            if e.status_code == 404:
                raise DocumentNotFound(document_id)
            raise

    def list_documents(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Document]:
        """Fetch the complete document set in one call, newest first."""
        data = self._request(
            'GET', f'classes/{DOCUMENT_CLASS}', 'list documents',
            params={
                'limit': limit,
                'order': '-createdAt',
                'include': 'Placeholders,Signers',
            }
        )
        results = data.get('results', []) if isinstance(data, dict) else data
        return [Document.from_record(r) for r in results or []]

    # =========================================================================
    # CONTACTS
    # =========================================================================

    def create_or_find_contact(
        self,
        email: str,
        name: str,
        phone: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a contact book entry, or return the existing one for this email.

        Returns:
            Dict with 'id', 'name', 'email' and 'phone'
        """
        result = self._call_function(
            'savecontact',
            {'Name': name, 'Email': email, 'Phone': phone or ''},
            f'create contact {email}'
        )
        if not isinstance(result, dict) or not result.get('objectId'):
            raise SigningAPIError(f"Contact {email} created without an objectId")
        return {
            'id': result['objectId'],
            'name': result.get('Name') or name,
            'email': result.get('Email') or email,
            'phone': result.get('Phone') or phone,
        }

    def link_contact_to_document(self, document_id: str, contact_id: str) -> None:
        self._call_function(
            'linkcontacttodoc',
            {'docId': document_id, 'contactId': contact_id},
            f'link contact {contact_id} to document {document_id}'
        )

    # =========================================================================
    # SIGNING
    # =========================================================================

    def sign_document(self, document_id: str, signer_email: str, signature: str) -> Dict[str, Any]:
        """
        Submit a signature.

        Returns:
            Dict with 'new_status' and 'signed_placeholder' (placeholder id)
        """
        result = self._call_function(
            'signPdf',
            {'docId': document_id, 'email': signer_email, 'signature': signature},
            f'sign document {document_id} as {signer_email}'
        ) or {}
        return {
            'new_status': result.get('newStatus') or result.get('status'),
            'signed_placeholder': result.get('signedPlaceholder'),
        }

    def decline_document(self, document_id: str, signer_email: str, reason: Optional[str] = None) -> None:
        self._call_function(
            'declinedoc',
            {'docId': document_id, 'email': signer_email, 'reason': reason or ''},
            f'decline document {document_id} as {signer_email}'
        )
