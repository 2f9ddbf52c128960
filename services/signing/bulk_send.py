"""
Bulk Send Orchestrator

Expands one template and N recipients into N independent documents, then
assigns each recipient as a resolved signer. Single documents are created
through the same path.

Per-signer work (create document -> resolve contact -> link placeholders)
runs through a ThrottledExecutor so backend load is a configurable policy.
A failure for one signer is logged and recorded; it never aborts the
remaining signers, and documents already created are not rolled back.

Usage:
    orchestrator = BulkSendOrchestrator(client, ContactDirectory(client))
    bulk_send = orchestrator.create_bulk_send(BulkSendRequest(
        template_id='tpl123',
        name='NDA Q3',
        signers=[SignerRequest(name='Ann', email='ann@example.com')],
    ))
    bulk_send.raise_for_failures()
"""

import logging
import re
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .contacts import ContactDirectory
from .exceptions import PartialBulkFailure, SigningError, ValidationError
from .throttle import ThrottledExecutor
from .types import (
    TEMPLATE_CLASS,
    Contact,
    Document,
    DocumentStatus,
    Placeholder,
    Signer,
    SignerStatus,
    Template,
    format_datetime,
    normalize_email,
    parse_datetime,
    to_parse_date,
    utcnow,
)

logger = logging.getLogger(__name__)

BULK_SEND_PREFIX = 'Bulk Send:'
# "Bulk Send: <bulk send name> - <signer name>"
BULK_NAME_PATTERN = re.compile(r'^Bulk Send: (.+?) - (.+)$')
DEFAULT_TIME_TO_COMPLETE_DAYS = 30


def int_field(value: Any, field_name: str) -> Optional[int]:
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer", field=field_name)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an integer, got {value!r}", field=field_name)


def bool_field(value: Any, field_name: str) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValidationError(f"{field_name} must be true or false, got {value!r}", field=field_name)
    return value


def date_field(value: Any, field_name: str) -> Optional[datetime]:
    try:
        return parse_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an ISO 8601 date, got {value!r}", field=field_name)


def text_field(value: Any, field_name: str) -> str:
    if value is None:
        return ''
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string, got {value!r}", field=field_name)
    return value.strip()


def signer_list(value: Any) -> List['SignerRequest']:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(s, dict) for s in value):
        raise ValidationError("signers must be a list of objects", field='signers')
    return [SignerRequest.from_dict(s) for s in value]


# =============================================================================
# REQUESTS
# =============================================================================

@dataclass
class SignerRequest:
    """A recipient to add as a signer."""
    name: str
    email: str
    role: str = 'signer'
    order: Optional[int] = None
    phone: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SignerRequest':
        return cls(
            name=text_field(data.get('name'), 'name'),
            email=text_field(data.get('email'), 'email'),
            role=text_field(data.get('role'), 'role') or 'signer',
            order=int_field(data.get('order'), 'order'),
            phone=data.get('phone') or None,
        )


@dataclass
class BulkSendRequest:
    template_id: str
    name: str
    signers: List[SignerRequest]
    send_in_order: bool = False
    message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BulkSendRequest':
        return cls(
            template_id=data.get('template_id') or '',
            name=text_field(data.get('name'), 'name'),
            signers=signer_list(data.get('signers')),
            send_in_order=bool_field(data.get('send_in_order'), 'send_in_order'),
            message=data.get('message'),
        )


@dataclass
class DocumentRequest:
    """A single multi-signer document, optionally laid out from a template."""
    name: str
    signers: List[SignerRequest]
    send_in_order: bool = False
    template_id: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None
    expiry_date: Optional[datetime] = None
    time_to_complete_days: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DocumentRequest':
        return cls(
            name=text_field(data.get('name'), 'name'),
            signers=signer_list(data.get('signers')),
            send_in_order=bool_field(data.get('send_in_order'), 'send_in_order'),
            template_id=data.get('template_id') or None,
            description=data.get('description'),
            url=data.get('url'),
            expiry_date=date_field(data.get('expiry_date'), 'expiry_date'),
            time_to_complete_days=int_field(data.get('time_to_complete_days'), 'time_to_complete_days'),
        )


# =============================================================================
# RESULTS
# =============================================================================

class OutcomeStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class SignerOutcome:
    """
    Result for one bulk-send recipient.

    stage is 'create' when the document could not be created and
    'assign' when the document exists but the signer could not be linked.
    """
    email: str
    name: str
    order: int
    status: OutcomeStatus
    document_id: Optional[str] = None
    contact_id: Optional[str] = None
    error: Optional[str] = None
    stage: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            'email': self.email,
            'name': self.name,
            'order': self.order,
            'status': self.status.value,
            'document_id': self.document_id,
            'contact_id': self.contact_id,
            'error': self.error,
            'stage': self.stage,
        }


@dataclass
class BulkSend:
    """
    Transient planning object for one bulk send.

    Not persisted by the backend; discarded once returned to the caller.
    """
    id: str
    name: str
    template_id: str
    signers: List[SignerRequest]
    send_in_order: bool
    created_at: datetime
    outcomes: List[SignerOutcome] = field(default_factory=list)

    @property
    def created_document_ids(self) -> List[str]:
        return [o.document_id for o in self.outcomes if o.document_id]

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded)

    @property
    def failed_outcomes(self) -> List[SignerOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def failure_count(self) -> int:
        return len(self.failed_outcomes)

    def raise_for_failures(self) -> None:
        """Raise PartialBulkFailure if any signer failed."""
        if self.failure_count:
            raise PartialBulkFailure(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'template_id': self.template_id,
            'send_in_order': self.send_in_order,
            'created_at': format_datetime(self.created_at),
            'total_recipients': len(self.signers),
            'success_count': self.success_count,
            'failure_count': self.failure_count,
            'created_document_ids': self.created_document_ids,
            'outcomes': [o.to_dict() for o in self.outcomes],
        }


@dataclass
class BulkSendSummary:
    """A bulk send reconstructed from the documents it created."""
    id: str
    name: str
    template_id: Optional[str]
    created_at: Optional[datetime]
    documents: List[Document]

    @property
    def total_recipients(self) -> int:
        return len(self.documents)

    def count(self, status: DocumentStatus) -> int:
        return sum(1 for d in self.documents if d.status == status)

    @property
    def status(self) -> str:
        if self.documents and self.count(DocumentStatus.SIGNED) == len(self.documents):
            return 'completed'
        return 'sending'

    def recipients(self) -> List[Dict[str, Any]]:
        rows = []
        for index, document in enumerate(self.documents, start=1):
            email = next((p.email for p in document.placeholders if p.email), '')
            match = BULK_NAME_PATTERN.match(document.name)
            rows.append({
                'document_id': document.id,
                'name': match.group(2) if match else document.name.split(' - ')[-1],
                'email': email,
                'status': document.status.value,
                'order': document.bulk_order_index or index,
            })
        return rows

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'template_id': self.template_id,
            'status': self.status,
            'created_at': format_datetime(self.created_at),
            'total_recipients': self.total_recipients,
            'completed_count': self.count(DocumentStatus.SIGNED),
            'declined_count': self.count(DocumentStatus.DECLINED),
            'expired_count': self.count(DocumentStatus.EXPIRED),
            'recipients': self.recipients(),
        }


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class BulkSendOrchestrator:
    """
    Creates documents (singly or in bulk) and assigns resolved signers.
    """

    def __init__(
        self,
        client,
        contacts: ContactDirectory,
        executor: Optional[ThrottledExecutor] = None,
        time_to_complete_days: int = DEFAULT_TIME_TO_COMPLETE_DAYS
    ):
        self._client = client
        self._contacts = contacts
        self._executor = executor or ThrottledExecutor(max_workers=1)
        self._time_to_complete_days = time_to_complete_days

    # -------------------------------------------------------------------------
    # Bulk send
    # -------------------------------------------------------------------------

    def create_bulk_send(self, request: BulkSendRequest) -> BulkSend:
        """
        Create one document per signer from a template and assign each signer.

        Returns the BulkSend with one outcome per signer, in request order.
        Per-signer failures are recorded, not raised.

        Raises:
            ValidationError: If the request is malformed (nothing is created)
            TemplateNotFound: If the template does not exist (nothing is created)
        """
        if not request.name:
            raise ValidationError("Bulk send name is required", field='name')
        if not request.template_id:
            raise ValidationError("Template is required", field='template_id')
        self._check_signers(request.signers, require_unique=True)
        if request.send_in_order:
            self._ordered_signers(request.signers, send_in_order=True)

        template = self._client.get_template(request.template_id)
        if not template.placeholders:
            raise ValidationError(
                f"Template {template.id} has no signature placeholders to stamp",
                field='template_id'
            )

        created_at = utcnow()
        bulk_send = BulkSend(
            id=f"bulk-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}",
            name=request.name,
            template_id=template.id,
            signers=list(request.signers),
            send_in_order=request.send_in_order,
            created_at=created_at,
        )

        logger.info(
            f"Starting bulk send '{request.name}' ({bulk_send.id}) "
            f"for {len(request.signers)} signer(s) from template {template.id}"
        )

        bulk_send.outcomes = self._executor.map(
            lambda item: self._send_to_signer(template, request, bulk_send, item[0], item[1]),
            list(enumerate(request.signers, start=1))
        )

        if bulk_send.failure_count:
            logger.warning(
                f"Bulk send {bulk_send.id}: {bulk_send.success_count} succeeded, "
                f"{bulk_send.failure_count} failed"
            )
        else:
            logger.info(f"Bulk send {bulk_send.id}: all {bulk_send.success_count} signer(s) succeeded")

        return bulk_send

    def _send_to_signer(
        self,
        template: Template,
        request: BulkSendRequest,
        bulk_send: BulkSend,
        index: int,
        signer: SignerRequest
    ) -> SignerOutcome:
        outcome = SignerOutcome(
            email=signer.email,
            name=signer.name,
            order=index,
            status=OutcomeStatus.FAILED,
        )

        payload = self._bulk_payload(template, request, bulk_send, index, signer)
        try:
            created = self._client.create_document(payload)
        except SigningError as e:
            logger.error(f"Bulk send {bulk_send.id}: could not create document for {signer.email}: {e}")
            outcome.error = str(e)
            outcome.stage = 'create'
            return outcome

        outcome.document_id = created['id']
        try:
            contact = self.assign_signer(created['id'], replace(signer, order=1))
        except SigningError as e:
            logger.error(
                f"Bulk send {bulk_send.id}: document {created['id']} created but "
                f"signer {signer.email} could not be assigned: {e}"
            )
            outcome.error = str(e)
            outcome.stage = 'assign'
            return outcome

        outcome.contact_id = contact.id
        outcome.status = OutcomeStatus.SUCCESS
        return outcome

    def _bulk_payload(
        self,
        template: Template,
        request: BulkSendRequest,
        bulk_send: BulkSend,
        index: int,
        signer: SignerRequest
    ) -> Dict[str, Any]:
        """Clone the template layout with the signer's email on every placeholder."""
        placeholders = [
            Placeholder(
                id=p.id,
                email=signer.email,
                order=1,
                role=p.role or signer.role,
                layout=dict(p.layout),
            )
            for p in template.placeholders
        ]
        days = template.time_to_complete_days or self._time_to_complete_days
        display_name = signer.name or signer.email.split('@')[0]

        return {
            'Name': f"{BULK_SEND_PREFIX} {request.name} - {display_name}",
            'Description': request.message or f"Bulk send: {request.name}",
            'URL': template.url,
            'Placeholders': [p.to_record() for p in placeholders],
            'Signers': [],
            'SendinOrder': request.send_in_order,
            'TimeToCompleteDays': days,
            'ExpiryDate': to_parse_date(bulk_send.created_at + timedelta(days=days)),
            'TemplateId': {'__type': 'Pointer', 'className': TEMPLATE_CLASS, 'objectId': template.id},
            'is_bulk_send': True,
            'bulk_send_id': bulk_send.id,
            'bulk_send_name': request.name,
            'bulk_total_recipients': len(request.signers),
            'bulk_order_index': index,
            'bulk_created_at': to_parse_date(bulk_send.created_at),
        }

    # -------------------------------------------------------------------------
    # Single documents
    # -------------------------------------------------------------------------

    def create_document(self, request: DocumentRequest) -> Document:
        """
        Create one document and assign every signer to it.

        If a signer cannot be assigned the document is left in place
        (its remaining placeholders stay unresolved) and the error is raised.
        """
        if not request.name:
            raise ValidationError("Document name is required", field='name')
        signers = self._ordered_signers(request.signers, request.send_in_order)

        template = self._client.get_template(request.template_id) if request.template_id else None
        placeholders = self._layout_placeholders(template, signers)

        created_at = utcnow()
        days = request.time_to_complete_days or (template.time_to_complete_days if template else None)
        expiry_date = request.expiry_date
        if expiry_date is None and days:
            expiry_date = created_at + timedelta(days=days)

        payload = {
            'Name': request.name,
            'Description': request.description or '',
            'URL': request.url or (template.url if template else None),
            'Placeholders': [p.to_record() for p in placeholders],
            'Signers': [],
            'SendinOrder': request.send_in_order,
        }
        if expiry_date is not None:
            payload['ExpiryDate'] = to_parse_date(expiry_date)
        if days:
            payload['TimeToCompleteDays'] = days
        if template is not None:
            payload['TemplateId'] = {'__type': 'Pointer', 'className': TEMPLATE_CLASS, 'objectId': template.id}

        created = self._client.create_document(payload)
        document_id = created['id']
        logger.info(f"Created document {document_id} '{request.name}' with {len(signers)} signer(s)")

        for signer in signers:
            try:
                self.assign_signer(document_id, signer)
            except SigningError as e:
                logger.error(f"Document {document_id} created but signer {signer.email} could not be assigned: {e}")
                raise

        return self._client.get_document(document_id)

    def _layout_placeholders(
        self,
        template: Optional[Template],
        signers: List[SignerRequest]
    ) -> List[Placeholder]:
        """
        Place signers on the template's placeholders.

        Template placeholders are matched to signers by role. The rest go,
        in template order, to signers no role claimed; any left over are
        dropped. Signers without a template placeholder get a plain
        signature placeholder.
        """
        placeholders: List[Placeholder] = []
        covered = set()

        if template is not None:
            by_role = {}
            for signer in signers:
                by_role.setdefault((signer.role or '').lower(), signer)
            template_roles = {tp.role.lower() for tp in template.placeholders if tp.role}
            claimed = [by_role[role] for role in template_roles if role in by_role]
            unclaimed = iter([s for s in signers if not any(s is c for c in claimed)])

            for tp in template.placeholders:
                signer = by_role.get(tp.role.lower()) if tp.role else None
                if signer is None:
                    signer = next(unclaimed, None)
                if signer is None:
                    continue
                covered.add(normalize_email(signer.email))
                placeholders.append(Placeholder(
                    id=tp.id,
                    email=signer.email,
                    order=signer.order,
                    role=tp.role or signer.role,
                    layout=dict(tp.layout),
                ))

        for position, signer in enumerate(signers, start=1):
            if normalize_email(signer.email) in covered:
                continue
            placeholders.append(Placeholder(
                id=f"signature-{position}",
                email=signer.email,
                order=signer.order,
                role=signer.role,
                layout={'type': 'signature'},
            ))
        return placeholders

    # -------------------------------------------------------------------------
    # Signer assignment
    # -------------------------------------------------------------------------

    def assign_signer(self, document_id: str, signer: SignerRequest) -> Contact:
        """
        Resolve a signer to a Contact and link it to the document.

        Writes the contact id onto every unresolved placeholder with the
        signer's email, appends the contact to the document's signers and
        links the contact on the backend. The contact is resolved before
        anything is written, so a failed resolution leaves the document
        untouched.

        Raises:
            ValidationError: If the document has no placeholder for this email
        """
        contact = self._contacts.resolve(signer.name, signer.email, signer.phone)
        document = self._client.get_document(document_id)

        placeholders = document.placeholders_for(signer.email)
        if not placeholders:
            raise ValidationError(
                f"Document {document_id} has no placeholder for {signer.email}",
                field='email'
            )

        for placeholder in placeholders:
            if not placeholder.is_resolved:
                placeholder.contact_id = contact.id

        if not document.has_signer(contact.id):
            order = min((p.order for p in placeholders if p.order is not None), default=signer.order or 1)
            document.signers.append(Signer(
                contact_id=contact.id,
                email=contact.email,
                name=contact.name,
                role=signer.role,
                order=order,
                status=SignerStatus.WAITING,
            ))

        self._client.update_document(document_id, document.signing_record())
        self._client.link_contact_to_document(document_id, contact.id)
        logger.debug(f"Assigned contact {contact.id} ({signer.email}) to document {document_id}")
        return contact

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _check_signers(self, signers: List[SignerRequest], require_unique: bool) -> None:
        if not signers:
            raise ValidationError("At least one signer is required", field='signers')

        seen = set()
        for signer in signers:
            email = normalize_email(signer.email)
            if not email or '@' not in email:
                raise ValidationError(f"Invalid signer email: {signer.email!r}", field='email')
            if require_unique and email in seen:
                raise ValidationError(f"Signer {signer.email} is listed more than once", field='email')
            seen.add(email)

    def _ordered_signers(self, signers: List[SignerRequest], send_in_order: bool) -> List[SignerRequest]:
        """
        Fill in missing orders by position.

        For sequential documents orders must be positive and unique.
        """
        self._check_signers(signers, require_unique=True)
        ordered = [
            replace(s, order=s.order if s.order is not None else position)
            for position, s in enumerate(signers, start=1)
        ]
        if send_in_order:
            orders = [s.order for s in ordered]
            if any(o < 1 for o in orders):
                raise ValidationError("Signing orders must be positive", field='order')
            if len(set(orders)) != len(orders):
                raise ValidationError("Signing orders must be unique for sequential documents", field='order')
        return ordered


# =============================================================================
# RECONSTRUCTION
# =============================================================================

def _bulk_key(document: Document) -> Optional[Tuple[str, str]]:
    if document.bulk_send_id:
        name = document.bulk_send_name
        if not name:
            match = BULK_NAME_PATTERN.match(document.name)
            name = match.group(1) if match else document.name
        return document.bulk_send_id, name

    match = BULK_NAME_PATTERN.match(document.name)
    if not match:
        return None
    # Legacy documents without metadata: same name on the same day
    day = document.created_at.date().isoformat() if document.created_at else 'unknown'
    slug = re.sub(r'\s+', '-', match.group(1).strip().lower())
    return f"bulk-{slug}-{day}", match.group(1)


def group_bulk_sends(documents: List[Document]) -> List[BulkSendSummary]:
    """
    Reconstruct bulk sends from the documents they created.

    Groups by bulk_send_id, falling back to the "Bulk Send: <name> -
    <signer>" naming convention. Newest first.
    """
    groups: Dict[str, BulkSendSummary] = {}
    for document in documents:
        key = _bulk_key(document)
        if key is None:
            continue
        bulk_id, name = key
        summary = groups.get(bulk_id)
        if summary is None:
            summary = groups[bulk_id] = BulkSendSummary(
                id=bulk_id,
                name=name,
                template_id=document.template_id,
                created_at=document.created_at,
                documents=[],
            )
        summary.documents.append(document)
        if document.created_at and (summary.created_at is None or document.created_at < summary.created_at):
            summary.created_at = document.created_at

    for summary in groups.values():
        summary.documents.sort(key=lambda d: (d.bulk_order_index or 0, d.created_at or utcnow()))

    return sorted(
        groups.values(),
        key=lambda s: s.created_at or datetime.min.replace(tzinfo=utcnow().tzinfo),
        reverse=True
    )
