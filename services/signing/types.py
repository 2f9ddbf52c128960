"""
Signing System Type Definitions

Dataclasses representing contacts, documents, signers and placeholders,
plus conversion to and from the backend's record format (Parse-style
objects with ``objectId``, ``Name``, ``Placeholders``...).

A document's status is never stored: ``Document.status`` is derived from
its placeholders and signers on every access (see status.py).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

CONTACT_CLASS = 'contracts_Contactbook'
TEMPLATE_CLASS = 'contracts_Template'

# Placeholder keys we map explicitly; everything else is layout data
_PLACEHOLDER_KEYS = {
    'Id', 'id', 'email', 'signerObjId', 'signerPtr', 'status',
    'signedAt', 'order', 'Role', 'signerRole',
}


class DocumentStatus(Enum):
    """Lifecycle status of a document, computed by status.compute_status."""
    DRAFTED = "drafted"
    WAITING = "waiting"
    PARTIALLY_SIGNED = "partially_signed"
    SIGNED = "signed"
    DECLINED = "declined"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    DocumentStatus.SIGNED,
    DocumentStatus.DECLINED,
    DocumentStatus.EXPIRED,
})


class SignerStatus(Enum):
    """Signing state of a single signer or placeholder."""
    WAITING = "waiting"
    SIGNED = "signed"
    DECLINED = "declined"

    @classmethod
    def parse(cls, value: Optional[str]) -> 'SignerStatus':
        """Backend values outside the enum count as waiting."""
        try:
            return cls(value)
        except ValueError:
            return cls.WAITING


def combined_status(statuses) -> SignerStatus:
    """Declined if any placeholder is declined, signed only when all are."""
    statuses = set(statuses)
    if SignerStatus.DECLINED in statuses:
        return SignerStatus.DECLINED
    if statuses == {SignerStatus.SIGNED}:
        return SignerStatus.SIGNED
    return SignerStatus.WAITING


def normalize_email(email: Optional[str]) -> str:
    """Lower-case and trim an email for comparisons and lookups."""
    return (email or '').strip().lower()


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a backend timestamp.

    Accepts datetime objects, ISO strings (with or without a trailing Z)
    and Parse date objects ({"__type": "Date", "iso": ...}). Naive values
    are treated as UTC.
    """
    if value is None or value == '':
        return None
    if isinstance(value, dict):
        value = value.get('iso')
        if not value:
            return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as an ISO string (UTC, millisecond precision)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def to_parse_date(value: Optional[datetime]) -> Optional[Dict[str, str]]:
    """Wrap a datetime in the backend's date object format."""
    if value is None:
        return None
    return {'__type': 'Date', 'iso': format_datetime(value)}


def contact_pointer(contact_id: str) -> Dict[str, str]:
    """Pointer to a contact book entry."""
    return {'__type': 'Pointer', 'className': CONTACT_CLASS, 'objectId': contact_id}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Contact:
    """
    A durable signer identity.

    Attributes:
        id: Backend contact id
        name: Display name (first write wins)
        email: Unique key, compared case-insensitively
        phone: Optional phone number
    """
    id: str
    name: str
    email: str
    phone: Optional[str] = None

    @property
    def normalized_email(self) -> str:
        return normalize_email(self.email)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'phone': self.phone,
        }


@dataclass
class Placeholder:
    """
    A signature field anchored to an email.

    A placeholder with no contact_id is "unresolved": it has a target
    email but no linked Contact yet.

    Attributes:
        id: Placeholder id (stable within a document)
        email: Target signer email
        contact_id: Linked contact, None while unresolved
        status: waiting / signed / declined
        signed_at: When the placeholder was signed
        order: Signing order for sequential documents
        role: Signer role label from the template
        layout: Page/position data carried through verbatim
    """
    id: str
    email: str
    contact_id: Optional[str] = None
    status: SignerStatus = SignerStatus.WAITING
    signed_at: Optional[datetime] = None
    order: Optional[int] = None
    role: Optional[str] = None
    layout: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_resolved(self) -> bool:
        return bool(self.contact_id)

    @property
    def is_signed(self) -> bool:
        return self.status == SignerStatus.SIGNED

    @classmethod
    def from_record(cls, data: Dict[str, Any], index: int = 0) -> 'Placeholder':
        order = data.get('order')
        return cls(
            id=str(data.get('Id') or data.get('id') or f'placeholder-{index + 1}'),
            email=data.get('email') or '',
            contact_id=data.get('signerObjId') or None,
            status=SignerStatus.parse(data.get('status')),
            signed_at=parse_datetime(data.get('signedAt')),
            order=int(order) if order is not None else None,
            role=data.get('Role') or data.get('signerRole'),
            layout={k: v for k, v in data.items() if k not in _PLACEHOLDER_KEYS},
        )

    def to_record(self) -> Dict[str, Any]:
        record = dict(self.layout)
        record.update({
            'Id': self.id,
            'email': self.email,
            'signerObjId': self.contact_id or '',
            'status': self.status.value,
        })
        if self.contact_id:
            record['signerPtr'] = contact_pointer(self.contact_id)
        if self.signed_at:
            record['signedAt'] = format_datetime(self.signed_at)
        if self.order is not None:
            record['order'] = self.order
        if self.role:
            record['Role'] = self.role
        return record

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'email': self.email,
            'contact_id': self.contact_id,
            'status': self.status.value,
            'signed_at': format_datetime(self.signed_at),
            'order': self.order,
            'role': self.role,
        }


@dataclass
class Signer:
    """
    A placeholder resolved to a concrete Contact, with status and order.
    """
    contact_id: Optional[str]
    email: str
    name: str
    role: str = 'signer'
    order: int = 1
    status: SignerStatus = SignerStatus.WAITING

    @property
    def is_signed(self) -> bool:
        return self.status == SignerStatus.SIGNED

    @classmethod
    def from_record(cls, data: Dict[str, Any], index: int = 0) -> 'Signer':
        email = data.get('Email') or data.get('email') or ''
        order = data.get('order')
        return cls(
            contact_id=data.get('objectId') or None,
            email=email,
            name=data.get('Name') or data.get('name') or email.split('@')[0],
            role=data.get('Role') or data.get('role') or 'signer',
            order=int(order) if order is not None else index + 1,
            status=SignerStatus.parse(data.get('status')),
        )

    def to_record(self) -> Dict[str, Any]:
        return contact_pointer(self.contact_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'contact_id': self.contact_id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'order': self.order,
            'status': self.status.value,
        }


@dataclass
class Template:
    """A reusable placeholder layout documents are cloned from."""
    id: str
    name: str
    url: Optional[str] = None
    description: Optional[str] = None
    placeholders: List[Placeholder] = field(default_factory=list)
    time_to_complete_days: Optional[int] = None

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> 'Template':
        days = data.get('TimeToCompleteDays')
        return cls(
            id=data['objectId'],
            name=data.get('Name') or '',
            url=data.get('URL'),
            description=data.get('Description') or data.get('Note'),
            placeholders=[
                Placeholder.from_record(p, i)
                for i, p in enumerate(data.get('Placeholders') or [])
            ],
            time_to_complete_days=int(days) if days is not None else None,
        )


@dataclass
class Document:
    """
    A document moving through the signing lifecycle.

    status is a read-only property computed from placeholders, signers,
    the decline flag and the expiry date. It cannot be assigned.
    """
    id: str
    name: str
    send_in_order: bool = False
    signers: List[Signer] = field(default_factory=list)
    placeholders: List[Placeholder] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    is_declined: bool = False
    decline_reason: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None
    template_id: Optional[str] = None
    bulk_send_id: Optional[str] = None
    bulk_send_name: Optional[str] = None
    bulk_order_index: Optional[int] = None
    assignee_emails: List[str] = field(default_factory=list)

    @property
    def status(self) -> DocumentStatus:
        from .status import compute_status
        return compute_status(self)

    @property
    def is_bulk_send(self) -> bool:
        return bool(self.bulk_send_id) or self.name.startswith('Bulk Send:')

    @property
    def unresolved_placeholders(self) -> List[Placeholder]:
        return [p for p in self.placeholders if not p.is_resolved]

    def placeholders_for(self, email: str) -> List[Placeholder]:
        email = normalize_email(email)
        return [p for p in self.placeholders if normalize_email(p.email) == email]

    def has_signer(self, contact_id: str) -> bool:
        return any(s.contact_id == contact_id for s in self.signers)

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> 'Document':
        """
        Create a Document from a backend record.

        Any stored ``Status`` field is ignored; status is always derived.
        """
        placeholders = [
            Placeholder.from_record(p, i)
            for i, p in enumerate(data.get('Placeholders') or [])
        ]
        signers = []
        for i, signer_data in enumerate(data.get('Signers') or []):
            signer = Signer.from_record(signer_data, i)
            # Unexpanded pointers carry no email; recover it from placeholders
            if not signer.email and signer.contact_id:
                match = next((p for p in placeholders if p.contact_id == signer.contact_id), None)
                if match:
                    signer.email = match.email
                    signer.name = signer.name or match.email.split('@')[0]
            # Signer records are contact pointers; status and order live on placeholders
            own = [
                p for p in placeholders
                if (signer.contact_id and p.contact_id == signer.contact_id)
                or (signer.email and normalize_email(p.email) == normalize_email(signer.email))
            ]
            if own:
                signer.status = combined_status(p.status for p in own)
                orders = [p.order for p in own if p.order is not None]
                if orders:
                    signer.order = min(orders)
            signers.append(signer)

        template = data.get('TemplateId')
        bulk_index = data.get('bulk_order_index')
        return cls(
            id=data['objectId'],
            name=data.get('Name') or '',
            send_in_order=bool(data.get('SendinOrder', data.get('SendInOrder', False))),
            signers=signers,
            placeholders=placeholders,
            created_at=parse_datetime(data.get('createdAt')),
            updated_at=parse_datetime(data.get('updatedAt')),
            expiry_date=parse_datetime(data.get('ExpiryDate')),
            is_declined=bool(data.get('IsDeclined', False)),
            decline_reason=data.get('DeclineReason'),
            description=data.get('Description') or data.get('Note'),
            url=data.get('URL'),
            template_id=template.get('objectId') if isinstance(template, dict) else template,
            bulk_send_id=data.get('bulk_send_id'),
            bulk_send_name=data.get('bulk_send_name'),
            bulk_order_index=int(bulk_index) if bulk_index is not None else None,
            assignee_emails=list(data.get('Assignees') or []),
        )

    def signing_record(self) -> Dict[str, Any]:
        """Patch payload for the placeholder/signer arrays."""
        return {
            'Placeholders': [p.to_record() for p in self.placeholders],
            'Signers': [s.to_record() for s in self.signers if s.contact_id],
        }

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses, including the derived status."""
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'status': self.status.value,
            'send_in_order': self.send_in_order,
            'signers': [s.to_dict() for s in self.signers],
            'placeholders': [p.to_dict() for p in self.placeholders],
            'created_at': format_datetime(self.created_at),
            'updated_at': format_datetime(self.updated_at),
            'expiry_date': format_datetime(self.expiry_date),
            'is_declined': self.is_declined,
            'decline_reason': self.decline_reason,
            'template_id': self.template_id,
            'bulk_send_id': self.bulk_send_id,
            'bulk_send_name': self.bulk_send_name,
        }
