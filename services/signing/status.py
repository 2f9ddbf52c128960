"""
Document Status

The single source of truth for a document's lifecycle status. Nothing
else in the system assigns a status: the cache, the routes and the
authorizer all call compute_status().

Priority (first match wins):
    1. No placeholders and no signers    -> drafted (beats every flag)
    2. Declined flag or declined signer  -> declined
    3. Every signing slot signed         -> signed
    4. Some signing slots signed         -> partially_signed
    5. Expiry date in the past           -> expired
    6. Otherwise                         -> waiting
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Union

from .exceptions import ValidationError
from .types import (
    Document,
    DocumentStatus,
    Signer,
    SignerStatus,
    combined_status,
    normalize_email,
    utcnow,
)

# Legacy dashboard filter values, mapped onto computed statuses
STATUS_ALIASES = {
    'completed': DocumentStatus.SIGNED,
    'in-progress': DocumentStatus.WAITING,
    'in_progress': DocumentStatus.WAITING,
    'draft': DocumentStatus.DRAFTED,
}

ALL = 'all'
INBOX = 'inbox'

StatusFilter = Union[DocumentStatus, str]


def compute_status(document: Document, now: Optional[datetime] = None) -> DocumentStatus:
    """
    Derive a document's status from its placeholders, signers and flags.

    Pure: the result depends only on the document and ``now`` (defaults
    to the current UTC time, used for the expiry check).
    """
    if not document.placeholders and not document.signers:
        return DocumentStatus.DRAFTED

    if document.is_declined or any(
        s.status == SignerStatus.DECLINED
        for s in list(document.placeholders) + list(document.signers)
    ):
        return DocumentStatus.DECLINED

    # Placeholders are the signing slots; signers stand in when a document has none
    slots = document.placeholders or document.signers
    signed = sum(1 for slot in slots if slot.status == SignerStatus.SIGNED)

    if signed == len(slots):
        return DocumentStatus.SIGNED
    if signed:
        return DocumentStatus.PARTIALLY_SIGNED

    if document.expiry_date is not None and document.expiry_date < (now or utcnow()):
        return DocumentStatus.EXPIRED

    return DocumentStatus.WAITING


def signing_roster(document: Document) -> List[Signer]:
    """
    Materialize one Signer per distinct email on the document.

    Placeholders are grouped by email. A signer with several placeholders
    is signed only when all of them are signed and declined if any of
    them is declined. Order comes from the placeholders, then the signer
    record, then position. Signers without placeholders are appended
    with their own status.
    """
    by_email = {normalize_email(s.email): s for s in document.signers if s.email}
    by_contact = {s.contact_id: s for s in document.signers if s.contact_id}

    groups: Dict[str, list] = {}
    for placeholder in document.placeholders:
        key = normalize_email(placeholder.email)
        if key:
            groups.setdefault(key, []).append(placeholder)

    roster: List[Signer] = []
    for position, (key, placeholders) in enumerate(groups.items(), start=1):
        contact_id = next((p.contact_id for p in placeholders if p.contact_id), None)
        record = by_email.get(key) or (by_contact.get(contact_id) if contact_id else None)

        status = combined_status(p.status for p in placeholders)

        orders = [p.order for p in placeholders if p.order is not None]
        if orders:
            order = min(orders)
        elif record is not None:
            order = record.order
        else:
            order = position

        roster.append(Signer(
            contact_id=contact_id or (record.contact_id if record else None),
            email=placeholders[0].email,
            name=record.name if record else placeholders[0].email.split('@')[0],
            role=next((p.role for p in placeholders if p.role), None) or (record.role if record else 'signer'),
            order=order,
            status=status,
        ))

    for signer in document.signers:
        if signer.email and normalize_email(signer.email) not in groups:
            roster.append(signer)

    return roster


@dataclass
class SigningStep:
    signer: Signer
    is_completed: bool
    is_current: bool
    is_upcoming: bool

    def to_dict(self) -> Dict:
        return {
            'signer': self.signer.to_dict(),
            'is_completed': self.is_completed,
            'is_current': self.is_current,
            'is_upcoming': self.is_upcoming,
        }


@dataclass
class SigningProgress:
    current_step: int
    total_steps: int
    is_sequential: bool
    next_signer: Optional[Signer] = None
    steps: List[SigningStep] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'current_step': self.current_step,
            'total_steps': self.total_steps,
            'is_sequential': self.is_sequential,
            'next_signer': self.next_signer.to_dict() if self.next_signer else None,
            'steps': [s.to_dict() for s in self.steps],
        }


def signing_progress(document: Document) -> SigningProgress:
    """Step-by-step progress, with the next signer for sequential documents."""
    roster = signing_roster(document)
    if document.send_in_order:
        roster = sorted(roster, key=lambda s: s.order)

    completed = sum(1 for s in roster if s.is_signed)
    next_signer = None
    if document.send_in_order:
        next_signer = next((s for s in roster if not s.is_signed), None)

    steps = [
        SigningStep(
            signer=signer,
            is_completed=signer.is_signed,
            is_current=next_signer is not None and signer is next_signer,
            is_upcoming=(
                next_signer is not None
                and not signer.is_signed
                and signer is not next_signer
            ),
        )
        for signer in roster
    ]

    return SigningProgress(
        current_step=min(completed + 1, len(roster)) if roster else 0,
        total_steps=len(roster),
        is_sequential=document.send_in_order,
        next_signer=next_signer,
        steps=steps,
    )


def parse_status_filter(value: Optional[str]) -> StatusFilter:
    """
    Parse a status filter value.

    Returns 'all', 'inbox' or a DocumentStatus. Accepts the legacy dashboard
    aliases ('completed', 'in-progress', 'draft').
    """
    if value is None:
        return ALL
    if isinstance(value, DocumentStatus):
        return value

    key = value.strip().lower()
    if key in ('', ALL):
        return ALL
    if key == INBOX:
        return INBOX
    if key in STATUS_ALIASES:
        return STATUS_ALIASES[key]
    try:
        return DocumentStatus(key)
    except ValueError:
        raise ValidationError(f"Unknown status filter: {value}", field='status')
