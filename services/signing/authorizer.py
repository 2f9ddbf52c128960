"""
Sequential Signing Authorizer

Decides whether a signer may act on a document right now. This is the
one canonical "can user sign" rule: the inbox filter, the sign route and
the sign operation all go through can_sign().
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .exceptions import AlreadyTerminal, AuthorizationDenied
from .status import compute_status, signing_roster
from .types import Document, Signer, normalize_email


class DenialReason(Enum):
    NOT_A_SIGNER = "not_a_signer"
    ALREADY_SIGNED = "already_signed"
    DOCUMENT_CLOSED = "document_closed"
    OUT_OF_ORDER = "out_of_order"


@dataclass(frozen=True)
class SigningDecision:
    """
    Result of an authorization check.

    Denials are returned as values, not raised; use raise_for_denial()
    where an exception is wanted.
    """
    allowed: bool
    signer_email: str
    reason: Optional[DenialReason] = None
    blocking_signer: Optional[Signer] = None
    message: str = 'Ready to sign'
    document_status: Optional[str] = None

    def raise_for_denial(self, document_id: str) -> None:
        """Raise the typed exception matching this denial, if any."""
        if self.allowed:
            return
        if self.reason == DenialReason.DOCUMENT_CLOSED:
            raise AlreadyTerminal(document_id, self.document_status, signer_email=self.signer_email)
        raise AuthorizationDenied(
            self.message,
            document_id=document_id,
            signer_email=self.signer_email,
            reason=self.reason.value,
            blocking_signer=self.blocking_signer,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'allowed': self.allowed,
            'signer_email': self.signer_email,
            'reason': self.reason.value if self.reason else None,
            'blocking_signer': self.blocking_signer.to_dict() if self.blocking_signer else None,
            'message': self.message,
        }


def _deny(email: str, reason: DenialReason, message: str, **kwargs) -> SigningDecision:
    return SigningDecision(allowed=False, signer_email=email, reason=reason, message=message, **kwargs)


def can_sign(document: Document, signer_email: str, now: Optional[datetime] = None) -> SigningDecision:
    """
    Check whether signer_email may sign the document now.

    Checks, in order: the email belongs to a signer, that signer has not
    signed yet, the document is not closed, and (for sequential
    documents) every signer with a strictly smaller order has signed.
    Signers sharing an order are eligible together.
    """
    email = normalize_email(signer_email)
    roster = signing_roster(document)

    signer = next((s for s in roster if normalize_email(s.email) == email), None) if email else None
    if signer is None:
        return _deny(
            signer_email, DenialReason.NOT_A_SIGNER,
            f"{signer_email} is not a signer on document {document.id}"
        )

    if signer.is_signed:
        return _deny(
            signer_email, DenialReason.ALREADY_SIGNED,
            f"{signer_email} has already signed document {document.id}"
        )

    status = compute_status(document, now)
    if status.is_terminal:
        return _deny(
            signer_email, DenialReason.DOCUMENT_CLOSED,
            f"Document {document.id} is {status.value} and no longer available for signing",
            document_status=status.value,
        )

    if document.send_in_order:
        earlier = sorted(
            (s for s in roster if s.order < signer.order),
            key=lambda s: s.order
        )
        blocking = next((s for s in earlier if not s.is_signed), None)
        if blocking is not None:
            return _deny(
                signer_email, DenialReason.OUT_OF_ORDER,
                f"Waiting for {blocking.name or blocking.email} to sign document {document.id} first",
                blocking_signer=blocking,
            )

    return SigningDecision(allowed=True, signer_email=signer_email)


def is_in_inbox(document: Document, user_email: str, now: Optional[datetime] = None) -> bool:
    """A document is in a user's inbox if they may sign now or are an assignee."""
    if not user_email:
        return False
    email = normalize_email(user_email)
    if any(normalize_email(a) == email for a in document.assignee_emails):
        return True
    return can_sign(document, user_email, now).allowed
