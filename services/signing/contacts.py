"""
Contact Directory

Resolves a signer's name/email to a durable Contact, deduplicating by
normalized email. Resolution is idempotent, also when several threads
resolve the same email at once: one of them creates the contact and the
others reuse it.
"""

import logging
import threading
from typing import Dict, Optional

from .exceptions import ValidationError
from .types import Contact, normalize_email

logger = logging.getLogger(__name__)


class ContactDirectory:
    """
    Email-keyed contact lookup backed by the signing backend.

    First write wins: once an email is known, later calls with a
    different name or phone return the existing Contact unchanged.

    Usage:
        contacts = ContactDirectory(client)
        contact = contacts.resolve('Jane Doe', 'Jane@Example.com')
    """

    def __init__(self, client):
        self._client = client
        self._contacts: Dict[str, Contact] = {}
        self._lock = threading.Lock()
        self._email_locks: Dict[str, threading.Lock] = {}

    def resolve(self, name: str, email: str, phone: Optional[str] = None) -> Contact:
        """
        Return the Contact for an email, creating it on first reference.

        Raises:
            ValidationError: If the email is blank
            SigningAPIError: If the backend create fails (nothing is recorded)
        """
        key = normalize_email(email)
        if not key or '@' not in key:
            raise ValidationError(f"Invalid signer email: {email!r}", field='email')

        contact = self._contacts.get(key)
        if contact is not None:
            return contact

        with self._lock_for(key):
            # Another thread may have resolved it while we waited
            contact = self._contacts.get(key)
            if contact is not None:
                return contact

            result = self._client.create_or_find_contact(email.strip(), (name or '').strip(), phone)
            contact = Contact(
                id=result['id'],
                name=result.get('name') or name,
                email=result.get('email') or email.strip(),
                phone=result.get('phone') or phone,
            )
            self._contacts[key] = contact
            logger.debug(f"Resolved contact {contact.id} for {key}")
            return contact

    def get(self, email: str) -> Optional[Contact]:
        return self._contacts.get(normalize_email(email))

    def forget(self, email: str) -> None:
        self._contacts.pop(normalize_email(email), None)

    def clear(self) -> None:
        with self._lock:
            self._contacts.clear()
            self._email_locks.clear()

    def __len__(self) -> int:
        return len(self._contacts)

    def _lock_for(self, key: str) -> threading.Lock:
        with self._lock:
            lock = self._email_locks.get(key)
            if lock is None:
                lock = self._email_locks[key] = threading.Lock()
            return lock
