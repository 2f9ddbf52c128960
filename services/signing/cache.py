"""
Document Cache

Holds the full document set in memory and serves filtered, searched and
paginated views of it without calling the backend.

States:
    FRESH --(TTL elapsed or invalidate())--> STALE --(refresh)--> FRESH

A refresh fetches every document in one backend call. Concurrent readers
that arrive while a refresh is in flight wait for that same refresh. A
failed refresh leaves the cache STALE and keeps the previous documents.
"""

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from .authorizer import is_in_inbox
from .exceptions import ValidationError
from .status import ALL, INBOX, StatusFilter, compute_status, parse_status_filter
from .types import Document, DocumentStatus, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300  # 5 minutes
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


class CacheState(Enum):
    FRESH = "fresh"
    STALE = "stale"


@dataclass
class DocumentFilter:
    """
    Filter, search and page parameters for get_documents().

    status is 'all', 'inbox' or a DocumentStatus (aliases accepted).
    user_email is required for the inbox filter.
    """
    status: StatusFilter = ALL
    search_term: str = ''
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    user_email: Optional[str] = None

    def __post_init__(self):
        self.status = parse_status_filter(self.status)
        self.search_term = (self.search_term or '').strip()
        if self.page < 1:
            raise ValidationError("Page must be 1 or greater", field='page')
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ValidationError(f"Page size must be between 1 and {MAX_PAGE_SIZE}", field='page_size')
        if self.status == INBOX and not self.user_email:
            raise ValidationError("The inbox filter needs the current user's email", field='status')


@dataclass
class DocumentPage:
    results: List[Document]
    total_count: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return max(1, -(-self.total_count // self.page_size))

    @property
    def has_more(self) -> bool:
        return self.page < self.total_pages

    def to_dict(self) -> Dict:
        return {
            'results': [d.to_dict() for d in self.results],
            'total_count': self.total_count,
            'page': self.page,
            'page_size': self.page_size,
            'total_pages': self.total_pages,
            'has_more': self.has_more,
        }


def _sort_key(document: Document):
    created = document.created_at.timestamp() if document.created_at else 0.0
    return (-created, document.id)


def matches_search(document: Document, term: str) -> bool:
    """Case-insensitive substring match on name, description and signers."""
    term = term.lower()
    haystack = [document.name, document.description or '']
    haystack.extend(s.email for s in document.signers)
    haystack.extend(s.name for s in document.signers)
    haystack.extend(p.email for p in document.placeholders)
    return any(term in (value or '').lower() for value in haystack)


def filter_documents(
    documents: List[Document],
    doc_filter: DocumentFilter,
    now: Optional[datetime] = None
) -> List[Document]:
    """Apply status and search filters, then sort newest first."""
    now = now or utcnow()
    results = documents

    if doc_filter.status == INBOX:
        results = [d for d in results if is_in_inbox(d, doc_filter.user_email, now)]
    elif doc_filter.status != ALL:
        results = [d for d in results if compute_status(d, now) == doc_filter.status]

    if doc_filter.search_term:
        results = [d for d in results if matches_search(d, doc_filter.search_term)]

    return sorted(results, key=_sort_key)


def status_counts(
    documents: List[Document],
    user_email: Optional[str] = None,
    now: Optional[datetime] = None
) -> Dict[str, int]:
    """Document counts per computed status, plus 'all' and 'inbox'."""
    now = now or utcnow()
    counts = {status.value: 0 for status in DocumentStatus}
    for document in documents:
        counts[compute_status(document, now).value] += 1
    counts[ALL] = len(documents)
    counts[INBOX] = sum(1 for d in documents if is_in_inbox(d, user_email, now)) if user_email else 0
    return counts


class DocumentCache:
    """
    Process-wide document cache with TTL and explicit invalidation.

    Usage:
        cache = DocumentCache(client, ttl=300)
        page = cache.get_documents(DocumentFilter(status='waiting', page=2))
        cache.invalidate()
    """

    def __init__(self, client, ttl: float = DEFAULT_TTL, list_limit: int = 1000, clock=time.monotonic):
        self._client = client
        self.ttl = ttl
        self._list_limit = list_limit
        self._clock = clock

        self._lock = threading.Lock()
        self._documents: List[Document] = []
        self._fetched_at: Optional[float] = None
        self._last_fetch_time: Optional[datetime] = None
        self._stale = True
        self._generation = 0
        self._inflight: Optional[Future] = None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> CacheState:
        with self._lock:
            return CacheState.STALE if self._is_stale() else CacheState.FRESH

    @property
    def last_fetch_time(self) -> Optional[datetime]:
        return self._last_fetch_time

    def _is_stale(self) -> bool:
        if self._stale or self._fetched_at is None:
            return True
        return self._clock() - self._fetched_at >= self.ttl

    def invalidate(self) -> None:
        """Mark the cache stale; the next read refreshes it."""
        with self._lock:
            self._stale = True
            self._generation += 1
        logger.debug("Document cache invalidated")

    def remove(self, document_id: str) -> None:
        """Drop a deleted document from the in-memory set before the next refresh."""
        with self._lock:
            self._documents = [d for d in self._documents if d.id != document_id]

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_documents(self, doc_filter: Optional[DocumentFilter] = None, force: bool = False) -> DocumentPage:
        """
        Return one page of documents matching the filter.

        Served from memory while FRESH; refreshes first when STALE or forced.
        """
        doc_filter = doc_filter or DocumentFilter()
        documents = self.ensure_fresh(force=force)

        filtered = filter_documents(documents, doc_filter)
        start = (doc_filter.page - 1) * doc_filter.page_size
        return DocumentPage(
            results=filtered[start:start + doc_filter.page_size],
            total_count=len(filtered),
            page=doc_filter.page,
            page_size=doc_filter.page_size,
        )

    def get(self, document_id: str) -> Optional[Document]:
        """Look up a document in the current snapshot (no refresh)."""
        return next((d for d in self.snapshot() if d.id == document_id), None)

    def snapshot(self) -> List[Document]:
        """Current in-memory documents, stale or not."""
        with self._lock:
            return list(self._documents)

    def counts(self, user_email: Optional[str] = None, force: bool = False) -> Dict[str, int]:
        return status_counts(self.ensure_fresh(force=force), user_email)

    def ensure_fresh(self, force: bool = False) -> List[Document]:
        with self._lock:
            if not force and not self._is_stale():
                return list(self._documents)
        return self.refresh()

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    def refresh(self) -> List[Document]:
        """
        Fetch the full document set from the backend.

        If a refresh is already running, wait for it and share its result
        instead of issuing a second fetch.
        """
        with self._lock:
            future = self._inflight
            owner = future is None
            if owner:
                future = self._inflight = Future()
                generation = self._generation

        if not owner:
            logger.debug("Waiting for in-flight document refresh")
            return list(future.result())

        try:
            documents = self._client.list_documents(limit=self._list_limit)
        except BaseException as e:
            # Waiters share this future; it must resolve even on interrupts
            with self._lock:
                self._stale = True
                self._inflight = None
            logger.error(f"Document cache refresh failed, keeping {len(self._documents)} stale document(s): {e}")
            future.set_exception(e)
            raise

        with self._lock:
            self._documents = list(documents)
            self._fetched_at = self._clock()
            self._last_fetch_time = utcnow()
            # An invalidation that arrived mid-refresh keeps the cache stale
            self._stale = generation != self._generation
            self._inflight = None

        logger.info(f"Document cache refreshed with {len(documents)} document(s)")
        future.set_result(documents)
        return list(documents)
