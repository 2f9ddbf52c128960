"""
Document status derivation tests.

Run with: python -m pytest tests/test_status.py -v
"""

from datetime import timedelta

import pytest

from services.signing import (
    DocumentStatus,
    Placeholder,
    SignerStatus,
    ValidationError,
    compute_status,
    parse_status_filter,
    signing_progress,
    signing_roster,
)
from services.signing.cache import status_counts


class TestComputeStatus:
    """Priority order of the derived status."""

    def test_empty_document_is_drafted(self, make_document, now):
        """No placeholders and no signers means drafted."""
        assert compute_status(make_document(), now) == DocumentStatus.DRAFTED

    def test_empty_document_with_past_expiry_is_drafted(self, make_document, now):
        """Drafted beats expiry."""
        document = make_document(expiry_date=now - timedelta(days=3))
        assert compute_status(document, now) == DocumentStatus.DRAFTED

    def test_empty_document_with_decline_flag_is_drafted(self, make_document, now):
        """Drafted beats every flag, including a decline."""
        document = make_document(is_declined=True, expiry_date=now - timedelta(days=1))
        assert compute_status(document, now) == DocumentStatus.DRAFTED

    def test_nobody_signed_is_waiting(self, make_document, now):
        document = make_document([('ann@example.com', 'waiting', 1), ('bob@example.com', 'waiting', 2)])
        assert compute_status(document, now) == DocumentStatus.WAITING

    def test_some_signed_is_partially_signed(self, make_document, now):
        document = make_document([('ann@example.com', 'signed', 1), ('bob@example.com', 'waiting', 2)])
        assert compute_status(document, now) == DocumentStatus.PARTIALLY_SIGNED

    def test_all_signed_is_signed(self, make_document, now):
        document = make_document([('ann@example.com', 'signed', 1), ('bob@example.com', 'signed', 2)])
        assert compute_status(document, now) == DocumentStatus.SIGNED

    def test_signed_beats_expiry(self, make_document, now):
        """A fully signed document stays signed after its expiry date."""
        document = make_document(
            [('ann@example.com', 'signed', 1)],
            expiry_date=now - timedelta(days=1),
        )
        assert compute_status(document, now) == DocumentStatus.SIGNED

    def test_past_expiry_with_no_signatures_is_expired(self, make_document, now):
        document = make_document(
            [('ann@example.com', 'waiting', 1)],
            expiry_date=now - timedelta(seconds=1),
        )
        assert compute_status(document, now) == DocumentStatus.EXPIRED

    def test_future_expiry_is_waiting(self, make_document, now):
        document = make_document(
            [('ann@example.com', 'waiting', 1)],
            expiry_date=now + timedelta(days=1),
        )
        assert compute_status(document, now) == DocumentStatus.WAITING

    def test_decline_flag_beats_signatures(self, make_document, now):
        document = make_document(
            [('ann@example.com', 'signed', 1), ('bob@example.com', 'waiting', 2)],
            is_declined=True,
        )
        assert compute_status(document, now) == DocumentStatus.DECLINED

    def test_declined_placeholder_declines_document(self, make_document, now):
        document = make_document([('ann@example.com', 'declined', 1), ('bob@example.com', 'waiting', 2)])
        assert compute_status(document, now) == DocumentStatus.DECLINED

    def test_unresolved_placeholders_count_as_slots(self, make_document, now):
        """Placeholders without a contact still need signing."""
        document = make_document([('ann@example.com', 'signed', 1)])
        document.placeholders.append(Placeholder(id='sig-2', email='new@example.com'))
        assert compute_status(document, now) == DocumentStatus.PARTIALLY_SIGNED

    def test_status_property_matches_function(self, make_document):
        document = make_document([('ann@example.com', 'signed', 1)])
        assert document.status == DocumentStatus.SIGNED

    def test_status_cannot_be_assigned(self, make_document):
        document = make_document()
        with pytest.raises(AttributeError):
            document.status = DocumentStatus.SIGNED

    def test_pure(self, make_document, now):
        """Repeated calls give the same answer and do not mutate the document."""
        document = make_document([('ann@example.com', 'signed', 1), ('bob@example.com', 'waiting', 2)])
        before = document.to_dict()
        results = {compute_status(document, now) for _ in range(5)}
        assert results == {DocumentStatus.PARTIALLY_SIGNED}
        assert document.to_dict() == before

    def test_terminal_statuses(self):
        assert DocumentStatus.SIGNED.is_terminal
        assert DocumentStatus.DECLINED.is_terminal
        assert DocumentStatus.EXPIRED.is_terminal
        assert not DocumentStatus.WAITING.is_terminal
        assert not DocumentStatus.PARTIALLY_SIGNED.is_terminal
        assert not DocumentStatus.DRAFTED.is_terminal


class TestSigningRoster:
    """One signer per distinct email."""

    def test_multiple_placeholders_collapse_to_one_signer(self, make_document):
        document = make_document([('ann@example.com', 'signed', 1)])
        document.placeholders.append(Placeholder(
            id='initials-1', email='ANN@example.com', contact_id='c-ann', order=1,
        ))
        roster = signing_roster(document)
        assert len(roster) == 1
        assert roster[0].status == SignerStatus.WAITING

    def test_signer_is_signed_when_all_placeholders_signed(self, make_document):
        document = make_document([('ann@example.com', 'signed', 1)])
        document.placeholders.append(Placeholder(
            id='initials-1', email='ann@example.com', contact_id='c-ann',
            status=SignerStatus.SIGNED, order=1,
        ))
        assert signing_roster(document)[0].status == SignerStatus.SIGNED

    def test_order_falls_back_to_position(self, make_document):
        document = make_document([('ann@example.com', 'waiting', None), ('bob@example.com', 'waiting', None)])
        document.signers = []
        assert [s.order for s in signing_roster(document)] == [1, 2]


class TestSigningProgress:
    def test_sequential_progress_names_next_signer(self, make_document):
        document = make_document(
            [('ann@example.com', 'signed', 1), ('bob@example.com', 'waiting', 2), ('cy@example.com', 'waiting', 3)],
            send_in_order=True,
        )
        progress = signing_progress(document)
        assert progress.total_steps == 3
        assert progress.current_step == 2
        assert progress.next_signer.email == 'bob@example.com'
        assert [s.is_current for s in progress.steps] == [False, True, False]
        assert [s.is_upcoming for s in progress.steps] == [False, False, True]

    def test_parallel_progress_has_no_next_signer(self, make_document):
        document = make_document([('ann@example.com', 'waiting', 1), ('bob@example.com', 'waiting', 2)])
        progress = signing_progress(document)
        assert progress.next_signer is None
        assert progress.current_step == 1


class TestStatusFilter:
    def test_aliases(self):
        assert parse_status_filter('completed') == DocumentStatus.SIGNED
        assert parse_status_filter('in-progress') == DocumentStatus.WAITING
        assert parse_status_filter('draft') == DocumentStatus.DRAFTED

    def test_all_and_inbox(self):
        assert parse_status_filter(None) == 'all'
        assert parse_status_filter('') == 'all'
        assert parse_status_filter('Inbox') == 'inbox'

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            parse_status_filter('archived')


class TestStatusCounts:
    def test_counts_per_status(self, make_document, now):
        documents = [
            make_document(doc_id='d1'),
            make_document([('ann@example.com', 'waiting', 1)], doc_id='d2'),
            make_document([('ann@example.com', 'signed', 1)], doc_id='d3'),
            make_document([('bob@example.com', 'waiting', 1)], doc_id='d4'),
        ]
        counts = status_counts(documents, 'ann@example.com', now)
        assert counts['drafted'] == 1
        assert counts['waiting'] == 2
        assert counts['signed'] == 1
        assert counts['all'] == 4
        assert counts['inbox'] == 1
