"""
Sequential signing authorization tests.

Run with: python -m pytest tests/test_authorizer.py -v
"""

from datetime import timedelta

import pytest

from services.signing import (
    AlreadyTerminal,
    AuthorizationDenied,
    DenialReason,
    SignerStatus,
    can_sign,
    is_in_inbox,
)


class TestCanSign:
    """Order-aware signing rule."""

    def test_parallel_document_allows_any_signer(self, make_document, now):
        document = make_document([('ann@example.com', 'waiting', 1), ('bob@example.com', 'waiting', 2)])
        assert can_sign(document, 'bob@example.com', now).allowed

    def test_email_is_case_insensitive(self, make_document, now):
        document = make_document([('ann@example.com', 'waiting', 1)])
        assert can_sign(document, '  Ann@Example.COM ', now).allowed

    def test_not_a_signer(self, make_document, now):
        document = make_document([('ann@example.com', 'waiting', 1)])
        decision = can_sign(document, 'mallory@example.com', now)
        assert not decision.allowed
        assert decision.reason == DenialReason.NOT_A_SIGNER

    def test_already_signed(self, make_document, now):
        document = make_document([('ann@example.com', 'signed', 1), ('bob@example.com', 'waiting', 2)])
        decision = can_sign(document, 'ann@example.com', now)
        assert decision.reason == DenialReason.ALREADY_SIGNED

    def test_expired_document_is_closed(self, make_document, now):
        document = make_document(
            [('ann@example.com', 'waiting', 1)],
            expiry_date=now - timedelta(hours=1),
        )
        decision = can_sign(document, 'ann@example.com', now)
        assert decision.reason == DenialReason.DOCUMENT_CLOSED
        assert decision.document_status == 'expired'

    def test_declined_document_is_closed(self, make_document, now):
        document = make_document(
            [('ann@example.com', 'waiting', 1), ('bob@example.com', 'waiting', 2)],
            is_declined=True,
        )
        assert can_sign(document, 'bob@example.com', now).reason == DenialReason.DOCUMENT_CLOSED

    def test_out_of_order_names_blocking_signer(self, make_document, now):
        """Sequential A(1), B(2): B before A is blocked by A."""
        document = make_document(
            [('a@example.com', 'waiting', 1), ('b@example.com', 'waiting', 2)],
            send_in_order=True,
        )
        decision = can_sign(document, 'b@example.com', now)
        assert not decision.allowed
        assert decision.reason == DenialReason.OUT_OF_ORDER
        assert decision.blocking_signer.email == 'a@example.com'

    def test_allowed_after_earlier_signer_signs(self, make_document, now):
        document = make_document(
            [('a@example.com', 'waiting', 1), ('b@example.com', 'waiting', 2)],
            send_in_order=True,
        )
        document.placeholders[0].status = SignerStatus.SIGNED
        assert can_sign(document, 'b@example.com', now).allowed

    def test_blocking_signer_is_lowest_unsigned_order(self, make_document, now):
        document = make_document(
            [('a@example.com', 'signed', 1), ('b@example.com', 'waiting', 2), ('c@example.com', 'waiting', 3)],
            send_in_order=True,
        )
        decision = can_sign(document, 'c@example.com', now)
        assert decision.blocking_signer.email == 'b@example.com'

    def test_equal_orders_sign_together(self, make_document, now):
        document = make_document(
            [('a@example.com', 'waiting', 1), ('b@example.com', 'waiting', 1), ('c@example.com', 'waiting', 2)],
            send_in_order=True,
        )
        assert can_sign(document, 'a@example.com', now).allowed
        assert can_sign(document, 'b@example.com', now).allowed
        assert not can_sign(document, 'c@example.com', now).allowed

    def test_first_signer_always_allowed(self, make_document, now):
        document = make_document(
            [('a@example.com', 'waiting', 1), ('b@example.com', 'waiting', 2)],
            send_in_order=True,
        )
        assert can_sign(document, 'a@example.com', now).allowed


class TestRaiseForDenial:
    def test_out_of_order_raises_authorization_denied(self, make_document, now):
        document = make_document(
            [('a@example.com', 'waiting', 1), ('b@example.com', 'waiting', 2)],
            send_in_order=True,
        )
        decision = can_sign(document, 'b@example.com', now)
        with pytest.raises(AuthorizationDenied) as exc_info:
            decision.raise_for_denial(document.id)
        assert exc_info.value.reason == 'out_of_order'
        assert exc_info.value.to_dict()['blocking_signer']['email'] == 'a@example.com'

    def test_closed_document_raises_already_terminal(self, make_document, now):
        document = make_document(
            [('a@example.com', 'waiting', 1)],
            expiry_date=now - timedelta(days=1),
        )
        with pytest.raises(AlreadyTerminal) as exc_info:
            can_sign(document, 'a@example.com', now).raise_for_denial(document.id)
        assert exc_info.value.status == 'expired'

    def test_allowed_does_not_raise(self, make_document, now):
        document = make_document([('a@example.com', 'waiting', 1)])
        can_sign(document, 'a@example.com', now).raise_for_denial(document.id)


class TestInbox:
    def test_signer_who_can_sign_sees_document(self, make_document, now):
        document = make_document([('a@example.com', 'waiting', 1)])
        assert is_in_inbox(document, 'a@example.com', now)

    def test_blocked_signer_does_not_see_document(self, make_document, now):
        document = make_document(
            [('a@example.com', 'waiting', 1), ('b@example.com', 'waiting', 2)],
            send_in_order=True,
        )
        assert not is_in_inbox(document, 'b@example.com', now)

    def test_assignee_sees_document(self, make_document, now):
        document = make_document(
            [('a@example.com', 'waiting', 1)],
            assignee_emails=['Reviewer@example.com'],
        )
        assert is_in_inbox(document, 'reviewer@example.com', now)
