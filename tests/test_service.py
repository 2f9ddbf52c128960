"""
Signing service tests: signing flow, signer management and cache invalidation.

Run with: python -m pytest tests/test_service.py -v
"""

import pytest

from services.signing import (
    AlreadyTerminal,
    AuthorizationDenied,
    BulkSendNotFound,
    BulkSendRequest,
    CacheState,
    ContactNotFound,
    DocumentFilter,
    DocumentNotFound,
    DocumentRequest,
    DocumentStatus,
    MockSigningBackend,
    OpenSignClient,
    SignerRequest,
    SignerStatus,
    SigningService,
    ValidationError,
    can_sign,
)

SIGNATURE = 'data:image/png;base64,iVBORw0KGgo='


@pytest.fixture
def sequential_doc(service):
    """Sequential Ann(1) -> Bob(2) document."""
    document = service.create_document(DocumentRequest(
        name='Listing Agreement',
        signers=[
            SignerRequest(name='Ann Lee', email='ann@example.com'),
            SignerRequest(name='Bob Ray', email='bob@example.com'),
        ],
        send_in_order=True,
    ))
    return document.id


class TestSignDocument:
    """Signing goes through the order-aware rule first."""

    def test_sign_in_order(self, service, sequential_doc):
        result = service.sign_document(sequential_doc, 'ann@example.com', SIGNATURE)
        assert result.new_status == DocumentStatus.PARTIALLY_SIGNED.value

        result = service.sign_document(sequential_doc, 'bob@example.com', SIGNATURE)
        assert result.new_status == DocumentStatus.SIGNED.value
        assert service.get_document(sequential_doc).status == DocumentStatus.SIGNED

    def test_out_of_order_signature_is_never_sent(self, service, backend, sequential_doc):
        with pytest.raises(AuthorizationDenied) as exc_info:
            service.sign_document(sequential_doc, 'bob@example.com', SIGNATURE)

        assert exc_info.value.reason == 'out_of_order'
        assert exc_info.value.blocking_signer.email == 'ann@example.com'
        assert backend.get_document(sequential_doc).status == DocumentStatus.WAITING

    def test_order_invariant_holds_after_every_sign(self, service, backend, sequential_doc):
        """After each successful sign, no signer is signed before an earlier one."""
        for email in ('ann@example.com', 'bob@example.com'):
            service.sign_document(sequential_doc, email, SIGNATURE)
            document = backend.get_document(sequential_doc)
            orders = {p.email: p.order for p in document.placeholders}
            for signed in (p for p in document.placeholders if p.is_signed):
                assert all(
                    p.is_signed for p in document.placeholders
                    if orders[p.email] < orders[signed.email]
                )

    def test_signer_status_follows_signature(self, service, sequential_doc):
        service.sign_document(sequential_doc, 'ann@example.com', SIGNATURE)

        document = service.get_document(sequential_doc)

        assert document.status == DocumentStatus.PARTIALLY_SIGNED
        assert [(s.email, s.status, s.order) for s in document.signers] == [
            ('ann@example.com', SignerStatus.SIGNED, 1),
            ('bob@example.com', SignerStatus.WAITING, 2),
        ]

    def test_double_signing_denied(self, service, sequential_doc):
        service.sign_document(sequential_doc, 'ann@example.com', SIGNATURE)
        with pytest.raises(AuthorizationDenied) as exc_info:
            service.sign_document(sequential_doc, 'ann@example.com', SIGNATURE)
        assert exc_info.value.reason == 'already_signed'

    def test_stranger_denied(self, service, sequential_doc):
        with pytest.raises(AuthorizationDenied) as exc_info:
            service.sign_document(sequential_doc, 'mallory@example.com', SIGNATURE)
        assert exc_info.value.reason == 'not_a_signer'

    def test_declined_document_cannot_be_signed(self, service, sequential_doc):
        service.decline_document(sequential_doc, 'ann@example.com', 'Wrong price')
        with pytest.raises(AlreadyTerminal):
            service.sign_document(sequential_doc, 'ann@example.com', SIGNATURE)

    def test_signature_required(self, service, sequential_doc):
        with pytest.raises(ValidationError):
            service.sign_document(sequential_doc, 'ann@example.com', '')

    def test_missing_document(self, service):
        with pytest.raises(DocumentNotFound):
            service.sign_document('nope', 'ann@example.com', SIGNATURE)

    def test_can_sign_reads_backend(self, service, sequential_doc):
        assert service.can_sign(sequential_doc, 'ann@example.com').allowed
        assert not service.can_sign(sequential_doc, 'bob@example.com').allowed


class TestDecline:
    def test_decline_out_of_turn(self, service, sequential_doc):
        """A later signer may decline before it is their turn to sign."""
        document = service.decline_document(sequential_doc, 'bob@example.com', 'Not my deal')
        assert document.status == DocumentStatus.DECLINED
        assert document.decline_reason == 'Not my deal'

    def test_stranger_cannot_decline(self, service, sequential_doc):
        with pytest.raises(AuthorizationDenied):
            service.decline_document(sequential_doc, 'mallory@example.com')


class TestCacheInvalidation:
    """Every mutation marks the cache stale."""

    def test_create_invalidates(self, service, sequential_doc):
        assert service.get_documents().total_count == 1
        service.create_document(DocumentRequest(
            name='Addendum',
            signers=[SignerRequest(name='Ann Lee', email='ann@example.com')],
        ))
        assert service.cache.state == CacheState.STALE
        assert service.get_documents().total_count == 2

    def test_sign_invalidates(self, service, sequential_doc):
        service.get_documents()
        service.sign_document(sequential_doc, 'ann@example.com', SIGNATURE)
        assert service.cache.state == CacheState.STALE
        page = service.get_documents(DocumentFilter(status='partially_signed'))
        assert [d.id for d in page.results] == [sequential_doc]

    def test_delete_removes_document(self, service, backend, sequential_doc):
        service.get_documents()
        service.delete_document(sequential_doc)
        assert service.cache.get(sequential_doc) is None
        assert service.get_documents().total_count == 0
        with pytest.raises(DocumentNotFound):
            backend.get_document(sequential_doc)

    def test_update_invalidates(self, service, sequential_doc):
        service.get_documents()
        document = service.update_document(sequential_doc, {'Name': 'Listing Agreement v2'})
        assert document.name == 'Listing Agreement v2'
        assert service.cache.state == CacheState.STALE

    def test_status_cannot_be_patched(self, service, sequential_doc):
        with pytest.raises(ValidationError):
            service.update_document(sequential_doc, {'Status': 'signed'})

    def test_inbox_follows_signing(self, service, sequential_doc):
        inbox = DocumentFilter(status='inbox', user_email='bob@example.com')
        assert service.get_documents(inbox).total_count == 0
        service.sign_document(sequential_doc, 'ann@example.com', SIGNATURE)
        assert service.get_documents(inbox).total_count == 1

    def test_counts(self, service, sequential_doc):
        counts = service.document_counts('ann@example.com')
        assert counts['all'] == 1
        assert counts['inbox'] == 1


class TestSignerManagement:
    def test_remove_signer_from_regular_document(self, service, sequential_doc):
        document = service.get_document(sequential_doc)
        bob = next(s for s in document.signers if s.email == 'bob@example.com')

        document = service.remove_signer(sequential_doc, bob.contact_id)

        assert not document.has_signer(bob.contact_id)
        assert [p.email for p in document.placeholders] == ['ann@example.com']

    def test_remove_signer_from_bulk_document_keeps_placeholder(self, service, template_id):
        bulk_send = service.create_bulk_send(BulkSendRequest(
            template_id=template_id,
            name='Q3 NDA',
            signers=[SignerRequest(name='Ann Lee', email='ann@example.com')],
        ))
        outcome = bulk_send.outcomes[0]

        document = service.remove_signer(outcome.document_id, outcome.contact_id)

        assert document.signers == []
        assert len(document.placeholders) == 2
        assert len(document.unresolved_placeholders) == 2

    def test_update_signer_order(self, service, sequential_doc):
        document = service.update_signer_order(sequential_doc, {'ann@example.com': 2, 'bob@example.com': 1})

        assert {p.email: p.order for p in document.placeholders} == {
            'bob@example.com': 1, 'ann@example.com': 2,
        }
        assert can_sign(document, 'bob@example.com').allowed
        assert not can_sign(document, 'ann@example.com').allowed

    def test_duplicate_orders_rejected_on_sequential_document(self, service, sequential_doc):
        with pytest.raises(ValidationError):
            service.update_signer_order(sequential_doc, {'ann@example.com': 1, 'bob@example.com': 1})
        document = service.get_document(sequential_doc)
        assert [p.order for p in document.placeholders] == [1, 2]

    def test_non_positive_order_rejected(self, service, sequential_doc):
        with pytest.raises(ValidationError):
            service.update_signer_order(sequential_doc, {'ann@example.com': 0})

    def test_remove_unknown_signer(self, service, sequential_doc):
        with pytest.raises(ContactNotFound) as exc_info:
            service.remove_signer(sequential_doc, 'c-nobody')
        assert exc_info.value.resource_id == 'c-nobody'
        assert len(service.get_document(sequential_doc).signers) == 2


class TestSendInOrderToggle:
    """Switching a parallel document to sequential signing."""

    def create_parallel(self, service, *orders):
        return service.create_document(DocumentRequest(
            name='Listing Agreement',
            signers=[
                SignerRequest(name='Ann Lee', email='ann@example.com', order=orders[0]),
                SignerRequest(name='Bob Ray', email='bob@example.com', order=orders[1]),
            ],
        )).id

    def test_duplicate_orders_block_sequential(self, service, backend):
        document_id = self.create_parallel(service, 1, 1)

        with pytest.raises(ValidationError) as exc_info:
            service.update_document(document_id, {'SendinOrder': True})

        assert exc_info.value.field == 'order'
        assert not backend.get_document(document_id).send_in_order

    def test_unique_orders_allow_sequential(self, service):
        document_id = self.create_parallel(service, 1, 2)

        document = service.update_document(document_id, {'SendinOrder': True})

        assert document.send_in_order
        assert can_sign(document, 'ann@example.com').allowed
        assert not can_sign(document, 'bob@example.com').allowed

    def test_switching_to_parallel_skips_check(self, service):
        document_id = self.create_parallel(service, 1, 1)
        document = service.update_document(document_id, {'SendinOrder': False})
        assert not document.send_in_order


class TestBulkSends:
    def test_list_bulk_sends(self, service, template_id):
        bulk_send = service.create_bulk_send(BulkSendRequest(
            template_id=template_id,
            name='Q3 NDA',
            signers=[
                SignerRequest(name='Ann Lee', email='ann@example.com'),
                SignerRequest(name='Bob Ray', email='bob@example.com'),
            ],
        ))
        summaries = service.list_bulk_sends()
        assert [s.id for s in summaries] == [bulk_send.id]
        assert summaries[0].total_recipients == 2

    def test_get_bulk_send(self, service, template_id):
        bulk_send = service.create_bulk_send(BulkSendRequest(
            template_id=template_id,
            name='Q3 NDA',
            signers=[
                SignerRequest(name='Ann Lee', email='ann@example.com'),
                SignerRequest(name='Bob Ray', email='bob@example.com'),
            ],
        ))

        summary = service.get_bulk_send(bulk_send.id)

        assert summary.name == 'Q3 NDA'
        assert [r['email'] for r in summary.recipients()] == ['ann@example.com', 'bob@example.com']
        assert [r['name'] for r in summary.recipients()] == ['Ann Lee', 'Bob Ray']

    def test_unknown_bulk_send(self, service):
        with pytest.raises(BulkSendNotFound) as exc_info:
            service.get_bulk_send('bulk-missing')
        assert exc_info.value.to_dict()['bulk_send_id'] == 'bulk-missing'


class TestFromConfig:
    def test_mock_mode_without_api_url(self):
        service = SigningService.from_config({'OPENSIGN_API_URL': None, 'DOCUMENT_CACHE_TTL': 60})
        assert service.is_mock_mode
        assert isinstance(service.client, MockSigningBackend)
        assert service.cache.ttl == 60

    def test_real_client_with_api_url(self):
        service = SigningService.from_config({
            'OPENSIGN_API_URL': 'https://sign.example.com/api/app/',
            'OPENSIGN_APP_ID': 'opensign',
            'OPENSIGN_SESSION_TOKEN': 'r:abc',
            'OPENSIGN_TIMEOUT': 10,
        })
        assert isinstance(service.client, OpenSignClient)
        assert service.client.base_url == 'https://sign.example.com/api/app'
        assert service.client.timeout == 10
        assert not service.is_mock_mode
