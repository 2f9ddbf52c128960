# routes/documents.py
"""
Document list, detail, signing and signer management routes.
"""

from flask import Blueprint, current_app, g, jsonify, request
from services.signing import (
    DocumentFilter,
    DocumentRequest,
    ValidationError,
    signing_progress,
)
from services.signing.bulk_send import bool_field, date_field, text_field
from services.signing.types import to_parse_date
from .decorators import current_user_email, get_signing_service, user_required

documents_bp = Blueprint('documents', __name__, url_prefix='/api/documents')

# Editable document fields and their backend names
EDITABLE_FIELDS = {
    'name': 'Name',
    'description': 'Description',
    'send_in_order': 'SendinOrder',
    'expiry_date': 'ExpiryDate',
}


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


# =============================================================================
# LIST & COUNTS
# =============================================================================

@documents_bp.route('', methods=['GET'])
def list_documents():
    """Filtered, searched and paginated document list."""
    doc_filter = DocumentFilter(
        status=request.args.get('status', 'all'),
        search_term=request.args.get('q', ''),
        page=request.args.get('page', 1, type=int),
        page_size=request.args.get('page_size', current_app.config.get('DEFAULT_PAGE_SIZE', 10), type=int),
        user_email=current_user_email(),
    )
    force = request.args.get('force', '').lower() in ('1', 'true', 'yes')

    page = get_signing_service().get_documents(doc_filter, force=force)
    return jsonify({'success': True, **page.to_dict()})


@documents_bp.route('/counts', methods=['GET'])
def document_counts():
    """Per-status document counts for the dashboard tabs."""
    counts = get_signing_service().document_counts(current_user_email())
    return jsonify({'success': True, 'counts': counts})


@documents_bp.route('/cache/invalidate', methods=['POST'])
def invalidate_cache():
    get_signing_service().invalidate_cache()
    return jsonify({'success': True})


# =============================================================================
# DOCUMENT MANAGEMENT
# =============================================================================

@documents_bp.route('', methods=['POST'])
def create_document():
    """Create a single document and assign its signers."""
    document = get_signing_service().create_document(DocumentRequest.from_dict(_json_body()))
    return jsonify({'success': True, 'document': document.to_dict()}), 201


@documents_bp.route('/<document_id>', methods=['GET'])
def get_document(document_id):
    """Document detail with signing progress."""
    document = get_signing_service().get_document(document_id)
    progress = signing_progress(document)
    return jsonify({
        'success': True,
        'document': document.to_dict(),
        'progress': progress.to_dict(),
    })


@documents_bp.route('/<document_id>', methods=['PATCH'])
def update_document(document_id):
    """Update a document's name, description, ordering flag or expiry date."""
    data = _json_body()
    if 'status' in data:
        raise ValidationError('Document status is derived and cannot be set', field='status')

    unknown = sorted(set(data) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(unknown)}", field=unknown[0])

    patch = {}
    for key, backend_key in EDITABLE_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if key == 'expiry_date':
            value = to_parse_date(date_field(value, key))
        elif key == 'send_in_order':
            value = bool_field(value, key)
        else:
            value = text_field(value, key)
        patch[backend_key] = value

    if not patch:
        raise ValidationError('Nothing to update')

    document = get_signing_service().update_document(document_id, patch)
    return jsonify({'success': True, 'document': document.to_dict()})


@documents_bp.route('/<document_id>', methods=['DELETE'])
def delete_document(document_id):
    get_signing_service().delete_document(document_id)
    return jsonify({'success': True})


# =============================================================================
# SIGNING
# =============================================================================

@documents_bp.route('/<document_id>/can-sign', methods=['GET'])
@user_required
def can_sign(document_id):
    """Whether the acting user may sign now, and why not."""
    decision = get_signing_service().can_sign(document_id, g.user_email)
    return jsonify({'success': True, **decision.to_dict()})


@documents_bp.route('/<document_id>/sign', methods=['POST'])
@user_required
def sign_document(document_id):
    data = _json_body()
    result = get_signing_service().sign_document(document_id, g.user_email, data.get('signature'))
    return jsonify({'success': True, **result.to_dict()})


@documents_bp.route('/<document_id>/decline', methods=['POST'])
@user_required
def decline_document(document_id):
    data = request.get_json(silent=True) or {}
    document = get_signing_service().decline_document(document_id, g.user_email, data.get('reason'))
    return jsonify({'success': True, 'document': document.to_dict()})


# =============================================================================
# SIGNERS
# =============================================================================

@documents_bp.route('/<document_id>/signers/<contact_id>', methods=['DELETE'])
def remove_signer(document_id, contact_id):
    document = get_signing_service().remove_signer(document_id, contact_id)
    return jsonify({'success': True, 'document': document.to_dict()})


@documents_bp.route('/<document_id>/signer-order', methods=['PUT'])
def update_signer_order(document_id):
    """
    Reorder signers.

    Body: {"orders": {"<email or contact id>": <order>, ...}}
    """
    orders = _json_body().get('orders')
    if not isinstance(orders, dict) or not orders:
        raise ValidationError('orders must map signer emails to positions', field='orders')
    try:
        orders = {key: int(value) for key, value in orders.items()}
    except (TypeError, ValueError):
        raise ValidationError('Signing orders must be integers', field='orders')

    document = get_signing_service().update_signer_order(document_id, orders)
    return jsonify({'success': True, 'document': document.to_dict()})
