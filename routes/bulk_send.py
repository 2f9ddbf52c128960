# routes/bulk_send.py
"""
Bulk send routes: send one template to many recipients and review past sends.
"""

from flask import Blueprint, jsonify, request
from services.signing import BulkSendRequest, ValidationError
from .decorators import get_signing_service

bulk_send_bp = Blueprint('bulk_send', __name__, url_prefix='/api/bulk-sends')


@bulk_send_bp.route('', methods=['GET'])
def list_bulk_sends():
    """Bulk sends reconstructed from their documents, newest first."""
    summaries = get_signing_service().list_bulk_sends()
    return jsonify({
        'success': True,
        'bulk_sends': [s.to_dict() for s in summaries],
    })


@bulk_send_bp.route('', methods=['POST'])
def create_bulk_send():
    """
    Create one document per recipient from a template.

    Returns 201 when every recipient succeeded and 207 (multi-status)
    when any failed; per-recipient outcomes are in the body either way.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')

    bulk_send = get_signing_service().create_bulk_send(BulkSendRequest.from_dict(data))

    if bulk_send.failure_count:
        return jsonify({
            'success': False,
            'error': f'{bulk_send.failure_count} of {len(bulk_send.outcomes)} recipient(s) failed',
            'bulk_send': bulk_send.to_dict(),
        }), 207

    return jsonify({'success': True, 'bulk_send': bulk_send.to_dict()}), 201


@bulk_send_bp.route('/<bulk_id>', methods=['GET'])
def get_bulk_send(bulk_id):
    """One bulk send with per-recipient document status."""
    summary = get_signing_service().get_bulk_send(bulk_id)
    return jsonify({'success': True, 'bulk_send': summary.to_dict()})
