# routes/errors.py
"""
JSON error responses for signing exceptions.
"""

import logging
from flask import jsonify
from services.signing import (
    AlreadyTerminal,
    AuthorizationDenied,
    BackendUnavailable,
    NotFound,
    SigningAPIError,
    SigningError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Most specific first
STATUS_CODES = [
    (ValidationError, 400),
    (AuthorizationDenied, 403),
    (NotFound, 404),
    (AlreadyTerminal, 409),
    (BackendUnavailable, 503),
    (SigningAPIError, 502),
]


def status_code_for(error: SigningError) -> int:
    for error_type, code in STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return 500


def error_response(error: SigningError):
    code = status_code_for(error)
    if code >= 500:
        logger.error(f"Signing request failed: {error}")
    body = {'success': False, 'error': str(error)}
    body.update(error.to_dict())
    return jsonify(body), code


def register_error_handlers(app):
    app.register_error_handler(SigningError, error_response)
