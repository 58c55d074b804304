"""
Shared utilities for the CryptoEscrow API.

Request validation helpers, caller authentication, amount parsing and the
mapping from EscrowError categories to HTTP status codes.
"""

import logging
import secrets
from functools import wraps
from typing import Any

from flask import Flask, current_app, jsonify, request

from escrow_exceptions import ArbitratorNotFound, EscrowError, EscrowNotFound, ReentrancyError
from escrow_service import EscrowService

logger = logging.getLogger(__name__)

CALLER_HEADER = "X-Caller-Address"
API_KEY_HEADER = "X-API-Key"

MAX_RESULTS = 100
MAX_OFFSET = 100000
MAX_TEXT_LENGTH = 10000

# EscrowError.category -> HTTP status
CATEGORY_STATUS = {
    "authorization": 403,
    "state": 409,
    "validation": 400,
    "configuration": 400,
    "resource": 503,
    "transfer": 502,
    "concurrency": 409,
}


# ============================================================
# Service Access
# ============================================================

def get_service() -> EscrowService:
    """The EscrowService bound to the current app."""
    return current_app.extensions["escrow_service"]


# ============================================================
# Validation Utilities
# ============================================================

def validate_pagination_params(
    limit: Any,
    offset: Any = 0,
    max_limit: int = MAX_RESULTS,
    max_offset: int = MAX_OFFSET
) -> tuple[int, int]:
    """Clamp pagination parameters to sane bounds."""
    bounded_limit = max(1, min(int(limit) if limit else max_limit, max_limit))
    bounded_offset = max(0, min(int(offset) if offset else 0, max_offset))
    return bounded_limit, bounded_offset


def validate_json_schema(
    data: dict[str, Any],
    required_fields: dict[str, type | tuple[type, ...]],
    optional_fields: dict[str, type | tuple[type, ...]] | None = None,
    max_lengths: dict[str, int] | None = None
) -> tuple[bool, str | None]:
    """
    Validate a JSON payload against a simple schema.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(data, dict):
        return False, "Request body must be a JSON object"

    for field_name, expected_type in required_fields.items():
        if field_name not in data:
            return False, f"Missing required field: {field_name}"
        if not isinstance(data[field_name], expected_type):
            return False, f"Field '{field_name}' has the wrong type"

    for field_name, expected_type in (optional_fields or {}).items():
        if data.get(field_name) is not None and not isinstance(data[field_name], expected_type):
            return False, f"Field '{field_name}' has the wrong type"

    for field_name, max_len in (max_lengths or {}).items():
        value = data.get(field_name)
        if isinstance(value, str) and len(value) > max_len:
            return False, f"Field '{field_name}' exceeds maximum length of {max_len}"

    return True, None


def parse_amount(value: Any, field_name: str) -> int:
    """
    Amounts travel as JSON integers or decimal strings (base units).

    Raises:
        ValueError: not a non-negative integer
    """
    if isinstance(value, bool):
        raise ValueError(f"Field '{field_name}' must be an integer amount")
    if isinstance(value, int):
        amount = value
    elif isinstance(value, str) and value.strip().isdigit():
        amount = int(value.strip())
    else:
        raise ValueError(f"Field '{field_name}' must be an integer amount")
    if amount < 0:
        raise ValueError(f"Field '{field_name}' must be non-negative")
    return amount


def bad_request(message: str):
    return jsonify({"error": "BadRequest", "message": message, "category": "validation"}), 400


# ============================================================
# Authentication Decorator
# ============================================================

def _auth_error(error: str, message: str, status: int):
    return jsonify({"error": error, "message": message, "category": "authorization"}), status


def require_api_key(f):
    """
    Authenticate the caller and inject it as the ``caller`` argument.

    ``X-Caller-Address`` names the caller; ``X-API-Key`` must carry the key
    bound to that address in ``EscrowConfig.api_keys``. With
    ``require_auth`` off (local development) the header address is trusted.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        caller = request.headers.get(CALLER_HEADER, "").strip()
        if not caller:
            return _auth_error("CallerRequired", f"Provide the caller address in the {CALLER_HEADER} header", 401)

        config = get_service().config
        if not config.require_auth:
            return f(*args, caller=caller, **kwargs)

        provided_key = request.headers.get(API_KEY_HEADER)
        if not provided_key:
            return _auth_error("ApiKeyRequired", f"Provide the caller's API key in the {API_KEY_HEADER} header", 401)

        if not config.api_keys:
            return jsonify({
                "error": "ApiKeysNotConfigured",
                "message": "Set ESCROW_API_KEYS or disable ESCROW_REQUIRE_AUTH",
                "category": "configuration"
            }), 503

        expected = config.api_key_for(caller)
        if expected is None or not secrets.compare_digest(provided_key.encode(), expected.encode()):
            logger.warning("Rejected API key for caller %s on %s %s", caller, request.method, request.path)
            return _auth_error("InvalidApiKey", "API key does not match the caller address", 403)

        return f(*args, caller=caller, **kwargs)
    return decorated_function


# ============================================================
# Error Mapping
# ============================================================

def status_for(error: EscrowError) -> int:
    if isinstance(error, (EscrowNotFound, ArbitratorNotFound)):
        return 404
    if isinstance(error, ReentrancyError):
        return 409
    return CATEGORY_STATUS.get(error.category, 500)


def error_response(error: EscrowError):
    status = status_for(error)
    body = {
        "error": error.code,
        "message": error.message,
        "category": error.category,
    }
    if status >= 500:
        logger.error("Escrow operation failed: %s", error, extra={"details": error.context.details})
    return jsonify(body), status


def register_error_handlers(app: Flask) -> None:
    app.register_error_handler(EscrowError, error_response)

    @app.errorhandler(ValueError)
    def handle_value_error(error: ValueError):
        return bad_request(str(error))
