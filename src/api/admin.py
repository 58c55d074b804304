"""
CryptoEscrow Admin API Blueprint.

Administrator-only endpoints. The caller (``X-Caller-Address``, proven by
``X-API-Key``) must pass the service's administrator predicate; otherwise 403
is returned.

All endpoints are prefixed with /admin/
"""

from flask import Blueprint, jsonify, request

from api.utils import bad_request, get_service, parse_amount, require_api_key, validate_json_schema

admin_bp = Blueprint('admin', __name__, url_prefix='/admin')

ADDRESS_SETTINGS = {"fee_collector"}

ARBITRATOR_FIELDS = {
    "reputation": int,
    "avg_response_time": int,
    "specialization": dict,
    "available": bool,
}


# ============================================================
# Token Allow-List
# ============================================================

@admin_bp.route('/tokens', methods=['GET'])
def list_tokens():
    tokens = sorted(get_service().admin.allowed_tokens)
    return jsonify({"tokens": tokens, "count": len(tokens)})


@admin_bp.route('/tokens', methods=['POST'])
@require_api_key
def add_token(caller: str):
    """
    Request body:
    {
        "token": "0x..."
    }
    """
    data = request.get_json(silent=True) or {}
    is_valid, error = validate_json_schema(data, required_fields={"token": str})
    if not is_valid:
        return bad_request(error)

    get_service().admin.add_supported_token(caller, data["token"])
    return jsonify({"token": data["token"], "supported": True}), 201


@admin_bp.route('/tokens/<token>', methods=['DELETE'])
@require_api_key
def remove_token(token: str, caller: str):
    get_service().admin.remove_supported_token(caller, token)
    return jsonify({"token": token, "supported": False})


# ============================================================
# Configuration
# ============================================================

@admin_bp.route('/config', methods=['GET'])
def get_config():
    """Public settings; role holders are not disclosed."""
    return jsonify(get_service().config.public_dict())


@admin_bp.route('/config', methods=['PUT'])
@require_api_key
def update_config(caller: str):
    """
    Change one or more settings; all are applied or none.

    Request body:
    {
        "platform_fee_bps": 150,
        "dispute_fee": "200000000000000000",
        "fee_collector": "0x..."
    }
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return bad_request("Request body must be a non-empty JSON object")

    changes = {
        name: value if name in ADDRESS_SETTINGS else parse_amount(value, name)
        for name, value in data.items()
    }
    return jsonify(get_service().admin.update_config(caller, changes))


# ============================================================
# Arbitrator Roster
# ============================================================

@admin_bp.route('/arbitrators', methods=['POST'])
@require_api_key
def register_arbitrator(caller: str):
    """
    Enroll an arbitrator.

    Request body:
    {
        "address": "0x...",
        "reputation": 80,
        "avg_response_time": 1800,
        "specialization": {"small": 10, "medium": 50, "large": 0},
        "available": true
    }
    """
    data = request.get_json(silent=True) or {}
    is_valid, error = validate_json_schema(
        data,
        required_fields={"address": str},
        optional_fields={**ARBITRATOR_FIELDS, "blacklist": list}
    )
    if not is_valid:
        return bad_request(error)

    attributes = {k: v for k, v in data.items() if k != "address"}
    profile = get_service().admin.register_arbitrator(caller, data["address"], **attributes)
    return jsonify(profile.to_dict()), 201


@admin_bp.route('/arbitrators/<address>', methods=['PATCH'])
@require_api_key
def update_arbitrator(address: str, caller: str):
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return bad_request("Request body must be a non-empty JSON object")
    is_valid, error = validate_json_schema(
        data,
        required_fields={},
        optional_fields={**ARBITRATOR_FIELDS, "enrolled": bool}
    )
    if not is_valid:
        return bad_request(error)

    profile = get_service().admin.update_arbitrator(caller, address, **data)
    return jsonify(profile.to_dict())


@admin_bp.route('/arbitrators/<address>', methods=['DELETE'])
@require_api_key
def remove_arbitrator(address: str, caller: str):
    profile = get_service().admin.remove_arbitrator(caller, address)
    return jsonify(profile.to_dict())
