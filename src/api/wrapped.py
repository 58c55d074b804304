"""
CryptoEscrow Wrapped Assets API Blueprint.

Wrap an allow-listed token 1:1 into its wrapped representation and back.
"""

from flask import Blueprint, jsonify, request

from api.utils import bad_request, get_service, parse_amount, require_api_key, validate_json_schema

wrapped_bp = Blueprint('wrapped', __name__, url_prefix='/wrapped')


@wrapped_bp.route('', methods=['GET'])
def list_wrapped():
    tokens = get_service().registry.list_wrapped()
    return jsonify({
        "wrapped": [t.to_dict() for t in tokens],
        "count": len(tokens)
    })


@wrapped_bp.route('/wrap', methods=['POST'])
@require_api_key
def wrap(caller: str):
    """
    Request body:
    {
        "token": "0x...",
        "amount": "1000"
    }
    """
    data = request.get_json(silent=True) or {}
    is_valid, error = validate_json_schema(data, required_fields={"token": str, "amount": (int, str)})
    if not is_valid:
        return bad_request(error)

    wrapped = get_service().registry.wrap(caller, data["token"], parse_amount(data["amount"], "amount"))
    return jsonify(wrapped.to_dict())


@wrapped_bp.route('/unwrap', methods=['POST'])
@require_api_key
def unwrap(caller: str):
    """
    Request body:
    {
        "wrapped_token": "0x...",
        "amount": "1000"
    }
    """
    data = request.get_json(silent=True) or {}
    is_valid, error = validate_json_schema(
        data, required_fields={"wrapped_token": str, "amount": (int, str)}
    )
    if not is_valid:
        return bad_request(error)

    amount = parse_amount(data["amount"], "amount")
    original = get_service().registry.unwrap(caller, data["wrapped_token"], amount)
    return jsonify({
        "original": original,
        "wrapped_token": data["wrapped_token"],
        "amount": amount
    })
