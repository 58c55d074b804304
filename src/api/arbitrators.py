"""
CryptoEscrow Arbitrators API Blueprint.

Read access to the arbitrator roster, arbitrator self-service (availability,
party blacklist) and a side-effect-free selection preview.
"""

from flask import Blueprint, jsonify, request

from api.utils import bad_request, get_service, parse_amount, require_api_key, validate_json_schema
from escrow_exceptions import NoEligibleArbitrators, UnauthorizedAccess

arbitrators_bp = Blueprint('arbitrators', __name__, url_prefix='/arbitrators')


def _require_self(caller: str, address: str, action: str) -> None:
    if caller != address:
        raise UnauthorizedAccess(
            "Arbitrators may only manage their own profile",
            caller=caller,
            component="api",
            action=action,
        )


@arbitrators_bp.route('', methods=['GET'])
def list_arbitrators():
    """List the roster in registration order (``?enrolled=true`` to filter)."""
    enrolled_only = request.args.get('enrolled', '').lower() == 'true'
    profiles = get_service().pool.list_profiles(enrolled_only=enrolled_only)
    return jsonify({
        "arbitrators": [p.to_dict() for p in profiles],
        "count": len(profiles)
    })


@arbitrators_bp.route('/<address>', methods=['GET'])
def get_arbitrator(address: str):
    return jsonify(get_service().pool.get_profile(address).to_dict())


@arbitrators_bp.route('/<address>/availability', methods=['POST'])
@require_api_key
def set_availability(address: str, caller: str):
    """
    Request body:
    {
        "available": false
    }
    """
    data = request.get_json(silent=True) or {}
    is_valid, error = validate_json_schema(data, required_fields={"available": bool})
    if not is_valid:
        return bad_request(error)

    _require_self(caller, address, "set_availability")
    profile = get_service().pool.set_availability(caller, data["available"])
    return jsonify(profile.to_dict())


@arbitrators_bp.route('/<address>/blacklist', methods=['POST'])
@require_api_key
def update_blacklist(address: str, caller: str):
    """
    Refuse (or stop refusing) to serve a party.

    Request body:
    {
        "party": "0x...",
        "blacklisted": true
    }
    """
    data = request.get_json(silent=True) or {}
    is_valid, error = validate_json_schema(
        data,
        required_fields={"party": str},
        optional_fields={"blacklisted": bool}
    )
    if not is_valid:
        return bad_request(error)

    _require_self(caller, address, "blacklist_party")
    pool = get_service().pool
    if data.get("blacklisted", True):
        profile = pool.blacklist_party(caller, data["party"])
    else:
        profile = pool.unblacklist_party(caller, data["party"])
    return jsonify(profile.to_dict())


@arbitrators_bp.route('/select-preview', methods=['POST'])
def select_preview():
    """
    Show how a dispute between two parties would be assigned, without
    recording anything.

    Request body:
    {
        "initiator": "0x...",
        "responder": "0x...",
        "amount": "5000000000000000000"
    }
    """
    data = request.get_json(silent=True) or {}
    is_valid, error = validate_json_schema(
        data,
        required_fields={"initiator": str, "responder": str, "amount": (int, str)}
    )
    if not is_valid:
        return bad_request(error)

    pool = get_service().pool
    amount = parse_amount(data["amount"], "amount")
    ranked = pool.rank_candidates(data["initiator"], data["responder"], amount)
    try:
        selected = pool.select(data["initiator"], data["responder"], amount).address
    except NoEligibleArbitrators:
        selected = None

    return jsonify({
        "selected": selected,
        "candidates": [c.to_dict() for c in ranked],
        "count": len(ranked)
    })
