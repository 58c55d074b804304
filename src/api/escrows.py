"""
CryptoEscrow Escrows API Blueprint.

Lifecycle endpoints for escrow records:
- Create and list escrows
- Fund, release, cancel
- Raise, document and resolve disputes

Every mutating endpoint identifies the caller through the
``X-Caller-Address`` header, proven by the matching ``X-API-Key``. Native currency attached to a call is given in
the ``value`` body field (base units).
"""

from flask import Blueprint, jsonify, request

from api.utils import (
    MAX_TEXT_LENGTH,
    bad_request,
    get_service,
    parse_amount,
    require_api_key,
    validate_json_schema,
    validate_pagination_params,
)
from escrow_ledger import EscrowStatus

escrows_bp = Blueprint('escrows', __name__, url_prefix='/escrows')


# ============================================================
# Queries
# ============================================================

@escrows_bp.route('', methods=['GET'])
def list_escrows():
    """
    List escrows.

    Query params:
        party: only escrows where this address is buyer, seller or arbitrator
        status: pending|funded|released|cancelled|disputed|resolved
        limit, offset: pagination
    """
    ledger = get_service().ledger
    limit, offset = validate_pagination_params(request.args.get('limit'), request.args.get('offset'))

    status = None
    status_name = request.args.get('status')
    if status_name:
        try:
            status = EscrowStatus[status_name.upper()]
        except KeyError:
            return bad_request(f"Unknown status: {status_name}")

    party = request.args.get('party')
    if party:
        records = [r for r in ledger.escrows_for(party) if status is None or r.status == status]
        records = records[offset:offset + limit]
    else:
        records = ledger.list_escrows(status=status, limit=limit, offset=offset)

    return jsonify({
        "escrows": [r.to_dict() for r in records],
        "count": len(records),
        "total": ledger.escrow_count
    })


@escrows_bp.route('/<int:escrow_id>', methods=['GET'])
def get_escrow(escrow_id: int):
    return jsonify(get_service().ledger.get_escrow(escrow_id).to_dict())


@escrows_bp.route('/<int:escrow_id>/events', methods=['GET'])
def get_escrow_events(escrow_id: int):
    """Audit trail of one escrow."""
    service = get_service()
    service.ledger.get_escrow(escrow_id)
    events = service.events.filter(escrow_id=escrow_id)
    return jsonify({
        "escrow_id": escrow_id,
        "events": [e.to_dict() for e in events],
        "count": len(events)
    })


# ============================================================
# Lifecycle
# ============================================================

@escrows_bp.route('', methods=['POST'])
@require_api_key
def create_escrow(caller: str):
    """
    Open an escrow with the caller as buyer.

    Request body:
    {
        "seller": "0x...",
        "token": "0x..." (omit or zero address for native currency),
        "amount": "1000000000000000000",
        "payment_details": "Order #42",
        "value": "1000000000000000000" (native escrows only)
    }
    """
    data = request.get_json(silent=True) or {}
    is_valid, error = validate_json_schema(
        data,
        required_fields={"seller": str, "amount": (int, str)},
        optional_fields={"token": str, "payment_details": str, "value": (int, str)},
        max_lengths={"payment_details": MAX_TEXT_LENGTH}
    )
    if not is_valid:
        return bad_request(error)

    ledger = get_service().ledger
    record = ledger.create_escrow(
        caller,
        data["seller"],
        ledger.resolve_asset(data.get("token")),
        parse_amount(data["amount"], "amount"),
        payment_details=data.get("payment_details", ""),
        value=parse_amount(data.get("value", 0), "value"),
    )
    return jsonify(record.to_dict()), 201


@escrows_bp.route('/<int:escrow_id>/fund', methods=['POST'])
@require_api_key
def fund_escrow(escrow_id: int, caller: str):
    record = get_service().ledger.fund_escrow(caller, escrow_id)
    return jsonify(record.to_dict())


@escrows_bp.route('/<int:escrow_id>/release', methods=['POST'])
@require_api_key
def release_funds(escrow_id: int, caller: str):
    record = get_service().ledger.release_funds(caller, escrow_id)
    return jsonify(record.to_dict())


@escrows_bp.route('/<int:escrow_id>/cancel', methods=['POST'])
@require_api_key
def cancel_escrow(escrow_id: int, caller: str):
    record = get_service().ledger.cancel_escrow(caller, escrow_id)
    return jsonify(record.to_dict())


# ============================================================
# Disputes
# ============================================================

@escrows_bp.route('/<int:escrow_id>/dispute', methods=['POST'])
@require_api_key
def raise_dispute(escrow_id: int, caller: str):
    """
    Dispute a funded escrow.

    Request body:
    {
        "reason": "Goods never arrived",
        "value": "100000000000000000" (dispute fee, native currency)
    }
    """
    data = request.get_json(silent=True) or {}
    is_valid, error = validate_json_schema(
        data,
        required_fields={"reason": str},
        optional_fields={"value": (int, str)},
        max_lengths={"reason": MAX_TEXT_LENGTH}
    )
    if not is_valid:
        return bad_request(error)

    record = get_service().ledger.raise_dispute(
        caller, escrow_id, data["reason"], value=parse_amount(data.get("value", 0), "value")
    )
    return jsonify(record.to_dict())


@escrows_bp.route('/<int:escrow_id>/resolve', methods=['POST'])
@require_api_key
def resolve_dispute(escrow_id: int, caller: str):
    """
    Resolve a dispute (assigned arbitrator or administrator).

    Request body:
    {
        "buyer_amount": "600000000000000000",
        "seller_amount": "390000000000000000",
        "buyer_wins": true (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    is_valid, error = validate_json_schema(
        data,
        required_fields={"buyer_amount": (int, str), "seller_amount": (int, str)},
        optional_fields={"buyer_wins": bool}
    )
    if not is_valid:
        return bad_request(error)

    record = get_service().ledger.resolve_dispute(
        caller,
        escrow_id,
        parse_amount(data["buyer_amount"], "buyer_amount"),
        parse_amount(data["seller_amount"], "seller_amount"),
        buyer_wins=data.get("buyer_wins"),
    )
    return jsonify(record.to_dict())


@escrows_bp.route('/<int:escrow_id>/evidence', methods=['POST'])
@require_api_key
def submit_evidence(escrow_id: int, caller: str):
    data = request.get_json(silent=True) or {}
    is_valid, error = validate_json_schema(
        data,
        required_fields={"evidence": str},
        max_lengths={"evidence": MAX_TEXT_LENGTH}
    )
    if not is_valid:
        return bad_request(error)

    record = get_service().ledger.submit_evidence(caller, escrow_id, data["evidence"])
    return jsonify(record.to_dict()), 201
