"""
Monitoring and metrics API endpoints.

- /metrics: Prometheus-compatible metrics
- /metrics/json: JSON metrics
- /health: service status and escrow statistics
- /health/live: liveness probe
- /health/ready: readiness probe
"""

import time
from importlib.metadata import PackageNotFoundError, version

from flask import Blueprint, Response, jsonify

from api.utils import get_service
from monitoring import metrics

monitoring_bp = Blueprint('monitoring', __name__)

_startup_time = time.time()


def _get_version() -> str:
    try:
        return version("crypto-escrow")
    except PackageNotFoundError:
        return "0.1.0"


def _update_dynamic_metrics() -> None:
    """Refresh gauges derived from current state before export."""
    service = get_service()
    for status, count in service.status_counts().items():
        metrics.set_gauge("escrows_by_status", count, labels={"status": status})
    metrics.set_gauge("arbitrators_enrolled", len(service.pool.list_profiles(enrolled_only=True)))
    metrics.set_gauge("supported_tokens", len(service.admin.allowed_tokens))


@monitoring_bp.route('/metrics', methods=['GET'])
def prometheus_metrics():
    _update_dynamic_metrics()
    return Response(metrics.to_prometheus(), mimetype='text/plain; charset=utf-8')


@monitoring_bp.route('/metrics/json', methods=['GET'])
def json_metrics():
    _update_dynamic_metrics()
    return jsonify(metrics.get_all())


@monitoring_bp.route('/health', methods=['GET'])
def health():
    service = get_service()
    return jsonify({
        "status": "healthy",
        "service": "CryptoEscrow API",
        "version": _get_version(),
        "uptime_seconds": time.time() - _startup_time,
        "stats": service.stats(),
        "config": {
            "platform_fee_bps": service.config.platform_fee_bps,
            "dispute_fee": service.config.dispute_fee,
            "dispute_window": service.config.dispute_window,
        }
    })


@monitoring_bp.route('/health/live', methods=['GET'])
def liveness():
    return jsonify({"status": "alive"})


@monitoring_bp.route('/health/ready', methods=['GET'])
def readiness():
    """Ready once the service can take disputes (at least one enrolled arbitrator)."""
    service = get_service()
    issues = []
    if not service.pool.list_profiles(enrolled_only=True):
        issues.append("arbitrators: none enrolled")

    if issues:
        return jsonify({"status": "not_ready", "issues": issues}), 503
    return jsonify({"status": "ready"})
