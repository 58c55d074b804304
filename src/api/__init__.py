"""
CryptoEscrow API Package.

Flask blueprints over one EscrowService:
- escrows: escrow lifecycle and disputes
- arbitrators: roster reads, arbitrator self-service, selection preview
- admin: token allow-list, configuration, roster management
- wrapped: wrap/unwrap
- monitoring: health and metrics
"""

import logging
import os

from flask import Flask

from api.admin import admin_bp
from api.arbitrators import arbitrators_bp
from api.escrows import escrows_bp
from api.monitoring import monitoring_bp
from api.utils import register_error_handlers
from api.wrapped import wrapped_bp
from escrow_service import EscrowService, get_escrow_service
from monitoring import setup_request_logging

logger = logging.getLogger(__name__)

# List of all blueprints for registration
ALL_BLUEPRINTS = [
    escrows_bp,
    arbitrators_bp,
    admin_bp,
    wrapped_bp,
    monitoring_bp,
]


def register_blueprints(app: Flask) -> None:
    """Register all blueprints with the Flask app."""
    for blueprint in ALL_BLUEPRINTS:
        app.register_blueprint(blueprint)


def create_app(service: EscrowService | None = None) -> Flask:
    """
    Build the Flask app.

    Args:
        service: Escrow core to serve; defaults to the process-wide service
            built from ``ESCROW_*`` environment variables
    """
    app = Flask(__name__)
    app.extensions["escrow_service"] = service or get_escrow_service()

    register_blueprints(app)
    register_error_handlers(app)
    setup_request_logging(app)
    return app


def run_server() -> None:
    """Run the Flask development server."""
    from dotenv import load_dotenv

    from monitoring import configure_logging

    load_dotenv()
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 5000))
    debug = os.getenv("FLASK_DEBUG", "").lower() == "true"

    logger.info("Starting CryptoEscrow API on %s:%d", host, port)
    create_app().run(host=host, port=port, debug=debug)
