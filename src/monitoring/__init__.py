"""
Monitoring for CryptoEscrow.

- Metrics: counters, gauges, histograms (Prometheus / JSON export)
- Structured logging with JSON output and per-operation context
- Flask request middleware

Usage:
    from monitoring import metrics, get_logger

    metrics.increment("disputes_raised_total")
    logger = get_logger(__name__)
"""

from monitoring.logging import LoggingContext, configure_logging, get_logger
from monitoring.metrics import MetricsCollector, metrics
from monitoring.middleware import setup_request_logging

__all__ = [
    "LoggingContext",
    "MetricsCollector",
    "metrics",
    "get_logger",
    "configure_logging",
    "setup_request_logging",
]
