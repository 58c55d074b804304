"""
CryptoEscrow - Service Wiring

Builds one consistent escrow core: a single config, event log, clock,
transfer gateway and reentrancy guard shared by the arbitrator pool, the
administration surface, the wrapped-asset registry and the ledger.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from arbitrator_pool import ArbitratorPool
from asset_gateway import InMemoryTransferGateway, TransferGateway
from clock import Clock, SystemClock
from escrow_admin import EscrowAdmin
from escrow_config import EscrowConfig
from escrow_events import EventLog
from escrow_ledger import EscrowLedger, EscrowStatus
from reentrancy import ReentrancyGuard
from wrapped_assets import WrappedAssetRegistry

logger = logging.getLogger(__name__)


@dataclass
class EscrowService:
    """All components of one escrow deployment."""
    config: EscrowConfig
    gateway: TransferGateway
    clock: Clock
    events: EventLog
    guard: ReentrancyGuard
    pool: ArbitratorPool
    admin: EscrowAdmin
    registry: WrappedAssetRegistry
    ledger: EscrowLedger

    @classmethod
    def create(
        cls,
        config: EscrowConfig | None = None,
        gateway: TransferGateway | None = None,
        clock: Clock | None = None,
        is_admin: Callable[[str], bool] | None = None
    ) -> "EscrowService":
        """
        Wire a service. Configuration is validated first; an ``arbitrators``
        roster in the config is enrolled in order.
        """
        config = (config or EscrowConfig()).validate()
        gateway = gateway or InMemoryTransferGateway()
        clock = clock or SystemClock()
        events = EventLog()
        guard = ReentrancyGuard("escrow")

        pool = ArbitratorPool(config, events, clock)
        admin = EscrowAdmin(config, pool, events, clock, guard, is_admin)
        registry = WrappedAssetRegistry(gateway, admin, events, clock, guard)
        ledger = EscrowLedger(gateway, admin, pool, registry, events, clock, guard)

        for entry in config.arbitrators:
            pool.register_entry(entry)

        logger.info(
            "Escrow service ready: fee %d bps, %d arbitrators, %d supported tokens",
            config.platform_fee_bps, len(pool.roster), len(admin.allowed_tokens),
        )
        return cls(config, gateway, clock, events, guard, pool, admin, registry, ledger)

    def stats(self) -> dict[str, Any]:
        return {
            "escrows": self.ledger.stats(),
            "arbitrators": {
                "registered": len(self.pool.roster),
                "enrolled": len(self.pool.list_profiles(enrolled_only=True)),
            },
            "supported_tokens": len(self.admin.allowed_tokens),
            "wrapped_tokens": len(self.registry.list_wrapped()),
            "events": len(self.events.events),
        }

    def status_counts(self) -> dict[str, int]:
        stats = self.ledger.stats()
        return {status.name.lower(): stats[status.name.lower()] for status in EscrowStatus}


# =============================================================================
# Singleton
# =============================================================================

_service: EscrowService | None = None


def get_escrow_service() -> EscrowService:
    """Process-wide service, built from the environment on first use."""
    global _service
    if _service is None:
        _service = EscrowService.create(EscrowConfig.from_env())
    return _service


def set_escrow_service(service: EscrowService) -> None:
    global _service
    _service = service


def reset_escrow_service() -> None:
    """Drop the process-wide service (for testing)."""
    global _service
    _service = None
