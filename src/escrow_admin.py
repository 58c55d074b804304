"""
CryptoEscrow - Administration Surface

Token allow-listing, fee/threshold configuration and arbitrator roster
management. Every operation is guarded by the injected authority predicate
``is_admin(caller)``; by default the predicate accepts the configured owner
and administrators.

Changes are validated before anything is mutated, emitted as
ConfigurationChanged events and logged.
"""

import logging
from collections.abc import Callable
from typing import Any

from arbitrator_pool import ArbitratorPool, ArbitratorProfile
from asset_gateway import ZERO_ADDRESS, is_zero_address
from clock import Clock, SystemClock
from escrow_config import EscrowConfig, tokens_for_allow_list
from escrow_events import CONFIGURATION_CHANGED, EventLog
from escrow_exceptions import EscrowError, InvalidConfiguration, UnauthorizedAccess
from fee_policy import validate_fee_rate
from reentrancy import ReentrancyGuard, non_reentrant

logger = logging.getLogger(__name__)


class EscrowAdmin:
    """Administrator-only configuration of the escrow core."""

    def __init__(
        self,
        config: EscrowConfig,
        pool: ArbitratorPool,
        events: EventLog | None = None,
        clock: Clock | None = None,
        guard: ReentrancyGuard | None = None,
        is_admin: Callable[[str], bool] | None = None
    ):
        self.config = config
        self.pool = pool
        self.events = events or pool.events
        self.clock = clock or SystemClock()
        self._guard = guard or ReentrancyGuard("escrow-admin")
        self.is_admin = is_admin or (lambda caller: caller in self.config.admin_set())
        self.allowed_tokens: set[str] = tokens_for_allow_list(config)

    def require_admin(self, caller: str, action: str) -> None:
        if not self.is_admin(caller):
            logger.warning("Rejected %s by non-administrator %s", action, caller)
            raise UnauthorizedAccess(
                "Caller is not an administrator",
                caller=caller,
                component="admin",
                action=action,
            )

    def _changed(self, caller: str, setting: str, old: Any, new: Any) -> None:
        self.events.emit(
            CONFIGURATION_CHANGED,
            self.clock.now(),
            setting=setting,
            old_value=old,
            new_value=new,
            changed_by=caller,
        )
        logger.info("Configuration %s changed from %s to %s", setting, old, new)

    # =========================================================================
    # Token Allow-List
    # =========================================================================

    def is_supported(self, token: str | None) -> bool:
        return (token or ZERO_ADDRESS) in self.allowed_tokens

    @non_reentrant
    def add_supported_token(self, caller: str, token: str) -> None:
        self.require_admin(caller, "add_supported_token")
        if is_zero_address(token):
            raise InvalidConfiguration("Native currency is always supported", component="admin",
                                       action="add_supported_token")
        self.allowed_tokens.add(token)
        self._changed(caller, "supported_token_added", None, token)

    @non_reentrant
    def remove_supported_token(self, caller: str, token: str) -> None:
        """Stop accepting ``token`` for new escrows; existing escrows are unaffected."""
        self.require_admin(caller, "remove_supported_token")
        if is_zero_address(token):
            raise InvalidConfiguration("Native currency cannot be removed", component="admin",
                                       action="remove_supported_token")
        self.allowed_tokens.discard(token)
        self._changed(caller, "supported_token_removed", token, None)

    # =========================================================================
    # Fees & Thresholds
    # =========================================================================

    @non_reentrant
    def set_platform_fee(self, caller: str, rate_bps: int) -> None:
        self.require_admin(caller, "set_platform_fee")
        validate_fee_rate(rate_bps, self.config.max_platform_fee_bps)
        old = self.config.platform_fee_bps
        self.config.platform_fee_bps = rate_bps
        self._changed(caller, "platform_fee_bps", old, rate_bps)

    @non_reentrant
    def set_dispute_fee(self, caller: str, fee: int) -> None:
        self.require_admin(caller, "set_dispute_fee")
        self._set_threshold(caller, "dispute_fee", fee, fee >= 0, "dispute fee must be non-negative")

    @non_reentrant
    def set_min_escrow_amount(self, caller: str, amount: int) -> None:
        self.require_admin(caller, "set_min_escrow_amount")
        self._set_threshold(caller, "min_escrow_amount", amount, amount > 0,
                            "minimum escrow amount must be positive")

    @non_reentrant
    def set_dispute_window(self, caller: str, seconds: int) -> None:
        self.require_admin(caller, "set_dispute_window")
        self._set_threshold(caller, "dispute_window", seconds, seconds > 0,
                            "dispute window must be positive")

    @non_reentrant
    def set_min_reputation(self, caller: str, reputation: int) -> None:
        self.require_admin(caller, "set_min_reputation")
        self._set_threshold(caller, "min_reputation", reputation, reputation >= 0,
                            "minimum reputation must be non-negative")

    @non_reentrant
    def set_max_active_disputes(self, caller: str, maximum: int) -> None:
        self.require_admin(caller, "set_max_active_disputes")
        self._set_threshold(caller, "max_active_disputes", maximum, maximum >= 1,
                            "max active disputes must be at least 1")

    @non_reentrant
    def set_fee_collector(self, caller: str, collector: str) -> None:
        self.require_admin(caller, "set_fee_collector")
        self._set_threshold(caller, "fee_collector", collector, not is_zero_address(collector),
                            "fee collector must be a real address")

    def _set_threshold(self, caller: str, name: str, value: Any, ok: bool, message: str) -> None:
        if isinstance(value, bool) or not ok:
            raise InvalidConfiguration(message, component="admin", action=f"set_{name}",
                                       details={name: value})
        old = getattr(self.config, name)
        setattr(self.config, name, value)
        self._changed(caller, name, old, value)

    def update_config(self, caller: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Apply several settings at once; if any is rejected none is kept."""
        setters = {
            "platform_fee_bps": self.set_platform_fee,
            "dispute_fee": self.set_dispute_fee,
            "min_escrow_amount": self.set_min_escrow_amount,
            "dispute_window": self.set_dispute_window,
            "min_reputation": self.set_min_reputation,
            "max_active_disputes": self.set_max_active_disputes,
            "fee_collector": self.set_fee_collector,
        }
        self.require_admin(caller, "update_config")
        unknown = set(changes) - set(setters)
        if unknown:
            raise InvalidConfiguration(f"Unknown settings: {sorted(unknown)}", component="admin",
                                       action="update_config")
        previous = {name: getattr(self.config, name) for name in setters}
        with self.events.atomic():
            try:
                for name, value in changes.items():
                    setters[name](caller, value)
            except EscrowError:
                for name, value in previous.items():
                    setattr(self.config, name, value)
                raise
        return self.config.to_dict()

    # =========================================================================
    # Arbitrator Roster
    # =========================================================================

    @non_reentrant
    def register_arbitrator(self, caller: str, address: str, **attributes: Any) -> ArbitratorProfile:
        self.require_admin(caller, "register_arbitrator")
        return self.pool.register_entry({**attributes, "address": address})

    @non_reentrant
    def update_arbitrator(self, caller: str, address: str, **changes: Any) -> ArbitratorProfile:
        self.require_admin(caller, "update_arbitrator")
        return self.pool.update(address, **changes)

    @non_reentrant
    def remove_arbitrator(self, caller: str, address: str) -> ArbitratorProfile:
        self.require_admin(caller, "remove_arbitrator")
        return self.pool.remove(address)

    @non_reentrant
    def load_roster(self, caller: str, roster: list[dict[str, Any]]) -> list[ArbitratorProfile]:
        """Register every entry of a roster (e.g. the ``arbitrators`` list of a YAML config)."""
        self.require_admin(caller, "load_roster")
        return [self.pool.register_entry(entry) for entry in roster]
