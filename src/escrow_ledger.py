"""
CryptoEscrow - Escrow Ledger

Owns every EscrowRecord and is the only component allowed to change a
record's status.

State machine:

    Pending --fund--> Funded --release--> Released
                        |----cancel---> Cancelled
                        '----dispute--> Disputed --resolve--> Resolved

Native-currency escrows are funded atomically with creation and start in
Funded. Released, Cancelled and Resolved are terminal; records are never
deleted.

Every mutating operation:
- runs under the shared non-reentrant guard,
- checks status first (so terminal records always report a state error),
  then authorization, then inputs,
- changes status before any asset moves, and
- executes as one unit of work: if a transfer fails, the record, the
  arbitrator pool, the gateway balances and the event log are restored.
"""

import copy
import logging
import time
from collections import Counter
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from arbitrator_pool import ArbitratorPool
from asset_gateway import NATIVE, Asset, AssetKind, FungibleAsset, TransferGateway, WrappedAsset, is_zero_address
from clock import Clock, SystemClock
from escrow_admin import EscrowAdmin
from escrow_events import (
    DISPUTE_EVIDENCE_SUBMITTED,
    DISPUTE_RAISED,
    DISPUTE_RESOLVED,
    ESCROW_CANCELLED,
    ESCROW_CREATED,
    FUNDS_DEPOSITED,
    FUNDS_RELEASED,
    EventLog,
)
from escrow_exceptions import (
    DisputeTimeframeExpired,
    EscrowError,
    EscrowNotFound,
    EscrowNotFunded,
    EscrowNotInDisputedState,
    EscrowNotPending,
    EscrowStateError,
    IncorrectPaymentValue,
    InvalidAmount,
    InvalidFeeConfiguration,
    InvalidSellerAddress,
    NoEligibleArbitrators,
    TokenNotSupported,
    TransferFailed,
    UnauthorizedAccess,
    ValidationError,
)
from fee_policy import platform_fee, validate_payout
from monitoring import metrics
from monitoring.logging import LoggingContext
from reentrancy import ReentrancyGuard, non_reentrant
from wrapped_assets import WrappedAssetRegistry

logger = logging.getLogger(__name__)

MAX_EVIDENCE_LENGTH = 10_000


class EscrowStatus(IntEnum):
    """Escrow lifecycle states (values match the on-chain enum)."""
    PENDING = 0
    FUNDED = 1
    RELEASED = 2
    CANCELLED = 3
    DISPUTED = 4
    RESOLVED = 5


TERMINAL_STATUSES = frozenset({EscrowStatus.RELEASED, EscrowStatus.CANCELLED, EscrowStatus.RESOLVED})

ALLOWED_TRANSITIONS = {
    EscrowStatus.PENDING: {EscrowStatus.FUNDED},
    EscrowStatus.FUNDED: {EscrowStatus.RELEASED, EscrowStatus.CANCELLED, EscrowStatus.DISPUTED},
    EscrowStatus.DISPUTED: {EscrowStatus.RESOLVED},
}


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class Evidence:
    """A piece of evidence submitted while a dispute is open."""
    submitter: str
    content: str
    submitted_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "submitter": self.submitter,
            "content": self.content,
            "submitted_at": self.submitted_at
        }


@dataclass
class Resolution:
    """Outcome of a resolved dispute."""
    resolver: str
    buyer_amount: int
    seller_amount: int
    residual: int
    buyer_wins: bool
    resolved_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "resolver": self.resolver,
            "buyer_amount": self.buyer_amount,
            "seller_amount": self.seller_amount,
            "residual": self.residual,
            "buyer_wins": self.buyer_wins,
            "resolved_at": self.resolved_at
        }


@dataclass
class EscrowRecord:
    """One buyer/seller exchange under management."""
    escrow_id: int
    buyer: str
    seller: str
    asset: Asset
    amount: int
    platform_fee: int
    status: EscrowStatus
    created_at: float
    payment_details: str = ""
    dispute_expiry: float | None = None
    arbitrator: str | None = None
    dispute_fee: int = 0
    dispute_raised_by: str | None = None
    dispute_reason: str = ""
    resolution: Resolution | None = None
    evidence: list[Evidence] = field(default_factory=list)
    updated_at: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def seller_amount(self) -> int:
        """What the seller receives on a normal release."""
        return self.amount - self.platform_fee

    def is_party(self, address: str) -> bool:
        return address in (self.buyer, self.seller)

    def to_dict(self) -> dict[str, Any]:
        return {
            "escrow_id": self.escrow_id,
            "buyer": self.buyer,
            "seller": self.seller,
            "status": self.status.name.lower(),
            "status_code": int(self.status),
            "asset": self.asset.to_dict(),
            "amount": self.amount,
            "platform_fee": self.platform_fee,
            "payment_details": self.payment_details,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "dispute_expiry": self.dispute_expiry,
            "arbitrator": self.arbitrator,
            "dispute_fee": self.dispute_fee,
            "dispute_raised_by": self.dispute_raised_by,
            "dispute_reason": self.dispute_reason,
            "resolution": self.resolution.to_dict() if self.resolution else None,
            "evidence": [e.to_dict() for e in self.evidence]
        }


# =============================================================================
# Ledger
# =============================================================================

class EscrowLedger:
    """
    Escrow state machine.

    The ledger, admin surface and wrapped-asset registry share one
    ReentrancyGuard, so an asset implementation that calls back into any of
    them during a transfer is rejected.
    """

    def __init__(
        self,
        gateway: TransferGateway,
        admin: EscrowAdmin,
        pool: ArbitratorPool,
        registry: WrappedAssetRegistry,
        events: EventLog | None = None,
        clock: Clock | None = None,
        guard: ReentrancyGuard | None = None
    ):
        self.gateway = gateway
        self.admin = admin
        self.config = admin.config
        self.pool = pool
        self.registry = registry
        self.events = events or admin.events
        self.clock = clock or SystemClock()
        self._guard = guard or ReentrancyGuard("escrow-ledger")

        self.escrows: dict[int, EscrowRecord] = {}
        self.escrow_count = 0

    # =========================================================================
    # Internal helpers
    # =========================================================================

    @contextmanager
    def _operation(self, name: str, caller: str, escrow_id: int | None = None):
        """Logging context and metrics for one ledger operation."""
        start = time.perf_counter()
        outcome = "ok"
        with LoggingContext(operation=name, caller=caller, escrow_id=escrow_id):
            try:
                yield
            except EscrowError as e:
                outcome = e.code
                logger.warning("%s failed: %s", name, e.message, extra={"error": e.code})
                raise
            finally:
                metrics.increment(
                    "escrow_operations_total",
                    labels={"operation": name, "outcome": outcome},
                )
                metrics.timing(
                    "escrow_operation_duration_ms",
                    (time.perf_counter() - start) * 1000,
                    labels={"operation": name},
                )

    @contextmanager
    def _unit_of_work(self, record: EscrowRecord | None = None):
        """All-or-nothing scope over the record, pool, gateway and event log."""
        snapshot = copy.deepcopy(record) if record is not None else None
        with ExitStack() as stack:
            stack.enter_context(self.gateway.atomic())
            stack.enter_context(self.pool.atomic())
            stack.enter_context(self.events.atomic())
            try:
                yield
            except BaseException:
                if record is not None:
                    record.__dict__.update(snapshot.__dict__)
                raise

    def _transition(self, record: EscrowRecord, new_status: EscrowStatus, now: float) -> None:
        if new_status not in ALLOWED_TRANSITIONS.get(record.status, set()):
            raise EscrowStateError(
                f"Illegal transition {record.status.name} -> {new_status.name}",
                escrow_id=record.escrow_id,
                status=record.status,
                component="escrow_ledger",
                action="transition",
            )
        logger.debug("Escrow %d: %s -> %s", record.escrow_id, record.status.name, new_status.name)
        record.status = new_status
        record.updated_at = now

    def _require_status(
        self,
        record: EscrowRecord,
        expected: EscrowStatus,
        error: type[EscrowStateError],
        action: str
    ) -> None:
        if record.status != expected:
            raise error(
                f"Escrow {record.escrow_id} is {record.status.name}, expected {expected.name}",
                escrow_id=record.escrow_id,
                status=record.status,
                component="escrow_ledger",
                action=action,
            )

    def _require(self, allowed: bool, caller: str, action: str, escrow_id: int) -> None:
        if not allowed:
            raise UnauthorizedAccess(
                f"Caller may not {action} escrow {escrow_id}",
                caller=caller,
                component="escrow_ledger",
                action=action,
                details={"escrow_id": escrow_id},
            )

    def _pay(self, asset: Asset, to: str, amount: int, escrow_id: int) -> None:
        if amount == 0:
            return
        if not self.gateway.transfer_out(asset, to, amount):
            raise TransferFailed(
                f"Payout of {amount} to {to} failed",
                transfer="transfer_out",
                asset=asset,
                counterparty=to,
                amount=amount,
                details={"escrow_id": escrow_id},
            )

    def _collect(self, asset: Asset, from_: str, amount: int, escrow_id: int | None) -> None:
        if amount == 0:
            return
        if not self.gateway.transfer_in(asset, from_, amount):
            raise TransferFailed(
                f"Deposit of {amount} from {from_} failed",
                transfer="transfer_in",
                asset=asset,
                counterparty=from_,
                amount=amount,
                details={"escrow_id": escrow_id},
            )

    def is_allowed_asset(self, asset: Asset) -> bool:
        """Native is always allowed; wrapped assets need a known mapping to an allowed original."""
        if asset.kind == AssetKind.NATIVE:
            return self.admin.is_supported(None)
        if asset.kind == AssetKind.WRAPPED:
            return (
                self.registry.original_for(asset.token) == asset.original
                and self.admin.is_supported(asset.original)
            )
        return not self.registry.is_wrapped(asset.token) and self.admin.is_supported(asset.token)

    def resolve_asset(self, token: str | None) -> Asset:
        """Map a token address (zero/None for native) to its asset variant."""
        if is_zero_address(token):
            return NATIVE
        original = self.registry.original_for(token)
        if original is not None:
            return WrappedAsset(token=token, original=original)
        return FungibleAsset(token=token)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_escrow(self, escrow_id: int) -> EscrowRecord:
        record = self.escrows.get(escrow_id)
        if record is None:
            raise EscrowNotFound(
                f"Escrow {escrow_id} does not exist",
                escrow_id=escrow_id,
                component="escrow_ledger",
                action="get_escrow",
            )
        return record

    def escrows_for(self, party: str) -> list[EscrowRecord]:
        """Escrows where ``party`` is buyer, seller or assigned arbitrator."""
        return [
            r for r in self.escrows.values()
            if r.is_party(party) or r.arbitrator == party
        ]

    def list_escrows(
        self,
        status: EscrowStatus | None = None,
        limit: int = 100,
        offset: int = 0
    ) -> list[EscrowRecord]:
        records = [r for r in self.escrows.values() if status is None or r.status == status]
        return records[offset:offset + limit]

    def stats(self) -> dict[str, int]:
        counts = Counter(r.status for r in self.escrows.values())
        result = {status.name.lower(): counts.get(status, 0) for status in EscrowStatus}
        result["total"] = self.escrow_count
        return result

    # =========================================================================
    # Create / Fund
    # =========================================================================

    @non_reentrant
    def create_escrow(
        self,
        caller: str,
        seller: str,
        asset: Asset,
        amount: int,
        payment_details: str = "",
        value: int = 0
    ) -> EscrowRecord:
        """
        Open a new escrow with the caller as buyer.

        Native escrows must attach exactly ``amount`` as ``value`` and start
        Funded. Other assets must attach nothing and start Pending until
        ``fund_escrow``.

        Raises:
            InvalidSellerAddress: seller unset or equal to the buyer
            TokenNotSupported: asset not allow-listed
            InvalidAmount: amount not positive or below the minimum
            IncorrectPaymentValue: attached value does not match the asset kind
            TransferFailed: the native deposit was refused
        """
        with self._operation("create_escrow", caller):
            if is_zero_address(seller) or seller == caller:
                raise InvalidSellerAddress(
                    "Seller must be set and differ from the buyer",
                    component="escrow_ledger",
                    action="create_escrow",
                    details={"seller": seller},
                )
            if not self.is_allowed_asset(asset):
                raise TokenNotSupported(
                    f"Asset {asset} is not supported",
                    component="escrow_ledger",
                    action="create_escrow",
                    details={"asset": asset.to_dict()},
                )
            if (
                not isinstance(amount, int) or isinstance(amount, bool)
                or amount <= 0 or amount < self.config.min_escrow_amount
            ):
                raise InvalidAmount(
                    f"Amount must be at least {self.config.min_escrow_amount}",
                    component="escrow_ledger",
                    action="create_escrow",
                    details={"amount": amount},
                )

            native = asset.kind == AssetKind.NATIVE
            expected_value = amount if native else 0
            if value != expected_value:
                raise IncorrectPaymentValue(
                    f"Attached value must be {expected_value}",
                    component="escrow_ledger",
                    action="create_escrow",
                    details={"value": value, "expected": expected_value},
                )

            now = self.clock.now()
            escrow_id = self.escrow_count + 1
            record = EscrowRecord(
                escrow_id=escrow_id,
                buyer=caller,
                seller=seller,
                asset=asset,
                amount=amount,
                platform_fee=platform_fee(amount, self.config.platform_fee_bps),
                status=EscrowStatus.FUNDED if native else EscrowStatus.PENDING,
                created_at=now,
                payment_details=payment_details or "",
                updated_at=now,
            )

            with self._unit_of_work():
                self.escrows[escrow_id] = record
                self.escrow_count = escrow_id
                try:
                    self.events.emit(
                        ESCROW_CREATED, now,
                        escrow_id=escrow_id,
                        buyer=caller,
                        seller=seller,
                        token=asset.identifier,
                        amount=amount,
                        payment_details=record.payment_details,
                    )
                    if native:
                        self._collect(asset, caller, amount, escrow_id)
                        self.events.emit(FUNDS_DEPOSITED, now, escrow_id=escrow_id, buyer=caller, amount=amount)
                except BaseException:
                    del self.escrows[escrow_id]
                    self.escrow_count = escrow_id - 1
                    raise

            logger.info("Escrow %d created (%s, %s)", escrow_id, asset, record.status.name)
            return record

    @non_reentrant
    def fund_escrow(self, caller: str, escrow_id: int) -> EscrowRecord:
        """Pull the principal from the buyer (prior approval required)."""
        with self._operation("fund_escrow", caller, escrow_id):
            record = self.get_escrow(escrow_id)
            self._require_status(record, EscrowStatus.PENDING, EscrowNotPending, "fund_escrow")
            self._require(caller == record.buyer, caller, "fund", escrow_id)

            now = self.clock.now()
            with self._unit_of_work(record):
                self._transition(record, EscrowStatus.FUNDED, now)
                self._collect(record.asset, record.buyer, record.amount, escrow_id)
                self.events.emit(FUNDS_DEPOSITED, now, escrow_id=escrow_id, buyer=record.buyer,
                                 amount=record.amount)
            return record

    # =========================================================================
    # Release / Cancel
    # =========================================================================

    @non_reentrant
    def release_funds(self, caller: str, escrow_id: int) -> EscrowRecord:
        """
        Buyer confirms: seller gets ``amount - fee``, the fee collector gets ``fee``.

        The seller can never release to itself.
        """
        with self._operation("release_funds", caller, escrow_id):
            record = self.get_escrow(escrow_id)
            self._require_status(record, EscrowStatus.FUNDED, EscrowNotFunded, "release_funds")
            self._require(caller == record.buyer, caller, "release", escrow_id)

            now = self.clock.now()
            seller_amount = record.seller_amount
            with self._unit_of_work(record):
                self._transition(record, EscrowStatus.RELEASED, now)
                self._pay(record.asset, record.seller, seller_amount, escrow_id)
                self._pay(record.asset, self.config.fee_collector, record.platform_fee, escrow_id)
                self.events.emit(FUNDS_RELEASED, now, escrow_id=escrow_id, seller=record.seller,
                                 amount=seller_amount)
            return record

    @non_reentrant
    def cancel_escrow(self, caller: str, escrow_id: int) -> EscrowRecord:
        """Buyer withdraws: the full principal is refunded, no fee is charged."""
        with self._operation("cancel_escrow", caller, escrow_id):
            record = self.get_escrow(escrow_id)
            self._require_status(record, EscrowStatus.FUNDED, EscrowNotFunded, "cancel_escrow")
            self._require(caller == record.buyer, caller, "cancel", escrow_id)

            now = self.clock.now()
            with self._unit_of_work(record):
                self._transition(record, EscrowStatus.CANCELLED, now)
                self._pay(record.asset, record.buyer, record.amount, escrow_id)
                self.events.emit(ESCROW_CANCELLED, now, escrow_id=escrow_id, buyer=record.buyer,
                                 amount=record.amount)
            return record

    # =========================================================================
    # Disputes
    # =========================================================================

    @non_reentrant
    def raise_dispute(self, caller: str, escrow_id: int, reason: str, value: int = 0) -> EscrowRecord:
        """
        Buyer or seller disputes a funded escrow, posting the dispute fee.

        An arbitrator is selected before the record changes; if none is
        eligible the escrow stays Funded and nothing is charged.

        Raises:
            EscrowNotFunded: escrow not in Funded
            UnauthorizedAccess: caller is neither buyer nor seller
            InvalidFeeConfiguration: posted value below the dispute fee
            NoEligibleArbitrators: selection found no candidate
        """
        with self._operation("raise_dispute", caller, escrow_id):
            record = self.get_escrow(escrow_id)
            self._require_status(record, EscrowStatus.FUNDED, EscrowNotFunded, "raise_dispute")
            self._require(record.is_party(caller), caller, "dispute", escrow_id)
            if value < self.config.dispute_fee:
                raise InvalidFeeConfiguration(
                    f"Dispute fee of {self.config.dispute_fee} required, {value} posted",
                    component="escrow_ledger",
                    action="raise_dispute",
                    details={"posted": value, "required": self.config.dispute_fee},
                )

            responder = record.seller if caller == record.buyer else record.buyer
            now = self.clock.now()
            with self._unit_of_work(record):
                try:
                    arbitrator = self.pool.select_arbitrator(caller, responder, record.amount, escrow_id)
                except NoEligibleArbitrators:
                    metrics.increment("arbitrator_selection_failures_total")
                    raise

                self._transition(record, EscrowStatus.DISPUTED, now)
                record.arbitrator = arbitrator
                record.dispute_raised_by = caller
                record.dispute_reason = reason or ""
                record.dispute_fee = value
                record.dispute_expiry = now + self.config.dispute_window
                self._collect(NATIVE, caller, value, escrow_id)

                self.events.emit(
                    DISPUTE_RAISED, now,
                    escrow_id=escrow_id,
                    raised_by=caller,
                    reason=record.dispute_reason,
                    arbitrator=arbitrator,
                    dispute_expiry=record.dispute_expiry,
                )

            metrics.increment("disputes_raised_total")
            return record

    @non_reentrant
    def resolve_dispute(
        self,
        caller: str,
        escrow_id: int,
        buyer_amount: int,
        seller_amount: int,
        buyer_wins: bool | None = None
    ) -> EscrowRecord:
        """
        Assigned arbitrator (or an administrator) splits the principal.

        ``buyer_amount + seller_amount`` may not exceed ``amount - fee``; any
        remainder stays in custody and is recorded as the resolution residual.
        The platform fee and the posted dispute fee go to the fee collector.

        Raises:
            EscrowNotInDisputedState: escrow not in Disputed
            UnauthorizedAccess: caller is neither the arbitrator nor an administrator
            DisputeTimeframeExpired: the dispute window has closed
            InvalidPayoutAmounts: payouts negative or above the distributable amount
        """
        with self._operation("resolve_dispute", caller, escrow_id):
            record = self.get_escrow(escrow_id)
            self._require_status(record, EscrowStatus.DISPUTED, EscrowNotInDisputedState, "resolve_dispute")
            self._require(
                caller == record.arbitrator or self.admin.is_admin(caller),
                caller, "resolve", escrow_id,
            )

            now = self.clock.now()
            if now > record.dispute_expiry:
                raise DisputeTimeframeExpired(
                    f"Dispute window closed at {record.dispute_expiry}",
                    escrow_id=escrow_id,
                    status=record.status,
                    component="escrow_ledger",
                    action="resolve_dispute",
                )
            residual = validate_payout(buyer_amount, seller_amount, record.amount, record.platform_fee)
            if buyer_wins is None:
                buyer_wins = buyer_amount >= seller_amount

            with self._unit_of_work(record):
                self._transition(record, EscrowStatus.RESOLVED, now)
                record.resolution = Resolution(
                    resolver=caller,
                    buyer_amount=buyer_amount,
                    seller_amount=seller_amount,
                    residual=residual,
                    buyer_wins=buyer_wins,
                    resolved_at=now,
                )
                self._pay(record.asset, record.buyer, buyer_amount, escrow_id)
                self._pay(record.asset, record.seller, seller_amount, escrow_id)
                self._pay(record.asset, self.config.fee_collector, record.platform_fee, escrow_id)
                self._pay(NATIVE, self.config.fee_collector, record.dispute_fee, escrow_id)
                self.pool.release_assignment(record.arbitrator)

                self.events.emit(
                    DISPUTE_RESOLVED, now,
                    escrow_id=escrow_id,
                    resolver=caller,
                    buyer_wins=buyer_wins,
                    buyer_amount=buyer_amount,
                    seller_amount=seller_amount,
                )

            if residual:
                logger.warning("Escrow %d resolved with %d left in custody", escrow_id, residual)
            return record

    @non_reentrant
    def submit_evidence(self, caller: str, escrow_id: int, evidence: str) -> EscrowRecord:
        """Append evidence to an open dispute. No status change."""
        with self._operation("submit_evidence", caller, escrow_id):
            record = self.get_escrow(escrow_id)
            self._require_status(record, EscrowStatus.DISPUTED, EscrowNotInDisputedState, "submit_evidence")
            self._require(
                record.is_party(caller) or caller == record.arbitrator,
                caller, "submit evidence for", escrow_id,
            )
            if not evidence or len(evidence) > MAX_EVIDENCE_LENGTH:
                raise ValidationError(
                    f"Evidence must be 1-{MAX_EVIDENCE_LENGTH} characters",
                    component="escrow_ledger",
                    action="submit_evidence",
                )

            now = self.clock.now()
            with self._unit_of_work(record):
                record.evidence.append(Evidence(submitter=caller, content=evidence, submitted_at=now))
                record.updated_at = now
                self.events.emit(
                    DISPUTE_EVIDENCE_SUBMITTED, now,
                    escrow_id=escrow_id,
                    submitter=caller,
                    evidence=evidence,
                )
            return record
