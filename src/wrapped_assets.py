"""
CryptoEscrow - Wrapped-Asset Registry

Maps an allow-listed fungible token to its wrapped counterpart. The wrapped
representation is created lazily on the first wrap request, exactly once per
original token, and cached; creation runs under the same guard as every other
mutation so concurrent first wraps still produce a single representation.

    wrap:    original token in  -> wrapped token minted (1:1)
    unwrap:  wrapped token burnt -> original token out  (1:1)
"""

import hashlib
import logging
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Any

from asset_gateway import FungibleAsset, TransferGateway, WrappedAsset, is_zero_address
from clock import Clock, SystemClock
from escrow_admin import EscrowAdmin
from escrow_events import TOKEN_UNWRAPPED, TOKEN_WRAPPED, EventLog
from escrow_exceptions import InvalidTokenOperation, TokenNotSupported, TransferFailed
from reentrancy import ReentrancyGuard, non_reentrant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WrappedToken:
    """A wrapped representation of an original token."""
    address: str
    original: str
    name: str
    symbol: str
    created_at: float

    @property
    def asset(self) -> WrappedAsset:
        return WrappedAsset(token=self.address, original=self.original)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "original": self.original,
            "name": self.name,
            "symbol": self.symbol,
            "created_at": self.created_at
        }


def wrapped_address_for(original: str) -> str:
    """Deterministic address of the wrapped representation of ``original``."""
    digest = hashlib.sha256(f"wrapped:{original}".encode()).hexdigest()
    return "0x" + digest[:40]


class WrappedAssetRegistry:
    """Lazily created wrapped representations and 1:1 wrap/unwrap."""

    def __init__(
        self,
        gateway: TransferGateway,
        admin: EscrowAdmin,
        events: EventLog | None = None,
        clock: Clock | None = None,
        guard: ReentrancyGuard | None = None
    ):
        self.gateway = gateway
        self.admin = admin
        self.events = events or admin.events
        self.clock = clock or SystemClock()
        self._guard = guard or ReentrancyGuard("wrapped-assets")

        self.by_original: dict[str, WrappedToken] = {}
        self.by_wrapped: dict[str, WrappedToken] = {}

    # =========================================================================
    # Lookups
    # =========================================================================

    def wrapped_for(self, original: str) -> WrappedToken | None:
        return self.by_original.get(original)

    def original_for(self, wrapped: str) -> str | None:
        token = self.by_wrapped.get(wrapped)
        return token.original if token else None

    def is_wrapped(self, token: str | None) -> bool:
        return token in self.by_wrapped

    def list_wrapped(self) -> list[WrappedToken]:
        return list(self.by_original.values())

    def _get_or_create(self, original: str, now: float) -> WrappedToken:
        token = self.by_original.get(original)
        if token is None:
            address = wrapped_address_for(original)
            body = original[2:] if original.lower().startswith("0x") else original
            token = WrappedToken(
                address=address,
                original=original,
                name=f"Wrapped {original}",
                symbol="w" + body[:6].upper(),
                created_at=now,
            )
            self.by_original[original] = token
            self.by_wrapped[address] = token
            logger.info("Created wrapped representation %s for %s", address, original)
        return token

    # =========================================================================
    # Operations
    # =========================================================================

    @non_reentrant
    def wrap(self, caller: str, token: str, amount: int) -> WrappedToken:
        """
        Deposit ``amount`` of ``token`` and receive the same amount wrapped.

        Raises:
            TokenNotSupported: token not allow-listed
            InvalidTokenOperation: native currency, or non-positive amount
            TransferFailed: the deposit or the mint was refused
        """
        if is_zero_address(token) or token in self.by_wrapped:
            raise InvalidTokenOperation("Only original fungible tokens can be wrapped",
                                        component="wrapped_assets", action="wrap",
                                        details={"token": token})
        if not self.admin.is_supported(token):
            raise TokenNotSupported(f"Token {token} is not supported", component="wrapped_assets",
                                    action="wrap", details={"token": token})
        if amount <= 0:
            raise InvalidTokenOperation("Amount must be positive", component="wrapped_assets",
                                        action="wrap", details={"amount": amount})

        now = self.clock.now()
        with ExitStack() as stack:
            stack.enter_context(self.gateway.atomic())
            stack.enter_context(self.events.atomic())
            created_before = token in self.by_original
            try:
                if not self.gateway.transfer_in(FungibleAsset(token), caller, amount):
                    raise TransferFailed("Deposit of original token failed", transfer="transfer_in",
                                         asset=token, counterparty=caller, amount=amount)
                wrapped = self._get_or_create(token, now)
                if not self.gateway.mint_wrapped(wrapped.address, caller, amount):
                    raise TransferFailed("Mint of wrapped token failed", transfer="mint_wrapped",
                                         asset=wrapped.address, counterparty=caller, amount=amount)
            except BaseException:
                if not created_before:
                    self._forget(token)
                raise

            self.events.emit(TOKEN_WRAPPED, now, user=caller, original=token,
                             wrapped=wrapped.address, amount=amount)
        return wrapped

    @non_reentrant
    def unwrap(self, caller: str, wrapped_token: str, amount: int) -> str:
        """
        Burn ``amount`` of a wrapped token and receive the original back.

        Returns:
            The original token address

        Raises:
            InvalidTokenOperation: unknown wrapped token, or non-positive amount
            TransferFailed: the burn or the payout was refused
        """
        if not self.is_wrapped(wrapped_token):
            raise InvalidTokenOperation(f"{wrapped_token} is not a wrapped token",
                                        component="wrapped_assets", action="unwrap")
        if amount <= 0:
            raise InvalidTokenOperation("Amount must be positive", component="wrapped_assets",
                                        action="unwrap", details={"amount": amount})

        now = self.clock.now()
        with ExitStack() as stack:
            stack.enter_context(self.gateway.atomic())
            stack.enter_context(self.events.atomic())
            if not self.gateway.burn_wrapped(wrapped_token, caller, amount):
                raise TransferFailed("Burn of wrapped token failed", transfer="burn_wrapped",
                                     asset=wrapped_token, counterparty=caller, amount=amount)
            original = self.original_for(wrapped_token)
            if original is None:
                raise InvalidTokenOperation("No original token for wrapped token",
                                            component="wrapped_assets", action="unwrap")
            if not self.gateway.transfer_out(FungibleAsset(original), caller, amount):
                raise TransferFailed("Payout of original token failed", transfer="transfer_out",
                                     asset=original, counterparty=caller, amount=amount)

            self.events.emit(TOKEN_UNWRAPPED, now, user=caller, original=original,
                             wrapped=wrapped_token, amount=amount)
        return original

    def _forget(self, original: str) -> None:
        token = self.by_original.pop(original, None)
        if token is not None:
            self.by_wrapped.pop(token.address, None)
