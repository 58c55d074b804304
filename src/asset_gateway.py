"""
CryptoEscrow - Assets and the Transfer Gateway

Assets are a tagged union over the three kinds the escrow can hold:

    NativeAsset               the chain's base currency (zero-address sentinel)
    FungibleAsset(token)      a standard fungible token
    WrappedAsset(token, original)
                              a wrapped representation minted by the registry

Each variant carries only the fields relevant to it, so a native asset with a
token address (or a wrapped asset without an original) cannot be built.

The TransferGateway is the boundary to the external asset-transfer primitive.
Every call returns True/False; the escrow core turns False into
TransferFailed and rolls the whole operation back. InMemoryTransferGateway is
a balance-sheet implementation used by tests, the demo server and the CLI.
"""

import copy
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Union

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# One whole unit of the base currency in its smallest denomination
UNIT = 10 ** 18

# Account that holds escrowed funds inside the in-memory gateway
DEFAULT_CUSTODY_ACCOUNT = "escrow-custody"


class AssetKind(IntEnum):
    """Kinds of asset an escrow can hold."""
    NATIVE = 0
    FUNGIBLE = 1
    WRAPPED = 2


@dataclass(frozen=True)
class NativeAsset:
    """The chain's base currency."""

    @property
    def kind(self) -> AssetKind:
        return AssetKind.NATIVE

    @property
    def identifier(self) -> str:
        return ZERO_ADDRESS

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.name.lower(), "token": None}

    def __str__(self) -> str:
        return "native"


@dataclass(frozen=True)
class FungibleAsset:
    """A standard fungible token identified by its address."""
    token: str

    @property
    def kind(self) -> AssetKind:
        return AssetKind.FUNGIBLE

    @property
    def identifier(self) -> str:
        return self.token

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.name.lower(), "token": self.token}

    def __str__(self) -> str:
        return f"fungible:{self.token}"


@dataclass(frozen=True)
class WrappedAsset:
    """A wrapped token, redeemable 1:1 for ``original``."""
    token: str
    original: str

    @property
    def kind(self) -> AssetKind:
        return AssetKind.WRAPPED

    @property
    def identifier(self) -> str:
        return self.token

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.name.lower(), "token": self.token, "original": self.original}

    def __str__(self) -> str:
        return f"wrapped:{self.token}"


Asset = Union[NativeAsset, FungibleAsset, WrappedAsset]

NATIVE = NativeAsset()


def is_zero_address(address: str | None) -> bool:
    """True for the zero-address sentinel, None, or an empty string."""
    return not address or address.lower() == ZERO_ADDRESS


# =============================================================================
# Gateway Interface
# =============================================================================

class TransferGateway(ABC):
    """
    Uniform interface over native, fungible and wrapped asset movements.

    Implementations must never raise for an ordinary refusal (insufficient
    balance, missing allowance); they return False instead.
    """

    @abstractmethod
    def transfer_out(self, asset: Asset, to: str, amount: int) -> bool:
        """Pay ``amount`` of ``asset`` from escrow custody to ``to``."""
        pass

    @abstractmethod
    def transfer_in(self, asset: Asset, from_: str, amount: int) -> bool:
        """Pull ``amount`` of ``asset`` from ``from_`` into escrow custody."""
        pass

    @abstractmethod
    def mint_wrapped(self, token: str, to: str, amount: int) -> bool:
        """Mint ``amount`` of wrapped ``token`` to ``to``."""
        pass

    @abstractmethod
    def burn_wrapped(self, token: str, from_: str, amount: int) -> bool:
        """Burn ``amount`` of wrapped ``token`` held by ``from_``."""
        pass

    @contextmanager
    def atomic(self):
        """
        Unit of work covering several gateway calls.

        Gateways backed by a transactional substrate roll back every call made
        inside the block when it exits with an exception.
        """
        yield


# =============================================================================
# In-Memory Gateway
# =============================================================================

@dataclass
class TransferRecord:
    """One movement applied by the in-memory gateway."""
    direction: str  # "in", "out", "mint", "burn"
    asset: str
    party: str
    amount: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "direction": self.direction,
            "asset": self.asset,
            "party": self.party,
            "amount": self.amount
        }


@dataclass
class _GatewayState:
    balances: dict[str, dict[str, int]] = field(default_factory=lambda: defaultdict(lambda: defaultdict(int)))
    allowances: dict[tuple[str, str], int] = field(default_factory=lambda: defaultdict(int))
    wrapped_supply: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    transfers: list[TransferRecord] = field(default_factory=list)


class InMemoryTransferGateway(TransferGateway):
    """
    Balance-sheet gateway.

    Inbound token transfers consume a prior allowance (``approve``), the way an
    ERC-20 ``transferFrom`` does; inbound native transfers model value attached
    to the call and only need the sender's balance.
    """

    def __init__(self, custody_account: str = DEFAULT_CUSTODY_ACCOUNT):
        self.custody_account = custody_account
        self._state = _GatewayState()
        self._lock = threading.RLock()

    # ----- helpers -----

    @staticmethod
    def _key(asset: Asset | str) -> str:
        if isinstance(asset, str):
            return asset
        return asset.identifier

    def credit(self, asset: Asset | str, holder: str, amount: int) -> None:
        """Give ``holder`` an opening balance (test and demo setup)."""
        with self._lock:
            self._state.balances[self._key(asset)][holder] += amount

    def balance_of(self, asset: Asset | str, holder: str) -> int:
        with self._lock:
            return self._state.balances.get(self._key(asset), {}).get(holder, 0)

    def custody_balance(self, asset: Asset | str) -> int:
        return self.balance_of(asset, self.custody_account)

    def approve(self, owner: str, asset: Asset | str, amount: int) -> None:
        """Allow the escrow to pull up to ``amount`` of ``asset`` from ``owner``."""
        with self._lock:
            self._state.allowances[(self._key(asset), owner)] = amount

    def allowance(self, owner: str, asset: Asset | str) -> int:
        with self._lock:
            return self._state.allowances.get((self._key(asset), owner), 0)

    def total_supply(self, token: str) -> int:
        with self._lock:
            return self._state.wrapped_supply.get(token, 0)

    @property
    def transfers(self) -> list[TransferRecord]:
        return list(self._state.transfers)

    def _move(self, key: str, source: str, target: str, amount: int) -> bool:
        if amount < 0:
            return False
        balances = self._state.balances[key]
        if balances[source] < amount:
            return False
        balances[source] -= amount
        balances[target] += amount
        return True

    # ----- gateway interface -----

    def transfer_out(self, asset: Asset, to: str, amount: int) -> bool:
        with self._lock:
            key = self._key(asset)
            if not self._move(key, self.custody_account, to, amount):
                return False
            self._state.transfers.append(TransferRecord("out", key, to, amount))
            return True

    def transfer_in(self, asset: Asset, from_: str, amount: int) -> bool:
        with self._lock:
            key = self._key(asset)
            needs_allowance = not isinstance(asset, NativeAsset)
            if needs_allowance and self._state.allowances[(key, from_)] < amount:
                return False
            if not self._move(key, from_, self.custody_account, amount):
                return False
            if needs_allowance:
                self._state.allowances[(key, from_)] -= amount
            self._state.transfers.append(TransferRecord("in", key, from_, amount))
            return True

    def mint_wrapped(self, token: str, to: str, amount: int) -> bool:
        with self._lock:
            if amount <= 0:
                return False
            self._state.balances[token][to] += amount
            self._state.wrapped_supply[token] += amount
            self._state.transfers.append(TransferRecord("mint", token, to, amount))
            return True

    def burn_wrapped(self, token: str, from_: str, amount: int) -> bool:
        with self._lock:
            balances = self._state.balances[token]
            if amount <= 0 or balances[from_] < amount:
                return False
            balances[from_] -= amount
            self._state.wrapped_supply[token] -= amount
            self._state.transfers.append(TransferRecord("burn", token, from_, amount))
            return True

    @contextmanager
    def atomic(self):
        with self._lock:
            snapshot = copy.deepcopy(self._state)
            try:
                yield
            except BaseException:
                self._state = snapshot
                raise
