"""
Tests for the wrapped-asset registry (src/wrapped_assets.py)
"""

import threading

import pytest

from asset_gateway import ZERO_ADDRESS
from conftest import BUYER, OPENING_BALANCE, OTHER, OWNER, TOKEN, TOKEN_ASSET, UNLISTED_TOKEN
from escrow_events import TOKEN_UNWRAPPED, TOKEN_WRAPPED
from escrow_exceptions import InvalidTokenOperation, ReentrancyError, TokenNotSupported, TransferFailed
from wrapped_assets import wrapped_address_for


@pytest.fixture
def registry(service):
    return service.registry


def approve_and_wrap(registry, gateway, holder, amount):
    gateway.approve(holder, TOKEN_ASSET, amount)
    return registry.wrap(holder, TOKEN, amount)


class TestWrap:
    """Tests for wrap()."""

    def test_wrap_mints_one_to_one(self, service, registry, gateway):
        wrapped = approve_and_wrap(registry, gateway, BUYER, 40)

        assert wrapped.original == TOKEN
        assert wrapped.address == wrapped_address_for(TOKEN)
        assert gateway.balance_of(wrapped.address, BUYER) == 40
        assert gateway.balance_of(TOKEN_ASSET, BUYER) == OPENING_BALANCE - 40
        assert gateway.custody_balance(TOKEN_ASSET) == 40
        assert gateway.total_supply(wrapped.address) == 40

        event = service.events.filter(name=TOKEN_WRAPPED)[-1]
        assert event.data["user"] == BUYER
        assert event.data["wrapped"] == wrapped.address

    def test_representation_created_once(self, registry, gateway):
        first = approve_and_wrap(registry, gateway, BUYER, 10)
        second = approve_and_wrap(registry, gateway, OTHER, 5)

        assert first is second
        assert registry.list_wrapped() == [first]
        assert gateway.total_supply(first.address) == 15

    def test_lookups(self, registry, gateway):
        wrapped = approve_and_wrap(registry, gateway, BUYER, 10)
        assert registry.wrapped_for(TOKEN) is wrapped
        assert registry.original_for(wrapped.address) == TOKEN
        assert registry.is_wrapped(wrapped.address)
        assert not registry.is_wrapped(TOKEN)
        assert wrapped.asset.original == TOKEN

    def test_unlisted_token_rejected(self, registry, gateway):
        gateway.approve(BUYER, UNLISTED_TOKEN, 10)
        with pytest.raises(TokenNotSupported):
            registry.wrap(BUYER, UNLISTED_TOKEN, 10)

    @pytest.mark.parametrize("token", [ZERO_ADDRESS, None])
    def test_native_cannot_be_wrapped(self, registry, token):
        with pytest.raises(InvalidTokenOperation):
            registry.wrap(BUYER, token, 10)

    def test_wrapped_token_cannot_be_wrapped_again(self, registry, gateway):
        wrapped = approve_and_wrap(registry, gateway, BUYER, 10)
        with pytest.raises(InvalidTokenOperation):
            registry.wrap(BUYER, wrapped.address, 5)

    @pytest.mark.parametrize("amount", [0, -1])
    def test_non_positive_amount(self, registry, amount):
        with pytest.raises(InvalidTokenOperation):
            registry.wrap(BUYER, TOKEN, amount)

    def test_failed_deposit_leaves_no_representation(self, service, registry, gateway):
        with pytest.raises(TransferFailed):
            registry.wrap(BUYER, TOKEN, 10)  # no approval

        assert registry.wrapped_for(TOKEN) is None
        assert registry.list_wrapped() == []
        assert service.events.filter(name=TOKEN_WRAPPED) == []

    def test_concurrent_first_wraps_create_one_representation(self, registry, gateway):
        holders = [f"0x{i:040x}" for i in range(1, 9)]
        for holder in holders:
            gateway.credit(TOKEN_ASSET, holder, 100)
            gateway.approve(holder, TOKEN_ASSET, 100)

        results = []
        threads = [
            threading.Thread(target=lambda h=h: results.append(registry.wrap(h, TOKEN, 100)))
            for h in holders
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len({w.address for w in results}) == 1
        assert len(registry.list_wrapped()) == 1
        assert gateway.total_supply(results[0].address) == 800


class TestUnwrap:
    """Tests for unwrap()."""

    def test_unwrap_returns_original(self, service, registry, gateway):
        wrapped = approve_and_wrap(registry, gateway, BUYER, 40)

        original = registry.unwrap(BUYER, wrapped.address, 15)

        assert original == TOKEN
        assert gateway.balance_of(wrapped.address, BUYER) == 25
        assert gateway.balance_of(TOKEN_ASSET, BUYER) == OPENING_BALANCE - 25
        assert gateway.total_supply(wrapped.address) == 25
        assert service.events.names()[-1] == TOKEN_UNWRAPPED

    def test_unknown_wrapped_token(self, registry):
        with pytest.raises(InvalidTokenOperation):
            registry.unwrap(BUYER, TOKEN, 1)

    def test_burn_beyond_balance_fails_cleanly(self, registry, gateway):
        wrapped = approve_and_wrap(registry, gateway, BUYER, 10)
        with pytest.raises(TransferFailed):
            registry.unwrap(OTHER, wrapped.address, 1)
        assert gateway.total_supply(wrapped.address) == 10

    def test_unwrap_allowed_after_delisting(self, service, registry, gateway):
        wrapped = approve_and_wrap(registry, gateway, BUYER, 10)
        service.admin.remove_supported_token(OWNER, TOKEN)
        assert registry.unwrap(BUYER, wrapped.address, 10) == TOKEN


class TestGuard:
    """The registry shares the escrow guard."""

    def test_reentrant_wrap_rejected(self, service, registry, gateway):
        gateway.approve(BUYER, TOKEN_ASSET, 20)
        original_transfer_in = gateway.transfer_in
        reentry = []

        def hostile_transfer_in(asset, from_, amount):
            if not reentry:
                reentry.append(True)
                registry.wrap(from_, TOKEN, 10)
            return original_transfer_in(asset, from_, amount)

        gateway.transfer_in = hostile_transfer_in
        with pytest.raises(ReentrancyError):
            registry.wrap(BUYER, TOKEN, 10)

        assert registry.wrapped_for(TOKEN) is None
        assert gateway.custody_balance(TOKEN_ASSET) == 0

