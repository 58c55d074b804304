"""
Pytest configuration and shared fixtures for CryptoEscrow tests.

Provides:
- Well-known addresses for the parties of an escrow
- A manual clock, an in-memory gateway with opening balances, and a config
- A fully wired EscrowService (with and without arbitrators)
- A Flask test client bound to that service, with an API key per party
"""

import os
import sys

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from asset_gateway import NATIVE, UNIT, FungibleAsset, InMemoryTransferGateway
from clock import ManualClock
from escrow_config import DEFAULT_OWNER, EscrowConfig
from escrow_service import EscrowService, reset_escrow_service
from monitoring import metrics

OWNER = DEFAULT_OWNER
BUYER = "0x1111111111111111111111111111111111111111"
SELLER = "0x2222222222222222222222222222222222222222"
OTHER = "0x3333333333333333333333333333333333333333"
ARBITER_A = "0xaaaa00000000000000000000000000000000000a"
ARBITER_B = "0xbbbb00000000000000000000000000000000000b"
ARBITER_C = "0xcccc00000000000000000000000000000000000c"
TOKEN = "0x7777777777777777777777777777777777777777"
UNLISTED_TOKEN = "0x8888888888888888888888888888888888888888"

OPENING_BALANCE = 1000 * UNIT
TOKEN_ASSET = FungibleAsset(TOKEN)

# Every well-known party can authenticate over HTTP
API_KEYS = {
    address: f"test-key-{name}"
    for name, address in (
        ("owner", OWNER),
        ("buyer", BUYER),
        ("seller", SELLER),
        ("other", OTHER),
        ("arbiter-a", ARBITER_A),
        ("arbiter-b", ARBITER_B),
        ("arbiter-c", ARBITER_C),
    )
}


@pytest.fixture(autouse=True)
def reset_globals():
    """Start every test with empty metrics and no process-wide service."""
    metrics.reset()
    reset_escrow_service()
    yield
    reset_escrow_service()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def gateway():
    """Gateway where buyer, seller and a bystander hold native currency and TOKEN."""
    gw = InMemoryTransferGateway()
    for holder in (BUYER, SELLER, OTHER):
        gw.credit(NATIVE, holder, OPENING_BALANCE)
        gw.credit(TOKEN_ASSET, holder, OPENING_BALANCE)
    return gw


@pytest.fixture
def config():
    return EscrowConfig(supported_tokens=[TOKEN], api_keys=dict(API_KEYS))


@pytest.fixture
def service(config, gateway, clock):
    """Escrow core with an empty arbitrator roster."""
    return EscrowService.create(config, gateway=gateway, clock=clock)


@pytest.fixture
def arbitrated_service(service):
    """Escrow core with one well-qualified arbitrator enrolled."""
    service.admin.register_arbitrator(OWNER, ARBITER_A, reputation=50, avg_response_time=1800)
    return service


@pytest.fixture
def ledger(arbitrated_service):
    return arbitrated_service.ledger


@pytest.fixture
def native_escrow(ledger):
    """A funded 1-unit native escrow between BUYER and SELLER."""
    return ledger.create_escrow(BUYER, SELLER, NATIVE, UNIT, "Order #1", value=UNIT)


@pytest.fixture
def disputed_escrow(ledger, arbitrated_service, native_escrow):
    """The native escrow, disputed by the buyer with the exact dispute fee."""
    fee = arbitrated_service.config.dispute_fee
    return ledger.raise_dispute(BUYER, native_escrow.escrow_id, "Item not delivered", value=fee)


@pytest.fixture
def flask_app(arbitrated_service):
    from api import create_app

    app = create_app(arbitrated_service)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def flask_client(flask_app):
    return flask_app.test_client()


def caller_headers(address: str, api_key: str | None = None) -> dict[str, str]:
    """Headers authenticating ``address`` as the caller (with its own key unless one is given)."""
    return {
        "Content-Type": "application/json",
        "X-Caller-Address": address,
        "X-API-Key": api_key if api_key is not None else API_KEYS.get(address, ""),
    }
