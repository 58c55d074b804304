"""
Tests for the administration surface (src/escrow_admin.py)
"""

import pytest

from asset_gateway import ZERO_ADDRESS
from conftest import ARBITER_A, OTHER, OWNER, TOKEN, UNLISTED_TOKEN
from escrow_events import CONFIGURATION_CHANGED
from escrow_exceptions import InvalidConfiguration, InvalidFeeConfiguration, UnauthorizedAccess
from escrow_service import EscrowService


@pytest.fixture
def admin(service):
    return service.admin


class TestAuthorization:
    """Only administrators may change anything."""

    @pytest.mark.parametrize("method,args", [
        ("add_supported_token", (UNLISTED_TOKEN,)),
        ("remove_supported_token", (TOKEN,)),
        ("set_platform_fee", (200,)),
        ("set_dispute_fee", (1,)),
        ("set_min_escrow_amount", (10,)),
        ("set_dispute_window", (60,)),
        ("set_min_reputation", (1,)),
        ("set_max_active_disputes", (2,)),
        ("set_fee_collector", (OTHER,)),
        ("register_arbitrator", (ARBITER_A,)),
    ])
    def test_non_admin_rejected(self, admin, method, args):
        before = admin.config.to_dict(), set(admin.allowed_tokens)
        with pytest.raises(UnauthorizedAccess):
            getattr(admin, method)(OTHER, *args)
        assert (admin.config.to_dict(), set(admin.allowed_tokens)) == before

    def test_configured_administrators_accepted(self, config, gateway, clock):
        config.administrators = [OTHER]
        service = EscrowService.create(config, gateway=gateway, clock=clock)
        service.admin.set_platform_fee(OTHER, 200)
        assert service.config.platform_fee_bps == 200

    def test_injected_predicate(self, config, gateway, clock):
        service = EscrowService.create(config, gateway=gateway, clock=clock, is_admin=lambda c: c == OTHER)
        with pytest.raises(UnauthorizedAccess):
            service.admin.set_platform_fee(OWNER, 200)
        service.admin.set_platform_fee(OTHER, 200)


class TestTokens:
    """Tests for the token allow-list."""

    def test_native_always_supported(self, admin):
        assert admin.is_supported(None)
        assert admin.is_supported(ZERO_ADDRESS)

    def test_add_and_remove(self, admin):
        assert not admin.is_supported(UNLISTED_TOKEN)
        admin.add_supported_token(OWNER, UNLISTED_TOKEN)
        assert admin.is_supported(UNLISTED_TOKEN)
        admin.remove_supported_token(OWNER, UNLISTED_TOKEN)
        assert not admin.is_supported(UNLISTED_TOKEN)

    def test_native_cannot_be_removed(self, admin):
        with pytest.raises(InvalidConfiguration):
            admin.remove_supported_token(OWNER, ZERO_ADDRESS)
        assert admin.is_supported(None)


class TestThresholds:
    """Tests for fee and threshold setters."""

    def test_platform_fee_bounds(self, admin):
        admin.set_platform_fee(OWNER, 500)
        with pytest.raises(InvalidFeeConfiguration):
            admin.set_platform_fee(OWNER, 501)
        assert admin.config.platform_fee_bps == 500

    @pytest.mark.parametrize("method,value", [
        ("set_dispute_fee", -1),
        ("set_min_escrow_amount", 0),
        ("set_dispute_window", 0),
        ("set_min_reputation", -1),
        ("set_max_active_disputes", 0),
        ("set_fee_collector", ZERO_ADDRESS),
        ("set_max_active_disputes", True),
    ])
    def test_out_of_bounds_rejected_before_mutation(self, admin, method, value):
        before = admin.config.to_dict()
        with pytest.raises(InvalidConfiguration):
            getattr(admin, method)(OWNER, value)
        assert admin.config.to_dict() == before

    def test_change_emits_event(self, service):
        service.admin.set_dispute_window(OWNER, 3600)
        event = service.events.filter(name=CONFIGURATION_CHANGED)[-1]
        assert event.data["setting"] == "dispute_window"
        assert event.data["old_value"] == 7 * 24 * 3600
        assert event.data["new_value"] == 3600
        assert event.data["changed_by"] == OWNER


class TestUpdateConfig:
    """Tests for batch configuration updates."""

    def test_applies_all(self, admin):
        result = admin.update_config(OWNER, {"platform_fee_bps": 50, "min_reputation": 3})
        assert result["platform_fee_bps"] == 50
        assert result["min_reputation"] == 3

    def test_all_or_nothing(self, service):
        admin = service.admin
        events_before = len(service.events.events)
        with pytest.raises(InvalidFeeConfiguration):
            admin.update_config(OWNER, {"min_reputation": 3, "platform_fee_bps": 9999})
        assert admin.config.min_reputation == 0
        assert len(service.events.events) == events_before

    def test_unknown_setting(self, admin):
        with pytest.raises(InvalidConfiguration):
            admin.update_config(OWNER, {"owner": OTHER})

    def test_authorization_checked_first(self, admin):
        with pytest.raises(UnauthorizedAccess):
            admin.update_config(OTHER, {"no_such_setting": 1})


class TestRoster:
    """Tests for roster management through the admin surface."""

    def test_register_update_remove(self, service):
        admin = service.admin
        admin.register_arbitrator(OWNER, ARBITER_A, reputation=5)
        admin.update_arbitrator(OWNER, ARBITER_A, reputation=9)
        assert service.pool.get_profile(ARBITER_A).reputation == 9
        admin.remove_arbitrator(OWNER, ARBITER_A)
        assert not service.pool.get_profile(ARBITER_A).enrolled

    def test_load_roster(self, service):
        profiles = service.admin.load_roster(OWNER, [
            {"address": ARBITER_A, "reputation": 4},
            {"address": OTHER},
        ])
        assert [p.address for p in profiles] == [ARBITER_A, OTHER]

    def test_load_roster_requires_address(self, service):
        with pytest.raises(InvalidConfiguration):
            service.admin.load_roster(OWNER, [{"reputation": 4}])

    def test_roster_from_config(self, config, gateway, clock):
        config.arbitrators = [{"address": ARBITER_A, "reputation": 12}]
        service = EscrowService.create(config, gateway=gateway, clock=clock)
        assert service.pool.get_profile(ARBITER_A).reputation == 12
