"""
Tests for the arbitrator pool and selector (src/arbitrator_pool.py)

Tests cover:
- Roster management and self-service
- Eligibility filtering (enrollment, reputation, capacity, availability, blacklists)
- Weighted scoring, buckets and responsiveness
- Deterministic selection, tie-break and candidate cap
- Assignment side effects and rollback
"""

import random

import pytest

from arbitrator_pool import (
    SELECTION_WEIGHTS,
    ArbitratorPool,
    DisputeSizeBucket,
    Ineligibility,
    aggregate_score,
    bucket_for_amount,
    responsiveness_score,
)
from asset_gateway import UNIT
from clock import ManualClock
from escrow_config import EscrowConfig
from escrow_events import ARBITRATOR_SELECTED, EventLog
from escrow_exceptions import (
    ArbitratorNotFound,
    InvalidConfiguration,
    NoEligibleArbitrators,
    UnauthorizedAccess,
)

INITIATOR = "0x1111111111111111111111111111111111111111"
RESPONDER = "0x2222222222222222222222222222222222222222"


def arbiter(n: int) -> str:
    return "0x" + f"{n:040x}"


@pytest.fixture
def config():
    return EscrowConfig()


@pytest.fixture
def pool(config):
    return ArbitratorPool(config, EventLog(), ManualClock())


# ============================================================
# Scoring Helpers
# ============================================================

class TestScoringHelpers:
    """Tests for buckets, responsiveness and the aggregate score."""

    @pytest.mark.parametrize("amount,bucket", [
        (0, DisputeSizeBucket.SMALL),
        (UNIT - 1, DisputeSizeBucket.SMALL),
        (UNIT, DisputeSizeBucket.MEDIUM),
        (10 * UNIT - 1, DisputeSizeBucket.MEDIUM),
        (10 * UNIT, DisputeSizeBucket.LARGE),
    ])
    def test_bucket_boundaries(self, amount, bucket):
        assert bucket_for_amount(amount) == bucket

    @pytest.mark.parametrize("seconds,score", [
        (0, 100),
        (3599, 100),
        (3600, 80),
        (4 * 3600 - 1, 80),
        (4 * 3600, 50),
        (12 * 3600 - 1, 50),
        (12 * 3600, 20),
        (7 * 24 * 3600, 20),
    ])
    def test_responsiveness_thresholds(self, seconds, score):
        assert responsiveness_score(seconds) == score

    def test_weights(self):
        assert aggregate_score(1, 0, 0, 0) == SELECTION_WEIGHTS["reputation"] == 40
        assert aggregate_score(0, 1, 0, 0) == 30
        assert aggregate_score(0, 0, 1, 0) == 20
        assert aggregate_score(0, 0, 0, 1) == 10

    def test_worked_example(self):
        # reputation 50, 5 free slots, specialization 10, fast responder
        assert aggregate_score(50, 5, 10, 100) == 2000 + 150 + 200 + 1000


# ============================================================
# Roster Management
# ============================================================

class TestRoster:
    """Tests for register/update/remove and self-service."""

    def test_register_keeps_order(self, pool):
        for n in (3, 1, 2):
            pool.register(arbiter(n))
        assert pool.roster == [arbiter(3), arbiter(1), arbiter(2)]

    def test_register_fills_specialization_buckets(self, pool):
        profile = pool.register(arbiter(1), specialization={"large": 9})
        assert profile.specialization == {"small": 0, "medium": 0, "large": 9}

    def test_register_twice_rejected(self, pool):
        pool.register(arbiter(1))
        with pytest.raises(InvalidConfiguration):
            pool.register(arbiter(1))

    def test_register_zero_address_rejected(self, pool):
        with pytest.raises(InvalidConfiguration):
            pool.register("0x0000000000000000000000000000000000000000")

    @pytest.mark.parametrize("attributes", [
        {"reputation": -1},
        {"avg_response_time": -10},
        {"specialization": {"huge": 1}},
        {"specialization": {"small": -1}},
        {"reputation": "high"},
        {"reputation": True},
        {"avg_response_time": 1.5},
        {"specialization": {"small": "x"}},
        {"specialization": [10, 0, 0]},
        {"available": "false"},
        {"blacklist": "0x1111111111111111111111111111111111111111"},
    ])
    def test_register_rejects_bad_attributes(self, pool, attributes):
        with pytest.raises(InvalidConfiguration):
            pool.register(arbiter(1), **attributes)
        assert pool.roster == []

    def test_remove_unenrolls_but_keeps_profile(self, pool):
        pool.register(arbiter(1))
        pool.remove(arbiter(1))
        assert pool.get_profile(arbiter(1)).enrolled is False
        assert pool.list_profiles(enrolled_only=True) == []
        assert len(pool.list_profiles()) == 1

    def test_reenroll_keeps_roster_position(self, pool):
        pool.register(arbiter(1))
        pool.register(arbiter(2))
        pool.remove(arbiter(1))
        pool.register(arbiter(1), reputation=7)
        assert pool.roster == [arbiter(1), arbiter(2)]
        assert pool.get_profile(arbiter(1)).reputation == 7

    def test_update_unknown_field_rejected(self, pool):
        pool.register(arbiter(1))
        with pytest.raises(InvalidConfiguration):
            pool.update(arbiter(1), active_disputes=0)

    @pytest.mark.parametrize("changes", [
        {"available": "false"},
        {"enrolled": 0},
        {"reputation": "high"},
        {"reputation": None},
        {"specialization": "small"},
        {"specialization": {"small": 2.5}},
    ])
    def test_update_rejects_mistyped_values(self, pool, changes):
        profile = pool.register(arbiter(1), reputation=5)
        with pytest.raises(InvalidConfiguration):
            pool.update(arbiter(1), **changes)
        assert profile.available is True
        assert profile.enrolled is True
        assert profile.reputation == 5
        assert profile.specialization == {"small": 0, "medium": 0, "large": 0}

    def test_register_entry(self, pool):
        profile = pool.register_entry({"address": arbiter(1), "reputation": 4})
        assert profile.reputation == 4

    @pytest.mark.parametrize("entry", [
        {"address": arbiter(1), "rank": 3},
        {"reputation": 3},
        ["not", "a", "mapping"],
    ])
    def test_register_entry_rejects_malformed(self, pool, entry):
        with pytest.raises(InvalidConfiguration):
            pool.register_entry(entry)
        assert pool.roster == []

    def test_update_merges_specialization(self, pool):
        pool.register(arbiter(1), specialization={"small": 3})
        pool.update(arbiter(1), specialization={"large": 4})
        assert pool.get_profile(arbiter(1)).specialization == {"small": 3, "medium": 0, "large": 4}

    def test_unknown_arbitrator(self, pool):
        with pytest.raises(ArbitratorNotFound):
            pool.get_profile(arbiter(99))

    def test_self_service_availability(self, pool):
        pool.register(arbiter(1))
        pool.set_availability(arbiter(1), False)
        assert pool.get_profile(arbiter(1)).available is False

    def test_self_service_requires_registration(self, pool):
        with pytest.raises(UnauthorizedAccess):
            pool.set_availability(arbiter(1), False)
        with pytest.raises(UnauthorizedAccess):
            pool.blacklist_party(arbiter(1), INITIATOR)

    def test_blacklist_and_unblacklist(self, pool):
        pool.register(arbiter(1))
        pool.blacklist_party(arbiter(1), INITIATOR)
        assert pool.get_profile(arbiter(1)).refuses(INITIATOR)
        pool.unblacklist_party(arbiter(1), INITIATOR)
        assert not pool.get_profile(arbiter(1)).refuses(INITIATOR)


# ============================================================
# Eligibility
# ============================================================

class TestEligibility:
    """Tests for candidate filtering."""

    def test_reasons(self, pool, config):
        config.min_reputation = 10
        config.max_active_disputes = 1

        pool.register(arbiter(1), reputation=5)
        pool.register(arbiter(2), reputation=20, available=False)
        pool.register(arbiter(3), reputation=20, blacklist=[INITIATOR])
        pool.register(arbiter(4), reputation=20, blacklist=[RESPONDER])
        pool.register(arbiter(5), reputation=20)
        pool.profiles[arbiter(5)].active_disputes = 1
        pool.register(arbiter(6), reputation=20)
        pool.remove(arbiter(6))
        pool.register(arbiter(7), reputation=20)

        reasons = {
            a: pool.ineligibility(pool.profiles[a], INITIATOR, RESPONDER)
            for a in pool.roster
        }
        assert reasons == {
            arbiter(1): Ineligibility.LOW_REPUTATION,
            arbiter(2): Ineligibility.UNAVAILABLE,
            arbiter(3): Ineligibility.BLACKLISTED_INITIATOR,
            arbiter(4): Ineligibility.BLACKLISTED_RESPONDER,
            arbiter(5): Ineligibility.AT_CAPACITY,
            arbiter(6): Ineligibility.NOT_ENROLLED,
            arbiter(7): None,
        }
        assert pool.select_arbitrator(INITIATOR, RESPONDER, UNIT) == arbiter(7)

    def test_empty_roster_fails(self, pool):
        with pytest.raises(NoEligibleArbitrators):
            pool.select_arbitrator(INITIATOR, RESPONDER, UNIT)

    def test_no_eligible_leaves_profiles_untouched(self, pool):
        pool.register(arbiter(1), available=False)
        with pytest.raises(NoEligibleArbitrators):
            pool.select_arbitrator(INITIATOR, RESPONDER, UNIT)
        assert pool.profiles[arbiter(1)].active_disputes == 0
        assert pool.events.filter(name=ARBITRATOR_SELECTED) == []

    def test_threshold_changes_apply_to_next_selection(self, pool, config):
        pool.register(arbiter(1), reputation=5)
        config.min_reputation = 6
        with pytest.raises(NoEligibleArbitrators):
            pool.select_arbitrator(INITIATOR, RESPONDER, UNIT)

    def test_random_rosters_never_select_ineligible(self, config):
        """Selection only ever returns an arbitrator that passes every filter."""
        rng = random.Random(1234)
        config.min_reputation = 10
        config.max_active_disputes = 3

        for _ in range(50):
            pool = ArbitratorPool(config, EventLog(), ManualClock())
            for n in range(rng.randint(0, 15)):
                pool.register(
                    arbiter(n + 1),
                    reputation=rng.randint(0, 30),
                    avg_response_time=rng.randint(0, 20 * 3600),
                    specialization={"small": rng.randint(0, 10)},
                    available=rng.random() > 0.2,
                    blacklist=[INITIATOR] if rng.random() < 0.2 else [],
                )
                pool.profiles[arbiter(n + 1)].active_disputes = rng.randint(0, 3)

            eligible = {
                a for a in pool.roster
                if pool.ineligibility(pool.profiles[a], INITIATOR, RESPONDER) is None
            }
            if not eligible:
                with pytest.raises(NoEligibleArbitrators):
                    pool.select(INITIATOR, RESPONDER, UNIT // 2)
            else:
                assert pool.select(INITIATOR, RESPONDER, UNIT // 2).address in eligible


# ============================================================
# Selection
# ============================================================

class TestSelection:
    """Tests for weighted selection."""

    def test_highest_score_wins(self, pool):
        pool.register(arbiter(1), reputation=10)
        pool.register(arbiter(2), reputation=30)
        pool.register(arbiter(3), reputation=20)
        assert pool.select_arbitrator(INITIATOR, RESPONDER, UNIT) == arbiter(2)

    def test_spare_capacity_counts(self, pool):
        pool.register(arbiter(1), reputation=10)
        pool.register(arbiter(2), reputation=10)
        pool.profiles[arbiter(1)].active_disputes = 2
        assert pool.select(INITIATOR, RESPONDER, UNIT).address == arbiter(2)

    def test_specialization_uses_amount_bucket(self, pool):
        pool.register(arbiter(1), specialization={"small": 10})
        pool.register(arbiter(2), specialization={"large": 10})
        assert pool.select(INITIATOR, RESPONDER, UNIT // 10).address == arbiter(1)
        assert pool.select(INITIATOR, RESPONDER, 50 * UNIT).address == arbiter(2)

    def test_responsiveness_breaks_otherwise_equal(self, pool):
        pool.register(arbiter(1), avg_response_time=20 * 3600)
        pool.register(arbiter(2), avg_response_time=600)
        assert pool.select(INITIATOR, RESPONDER, UNIT).address == arbiter(2)

    def test_exact_tie_goes_to_first_in_scan_order(self, pool):
        pool.register(arbiter(2), reputation=10)
        pool.register(arbiter(1), reputation=10)
        assert pool.select(INITIATOR, RESPONDER, UNIT).address == arbiter(2)

    def test_deterministic(self, config):
        def build():
            p = ArbitratorPool(config, EventLog(), ManualClock())
            for n in range(1, 8):
                p.register(arbiter(n), reputation=n % 3, avg_response_time=n * 3000)
            return p

        results = {build().select_arbitrator(INITIATOR, RESPONDER, 3 * UNIT) for _ in range(5)}
        assert len(results) == 1

    def test_candidate_cap_limits_scan(self, pool, config):
        """Only the first max_candidates eligible arbitrators are scored."""
        for n in range(1, config.max_candidates + 1):
            pool.register(arbiter(n), reputation=1)
        pool.register(arbiter(100), reputation=99)

        candidates = pool.collect_candidates(INITIATOR, RESPONDER, UNIT)
        assert len(candidates) == config.max_candidates
        assert arbiter(100) not in {c.address for c in candidates}
        assert pool.select(INITIATOR, RESPONDER, UNIT).address != arbiter(100)

    def test_ineligible_do_not_count_toward_cap(self, pool, config):
        for n in range(1, config.max_candidates + 1):
            pool.register(arbiter(n), reputation=1, available=False)
        pool.register(arbiter(100), reputation=99)
        assert pool.select(INITIATOR, RESPONDER, UNIT).address == arbiter(100)

    def test_rank_candidates_orders_best_first(self, pool):
        pool.register(arbiter(1), reputation=1)
        pool.register(arbiter(2), reputation=3)
        pool.register(arbiter(3), reputation=3)
        ranked = [c.address for c in pool.rank_candidates(INITIATOR, RESPONDER, UNIT)]
        assert ranked == [arbiter(2), arbiter(3), arbiter(1)]


class TestBlacklistAtCapacity:
    """One arbitrator with a single free slot and one that refuses the initiator."""

    @pytest.fixture
    def single_slot_pool(self, config):
        config.max_active_disputes = 1
        return ArbitratorPool(config, EventLog(), ManualClock())

    def test_selects_non_blacklisted_despite_lower_reputation(self, single_slot_pool):
        pool = single_slot_pool
        pool.register(arbiter(1), reputation=90, blacklist=[INITIATOR])
        pool.register(arbiter(2), reputation=10)

        assert pool.select_arbitrator(INITIATOR, RESPONDER, UNIT) == arbiter(2)
        assert pool.profiles[arbiter(2)].active_disputes == 1

    def test_only_candidate_blacklisted_fails(self, single_slot_pool):
        pool = single_slot_pool
        pool.register(arbiter(1), reputation=90, blacklist=[INITIATOR])

        with pytest.raises(NoEligibleArbitrators):
            pool.select_arbitrator(INITIATOR, RESPONDER, UNIT)

    def test_capacity_reached_after_assignment(self, single_slot_pool):
        pool = single_slot_pool
        pool.register(arbiter(2), reputation=10)
        pool.select_arbitrator(INITIATOR, RESPONDER, UNIT)

        with pytest.raises(NoEligibleArbitrators):
            pool.select_arbitrator(INITIATOR, RESPONDER, UNIT)


# ============================================================
# Assignment Side Effects
# ============================================================

class TestAssignment:
    """Tests for select_arbitrator side effects and release."""

    def test_assignment_recorded(self, pool):
        pool.register(arbiter(1))
        pool.clock.advance(60)
        pool.select_arbitrator(INITIATOR, RESPONDER, UNIT, escrow_id=4)

        profile = pool.profiles[arbiter(1)]
        assert profile.active_disputes == 1
        assert profile.total_assignments == 1
        assert profile.last_assignment == pool.clock.now()

        event = pool.events.filter(name=ARBITRATOR_SELECTED)[0]
        assert event.escrow_id == 4
        assert event.data["arbitrator"] == arbiter(1)

    def test_release_assignment_floors_at_zero(self, pool):
        pool.register(arbiter(1))
        pool.select_arbitrator(INITIATOR, RESPONDER, UNIT)
        pool.release_assignment(arbiter(1))
        pool.release_assignment(arbiter(1))
        assert pool.profiles[arbiter(1)].active_disputes == 0
        assert pool.profiles[arbiter(1)].total_assignments == 1

    def test_atomic_rolls_back_assignment(self, pool):
        pool.register(arbiter(1))
        with pytest.raises(RuntimeError):
            with pool.atomic():
                pool.select_arbitrator(INITIATOR, RESPONDER, UNIT)
                raise RuntimeError("later step failed")
        assert pool.profiles[arbiter(1)].active_disputes == 0
