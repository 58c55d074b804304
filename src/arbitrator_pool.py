"""
CryptoEscrow - Arbitrator Pool & Selector

Owns the arbitrator roster and picks a dispute handler when a dispute is
raised.

Selection is deterministic and auditable:

1. Scan the roster in registration order and keep arbitrators that are
   enrolled, available, at or above the minimum reputation, below their
   active-dispute capacity, and not blacklisting either party.
2. Stop once MAX_CANDIDATES have been collected.
3. Score each candidate:

       reputation * 40
     + (max_active_disputes - active_disputes) * 30
     + specialization[bucket(dispute_amount)] * 20
     + responsiveness(avg_response_time) * 10

4. The strictly highest score wins; on an exact tie the candidate met first
   in scan order wins. The tie-break depends on roster order and is kept as
   is; it is a known fairness limitation.

Reputation is consumed as given. The pool never derives it from outcomes.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from asset_gateway import UNIT, is_zero_address
from clock import Clock, SystemClock
from escrow_config import EscrowConfig
from escrow_events import (
    ARBITRATOR_REGISTERED,
    ARBITRATOR_SELECTED,
    ARBITRATOR_UPDATED,
    EventLog,
)
from escrow_exceptions import (
    ArbitratorNotFound,
    InvalidConfiguration,
    NoEligibleArbitrators,
    UnauthorizedAccess,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Scoring Constants
# =============================================================================

# Policy priority: past reliability, then spare capacity, then domain fit, then speed
SELECTION_WEIGHTS = {
    "reputation": 40,
    "spare_capacity": 30,
    "specialization": 20,
    "responsiveness": 10,
}

# (upper bound in seconds, score); first matching bound wins
RESPONSIVENESS_THRESHOLDS = [
    (1 * 3600, 100),
    (4 * 3600, 80),
    (12 * 3600, 50),
]
SLOW_RESPONSE_SCORE = 20

SMALL_DISPUTE_LIMIT = 1 * UNIT
MEDIUM_DISPUTE_LIMIT = 10 * UNIT


class DisputeSizeBucket(Enum):
    """Dispute-size buckets used for specialization lookup."""
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class Ineligibility(Enum):
    """Why an arbitrator was skipped during candidate collection."""
    NOT_ENROLLED = "not_enrolled"
    LOW_REPUTATION = "low_reputation"
    AT_CAPACITY = "at_capacity"
    UNAVAILABLE = "unavailable"
    BLACKLISTED_INITIATOR = "blacklisted_initiator"
    BLACKLISTED_RESPONDER = "blacklisted_responder"


def bucket_for_amount(amount: int) -> DisputeSizeBucket:
    """Bucket a dispute amount (in base units)."""
    if amount < SMALL_DISPUTE_LIMIT:
        return DisputeSizeBucket.SMALL
    if amount < MEDIUM_DISPUTE_LIMIT:
        return DisputeSizeBucket.MEDIUM
    return DisputeSizeBucket.LARGE


def responsiveness_score(avg_response_time: float) -> int:
    for limit, score in RESPONSIVENESS_THRESHOLDS:
        if avg_response_time < limit:
            return score
    return SLOW_RESPONSE_SCORE


def aggregate_score(
    reputation: int,
    spare_capacity: int,
    specialization: int,
    responsiveness: int
) -> int:
    return (
        reputation * SELECTION_WEIGHTS["reputation"]
        + spare_capacity * SELECTION_WEIGHTS["spare_capacity"]
        + specialization * SELECTION_WEIGHTS["specialization"]
        + responsiveness * SELECTION_WEIGHTS["responsiveness"]
    )


# =============================================================================
# Data Classes
# =============================================================================

def _empty_specialization() -> dict[str, int]:
    return {bucket.value: 0 for bucket in DisputeSizeBucket}


def _is_count(value: Any) -> bool:
    """Non-negative int; bools are rejected even though they are ints."""
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


@dataclass
class ArbitratorProfile:
    """Registration data for one arbitrator."""
    address: str
    enrolled: bool = True
    available: bool = True
    reputation: int = 0
    avg_response_time: int = 0  # seconds
    active_disputes: int = 0
    last_assignment: float | None = None
    specialization: dict[str, int] = field(default_factory=_empty_specialization)
    blacklist: set[str] = field(default_factory=set)
    registered_at: float = 0.0
    total_assignments: int = 0

    def refuses(self, party: str) -> bool:
        """True if this arbitrator refuses to serve ``party``."""
        return party in self.blacklist

    def specialization_for(self, bucket: DisputeSizeBucket) -> int:
        return self.specialization.get(bucket.value, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "enrolled": self.enrolled,
            "available": self.available,
            "reputation": self.reputation,
            "avg_response_time": self.avg_response_time,
            "active_disputes": self.active_disputes,
            "last_assignment": self.last_assignment,
            "specialization": dict(self.specialization),
            "blacklist": sorted(self.blacklist),
            "registered_at": self.registered_at,
            "total_assignments": self.total_assignments
        }


@dataclass(frozen=True)
class Candidate:
    """Scoring record for one arbitrator during one selection call."""
    address: str
    reputation: int
    workload: int
    specialization: int
    responsiveness: int
    score: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "reputation": self.reputation,
            "workload": self.workload,
            "specialization": self.specialization,
            "responsiveness": self.responsiveness,
            "score": self.score
        }


# =============================================================================
# Pool
# =============================================================================

class ArbitratorPool:
    """
    Arbitrator roster and weighted selector.

    Thresholds (minimum reputation, per-arbitrator capacity, candidate cap) are
    read from the shared EscrowConfig on every call, so administrator changes
    take effect on the next selection.
    """

    UPDATABLE_FIELDS = ("enrolled", "available", "reputation", "avg_response_time", "specialization")
    REGISTER_FIELDS = ("address", "reputation", "avg_response_time", "specialization", "available", "blacklist")

    def __init__(
        self,
        config: EscrowConfig | None = None,
        events: EventLog | None = None,
        clock: Clock | None = None
    ):
        self.config = config or EscrowConfig()
        self.events = events or EventLog()
        self.clock = clock or SystemClock()

        self.profiles: dict[str, ArbitratorProfile] = {}
        self.roster: list[str] = []  # registration order
        self._lock = threading.RLock()

    # =========================================================================
    # Roster Management
    # =========================================================================

    def register(
        self,
        address: str,
        reputation: int = 0,
        avg_response_time: int = 0,
        specialization: dict[str, int] | None = None,
        available: bool = True,
        blacklist: list[str] | None = None
    ) -> ArbitratorProfile:
        """
        Enroll an arbitrator, or re-enroll a previously removed one.

        Re-enrolling keeps the profile's position in the roster and its
        counters; the supplied attributes replace the old ones.

        Raises:
            InvalidConfiguration: bad address or attribute values, or the
                arbitrator is already enrolled
        """
        if is_zero_address(address):
            raise InvalidConfiguration("Arbitrator address must be set", component="arbitrator_pool", action="register")
        self._validate_attributes(reputation=reputation, avg_response_time=avg_response_time,
                                  specialization=specialization, available=available,
                                  blacklist=blacklist)

        with self._lock:
            profile = self.profiles.get(address)
            if profile and profile.enrolled:
                raise InvalidConfiguration(
                    f"Arbitrator {address} already enrolled",
                    component="arbitrator_pool",
                    action="register",
                )

            now = self.clock.now()
            if profile is None:
                profile = ArbitratorProfile(address=address, registered_at=now)
                self.profiles[address] = profile
                self.roster.append(address)

            profile.enrolled = True
            profile.available = available
            profile.reputation = reputation
            profile.avg_response_time = avg_response_time
            profile.specialization = {**_empty_specialization(), **(specialization or {})}
            profile.blacklist = set(blacklist or [])

            self.events.emit(ARBITRATOR_REGISTERED, now, arbitrator=address, reputation=reputation)
            logger.info("Arbitrator %s enrolled", address)
            return profile

    def update(self, address: str, **changes: Any) -> ArbitratorProfile:
        """Change roster attributes of an arbitrator (administrator path)."""
        unknown = set(changes) - set(self.UPDATABLE_FIELDS)
        if unknown:
            raise InvalidConfiguration(
                f"Cannot update fields: {sorted(unknown)}",
                component="arbitrator_pool",
                action="update",
            )
        self._validate_attributes(**changes)

        with self._lock:
            profile = self.get_profile(address)
            for name, value in changes.items():
                if name == "specialization":
                    value = {**profile.specialization, **value}
                setattr(profile, name, value)

            self.events.emit(
                ARBITRATOR_UPDATED,
                self.clock.now(),
                arbitrator=address,
                changes=sorted(changes),
            )
            return profile

    def remove(self, address: str) -> ArbitratorProfile:
        """Un-enroll an arbitrator. Profiles are kept for audit; disputes in flight are unaffected."""
        return self.update(address, enrolled=False)

    def register_entry(self, entry: dict[str, Any]) -> ArbitratorProfile:
        """Register one roster entry, e.g. an item of the YAML ``arbitrators`` list."""
        if not isinstance(entry, dict):
            raise InvalidConfiguration("Roster entries must be mappings", component="arbitrator_pool",
                                       action="register_entry")
        unknown = set(entry) - set(self.REGISTER_FIELDS)
        if unknown:
            raise InvalidConfiguration(
                f"Unknown roster fields: {sorted(unknown)}",
                component="arbitrator_pool",
                action="register_entry",
            )
        entry = dict(entry)
        address = entry.pop("address", None)
        if not address:
            raise InvalidConfiguration("Roster entry without address", component="arbitrator_pool",
                                       action="register_entry")
        return self.register(address, **entry)

    def _validate_attributes(self, **attributes: Any) -> None:
        """
        Type- and range-check profile attributes before anything is stored.

        ``specialization`` and ``blacklist`` may be None (keep defaults) at
        registration; every other attribute must carry a real value.

        Raises:
            InvalidConfiguration: wrong type or out of range
        """
        def invalid(message: str) -> InvalidConfiguration:
            return InvalidConfiguration(message, component="arbitrator_pool", action="validate")

        for name, value in attributes.items():
            if name in ("reputation", "avg_response_time"):
                if not _is_count(value):
                    raise invalid(f"{name} must be a non-negative integer")
            elif name in ("enrolled", "available"):
                if not isinstance(value, bool):
                    raise invalid(f"{name} must be a boolean")
            elif name == "specialization" and value is not None:
                if not isinstance(value, dict):
                    raise invalid("specialization must be a mapping of size bucket to score")
                valid = {bucket.value for bucket in DisputeSizeBucket}
                for bucket, score in value.items():
                    if bucket not in valid:
                        raise invalid(f"Unknown specialization bucket '{bucket}'")
                    if not _is_count(score):
                        raise invalid("specialization scores must be non-negative integers")
            elif name == "blacklist" and value is not None:
                if not isinstance(value, (list, tuple, set)) or not all(isinstance(p, str) for p in value):
                    raise invalid("blacklist must be a list of addresses")

    # =========================================================================
    # Arbitrator Self-Service
    # =========================================================================

    def set_availability(self, caller: str, available: bool) -> ArbitratorProfile:
        """An arbitrator toggles its own availability."""
        with self._lock:
            profile = self._own_profile(caller, "set_availability")
            profile.available = available
            self.events.emit(
                ARBITRATOR_UPDATED, self.clock.now(), arbitrator=caller, changes=["available"]
            )
            return profile

    def blacklist_party(self, caller: str, party: str) -> ArbitratorProfile:
        """An arbitrator declares it will not serve ``party``."""
        with self._lock:
            profile = self._own_profile(caller, "blacklist_party")
            profile.blacklist.add(party)
            return profile

    def unblacklist_party(self, caller: str, party: str) -> ArbitratorProfile:
        with self._lock:
            profile = self._own_profile(caller, "unblacklist_party")
            profile.blacklist.discard(party)
            return profile

    def _own_profile(self, caller: str, action: str) -> ArbitratorProfile:
        profile = self.profiles.get(caller)
        if profile is None:
            raise UnauthorizedAccess(
                "Only a registered arbitrator may manage its own profile",
                caller=caller,
                component="arbitrator_pool",
                action=action,
            )
        return profile

    # =========================================================================
    # Queries
    # =========================================================================

    def get_profile(self, address: str) -> ArbitratorProfile:
        profile = self.profiles.get(address)
        if profile is None:
            raise ArbitratorNotFound(
                f"Arbitrator {address} not found",
                component="arbitrator_pool",
                action="get_profile",
                details={"address": address},
            )
        return profile

    def list_profiles(self, enrolled_only: bool = False) -> list[ArbitratorProfile]:
        with self._lock:
            profiles = [self.profiles[address] for address in self.roster]
        if enrolled_only:
            profiles = [p for p in profiles if p.enrolled]
        return profiles

    # =========================================================================
    # Selection
    # =========================================================================

    def ineligibility(
        self,
        profile: ArbitratorProfile,
        initiator: str,
        responder: str
    ) -> Ineligibility | None:
        """Return why ``profile`` cannot take this dispute, or None if it can."""
        if not profile.enrolled:
            return Ineligibility.NOT_ENROLLED
        if profile.reputation < self.config.min_reputation:
            return Ineligibility.LOW_REPUTATION
        if profile.active_disputes >= self.config.max_active_disputes:
            return Ineligibility.AT_CAPACITY
        if not profile.available:
            return Ineligibility.UNAVAILABLE
        if profile.refuses(initiator):
            return Ineligibility.BLACKLISTED_INITIATOR
        if profile.refuses(responder):
            return Ineligibility.BLACKLISTED_RESPONDER
        return None

    def collect_candidates(self, initiator: str, responder: str, dispute_amount: int) -> list[Candidate]:
        """Eligible candidates in scan order, capped at ``max_candidates``."""
        bucket = bucket_for_amount(dispute_amount)
        capacity = self.config.max_active_disputes
        candidates: list[Candidate] = []

        with self._lock:
            for address in self.roster:
                if len(candidates) >= self.config.max_candidates:
                    break
                profile = self.profiles[address]
                reason = self.ineligibility(profile, initiator, responder)
                if reason is not None:
                    logger.debug("Arbitrator %s skipped: %s", address, reason.value)
                    continue

                specialization = profile.specialization_for(bucket)
                responsiveness = responsiveness_score(profile.avg_response_time)
                candidates.append(Candidate(
                    address=address,
                    reputation=profile.reputation,
                    workload=profile.active_disputes,
                    specialization=specialization,
                    responsiveness=responsiveness,
                    score=aggregate_score(
                        profile.reputation,
                        capacity - profile.active_disputes,
                        specialization,
                        responsiveness,
                    ),
                ))

        return candidates

    def rank_candidates(self, initiator: str, responder: str, dispute_amount: int) -> list[Candidate]:
        """Candidates ordered best first; ties keep scan order."""
        candidates = self.collect_candidates(initiator, responder, dispute_amount)
        return sorted(candidates, key=lambda c: -c.score)

    def select(self, initiator: str, responder: str, dispute_amount: int) -> Candidate:
        """
        Pick the best candidate without recording the assignment.

        Raises:
            NoEligibleArbitrators: if no arbitrator passes the filters
        """
        best: Candidate | None = None
        for candidate in self.collect_candidates(initiator, responder, dispute_amount):
            if best is None or candidate.score > best.score:
                best = candidate

        if best is None:
            raise NoEligibleArbitrators(
                "No eligible arbitrators for this dispute",
                component="arbitrator_pool",
                action="select",
                details={
                    "initiator": initiator,
                    "responder": responder,
                    "dispute_amount": dispute_amount,
                    "roster_size": len(self.roster),
                },
            )
        return best

    def select_arbitrator(
        self,
        initiator: str,
        responder: str,
        dispute_amount: int,
        escrow_id: int | None = None
    ) -> str:
        """
        Select an arbitrator and record the assignment.

        Increments the winner's active-dispute count, stamps its last
        assignment time and emits ArbitratorSelected.

        Returns:
            The selected arbitrator's address
        """
        with self._lock:
            best = self.select(initiator, responder, dispute_amount)
            now = self.clock.now()

            profile = self.profiles[best.address]
            profile.active_disputes += 1
            profile.total_assignments += 1
            profile.last_assignment = now

            self.events.emit(
                ARBITRATOR_SELECTED,
                now,
                escrow_id=escrow_id,
                arbitrator=best.address,
                initiator=initiator,
                responder=responder,
                score=best.score,
            )
            logger.info(
                "Arbitrator %s selected with score %d", best.address, best.score,
                extra={"escrow_id": escrow_id},
            )
            return best.address

    def release_assignment(self, address: str) -> None:
        """Free one unit of capacity once a dispute is resolved."""
        with self._lock:
            profile = self.profiles.get(address)
            if profile is not None and profile.active_disputes > 0:
                profile.active_disputes -= 1

    # =========================================================================
    # Unit of Work
    # =========================================================================

    @contextmanager
    def atomic(self):
        with self._lock:
            snapshot = (copy.deepcopy(self.profiles), list(self.roster))
            try:
                yield
            except BaseException:
                self.profiles, self.roster = snapshot
                raise
