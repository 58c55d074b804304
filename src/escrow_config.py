"""
CryptoEscrow - Configuration

Configuration is resolved from (in increasing priority) built-in defaults, an
optional YAML file and ``ESCROW_*`` environment variables. The CLI loads a
``.env`` file first, so values there behave like environment variables.

Environment Variables:
    ESCROW_CONFIG_FILE=/path/to/escrow.yaml
    ESCROW_PLATFORM_FEE_BPS=100
    ESCROW_DISPUTE_FEE=100000000000000000
    ESCROW_MIN_AMOUNT=1
    ESCROW_DISPUTE_WINDOW_SECONDS=604800
    ESCROW_MIN_REPUTATION=0
    ESCROW_MAX_ACTIVE_DISPUTES=5
    ESCROW_OWNER=0x...
    ESCROW_FEE_COLLECTOR=0x...
    ESCROW_ADMINISTRATORS=0x...,0x...
    ESCROW_SUPPORTED_TOKENS=0x...,0x...
    ESCROW_API_KEYS=0xaddress=key,0xaddress=key
    ESCROW_REQUIRE_AUTH=true
"""

import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

import yaml

from asset_gateway import UNIT, ZERO_ADDRESS, is_zero_address
from escrow_exceptions import InvalidConfiguration
from fee_policy import MAX_PLATFORM_FEE_BPS, validate_fee_rate

DEFAULT_PLATFORM_FEE_BPS = 100          # 1%
DEFAULT_DISPUTE_FEE = UNIT // 10        # 0.1 native units
DEFAULT_MIN_ESCROW_AMOUNT = 1
DEFAULT_DISPUTE_WINDOW = 7 * 24 * 3600  # 7 days
DEFAULT_MIN_REPUTATION = 0
DEFAULT_MAX_ACTIVE_DISPUTES = 5
MAX_CANDIDATES = 10
DEFAULT_OWNER = "0x00000000000000000000000000000000000000a1"

ENV_PREFIX = "ESCROW_"

# platform_fee_bps is type-checked by validate_fee_rate
INT_FIELDS = (
    "max_platform_fee_bps",
    "dispute_fee",
    "min_escrow_amount",
    "dispute_window",
    "min_reputation",
    "max_active_disputes",
    "max_candidates",
)


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_api_keys(value: str) -> dict[str, str]:
    """Parse ``address=key,address=key``."""
    keys = {}
    for item in _split_list(value):
        address, sep, key = item.partition("=")
        if not sep or not address.strip() or not key.strip():
            raise InvalidConfiguration(
                f"{ENV_PREFIX}API_KEYS entries must look like address=key",
                component="config",
                action="from_env",
            )
        keys[address.strip()] = key.strip()
    return keys


@dataclass
class EscrowConfig:
    """Tunable parameters of the escrow core."""
    platform_fee_bps: int = DEFAULT_PLATFORM_FEE_BPS
    max_platform_fee_bps: int = MAX_PLATFORM_FEE_BPS
    dispute_fee: int = DEFAULT_DISPUTE_FEE
    min_escrow_amount: int = DEFAULT_MIN_ESCROW_AMOUNT
    dispute_window: int = DEFAULT_DISPUTE_WINDOW
    min_reputation: int = DEFAULT_MIN_REPUTATION
    max_active_disputes: int = DEFAULT_MAX_ACTIVE_DISPUTES
    max_candidates: int = MAX_CANDIDATES
    owner: str = DEFAULT_OWNER
    fee_collector: str | None = None  # defaults to owner
    administrators: list[str] = field(default_factory=list)
    supported_tokens: list[str] = field(default_factory=list)
    arbitrators: list[dict[str, Any]] = field(default_factory=list)
    # address -> API key proving that address over HTTP
    api_keys: dict[str, str] = field(default_factory=dict, repr=False)
    require_auth: bool = True

    def __post_init__(self):
        if self.fee_collector is None:
            self.fee_collector = self.owner

    def validate(self) -> "EscrowConfig":
        """
        Check every threshold.

        Raises:
            InvalidFeeConfiguration: platform fee out of bounds
            InvalidConfiguration: any other threshold out of bounds, or a
                setting of the wrong type
        """
        self._check_types()
        validate_fee_rate(self.platform_fee_bps, self.max_platform_fee_bps)
        checks = [
            (self.dispute_fee >= 0, "dispute_fee must be non-negative"),
            (self.min_escrow_amount > 0, "min_escrow_amount must be positive"),
            (self.dispute_window > 0, "dispute_window must be positive"),
            (self.min_reputation >= 0, "min_reputation must be non-negative"),
            (self.max_active_disputes >= 1, "max_active_disputes must be at least 1"),
            (self.max_candidates >= 1, "max_candidates must be at least 1"),
            (not is_zero_address(self.owner), "owner must be set"),
            (not is_zero_address(self.fee_collector), "fee_collector must be set"),
        ]
        for ok, message in checks:
            if not ok:
                raise InvalidConfiguration(message, component="config", action="validate")
        return self

    def _check_types(self) -> None:
        def invalid(message: str) -> InvalidConfiguration:
            return InvalidConfiguration(message, component="config", action="validate")

        for name in INT_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise invalid(f"{name} must be an integer, got {value!r}")
        for name in ("owner", "fee_collector"):
            if not isinstance(getattr(self, name), str):
                raise invalid(f"{name} must be an address")
        for name in ("administrators", "supported_tokens"):
            value = getattr(self, name)
            if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
                raise invalid(f"{name} must be a list of addresses")
        if not isinstance(self.arbitrators, list):
            raise invalid("arbitrators must be a list of roster entries")
        if not isinstance(self.api_keys, Mapping) or not all(
            isinstance(k, str) and isinstance(v, str) and v for k, v in self.api_keys.items()
        ):
            raise invalid("api_keys must map addresses to non-empty keys")
        if not isinstance(self.require_auth, bool):
            raise invalid("require_auth must be a boolean")

    def to_dict(self) -> dict[str, Any]:
        """Settings without the roster and without API keys."""
        data = asdict(self)
        data.pop("arbitrators")
        data.pop("api_keys")
        return data

    def public_dict(self) -> dict[str, Any]:
        """Settings safe to show unauthenticated clients: no role holders."""
        data = self.to_dict()
        for name in ("owner", "administrators", "require_auth"):
            data.pop(name)
        return data

    def api_key_for(self, address: str) -> str | None:
        """The key bound to ``address`` (addresses compare case-insensitively)."""
        wanted = address.lower()
        for bound, key in self.api_keys.items():
            if bound.lower() == wanted:
                return key
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EscrowConfig":
        known = {f for f in cls.__dataclass_fields__}
        unknown = set(data) - known
        if unknown:
            raise InvalidConfiguration(
                f"Unknown configuration keys: {sorted(unknown)}",
                component="config",
                action="from_dict",
            )
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: str) -> "EscrowConfig":
        """Load configuration (and an optional ``arbitrators`` roster) from YAML."""
        with open(path, encoding="utf-8") as fh:
            try:
                data = yaml.safe_load(fh) or {}
            except yaml.YAMLError as e:
                raise InvalidConfiguration(
                    f"{path}: malformed YAML",
                    component="config",
                    action="from_yaml",
                    cause=e,
                ) from e
        if not isinstance(data, dict):
            raise InvalidConfiguration(
                f"{path}: top level must be a mapping",
                component="config",
                action="from_yaml",
            )
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "EscrowConfig":
        """Build configuration from the environment, layered over an optional YAML file."""
        env = os.environ if environ is None else environ

        config_file = env.get(f"{ENV_PREFIX}CONFIG_FILE")
        config = cls.from_yaml(config_file) if config_file else cls()

        int_fields = {
            "PLATFORM_FEE_BPS": "platform_fee_bps",
            "DISPUTE_FEE": "dispute_fee",
            "MIN_AMOUNT": "min_escrow_amount",
            "DISPUTE_WINDOW_SECONDS": "dispute_window",
            "MIN_REPUTATION": "min_reputation",
            "MAX_ACTIVE_DISPUTES": "max_active_disputes",
        }
        for suffix, attr in int_fields.items():
            raw = env.get(ENV_PREFIX + suffix)
            if raw is None:
                continue
            try:
                setattr(config, attr, int(raw))
            except ValueError as e:
                raise InvalidConfiguration(
                    f"{ENV_PREFIX + suffix} must be an integer, got {raw!r}",
                    component="config",
                    action="from_env",
                    cause=e,
                ) from e

        owner = env.get(f"{ENV_PREFIX}OWNER")
        if owner:
            if config.fee_collector == config.owner:
                config.fee_collector = owner
            config.owner = owner
        if env.get(f"{ENV_PREFIX}FEE_COLLECTOR"):
            config.fee_collector = env[f"{ENV_PREFIX}FEE_COLLECTOR"]
        if env.get(f"{ENV_PREFIX}ADMINISTRATORS"):
            config.administrators = _split_list(env[f"{ENV_PREFIX}ADMINISTRATORS"])
        if env.get(f"{ENV_PREFIX}SUPPORTED_TOKENS"):
            config.supported_tokens = _split_list(env[f"{ENV_PREFIX}SUPPORTED_TOKENS"])
        if env.get(f"{ENV_PREFIX}API_KEYS"):
            config.api_keys = _parse_api_keys(env[f"{ENV_PREFIX}API_KEYS"])
        if env.get(f"{ENV_PREFIX}REQUIRE_AUTH"):
            config.require_auth = env[f"{ENV_PREFIX}REQUIRE_AUTH"].lower() == "true"

        return config

    def admin_set(self) -> set[str]:
        """Addresses holding the administrator role."""
        return {self.owner, *self.administrators}


def tokens_for_allow_list(config: EscrowConfig) -> set[str]:
    """Initial allow-list: native currency plus configured tokens."""
    return {ZERO_ADDRESS, *config.supported_tokens}
