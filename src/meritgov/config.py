"""
meritgov/config.py

Configuration constants and the GovernanceConfig data class.

A GovernanceConfig is built once at process start (directly, or from
MERITGOV_* environment variables) and handed to each component's
constructor. It is frozen; components never read configuration from
anywhere else.
"""

import os
from dataclasses import dataclass, field, asdict
from typing import Dict, Mapping, Optional, Tuple


# Time
SECONDS_PER_DAY = 86400
DEFAULT_VOTING_DELAY = 3600               # Voting starts 1 hour after creation
DEFAULT_VOTING_PERIOD = 7 * SECONDS_PER_DAY

# Resolution
DEFAULT_QUORUM = 0                        # Minimum for + abstain weight
DEFAULT_TIMELOCK_DELAY = 0                # Seconds between queue and execute
DEFAULT_GRACE_PERIOD = 14 * SECONDS_PER_DAY

# Reconciliation
DEFAULT_LOOKBACK = 20000                  # Trailing log positions to replay (0 = all)

ENV_PREFIX = "MERITGOV_"


@dataclass(frozen=True)
class GovernanceConfig:
    """Immutable engine configuration."""
    seconds_per_day: int = SECONDS_PER_DAY
    voting_delay: int = DEFAULT_VOTING_DELAY
    voting_period: int = DEFAULT_VOTING_PERIOD
    quorum: int = DEFAULT_QUORUM
    timelock_delay: int = DEFAULT_TIMELOCK_DELAY
    grace_period: int = DEFAULT_GRACE_PERIOD
    admin: str = ""
    publishers: Tuple[str, ...] = field(default_factory=tuple)
    lookback: int = DEFAULT_LOOKBACK
    explorer_base: str = ""

    def __post_init__(self):
        if self.seconds_per_day <= 0:
            raise ValueError(f"seconds_per_day must be positive, got {self.seconds_per_day}")
        if self.voting_period <= 0:
            raise ValueError(f"voting_period must be positive, got {self.voting_period}")
        for name in ("voting_delay", "quorum", "timelock_delay", "grace_period", "lookback"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative, got {getattr(self, name)}")
        # Allow lists from callers while keeping the instance hashable
        object.__setattr__(self, "publishers", tuple(self.publishers))

    def to_dict(self) -> dict:
        data = asdict(self)
        data["publishers"] = list(self.publishers)
        return data

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GovernanceConfig":
        """
        Build a config from MERITGOV_* environment variables.

        Unset variables keep their defaults. MERITGOV_PUBLISHERS is a
        comma separated list of accounts.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            GovernanceConfig instance

        Raises:
            ValueError: if an integer variable cannot be parsed
        """
        env = os.environ if environ is None else environ
        kwargs: Dict[str, object] = {}

        for name in (
            "seconds_per_day",
            "voting_delay",
            "voting_period",
            "quorum",
            "timelock_delay",
            "grace_period",
            "lookback",
        ):
            key = ENV_PREFIX + name.upper()
            raw = env.get(key)
            if raw is None or raw.strip() == "":
                continue
            try:
                kwargs[name] = int(raw)
            except ValueError:
                raise ValueError(f"{key} must be an integer, got {raw!r}") from None

        if env.get(ENV_PREFIX + "ADMIN"):
            kwargs["admin"] = env[ENV_PREFIX + "ADMIN"].strip()
        if env.get(ENV_PREFIX + "PUBLISHERS"):
            kwargs["publishers"] = tuple(
                p.strip() for p in env[ENV_PREFIX + "PUBLISHERS"].split(",") if p.strip()
            )
        if env.get(ENV_PREFIX + "EXPLORER_BASE"):
            kwargs["explorer_base"] = env[ENV_PREFIX + "EXPLORER_BASE"].rstrip("/")

        return cls(**kwargs)
