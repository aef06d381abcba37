"""
meritgov/protocol/voting_power.py

Voting-power source boundary.

The token ledger that tracks balances and delegation lives outside this
package. The engine only needs a deterministic point-in-time query:
how much delegated power did an account have at a snapshot point.
CheckpointedVotingPower is an in-memory implementation backed by
per-account balance checkpoints, used by the CLI and the tests.
"""

import bisect
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, List, Tuple

logger = logging.getLogger("meritgov.protocol.voting_power")


class VotingPowerSource(ABC):
    """Read-only point-in-time voting power oracle."""

    @abstractmethod
    def power_at(self, account: str, point: int) -> int:
        """
        Get an account's voting power as of a snapshot point.

        Must return the same value for the same (account, point) no
        matter when it is asked.
        """


class CheckpointedVotingPower(VotingPowerSource):
    """Voting power from per-account (point, balance) checkpoints."""

    def __init__(self):
        self._points: Dict[str, List[int]] = {}
        self._balances: Dict[str, List[int]] = {}

    def checkpoint(self, account: str, point: int, balance: int) -> None:
        """
        Record an account's balance from a point onward.

        Checkpoints for an account must be added in non-decreasing point
        order; a checkpoint at the latest point replaces it.

        Raises:
            ValueError: negative balance or out-of-order point
        """
        if balance < 0:
            raise ValueError(f"balance for {account} must not be negative, got {balance}")

        points = self._points.setdefault(account, [])
        balances = self._balances.setdefault(account, [])

        if points and point < points[-1]:
            raise ValueError(
                f"checkpoint for {account} at {point} precedes latest checkpoint {points[-1]}"
            )
        if points and point == points[-1]:
            balances[-1] = balance
        else:
            points.append(point)
            balances.append(balance)

    def power_at(self, account: str, point: int) -> int:
        points = self._points.get(account)
        if not points:
            return 0
        index = bisect.bisect_right(points, point) - 1
        if index < 0:
            return 0
        return self._balances[account][index]

    def accounts(self) -> List[str]:
        return sorted(self._points)

    def to_dict(self) -> dict:
        return {
            account: [[p, b] for p, b in zip(self._points[account], self._balances[account])]
            for account in self.accounts()
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CheckpointedVotingPower":
        """
        Build from {account: balance} or {account: [[point, balance], ...]}.

        A bare balance is treated as a checkpoint at point 0.
        """
        source = cls()
        for account, value in data.items():
            if isinstance(value, int):
                checkpoints: List[Tuple[int, int]] = [(0, value)]
            else:
                checkpoints = sorted((int(p), int(b)) for p, b in value)
            for point, balance in checkpoints:
                source.checkpoint(account, point, balance)
        return source

    @classmethod
    def load(cls, path: str) -> "CheckpointedVotingPower":
        """Load checkpoints from a JSON file; a missing file yields no power."""
        path = os.path.expanduser(path)
        if not os.path.exists(path):
            logger.warning(f"Voting power file not found: {path}")
            return cls()
        with open(path, "r") as f:
            data = json.load(f)
        source = cls.from_dict(data)
        logger.info(f"Loaded voting power for {len(source.accounts())} accounts from {path}")
        return source
