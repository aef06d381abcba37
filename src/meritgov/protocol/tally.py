"""
meritgov/protocol/tally.py

Vote records and the per-choice tally fold.

The tally is never a source of truth on its own: it is always the sum
of the effective weights of the votes that produced it, so the same
fold works on live votes and on votes rebuilt from the log.
"""

from typing import Iterable, Optional, Union
from dataclasses import dataclass, asdict
from enum import Enum

from ..errors import InvalidArgument


class VoteChoice(Enum):
    """Vote options, valued as they appear on the wire."""
    AGAINST = 0
    FOR = 1
    ABSTAIN = 2

    @classmethod
    def parse(cls, value: Union["VoteChoice", int, str]) -> "VoteChoice":
        """
        Convert an int, numeric string or name to a VoteChoice.

        Raises:
            InvalidArgument: if the value names no choice
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                raise InvalidArgument(f"unknown vote choice {value}") from None
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized.isdigit():
                return cls.parse(int(normalized))
            mapping = {
                "against": cls.AGAINST,
                "no": cls.AGAINST,
                "for": cls.FOR,
                "yes": cls.FOR,
                "abstain": cls.ABSTAIN,
            }
            if normalized in mapping:
                return mapping[normalized]
        raise InvalidArgument(
            f"unknown vote choice {value!r}. Valid options: against, for, abstain"
        )

    def __str__(self) -> str:
        return self.name


def effective_weight(raw_power: int, cap: int) -> int:
    """Weight counted for a vote: the cap can only restrict raw power."""
    return min(raw_power, cap)


@dataclass(frozen=True)
class Vote:
    """A recorded vote; at most one per (proposal, voter)."""
    proposal_id: int
    voter: str
    choice: VoteChoice
    effective_weight: int
    reason: Optional[str] = None
    raw_power: int = 0
    cap: int = 0
    timestamp: int = 0

    def to_dict(self) -> dict:
        return {
            **asdict(self),
            "choice": self.choice.name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Vote":
        data = dict(data)
        data["choice"] = VoteChoice.parse(data["choice"])
        return cls(**data)


@dataclass
class TallyRecord:
    """Per-choice sums of effective weight."""
    against: int = 0
    for_votes: int = 0
    abstain: int = 0

    def add(self, choice: VoteChoice, weight: int) -> None:
        if choice is VoteChoice.AGAINST:
            self.against += weight
        elif choice is VoteChoice.FOR:
            self.for_votes += weight
        else:
            self.abstain += weight

    def get(self, choice: VoteChoice) -> int:
        if choice is VoteChoice.AGAINST:
            return self.against
        if choice is VoteChoice.FOR:
            return self.for_votes
        return self.abstain

    @property
    def total(self) -> int:
        return self.against + self.for_votes + self.abstain

    @property
    def quorum_weight(self) -> int:
        """Weight counted toward quorum (for + abstain)."""
        return self.for_votes + self.abstain

    def as_tuple(self) -> tuple:
        return (self.against, self.for_votes, self.abstain)

    def to_dict(self) -> dict:
        return {"against": self.against, "for": self.for_votes, "abstain": self.abstain}

    @classmethod
    def fold(cls, votes: Iterable[Vote]) -> "TallyRecord":
        """Sum the effective weight of votes per choice."""
        tally = cls()
        for vote in votes:
            tally.add(vote.choice, vote.effective_weight)
        return tally
