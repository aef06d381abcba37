"""
Tests for meritgov/protocol/tally.py
"""

import pytest

from meritgov.errors import InvalidArgument
from meritgov.protocol.tally import TallyRecord, Vote, VoteChoice, effective_weight


def create_test_vote(voter: str, choice: VoteChoice, weight: int) -> Vote:
    return Vote(proposal_id=1, voter=voter, choice=choice, effective_weight=weight)


class TestVoteChoice:
    """Tests for VoteChoice parsing."""

    @pytest.mark.parametrize("value,expected", [
        (VoteChoice.FOR, VoteChoice.FOR),
        (0, VoteChoice.AGAINST),
        (1, VoteChoice.FOR),
        (2, VoteChoice.ABSTAIN),
        ("2", VoteChoice.ABSTAIN),
        ("For", VoteChoice.FOR),
        ("yes", VoteChoice.FOR),
        (" no ", VoteChoice.AGAINST),
        ("ABSTAIN", VoteChoice.ABSTAIN),
    ])
    def test_parse(self, value, expected):
        assert VoteChoice.parse(value) is expected

    @pytest.mark.parametrize("value", [3, -1, "maybe", True, None, 1.0])
    def test_parse_invalid(self, value):
        with pytest.raises(InvalidArgument):
            VoteChoice.parse(value)

    def test_str(self):
        assert str(VoteChoice.ABSTAIN) == "ABSTAIN"


class TestEffectiveWeight:
    """Tests for effective_weight."""

    def test_cap_restricts(self):
        assert effective_weight(1_000_000, 100_000) == 100_000

    def test_power_restricts(self):
        assert effective_weight(10, 100_000) == 10

    def test_zero_cap(self):
        assert effective_weight(500, 0) == 0


class TestTallyRecord:
    """Tests for TallyRecord."""

    def test_fold(self):
        """Test summing votes per choice."""
        tally = TallyRecord.fold([
            create_test_vote("E1", VoteChoice.FOR, 100),
            create_test_vote("E2", VoteChoice.AGAINST, 30),
            create_test_vote("E3", VoteChoice.FOR, 5),
            create_test_vote("E4", VoteChoice.ABSTAIN, 7),
        ])
        assert tally.as_tuple() == (30, 105, 7)
        assert tally.total == 142
        assert tally.quorum_weight == 112
        assert tally.get(VoteChoice.FOR) == 105
        assert tally.to_dict() == {"against": 30, "for": 105, "abstain": 7}

    def test_fold_empty(self):
        assert TallyRecord.fold([]).as_tuple() == (0, 0, 0)

    def test_vote_dict_conversion(self):
        """Test Vote to_dict/from_dict."""
        vote = Vote(1, "E1", VoteChoice.ABSTAIN, 5, "hmm", raw_power=9, cap=5, timestamp=3)
        data = vote.to_dict()
        assert data["choice"] == "ABSTAIN"
        assert Vote.from_dict(data) == vote
