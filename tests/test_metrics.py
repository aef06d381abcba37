"""
Tests for meritgov/metrics.py
"""

import pytest

from meritgov.cli import run_demo
from meritgov.clock import ManualClock
from meritgov.config import GovernanceConfig
from meritgov.errors import DuplicateVote, InvalidStateTransition, Unauthorized
from meritgov.events import EventLog
from meritgov.metrics import MetricsCollector
from meritgov.protocol.governance import Governor
from meritgov.protocol.tally import VoteChoice
from meritgov.protocol.voting_power import CheckpointedVotingPower
from meritgov.protocol.weights import WeightRegistry


def create_test_governor():
    """Create a governor with one funded, capped voter and a manual clock."""
    config = GovernanceConfig(
        admin="EAdmin", publishers=("EOracle",), voting_delay=60, voting_period=1200
    )
    clock = ManualClock(5 * 86400)
    log = EventLog()
    registry = WeightRegistry(config, log, clock=clock)
    power = CheckpointedVotingPower.from_dict({"EVoter": 100})
    registry.publish("EOracle", 5, 1, ["EVoter"], [50])
    return Governor(config, registry, power, log, clock=clock), clock


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_collect_after_demo(self):
        """Test Prometheus output reflects the governor's state."""
        governor = run_demo()
        proposal = governor.get_proposals()[0]
        output = MetricsCollector(governor).collect()

        assert "# TYPE meritgov_proposals_total gauge" in output
        assert "meritgov_proposals_total 1" in output
        assert 'meritgov_proposals_by_state{state="succeeded"} 1' in output
        assert 'meritgov_proposals_by_state{state="active"} 0' in output
        assert "meritgov_votes_total 3" in output
        assert f'meritgov_tally_weight{{proposal="{proposal.proposal_id}",choice="for"}} 100000' in output
        assert "meritgov_weight_entries_total 3" in output
        assert f"meritgov_events_total {len(governor.event_log)}" in output
        assert output.endswith("\n")

    def test_collect_at_time(self):
        """Test states are evaluated at the given time."""
        governor = run_demo()
        window_start = governor.get_proposals()[0].window_start
        output = MetricsCollector(governor).collect(now=window_start)
        assert 'meritgov_proposals_by_state{state="active"} 1' in output

    def test_rejections(self):
        """Test rejected operations are counted by error type."""
        governor = run_demo()
        metrics = MetricsCollector(governor)
        metrics.record_rejection(DuplicateVote(1, "EVoter1"))
        metrics.record_rejection(DuplicateVote(1, "EVoter2"))
        metrics.record_rejection(Unauthorized("EMallory", "publisher"))

        output = metrics.collect()
        assert 'meritgov_rejections_total{error="DuplicateVote"} 2' in output
        assert 'meritgov_rejections_total{error="Unauthorized"} 1' in output
        assert metrics.get_stats()["rejections"] == {"DuplicateVote": 2, "Unauthorized": 1}

    def test_get_stats(self):
        governor = run_demo()
        stats = MetricsCollector(governor).get_stats()
        assert stats["total_proposals"] == 1
        assert stats["total_votes"] == 3
        assert stats["weight_entries"] == 3
        assert stats["states"]["succeeded"] == 1


class TestRejectionHook:
    """Tests that real rejected operations reach the collector."""

    def test_duplicate_vote_counted(self):
        """Test a rejected second vote bumps the rejection counter."""
        governor, clock = create_test_governor()
        metrics = MetricsCollector(governor)
        proposal_id = governor.propose("EVoter", 1, ["EGovToken"], [0], [b""], "Round")

        with pytest.raises(InvalidStateTransition):
            governor.cast_vote(proposal_id, "EVoter", VoteChoice.FOR)
        clock.advance(60)
        governor.cast_vote(proposal_id, "EVoter", VoteChoice.FOR)
        with pytest.raises(DuplicateVote):
            governor.cast_vote(proposal_id, "EVoter", VoteChoice.AGAINST)

        output = metrics.collect()
        assert 'meritgov_rejections_total{error="DuplicateVote"} 1' in output
        assert 'meritgov_rejections_total{error="InvalidStateTransition"} 1' in output
        assert governor.proposal_votes(proposal_id).as_tuple() == (0, 50, 0)

    def test_registry_rejection_counted(self):
        """Test a rejected publish reaches the collector through the governor."""
        governor, _ = create_test_governor()
        metrics = MetricsCollector(governor)

        with pytest.raises(Unauthorized):
            governor.registry.publish("EMallory", 5, 1, ["EVoter"], [1])

        assert metrics.get_stats()["rejections"] == {"Unauthorized": 1}

    def test_successful_operations_not_counted(self):
        governor, _ = create_test_governor()
        metrics = MetricsCollector(governor)
        governor.propose("EVoter", 1, [], [], [], "Clean")
        assert metrics.get_stats()["rejections"] == {}
