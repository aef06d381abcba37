"""
Tests for meritgov/protocol/reconciler.py

Tests log-only reconstruction of proposals and votes, including
tolerance of older event shapes and damaged records.
"""

import pytest

from meritgov.clock import ManualClock
from meritgov.config import GovernanceConfig
from meritgov.events import EventLog, VOTE_CAST, PROPOSAL_CREATED
from meritgov.protocol.governance import Governor
from meritgov.protocol.reconciler import (
    FieldSpec,
    NamedField,
    PositionalField,
    Reconciler,
    classify_event,
    field_spec,
    to_log_record,
)
from meritgov.protocol.tally import VoteChoice
from meritgov.protocol.voting_power import CheckpointedVotingPower
from meritgov.protocol.weights import WeightRegistry


DAY = 86400
START = 5 * DAY


# ============================================================================
# TEST DATA
# ============================================================================

def create_live_history():
    """Run a small live session and return (governor, log, config)."""
    config = GovernanceConfig(
        admin="EAdmin",
        publishers=("EOracle",),
        voting_delay=60,
        voting_period=1200,
        lookback=0,
    )
    clock = ManualClock(START)
    log = EventLog()
    registry = WeightRegistry(config, log, clock=clock)
    power = CheckpointedVotingPower.from_dict({"EWhale": 1_000_000, "EV1": 10, "EV2": 10})
    governor = Governor(config, registry, power, log, clock=clock)

    registry.publish("EOracle", 5, 1, ["EWhale", "EV1", "EV2"], [100_000, 10, 5])
    kept = governor.propose("EProposer", 1, ["EToken"], [0], [b""], "Keep")
    dropped = governor.propose("EProposer", 1, ["EToken"], [0], [b""], "Drop")
    governor.cancel(dropped, "EProposer")
    clock.advance(60)
    governor.cast_vote(kept, "EWhale", VoteChoice.FOR, "ship it")
    governor.cast_vote(kept, "EV1", VoteChoice.AGAINST)
    governor.cast_vote(kept, "EV2", VoteChoice.ABSTAIN)
    clock.advance(1200)
    governor.queue(kept)
    governor.execute(kept)
    return governor, log, config


def record(name, args, position, timestamp=None, tx="0xabc"):
    """Build a raw mapping record the way an external indexer would."""
    data = {"event": name, "args": args, "logIndex": position, "transactionHash": tx}
    if timestamp is not None:
        data["blockTimestamp"] = timestamp
    return data


# ============================================================================
# ACCESSOR TESTS
# ============================================================================

class TestAccessors:
    """Tests for field accessors."""

    def test_named_first_present(self):
        """Test the first present name wins."""
        accessor = NamedField("windowStart", "voteStart")
        assert accessor.try_extract({"voteStart": 5}) == 5
        assert accessor.try_extract({"windowStart": 1, "voteStart": 5}) == 1
        assert accessor.try_extract({"other": 1}) is None
        assert accessor.try_extract([1, 2]) is None

    def test_named_zero_is_present(self):
        """Test falsy values are not treated as absent."""
        assert NamedField("weight").try_extract({"weight": 0}) == 0

    def test_positional(self):
        """Test positive and negative positions on lists and mappings."""
        assert PositionalField(0).try_extract(["a", "b", "c"]) == "a"
        assert PositionalField(-1).try_extract(["a", "b", "c"]) == "c"
        assert PositionalField(1).try_extract({"x": "a", "y": "b"}) == "b"
        assert PositionalField(5).try_extract(["a"]) is None
        assert PositionalField(0).try_extract("text") is None

    def test_spec_falls_back_and_converts(self):
        """Test a spec tries accessors in order and converts the result."""
        spec = field_spec("proposal_id", ("proposalId",), 0, int)
        assert isinstance(spec, FieldSpec)
        assert spec.try_extract({"proposalId": "7"}) == 7
        assert spec.try_extract(["9", "x"]) == 9
        assert spec.try_extract([]) is None

    @pytest.mark.parametrize("name,expected", [
        ("VoteCast", VOTE_CAST),
        ("VoteCastWithParams", VOTE_CAST),
        ("ProposalCancelled", "ProposalCanceled"),
        ("ProposalCreated", PROPOSAL_CREATED),
        ("PublisherGranted", "PublisherGranted"),
        ("PublisherRevoked", "PublisherRevoked"),
        ("Transfer", None),
        ("", None),
    ])
    def test_classify(self, name, expected):
        assert classify_event(name) == expected

    def test_log_record_envelope_variants(self):
        """Test envelopes from different producers normalize alike."""
        rec = to_log_record({"eventName": "VoteCast", "data": [1], "logIndex": "0x10", "txHash": "0xff"}, 0)
        assert rec.name == "VoteCast"
        assert rec.args == [1]
        assert rec.position == 16
        assert rec.tx_ref == "0xff"
        assert to_log_record("garbage", 3) is None


# ============================================================================
# LIVE ROUND TRIP TESTS
# ============================================================================

class TestReplayLiveLog:
    """Tests replaying a log produced by the live engine."""

    def test_matches_live_state(self):
        """Test the replayed view agrees with live state field by field."""
        governor, log, config = create_live_history()

        report = Reconciler(config).replay(log)

        assert report.compare(governor) == []
        assert report.is_clean
        assert len(report.proposals) == 2
        kept = next(p for p in report.proposals.values() if p.description == "Keep")
        assert kept.tally.as_tuple() == (10, 100_000, 5)
        assert kept.executed
        assert kept.queued_eta == START + 60 + 1200
        assert kept.votes[0].reason == "ship it"
        dropped = next(p for p in report.proposals.values() if p.description == "Drop")
        assert dropped.canceled

    def test_replay_is_idempotent(self):
        """Test replaying the same log twice yields identical reports."""
        _, log, config = create_live_history()
        reconciler = Reconciler(config)
        assert reconciler.replay(log).to_dict() == reconciler.replay(log).to_dict()

    def test_replay_from_file(self, tmp_path):
        """Test a persisted log replays the same as the in-memory one."""
        governor, log, config = create_live_history()
        path = str(tmp_path / "gov.jsonl")
        persisted = EventLog(path)
        for event in log:
            persisted.append(event.name, event.args, event.timestamp)

        report = Reconciler(config).replay(EventLog.load(path))
        assert report.compare(governor) == []

    def test_compare_detects_missing_vote(self):
        """Test a log missing a vote shows up as tally and voter mismatches."""
        governor, log, config = create_live_history()
        events = [e for e in log if not (e.name == VOTE_CAST and e.args["voter"] == "EV1")]

        mismatches = Reconciler(config).replay(events).compare(governor)

        fields = {m.field for m in mismatches}
        assert fields == {"tally", "voters"}
        assert "live=" in str(mismatches[0])

    def test_compare_detects_extra_proposal(self):
        """Test proposals only in the log are reported."""
        governor, log, config = create_live_history()
        events = list(log) + [record(PROPOSAL_CREATED, {
            "id": 99, "proposer": "EX", "windowStart": 1, "windowEnd": 2,
        }, len(log))]

        mismatches = Reconciler(config).replay(events).compare(governor)
        assert [(m.proposal_id, m.field) for m in mismatches] == [(99, "existence")]

    def test_lookback_limits_scan(self):
        """Test only the trailing window of records is replayed."""
        _, log, config = create_live_history()
        report = Reconciler(config, lookback=3).replay(log)

        assert report.events_scanned == 3
        assert report.first_position == len(log) - 3
        # The votes' proposal was created before the window
        assert report.proposals == {}

    def test_dataframe(self):
        """Test one row per vote with string proposal ids."""
        _, log, config = create_live_history()
        frame = Reconciler(config).replay(log).to_dataframe()

        assert len(frame) == 3
        assert set(frame["voter"]) == {"EWhale", "EV1", "EV2"}
        assert frame["weight"].sum() == 100_015
        assert all(isinstance(v, str) for v in frame["proposal_id"])

    def test_format_report(self):
        """Test the text report lists proposals, votes and explorer links."""
        _, log, config = create_live_history()
        text = Reconciler(config).replay(log).format_report("https://explorer.example/")

        assert text.startswith("Found proposals: 2")
        assert "Votes: against=10 for=100000 abstain=5" in text
        assert "https://explorer.example/tx/0x" in text
        assert "reason: ship it" in text
        assert "Canceled" in text


# ============================================================================
# SCHEMA VARIATION TESTS
# ============================================================================

class TestSchemaVariants:
    """Tests for records from other producer versions."""

    def test_alternate_names(self):
        """Test voteStart/voteEnd naming and no topic."""
        report = Reconciler().replay([
            record("ProposalCreated", {
                "proposalId": 7, "proposer": "EAlice", "targets": ["T"], "values": [0],
                "signatures": [""], "calldatas": ["0x"], "voteStart": 100, "voteEnd": 200,
                "description": "old style",
            }, 0),
            record("VoteCastWithParams", {
                "voter": "EBob", "proposalId": 7, "support": 1, "weight": 50,
                "reason": "", "params": "0x",
            }, 1, tx="0xdef"),
        ])

        proposal = report.proposals[7]
        assert (proposal.window_start, proposal.window_end) == (100, 200)
        assert proposal.topic_id is None
        assert proposal.description == "old style"
        assert proposal.votes[0].event_name == "VoteCastWithParams"
        assert proposal.votes[0].tx_ref == "0xdef"
        assert proposal.tally.as_tuple() == (0, 50, 0)
        assert report.is_clean

    def test_positional_args(self):
        """Test list args with trailing fields read from the end."""
        report = Reconciler().replay([
            record("ProposalCreated", [7, "EAlice", ["T"], [0], [""], ["0x"], 100, 200, "desc"], 0),
            record("VoteCast", ["EBob", 7, 0, 25, "no way"], 1),
            record("VoteCast", ["ECarol", "0x7", "2", "30"], 2),
        ])

        proposal = report.proposals[7]
        assert proposal.proposer == "EAlice"
        assert (proposal.window_start, proposal.window_end) == (100, 200)
        assert proposal.description == "desc"
        assert proposal.tally.as_tuple() == (25, 0, 30)
        assert proposal.votes[0].reason == "no way"

    def test_cancelled_spelling(self):
        """Test the British spelling is understood."""
        report = Reconciler().replay([
            record("ProposalCreated", [7, "EAlice", 100, 200, "desc"], 0),
            record("ProposalCancelled", {"proposalId": 7}, 1),
        ])
        assert report.proposals[7].canceled


# ============================================================================
# ANOMALY TESTS
# ============================================================================

class TestAnomalies:
    """Tests for damaged and inconsistent logs."""

    def test_orphaned_vote(self):
        """Test a vote for an unknown proposal is kept aside, not dropped."""
        report = Reconciler().replay([
            record("VoteCast", {"voter": "EBob", "proposalId": 8, "support": 1, "weight": 5}, 0),
        ])
        assert report.proposals == {}
        assert [v.voter for v in report.orphaned_votes] == ["EBob"]
        assert not report.is_clean

    def test_vote_before_creation_is_orphaned(self):
        """Test log order is respected."""
        report = Reconciler().replay([
            record("VoteCast", {"voter": "EBob", "proposalId": 7, "support": 1, "weight": 5}, 0),
            record("ProposalCreated", [7, "EAlice", 100, 200, "desc"], 1),
        ])
        assert report.proposals[7].votes == []
        assert len(report.orphaned_votes) == 1

    def test_duplicate_vote(self):
        """Test a second vote by the same voter is reported, first one counted."""
        report = Reconciler().replay([
            record("ProposalCreated", [7, "EAlice", 100, 200, "desc"], 0),
            record("VoteCast", {"voter": "EBob", "proposalId": 7, "support": 1, "weight": 5}, 1),
            record("VoteCast", {"voter": "EBob", "proposalId": 7, "support": 0, "weight": 9}, 2),
        ])
        assert report.tally(7).as_tuple() == (0, 5, 0)
        assert [v.position for v in report.duplicate_votes] == [2]

    def test_repeated_creation_first_wins(self):
        """Test a repeated creation record does not reset the proposal."""
        report = Reconciler().replay([
            record("ProposalCreated", [7, "EAlice", 100, 200, "first"], 0),
            record("VoteCast", ["EBob", 7, 1, 5], 1),
            record("ProposalCreated", [7, "EAlice", 300, 400, "second"], 2),
        ])
        assert report.proposals[7].description == "first"
        assert report.tally(7).for_votes == 5

    def test_missing_field_degrades(self):
        """Test an unreadable vote is flagged and its proposal marked incomplete."""
        report = Reconciler().replay([
            record("ProposalCreated", [7, "EAlice", 100, 200, "desc"], 0),
            record("VoteCast", {"voter": "EBob", "proposalId": 7, "support": 1}, 1),
            record("VoteCast", {"voter": "ECarol", "proposalId": 7, "support": 1, "weight": 3}, 2),
        ])

        assert len(report.degraded) == 1
        degraded = report.degraded[0]
        assert degraded.position == 1
        assert degraded.missing == ["weight"]
        assert degraded.partial["voter"] == "EBob"
        assert report.proposals[7].degraded
        # Scanning continued past the damaged record
        assert report.tally(7).as_tuple() == (0, 3, 0)

    def test_bad_value_degrades(self):
        """Test an unconvertible value is reported with its field."""
        report = Reconciler().replay([
            record("ProposalCreated", [7, "EAlice", 100, 200, "desc"], 0),
            record("VoteCast", {"voter": "EBob", "proposalId": 7, "support": "maybe", "weight": 1}, 1),
        ])
        assert "choice" in report.degraded[0].reason
        assert report.tally(7).total == 0

    def test_partial_creation(self):
        """Test a creation record missing its window still yields a flagged proposal."""
        report = Reconciler().replay([
            record("ProposalCreated", {"proposalId": 7, "proposer": "EAlice"}, 0),
            record("VoteCast", ["EBob", 7, 1, 5], 1),
        ])
        proposal = report.proposals[7]
        assert proposal.degraded
        assert proposal.window_start is None
        assert proposal.tally.for_votes == 5

    def test_unreadable_records(self):
        """Test non-event inputs and bad args never abort the scan."""
        report = Reconciler().replay([
            "not a record",
            record("VoteCast", "not args", 1),
            record("ProposalCreated", [7, "EAlice", 100, 200, "desc"], 2),
        ])
        assert len(report.degraded) == 2
        assert 7 in report.proposals
        assert report.events_scanned == 3

    def test_unknown_events_counted(self):
        report = Reconciler().replay([record("Transfer", {"from": "A", "to": "B"}, 0)])
        assert report.unknown_events == 1
        assert report.is_clean

    def test_role_changes_are_not_unknown(self):
        """Test publisher grants and revokes from a live log are recognized."""
        governor, log, config = create_live_history()
        governor.registry.grant_publisher("EAdmin", "EOracle2")
        governor.registry.revoke_publisher("EAdmin", "EOracle2")

        report = Reconciler(config).replay(log)

        assert report.unknown_events == 0
        assert report.degraded == []
        assert report.is_clean
        assert report.compare(governor) == []

    def test_status_for_unknown_proposal(self):
        report = Reconciler().replay([record("ProposalExecuted", {"id": 5}, 0)])
        assert report.degraded[0].reason == "references unknown proposal"

    def test_cap_violation(self):
        """Test a vote heavier than the replayed cap for its day is flagged."""
        report = Reconciler().replay([
            record("WeightsPublished", {
                "day": 5, "topicId": 1, "accounts": ["EBob", "ECarol"], "caps": [10, 100],
            }, 0, timestamp=START),
            record("ProposalCreated", {
                "id": 7, "proposer": "EAlice", "topicId": 1, "windowStart": START, "windowEnd": START + 500,
            }, 1, timestamp=START),
            record("VoteCast", ["EBob", 7, 1, 50], 2, timestamp=START + 100),
            record("VoteCast", ["ECarol", 7, 1, 50], 3, timestamp=START + 100),
        ])

        assert len(report.cap_violations) == 1
        violation = report.cap_violations[0]
        assert violation.vote.voter == "EBob"
        assert (violation.cap, violation.day, violation.topic_id) == (10, 5, 1)
        # The vote still counts as recorded
        assert report.tally(7).for_votes == 100
        assert "Cap violations: 1" in report.format_report()

    def test_cap_violation_on_unpublished_day(self):
        """Test caps do not carry over into the next day."""
        report = Reconciler().replay([
            record("WeightsPublished", [5, 1, ["EBob"], [10]], 0, timestamp=START),
            record("ProposalCreated", {
                "id": 7, "proposer": "EAlice", "topicId": 1, "windowStart": START, "windowEnd": START + 2 * DAY,
            }, 1, timestamp=START),
            record("VoteCast", ["EBob", 7, 1, 5], 2, timestamp=START + DAY),
        ])
        assert report.cap_violations[0].cap == 0

    def test_weights_arity_mismatch_degrades(self):
        report = Reconciler().replay([
            record("WeightsPublished", {"day": 5, "topicId": 1, "accounts": ["EBob"], "caps": [1, 2]}, 0),
        ])
        assert "length mismatch" in report.degraded[0].reason
        assert report.weights.entries() == []
