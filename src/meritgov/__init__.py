"""
meritgov - Topic-capped, snapshot-based governance voting engine

Accounts vote with the power they held at a proposal's snapshot point,
capped per day and per topic by an oracle weight registry. Every state
change is appended to an event log that the reconciler can replay to
rebuild, and cross-check, the full proposal and vote history.

Usage:
    from meritgov import (
        GovernanceConfig, EventLog, WeightRegistry,
        CheckpointedVotingPower, Governor, Reconciler, VoteChoice,
    )

    config = GovernanceConfig(admin="EAdmin", publishers=("EOracle",))
    log = EventLog()
    registry = WeightRegistry(config, log)
    power = CheckpointedVotingPower()
    governor = Governor(config, registry, power, log)

    registry.publish("EOracle", day, topic_id, ["EVoter"], [100000])
    proposal_id = governor.propose("EVoter", topic_id, [], [], [], "Proposal")
    ...
    report = Reconciler(config).replay(log)
    assert report.compare(governor) == []
"""

from .config import GovernanceConfig
from .clock import ManualClock, SystemClock
from .errors import (
    GovernanceError,
    ArityMismatch,
    InvalidArgument,
    Unauthorized,
    UnknownProposal,
    InvalidStateTransition,
    DuplicateVote,
)
from .events import Event, EventLog
from .metrics import MetricsCollector
from .protocol import (
    WeightRegistry,
    WeightEntry,
    VotingPowerSource,
    CheckpointedVotingPower,
    VoteChoice,
    Vote,
    TallyRecord,
    Governor,
    Proposal,
    ProposalState,
    Reconciler,
    ReconciliationReport,
    DegradedRecord,
)

__version__ = "1.0.0"
__all__ = [
    # Config
    "GovernanceConfig",
    "ManualClock",
    "SystemClock",
    # Errors
    "GovernanceError",
    "ArityMismatch",
    "InvalidArgument",
    "Unauthorized",
    "UnknownProposal",
    "InvalidStateTransition",
    "DuplicateVote",
    # Event log
    "Event",
    "EventLog",
    # Core
    "WeightRegistry",
    "WeightEntry",
    "VotingPowerSource",
    "CheckpointedVotingPower",
    "VoteChoice",
    "Vote",
    "TallyRecord",
    "Governor",
    "Proposal",
    "ProposalState",
    # Audit
    "Reconciler",
    "ReconciliationReport",
    "DegradedRecord",
    # Metrics
    "MetricsCollector",
]
