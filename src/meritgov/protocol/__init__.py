"""
meritgov/protocol/

Core governance components: weight registry, voting power boundary,
tally, proposal lifecycle and log reconciliation.
"""

from .weights import WeightRegistry, WeightEntry
from .voting_power import VotingPowerSource, CheckpointedVotingPower
from .tally import VoteChoice, Vote, TallyRecord, effective_weight
from .governance import (
    Governor,
    Proposal,
    ProposalState,
    compute_state,
    hash_proposal,
    restore,
)
from .reconciler import (
    Reconciler,
    ReconciliationReport,
    ReconciledProposal,
    ReconciledVote,
    DegradedRecord,
    CapViolation,
    Mismatch,
    FieldAccessor,
    NamedField,
    PositionalField,
    FieldSpec,
)

__all__ = [
    "WeightRegistry",
    "WeightEntry",
    "VotingPowerSource",
    "CheckpointedVotingPower",
    "VoteChoice",
    "Vote",
    "TallyRecord",
    "effective_weight",
    "Governor",
    "Proposal",
    "ProposalState",
    "compute_state",
    "hash_proposal",
    "restore",
    "Reconciler",
    "ReconciliationReport",
    "ReconciledProposal",
    "ReconciledVote",
    "DegradedRecord",
    "CapViolation",
    "Mismatch",
    "FieldAccessor",
    "NamedField",
    "PositionalField",
    "FieldSpec",
]
