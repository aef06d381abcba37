"""
meritgov/protocol/governance.py

Topic-capped, snapshot-based proposal lifecycle and vote tallying.

Proposals are raised against a topic. Voting power is frozen at the
proposal's snapshot point, and every cast vote is capped by the weight
registry entry for the voter on that topic for the day the vote is
cast. The counted weight is min(raw power, cap): the registry can only
restrict an account's influence, never inflate it.

Lifecycle:
    Pending -> Active -> {Canceled, Defeated, Succeeded}
    Succeeded -> Queued -> {Executed, Expired}

Pending and Active are purely time-gated. The resolved state is a
projection of (now, window, tally, quorum, flags) and is recomputed on
every query, never stored.

Usage:
    from meritgov.protocol.governance import Governor

    governor = Governor(config, registry, power_source, event_log)

    proposal_id = governor.propose(
        proposer="EProposer",
        topic_id=1,
        targets=["ETarget"],
        values=[0],
        calldatas=[b""],
        description="Raise the relay bonus",
    )

    # once the voting delay has elapsed
    weight = governor.cast_vote(proposal_id, "EVoter", VoteChoice.FOR)
    state = governor.state(proposal_id)
"""

import json
import logging
import hashlib
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
from dataclasses import dataclass, field
from enum import Enum

from ..clock import SystemClock
from ..config import GovernanceConfig
from ..errors import (
    ArityMismatch,
    DuplicateVote,
    InvalidArgument,
    InvalidStateTransition,
    Unauthorized,
    UnknownProposal,
    reports_rejections,
)
from ..events import (
    Event,
    EventLog,
    PROPOSAL_CREATED,
    VOTE_CAST,
    PROPOSAL_CANCELED,
    PROPOSAL_QUEUED,
    PROPOSAL_EXECUTED,
)
from .tally import TallyRecord, Vote, VoteChoice, effective_weight
from .voting_power import VotingPowerSource
from .weights import WeightRegistry

logger = logging.getLogger("meritgov.protocol.governance")


# ============================================================================
# ENUMS
# ============================================================================

class ProposalState(Enum):
    """State of a proposal, valued as on the wire."""
    PENDING = 0                  # Before window start
    ACTIVE = 1                   # Open for voting
    CANCELED = 2                 # Canceled while pending
    DEFEATED = 3                 # Window closed, not passed
    SUCCEEDED = 4                # Window closed, passed
    QUEUED = 5                   # Succeeded and queued for execution
    EXPIRED = 6                  # Queued but not executed within grace period
    EXECUTED = 7                 # Executed

    @property
    def is_terminal(self) -> bool:
        return self in (
            ProposalState.CANCELED,
            ProposalState.DEFEATED,
            ProposalState.EXPIRED,
            ProposalState.EXECUTED,
        )


# ============================================================================
# DATA STRUCTURES
# ============================================================================

def _normalize_calldata(data: Union[bytes, str]) -> str:
    if isinstance(data, (bytes, bytearray)):
        return "0x" + bytes(data).hex()
    text = str(data).lower()
    return text if text.startswith("0x") else "0x" + text


@dataclass
class Proposal:
    """A governance proposal. Never deleted."""
    proposal_id: int
    proposer: str
    topic_id: int
    snapshot_point: int
    window_start: int
    window_end: int
    description: str
    targets: List[str] = field(default_factory=list)
    values: List[int] = field(default_factory=list)
    calldatas: List[str] = field(default_factory=list)
    created_at: int = 0
    canceled: bool = False
    queued_eta: Optional[int] = None
    executed: bool = False
    votes: Dict[str, Vote] = field(default_factory=dict)  # voter -> vote

    @property
    def tally(self) -> TallyRecord:
        return TallyRecord.fold(self.votes.values())

    def to_dict(self) -> dict:
        return {
            "proposal_id": self.proposal_id,
            "proposer": self.proposer,
            "topic_id": self.topic_id,
            "snapshot_point": self.snapshot_point,
            "window_start": self.window_start,
            "window_end": self.window_end,
            "description": self.description,
            "targets": list(self.targets),
            "values": list(self.values),
            "calldatas": list(self.calldatas),
            "created_at": self.created_at,
            "canceled": self.canceled,
            "queued_eta": self.queued_eta,
            "executed": self.executed,
            "votes": {k: v.to_dict() for k, v in self.votes.items()},
            "tally": self.tally.to_dict(),
        }


def hash_proposal(
    topic_id: int,
    targets: Sequence[str],
    values: Sequence[int],
    calldatas: Sequence[Union[bytes, str]],
    description: str,
) -> int:
    """
    Content-addressed proposal id.

    Identical (topic, targets, values, calldatas, description) always
    hash to the same id; the proposer is not part of the id.
    """
    description_hash = hashlib.sha256(description.encode()).hexdigest()
    payload = json.dumps(
        [
            topic_id,
            [str(t) for t in targets],
            [int(v) for v in values],
            [_normalize_calldata(c) for c in calldatas],
            description_hash,
        ],
        separators=(",", ":"),
    )
    return int(hashlib.sha256(payload.encode()).hexdigest(), 16)


def compute_state(
    now: int,
    window_start: int,
    window_end: int,
    tally: TallyRecord,
    quorum: int = 0,
    canceled: bool = False,
    queued_eta: Optional[int] = None,
    executed: bool = False,
    grace_period: int = 0,
) -> ProposalState:
    """
    Project a proposal's state from its recorded history.

    Pure: identical inputs always give the same state.
    """
    if canceled:
        return ProposalState.CANCELED
    if now < window_start:
        return ProposalState.PENDING
    if now < window_end:
        return ProposalState.ACTIVE
    if executed:
        return ProposalState.EXECUTED
    if queued_eta is not None:
        if now >= queued_eta + grace_period:
            return ProposalState.EXPIRED
        return ProposalState.QUEUED
    if tally.for_votes <= tally.against or tally.quorum_weight < quorum:
        return ProposalState.DEFEATED
    return ProposalState.SUCCEEDED


# ============================================================================
# GOVERNOR
# ============================================================================

class Governor:
    """
    Live proposal lifecycle and tally engine.

    Every state change is validated first and then appended to the event
    log before in-memory state is touched, so a failed call leaves
    neither a partial tally nor a stray event.
    """

    def __init__(
        self,
        config: GovernanceConfig,
        registry: WeightRegistry,
        power_source: VotingPowerSource,
        event_log: Optional[EventLog] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize Governor.

        Args:
            config: Engine configuration
            registry: Weight registry providing topic caps
            power_source: Point-in-time voting power oracle
            event_log: Log receiving lifecycle and vote events
                (defaults to the registry's log)
            clock: Returns the current time in seconds
        """
        self.config = config
        self.registry = registry
        self.power_source = power_source
        if event_log is None:
            event_log = registry.event_log if registry.event_log is not None else EventLog()
        self.event_log = event_log
        self._clock = clock or SystemClock()
        self._proposals: Dict[int, Proposal] = {}
        self._rejection_listeners: List[Callable[[Exception], None]] = []

    def now(self) -> int:
        return self._clock()

    def on_rejection(self, callback: Callable[[Exception], None]) -> None:
        """
        Register a callback invoked with every rejected operation.

        Also registered on the weight registry, so rejected publishes
        and role changes reach the same callback.
        """
        self._rejection_listeners.append(callback)
        self.registry.on_rejection(callback)

    # ========================================================================
    # PROPOSAL CREATION
    # ========================================================================

    hash_proposal = staticmethod(hash_proposal)

    @reports_rejections
    def propose(
        self,
        proposer: str,
        topic_id: int,
        targets: Sequence[str],
        values: Sequence[int],
        calldatas: Sequence[Union[bytes, str]],
        description: str,
    ) -> int:
        """
        Create a proposal, or return the id of an identical existing one.

        Args:
            proposer: Account raising the proposal
            topic_id: Topic selecting which caps apply
            targets: Action targets, parallel to values and calldatas
            values: Action values
            calldatas: Action payloads
            description: Human-readable description

        Returns:
            The content-addressed proposal id

        Raises:
            ArityMismatch: targets, values and calldatas differ in length
            InvalidArgument: negative topic id or value
        """
        targets = list(targets)
        values = list(values)
        calldatas = list(calldatas)
        if not (len(targets) == len(values) == len(calldatas)):
            raise ArityMismatch(
                f"propose topic={topic_id}", (len(targets), len(values), len(calldatas))
            )
        if isinstance(topic_id, bool) or not isinstance(topic_id, int) or topic_id < 0:
            raise InvalidArgument(f"topic_id must be a non-negative integer, got {topic_id!r}")
        for value in values:
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidArgument(f"proposal values must be non-negative integers, got {value!r}")

        proposal_id = hash_proposal(topic_id, targets, values, calldatas, description)
        if proposal_id in self._proposals:
            logger.debug(f"Proposal {proposal_id} already exists; returning existing id")
            return proposal_id

        now = self.now()
        snapshot_point = now + self.config.voting_delay
        window_start = snapshot_point
        window_end = snapshot_point + self.config.voting_period
        normalized = [_normalize_calldata(c) for c in calldatas]

        self.event_log.append(PROPOSAL_CREATED, {
            "id": proposal_id,
            "proposer": proposer,
            "topicId": topic_id,
            "targets": targets,
            "values": values,
            "calldatas": normalized,
            "snapshot": snapshot_point,
            "windowStart": window_start,
            "windowEnd": window_end,
            "description": description,
        }, timestamp=now)

        self._proposals[proposal_id] = Proposal(
            proposal_id=proposal_id,
            proposer=proposer,
            topic_id=topic_id,
            snapshot_point=snapshot_point,
            window_start=window_start,
            window_end=window_end,
            description=description,
            targets=targets,
            values=values,
            calldatas=normalized,
            created_at=now,
        )

        logger.info(
            f"Created proposal {proposal_id} on topic {topic_id} by {proposer} "
            f"(window {window_start}-{window_end})"
        )
        return proposal_id

    # ========================================================================
    # STATE
    # ========================================================================

    def state(self, proposal_id: int, now: Optional[int] = None) -> ProposalState:
        """
        Get the current state of a proposal.

        Args:
            proposal_id: Proposal to evaluate
            now: Evaluate at this time instead of the clock

        Raises:
            UnknownProposal: if the id was never created
        """
        proposal = self._require(proposal_id)
        return compute_state(
            now=self.now() if now is None else now,
            window_start=proposal.window_start,
            window_end=proposal.window_end,
            tally=proposal.tally,
            quorum=self.config.quorum,
            canceled=proposal.canceled,
            queued_eta=proposal.queued_eta,
            executed=proposal.executed,
            grace_period=self.config.grace_period,
        )

    @reports_rejections
    def cancel(self, proposal_id: int, caller: str) -> None:
        """
        Cancel a pending proposal (proposer or admin only).

        Raises:
            UnknownProposal: if the id was never created
            Unauthorized: caller is neither proposer nor admin
            InvalidStateTransition: proposal is no longer Pending
        """
        proposal = self._require(proposal_id)
        if caller != proposal.proposer and not (self.config.admin and caller == self.config.admin):
            logger.warning(f"Rejected cancel of {proposal_id} from {caller}")
            raise Unauthorized(caller, "proposer")

        now = self.now()
        current = self.state(proposal_id, now)
        if current is not ProposalState.PENDING:
            logger.warning(f"Cannot cancel proposal {proposal_id} in state {current.name}")
            raise InvalidStateTransition(proposal_id, current, "cancel", "PENDING")

        self.event_log.append(PROPOSAL_CANCELED, {"id": proposal_id, "sender": caller}, timestamp=now)
        proposal.canceled = True
        logger.info(f"Canceled proposal {proposal_id}")

    @reports_rejections
    def queue(self, proposal_id: int) -> int:
        """
        Queue a succeeded proposal for execution.

        Returns:
            The earliest execution time (ETA)

        Raises:
            InvalidStateTransition: proposal has not Succeeded
        """
        proposal = self._require(proposal_id)
        now = self.now()
        current = self.state(proposal_id, now)
        if current is not ProposalState.SUCCEEDED:
            raise InvalidStateTransition(proposal_id, current, "queue", "SUCCEEDED")

        eta = now + self.config.timelock_delay
        self.event_log.append(PROPOSAL_QUEUED, {"id": proposal_id, "eta": eta}, timestamp=now)
        proposal.queued_eta = eta
        logger.info(f"Queued proposal {proposal_id} (eta {eta})")
        return eta

    @reports_rejections
    def execute(self, proposal_id: int) -> None:
        """
        Mark a queued proposal executed once its ETA has passed.

        The actions themselves are carried out by the caller's transport.

        Raises:
            InvalidStateTransition: proposal is not Queued or ETA not reached
        """
        proposal = self._require(proposal_id)
        now = self.now()
        current = self.state(proposal_id, now)
        if current is not ProposalState.QUEUED:
            raise InvalidStateTransition(proposal_id, current, "execute", "QUEUED")
        if now < proposal.queued_eta:
            raise InvalidStateTransition(
                proposal_id, current, "execute", f"ETA {proposal.queued_eta}"
            )

        self.event_log.append(PROPOSAL_EXECUTED, {"id": proposal_id}, timestamp=now)
        proposal.executed = True
        logger.info(f"Executed proposal {proposal_id}")

    # ========================================================================
    # VOTING
    # ========================================================================

    @reports_rejections
    def cast_vote(
        self,
        proposal_id: int,
        voter: str,
        choice: Union[VoteChoice, int, str],
        reason: Optional[str] = None,
    ) -> int:
        """
        Cast a vote on an active proposal.

        Raw power is read at the proposal's snapshot point; the cap is
        read for the day the vote is cast.

        Args:
            proposal_id: Proposal to vote on
            voter: Voting account
            choice: Against, For or Abstain
            reason: Optional free-text reason

        Returns:
            The effective weight counted

        Raises:
            UnknownProposal: if the id was never created
            InvalidArgument: unknown choice
            InvalidStateTransition: proposal is not Active
            DuplicateVote: voter already voted on this proposal
        """
        proposal = self._require(proposal_id)
        choice = VoteChoice.parse(choice)

        now = self.now()
        current = self.state(proposal_id, now)
        if current is not ProposalState.ACTIVE:
            logger.warning(f"Rejected vote by {voter} on {proposal_id}: state {current.name}")
            raise InvalidStateTransition(proposal_id, current, "vote on", "ACTIVE")

        if voter in proposal.votes:
            logger.warning(f"Rejected duplicate vote by {voter} on {proposal_id}")
            raise DuplicateVote(proposal_id, voter)

        raw_power = self.power_source.power_at(voter, proposal.snapshot_point)
        cap = self.registry.weight_at(voter, now, proposal.topic_id)
        weight = effective_weight(raw_power, cap)

        self.event_log.append(VOTE_CAST, {
            "voter": voter,
            "proposalId": proposal_id,
            "support": choice.value,
            "weight": weight,
            "reason": reason or "",
        }, timestamp=now)

        proposal.votes[voter] = Vote(
            proposal_id=proposal_id,
            voter=voter,
            choice=choice,
            effective_weight=weight,
            reason=reason,
            raw_power=raw_power,
            cap=cap,
            timestamp=now,
        )

        logger.info(
            f"Vote on {proposal_id} by {voter}: {choice.name} weight={weight} "
            f"(power={raw_power}, cap={cap}, topic={proposal.topic_id}, "
            f"day={self.registry.day_of(now)})"
        )
        return weight

    # ========================================================================
    # QUERY METHODS
    # ========================================================================

    def get_proposal(self, proposal_id: int) -> Optional[Proposal]:
        return self._proposals.get(proposal_id)

    def get_proposals(self) -> List[Proposal]:
        return list(self._proposals.values())

    def proposal_votes(self, proposal_id: int) -> TallyRecord:
        """Get the (against, for, abstain) tally for a proposal."""
        return self._require(proposal_id).tally

    def votes_for(self, proposal_id: int) -> List[Vote]:
        return list(self._require(proposal_id).votes.values())

    def has_voted(self, proposal_id: int, voter: str) -> bool:
        proposal = self._proposals.get(proposal_id)
        return bool(proposal) and voter in proposal.votes

    def get_vote(self, proposal_id: int, voter: str) -> Optional[Vote]:
        proposal = self._proposals.get(proposal_id)
        if not proposal:
            return None
        return proposal.votes.get(voter)

    def quorum_reached(self, proposal_id: int) -> bool:
        return self._require(proposal_id).tally.quorum_weight >= self.config.quorum

    def vote_succeeded(self, proposal_id: int) -> bool:
        tally = self._require(proposal_id).tally
        return tally.for_votes > tally.against

    def get_stats(self) -> dict:
        """Get governance statistics."""
        now = self.now()
        state_counts = {state.name.lower(): 0 for state in ProposalState}
        for proposal in self._proposals.values():
            state_counts[self.state(proposal.proposal_id, now).name.lower()] += 1

        return {
            "total_proposals": len(self._proposals),
            "total_votes": sum(len(p.votes) for p in self._proposals.values()),
            "states": state_counts,
            "events": len(self.event_log),
        }

    def _require(self, proposal_id: int) -> Proposal:
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise UnknownProposal(proposal_id)
        return proposal

    # ========================================================================
    # REPLAY
    # ========================================================================

    def apply_event(self, event: Event) -> bool:
        """
        Re-apply a persisted event without validation.

        Used to restore live state from this governor's own log.

        Returns:
            True if the event changed governor state
        """
        args = event.args
        if event.name == PROPOSAL_CREATED:
            proposal_id = int(args["id"])
            if proposal_id in self._proposals:
                return False
            self._proposals[proposal_id] = Proposal(
                proposal_id=proposal_id,
                proposer=args["proposer"],
                topic_id=int(args["topicId"]),
                snapshot_point=int(args.get("snapshot", args["windowStart"])),
                window_start=int(args["windowStart"]),
                window_end=int(args["windowEnd"]),
                description=args.get("description", ""),
                targets=list(args.get("targets", [])),
                values=list(args.get("values", [])),
                calldatas=list(args.get("calldatas", [])),
                created_at=event.timestamp,
            )
            return True

        if event.name == VOTE_CAST:
            proposal = self._proposals.get(int(args["proposalId"]))
            if proposal is None or args["voter"] in proposal.votes:
                return False
            proposal.votes[args["voter"]] = Vote(
                proposal_id=proposal.proposal_id,
                voter=args["voter"],
                choice=VoteChoice.parse(args["support"]),
                effective_weight=int(args["weight"]),
                reason=args.get("reason") or None,
                timestamp=event.timestamp,
            )
            return True

        if event.name in (PROPOSAL_CANCELED, PROPOSAL_QUEUED, PROPOSAL_EXECUTED):
            proposal = self._proposals.get(int(args["id"]))
            if proposal is None:
                return False
            if event.name == PROPOSAL_CANCELED:
                proposal.canceled = True
            elif event.name == PROPOSAL_QUEUED:
                proposal.queued_eta = int(args["eta"])
            else:
                proposal.executed = True
            return True

        return False


def restore(
    event_log: EventLog,
    config: GovernanceConfig,
    power_source: VotingPowerSource,
    clock: Optional[Callable[[], int]] = None,
) -> Governor:
    """
    Rebuild a live registry and governor from their own event log.

    New events produced by the returned governor are appended to the
    same log.
    """
    registry = WeightRegistry(config, event_log, clock=clock)
    governor = Governor(config, registry, power_source, event_log, clock=clock)
    for event in event_log:
        if not registry.apply_event(event):
            governor.apply_event(event)
    logger.debug(f"Restored {len(governor.get_proposals())} proposals from {len(event_log)} events")
    return governor
