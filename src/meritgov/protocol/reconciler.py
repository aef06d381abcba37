"""
meritgov/protocol/reconciler.py

Rebuilds proposal and vote history purely from the event log.

The reconciler is the audit path: it never queries live storage, only
scans an ordered sequence of events once, front to back. It accepts
events from any producer version, so the same logical field may arrive
under different names or at different positions. Each logical field is
read through an ordered list of accessors (named first, positional as a
fallback), and a record that cannot be read fully is kept as a flagged
partial entry instead of aborting the scan.

Usage:
    from meritgov.protocol.reconciler import Reconciler

    report = Reconciler(config).replay(event_log)
    for proposal in report.proposals.values():
        print(proposal.proposal_id, proposal.tally.to_dict())

    mismatches = report.compare(governor)   # [] when live state agrees
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from dataclasses import dataclass, field

from ..config import GovernanceConfig
from ..events import (
    Event,
    PROPOSAL_CREATED,
    VOTE_CAST,
    WEIGHTS_PUBLISHED,
    PROPOSAL_CANCELED,
    PROPOSAL_QUEUED,
    PROPOSAL_EXECUTED,
    PUBLISHER_GRANTED,
    PUBLISHER_REVOKED,
)
from .tally import TallyRecord, VoteChoice
from .weights import WeightRegistry

logger = logging.getLogger("meritgov.protocol.reconciler")


# ============================================================================
# FIELD ACCESSORS
# ============================================================================

class FieldAccessor(ABC):
    """One strategy for pulling a value out of event args."""

    @abstractmethod
    def try_extract(self, args: Any) -> Optional[Any]:
        """Return the value, or None if this strategy does not apply."""


class NamedField(FieldAccessor):
    """Reads the first of several names present in mapping args."""

    def __init__(self, *names: str):
        self.names = names

    def try_extract(self, args: Any) -> Optional[Any]:
        if not isinstance(args, Mapping):
            return None
        for name in self.names:
            value = args.get(name)
            if value is not None:
                return value
        return None

    def __repr__(self) -> str:
        return f"NamedField{self.names}"


class PositionalField(FieldAccessor):
    """
    Reads a value by position in the argument list.

    Negative indexes count from the end, which keeps trailing fields
    (window bounds, description) stable across versions that insert
    arguments in the middle.
    """

    def __init__(self, index: int):
        self.index = index

    def try_extract(self, args: Any) -> Optional[Any]:
        if isinstance(args, Mapping):
            values = list(args.values())
        elif isinstance(args, (list, tuple)):
            values = list(args)
        else:
            return None
        try:
            return values[self.index]
        except IndexError:
            return None

    def __repr__(self) -> str:
        return f"PositionalField({self.index})"


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        return int(text, 16) if text.lower().startswith("0x") else int(text)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValueError(f"not an integer: {value!r}")


def _to_str(value: Any) -> str:
    return value if isinstance(value, str) else str(value)


def _to_choice(value: Any) -> VoteChoice:
    # Names ("FOR") pass through; anything else must be an integer support value
    if isinstance(value, str) and not value.strip().isdigit():
        return VoteChoice.parse(value)
    return VoteChoice.parse(_to_int(value))


def _to_list(value: Any) -> list:
    if isinstance(value, (list, tuple)):
        return list(value)
    raise ValueError(f"not a list: {value!r}")


@dataclass
class FieldSpec:
    """A logical field and the accessors tried, in priority order, to read it."""
    name: str
    accessors: Tuple[FieldAccessor, ...]
    convert: Callable[[Any], Any] = lambda v: v
    required: bool = True

    def try_extract(self, args: Any) -> Optional[Any]:
        """Return the converted value from the first accessor that yields one."""
        for accessor in self.accessors:
            value = accessor.try_extract(args)
            if value is not None:
                return self.convert(value)
        return None


def field_spec(
    name: str,
    names: Sequence[str],
    position: Optional[int] = None,
    convert: Callable[[Any], Any] = lambda v: v,
    required: bool = True,
) -> FieldSpec:
    accessors: List[FieldAccessor] = [NamedField(*names)]
    if position is not None:
        accessors.append(PositionalField(position))
    return FieldSpec(name=name, accessors=tuple(accessors), convert=convert, required=required)


# ============================================================================
# EVENT SHAPES
# ============================================================================

PROPOSAL_ID_NAMES = ("proposalId", "id", "proposal_id")

PROPOSAL_CREATED_FIELDS = (
    field_spec("proposal_id", PROPOSAL_ID_NAMES, 0, _to_int),
    field_spec("proposer", ("proposer", "account"), 1, _to_str),
    field_spec("topic_id", ("topicId", "topic", "topic_id"), None, _to_int, required=False),
    field_spec("window_start", ("windowStart", "voteStart", "startBlock"), -3, _to_int),
    field_spec("window_end", ("windowEnd", "voteEnd", "endBlock"), -2, _to_int),
    field_spec("description", ("description",), -1, _to_str, required=False),
)

VOTE_CAST_FIELDS = (
    field_spec("voter", ("voter", "account"), 0, _to_str),
    field_spec("proposal_id", PROPOSAL_ID_NAMES, 1, _to_int),
    field_spec("choice", ("support", "choice"), 2, _to_choice),
    field_spec("weight", ("weight", "effectiveWeight", "votes"), 3, _to_int),
    field_spec("reason", ("reason",), 4, _to_str, required=False),
)

WEIGHTS_PUBLISHED_FIELDS = (
    field_spec("day", ("day",), 0, _to_int),
    field_spec("topic_id", ("topicId", "topic", "topic_id"), 1, _to_int),
    field_spec("accounts", ("accounts",), 2, _to_list),
    field_spec("caps", ("caps", "weights"), 3, _to_list),
    field_spec("context_hash", ("contextHash", "context_hash"), 4, required=False),
)

PROPOSAL_REF_FIELDS = (
    field_spec("proposal_id", PROPOSAL_ID_NAMES, 0, _to_int),
)

PROPOSAL_QUEUED_FIELDS = (
    field_spec("proposal_id", PROPOSAL_ID_NAMES, 0, _to_int),
    field_spec("eta", ("eta", "etaSeconds"), -1, _to_int, required=False),
)


# Role changes are recorded but carry nothing the audit rebuilds
ROLE_EVENTS = (PUBLISHER_GRANTED, PUBLISHER_REVOKED)


def classify_event(name: str) -> Optional[str]:
    """Map a producer's event name to a canonical event name, or None."""
    if not name:
        return None
    if name.startswith(VOTE_CAST):
        return VOTE_CAST
    if name in (PROPOSAL_CANCELED, "ProposalCancelled"):
        return PROPOSAL_CANCELED
    if name in (PROPOSAL_CREATED, WEIGHTS_PUBLISHED, PROPOSAL_QUEUED, PROPOSAL_EXECUTED):
        return name
    if name in ROLE_EVENTS:
        return name
    return None


EVENT_FIELDS: Dict[str, Tuple[FieldSpec, ...]] = {
    PROPOSAL_CREATED: PROPOSAL_CREATED_FIELDS,
    VOTE_CAST: VOTE_CAST_FIELDS,
    WEIGHTS_PUBLISHED: WEIGHTS_PUBLISHED_FIELDS,
    PROPOSAL_CANCELED: PROPOSAL_REF_FIELDS,
    PROPOSAL_QUEUED: PROPOSAL_QUEUED_FIELDS,
    PROPOSAL_EXECUTED: PROPOSAL_REF_FIELDS,
}


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class LogRecord:
    """Envelope of one input record, independent of producer version."""
    position: int
    name: str
    args: Any
    tx_ref: str = ""
    timestamp: Optional[int] = None


@dataclass
class DegradedRecord:
    """A record that could only be read partially."""
    position: int
    event_name: str
    reason: str
    missing: List[str] = field(default_factory=list)
    partial: Dict[str, Any] = field(default_factory=dict)
    tx_ref: str = ""

    def to_dict(self) -> dict:
        return {
            "position": self.position,
            "event_name": self.event_name,
            "reason": self.reason,
            "missing": list(self.missing),
            "partial": {k: str(v) for k, v in self.partial.items()},
            "tx_ref": self.tx_ref,
        }


@dataclass
class ReconciledVote:
    """A vote as rebuilt from a VoteCast event."""
    proposal_id: int
    voter: str
    choice: VoteChoice
    weight: int
    reason: str = ""
    tx_ref: str = ""
    position: int = 0
    timestamp: Optional[int] = None
    event_name: str = VOTE_CAST

    def to_dict(self) -> dict:
        return {
            "proposal_id": str(self.proposal_id),
            "voter": self.voter,
            "choice": self.choice.name,
            "weight": self.weight,
            "reason": self.reason,
            "tx_ref": self.tx_ref,
            "position": self.position,
            "timestamp": self.timestamp,
            "event_name": self.event_name,
        }


@dataclass
class ReconciledProposal:
    """A proposal as rebuilt from its creation event and later events."""
    proposal_id: int
    proposer: Optional[str] = None
    topic_id: Optional[int] = None
    window_start: Optional[int] = None
    window_end: Optional[int] = None
    description: str = ""
    tx_ref: str = ""
    position: int = 0
    votes: List[ReconciledVote] = field(default_factory=list)
    canceled: bool = False
    queued_eta: Optional[int] = None
    executed: bool = False
    degraded: bool = False

    @property
    def tally(self) -> TallyRecord:
        tally = TallyRecord()
        for vote in self.votes:
            tally.add(vote.choice, vote.weight)
        return tally

    def has_voted(self, voter: str) -> bool:
        return any(v.voter == voter for v in self.votes)

    def to_dict(self) -> dict:
        return {
            "proposal_id": str(self.proposal_id),
            "proposer": self.proposer,
            "topic_id": self.topic_id,
            "window_start": self.window_start,
            "window_end": self.window_end,
            "description": self.description,
            "tx_ref": self.tx_ref,
            "position": self.position,
            "votes": [v.to_dict() for v in self.votes],
            "tally": self.tally.to_dict(),
            "canceled": self.canceled,
            "queued_eta": self.queued_eta,
            "executed": self.executed,
            "degraded": self.degraded,
        }


@dataclass
class CapViolation:
    """A vote whose weight exceeds the cap replayed for its day."""
    vote: ReconciledVote
    topic_id: int
    day: int
    cap: int


@dataclass
class Mismatch:
    """A difference between live state and the replayed view."""
    proposal_id: int
    field: str
    live: Any
    replayed: Any

    def __str__(self) -> str:
        return f"proposal {self.proposal_id} {self.field}: live={self.live!r} replayed={self.replayed!r}"


# ============================================================================
# REPORT
# ============================================================================

@dataclass
class ReconciliationReport:
    """Output of one replay."""
    proposals: Dict[int, ReconciledProposal] = field(default_factory=dict)
    orphaned_votes: List[ReconciledVote] = field(default_factory=list)
    duplicate_votes: List[ReconciledVote] = field(default_factory=list)
    degraded: List[DegradedRecord] = field(default_factory=list)
    cap_violations: List[CapViolation] = field(default_factory=list)
    unknown_events: int = 0
    events_scanned: int = 0
    first_position: Optional[int] = None
    last_position: Optional[int] = None
    weights: Optional[WeightRegistry] = None

    @property
    def is_clean(self) -> bool:
        return not (self.orphaned_votes or self.duplicate_votes or self.degraded or self.cap_violations)

    def tally(self, proposal_id: int) -> Optional[TallyRecord]:
        proposal = self.proposals.get(proposal_id)
        return proposal.tally if proposal else None

    def votes(self) -> List[ReconciledVote]:
        return [v for p in self.proposals.values() for v in p.votes]

    def compare(self, governor: Any) -> List[Mismatch]:
        """
        Compare the replayed view against a live Governor.

        Returns:
            One Mismatch per differing field; empty when both agree
        """
        mismatches: List[Mismatch] = []
        live_ids = set()

        for live in governor.get_proposals():
            live_ids.add(live.proposal_id)
            replayed = self.proposals.get(live.proposal_id)
            if replayed is None:
                mismatches.append(Mismatch(live.proposal_id, "existence", True, False))
                continue

            for name, live_value, replayed_value in (
                ("proposer", live.proposer, replayed.proposer),
                ("topic_id", live.topic_id, replayed.topic_id),
                ("window_start", live.window_start, replayed.window_start),
                ("window_end", live.window_end, replayed.window_end),
                ("description", live.description, replayed.description),
                ("canceled", live.canceled, replayed.canceled),
                ("queued_eta", live.queued_eta, replayed.queued_eta),
                ("executed", live.executed, replayed.executed),
                ("tally", live.tally.as_tuple(), replayed.tally.as_tuple()),
                ("voters", sorted(live.votes), sorted(v.voter for v in replayed.votes)),
            ):
                if live_value != replayed_value:
                    mismatches.append(Mismatch(live.proposal_id, name, live_value, replayed_value))

        for proposal_id in self.proposals:
            if proposal_id not in live_ids:
                mismatches.append(Mismatch(proposal_id, "existence", False, True))

        return mismatches

    def to_dict(self) -> dict:
        return {
            "proposals": [p.to_dict() for p in self.proposals.values()],
            "orphaned_votes": [v.to_dict() for v in self.orphaned_votes],
            "duplicate_votes": [v.to_dict() for v in self.duplicate_votes],
            "degraded": [d.to_dict() for d in self.degraded],
            "cap_violations": [
                {"vote": c.vote.to_dict(), "topic_id": c.topic_id, "day": c.day, "cap": c.cap}
                for c in self.cap_violations
            ],
            "unknown_events": self.unknown_events,
            "events_scanned": self.events_scanned,
        }

    def to_dataframe(self):
        """
        One row per reconciled vote, for audit and comparison.

        Proposal ids are rendered as strings since they exceed int64.
        """
        import pandas as pd

        columns = [
            "proposal_id", "voter", "choice", "weight", "reason",
            "tx_ref", "position", "timestamp", "event_name",
        ]
        rows = [v.to_dict() for v in self.votes()]
        return pd.DataFrame(rows, columns=columns)

    def format_report(self, explorer_base: str = "") -> str:
        """Human-readable rendering of the replayed history."""

        def link(tx_ref: str) -> str:
            if explorer_base and tx_ref:
                return f"{tx_ref} ({explorer_base.rstrip('/')}/tx/{tx_ref})"
            return tx_ref

        lines = [f"Found proposals: {len(self.proposals)}"]
        for proposal in self.proposals.values():
            tally = proposal.tally
            lines.append("")
            lines.append("=" * 40)
            lines.append(f"Proposal: {proposal.proposal_id}")
            lines.append(f"Proposer: {proposal.proposer}")
            lines.append(f"Topic: {proposal.topic_id}")
            lines.append(f"windowStart: {proposal.window_start} windowEnd: {proposal.window_end}")
            lines.append(f"Description: {proposal.description}")
            lines.append(f"Proposal tx: {link(proposal.tx_ref)}")
            if proposal.canceled:
                lines.append("Canceled")
            if proposal.degraded:
                lines.append("DEGRADED: history incomplete")
            lines.append(
                f"Votes: against={tally.against} for={tally.for_votes} abstain={tally.abstain}"
            )
            lines.append(f"VoteCast logs: {len(proposal.votes)}")
            for vote in sorted(proposal.votes, key=lambda v: v.position):
                lines.append(
                    f" - {vote.choice.name}  voter={vote.voter}  weight={vote.weight}  tx={link(vote.tx_ref)}"
                )
                if vote.reason:
                    lines.append(f"   reason: {vote.reason}")

        if self.orphaned_votes:
            lines.append("")
            lines.append(f"Orphaned votes: {len(self.orphaned_votes)}")
            for vote in self.orphaned_votes:
                lines.append(f" - proposal={vote.proposal_id} voter={vote.voter} position={vote.position}")
        if self.duplicate_votes:
            lines.append("")
            lines.append(f"Duplicate votes: {len(self.duplicate_votes)}")
            for vote in self.duplicate_votes:
                lines.append(f" - proposal={vote.proposal_id} voter={vote.voter} position={vote.position}")
        if self.cap_violations:
            lines.append("")
            lines.append(f"Cap violations: {len(self.cap_violations)}")
            for violation in self.cap_violations:
                lines.append(
                    f" - proposal={violation.vote.proposal_id} voter={violation.vote.voter} "
                    f"weight={violation.vote.weight} cap={violation.cap} "
                    f"day={violation.day} topic={violation.topic_id}"
                )
        if self.degraded:
            lines.append("")
            lines.append(f"Degraded records: {len(self.degraded)}")
            for record in self.degraded:
                lines.append(
                    f" - position={record.position} event={record.event_name}: {record.reason}"
                )
        return "\n".join(lines)


# ============================================================================
# RECONCILER
# ============================================================================

def to_log_record(raw: Any, index: int) -> Optional[LogRecord]:
    """
    Normalize an Event or a mapping into a LogRecord.

    Returns None when the input carries no recognizable envelope.
    """
    if isinstance(raw, Event):
        return LogRecord(
            position=raw.position,
            name=raw.name,
            args=raw.args,
            tx_ref=raw.tx_ref,
            timestamp=raw.timestamp,
        )
    if not isinstance(raw, Mapping):
        return None

    name = raw.get("name") or raw.get("event") or raw.get("eventName") or ""
    position = raw.get("position", raw.get("logIndex", index))
    tx_ref = raw.get("tx_ref") or raw.get("transactionHash") or raw.get("txHash") or ""
    timestamp = raw.get("timestamp", raw.get("blockTimestamp"))
    try:
        position = _to_int(position)
    except ValueError:
        position = index
    try:
        timestamp = _to_int(timestamp) if timestamp is not None else None
    except ValueError:
        timestamp = None

    return LogRecord(
        position=position,
        name=_to_str(name),
        args=raw.get("args", raw.get("data")),
        tx_ref=_to_str(tx_ref),
        timestamp=timestamp,
    )


class Reconciler:
    """
    Replays an ordered event log into a ReconciliationReport.

    Stateless between runs: replay() can be called any number of times
    on the same log and always yields the same report.
    """

    def __init__(self, config: Optional[GovernanceConfig] = None, lookback: Optional[int] = None):
        """
        Initialize Reconciler.

        Args:
            config: Engine configuration (seconds per day, lookback)
            lookback: Override the trailing window of records considered (0 = all)
        """
        self.config = config or GovernanceConfig()
        self.lookback = self.config.lookback if lookback is None else lookback

    def replay(self, events: Iterable[Any]) -> ReconciliationReport:
        """
        Scan events in log order and rebuild proposal and vote history.

        Args:
            events: Event objects or event mappings, oldest first

        Returns:
            ReconciliationReport
        """
        records = list(events)
        if self.lookback and len(records) > self.lookback:
            records = records[-self.lookback:]

        report = ReconciliationReport(weights=WeightRegistry(self.config))

        for index, raw in enumerate(records):
            report.events_scanned += 1
            record = to_log_record(raw, index)
            if record is None:
                report.degraded.append(DegradedRecord(
                    position=index,
                    event_name="",
                    reason=f"unrecognized record type {type(raw).__name__}",
                ))
                logger.warning(f"Degraded record at index {index}: not an event")
                continue

            if report.first_position is None:
                report.first_position = record.position
            report.last_position = record.position

            canonical = classify_event(record.name)
            if canonical is None:
                report.unknown_events += 1
                logger.debug(f"Skipping unknown event {record.name!r} at {record.position}")
                continue
            if canonical in ROLE_EVENTS:
                logger.debug(f"Skipping role event {record.name} at {record.position}")
                continue

            values, missing, error = self._extract(EVENT_FIELDS[canonical], record.args)
            if missing or error:
                reason = error or f"missing {', '.join(missing)}"
                report.degraded.append(DegradedRecord(
                    position=record.position,
                    event_name=record.name,
                    reason=reason,
                    missing=missing,
                    partial=values,
                    tx_ref=record.tx_ref,
                ))
                logger.warning(f"Degraded {record.name} at position {record.position}: {reason}")
                self._apply_partial(report, canonical, record, values)
                continue

            self._apply(report, canonical, record, values)

        logger.info(
            f"Replayed {report.events_scanned} events: {len(report.proposals)} proposals, "
            f"{len(report.votes())} votes, {len(report.orphaned_votes)} orphaned, "
            f"{len(report.degraded)} degraded"
        )
        return report

    def _extract(
        self,
        specs: Tuple[FieldSpec, ...],
        args: Any,
    ) -> Tuple[Dict[str, Any], List[str], Optional[str]]:
        values: Dict[str, Any] = {}
        missing: List[str] = []

        if not isinstance(args, (Mapping, list, tuple)):
            return values, [s.name for s in specs if s.required], (
                f"unrecognized args shape {type(args).__name__}"
            )

        error = None
        for spec in specs:
            try:
                value = spec.try_extract(args)
            except (ValueError, TypeError) as e:
                value = None
                error = error or f"bad {spec.name}: {e}"
            if value is None:
                if spec.required:
                    missing.append(spec.name)
                continue
            values[spec.name] = value
        return values, missing, error

    def _apply(
        self,
        report: ReconciliationReport,
        canonical: str,
        record: LogRecord,
        values: Dict[str, Any],
    ) -> None:
        if canonical == PROPOSAL_CREATED:
            proposal_id = values["proposal_id"]
            if proposal_id in report.proposals:
                logger.debug(f"Ignoring repeated creation of {proposal_id} at {record.position}")
                return
            report.proposals[proposal_id] = ReconciledProposal(
                proposal_id=proposal_id,
                proposer=values["proposer"],
                topic_id=values.get("topic_id"),
                window_start=values["window_start"],
                window_end=values["window_end"],
                description=values.get("description", ""),
                tx_ref=record.tx_ref,
                position=record.position,
            )

        elif canonical == VOTE_CAST:
            vote = ReconciledVote(
                proposal_id=values["proposal_id"],
                voter=values["voter"],
                choice=values["choice"],
                weight=values["weight"],
                reason=values.get("reason", ""),
                tx_ref=record.tx_ref,
                position=record.position,
                timestamp=record.timestamp,
                event_name=record.name,
            )
            proposal = report.proposals.get(vote.proposal_id)
            if proposal is None:
                report.orphaned_votes.append(vote)
                logger.warning(
                    f"Orphaned vote by {vote.voter} on unknown proposal {vote.proposal_id} "
                    f"at position {record.position}"
                )
                return
            if proposal.has_voted(vote.voter):
                report.duplicate_votes.append(vote)
                logger.warning(
                    f"Duplicate vote by {vote.voter} on {vote.proposal_id} at position {record.position}"
                )
                return
            proposal.votes.append(vote)
            self._audit_cap(report, proposal, vote)

        elif canonical == WEIGHTS_PUBLISHED:
            accounts, caps = values["accounts"], values["caps"]
            if len(accounts) != len(caps):
                report.degraded.append(DegradedRecord(
                    position=record.position,
                    event_name=record.name,
                    reason=f"accounts/caps length mismatch {len(accounts)} != {len(caps)}",
                    partial=values,
                    tx_ref=record.tx_ref,
                ))
                logger.warning(f"Degraded {record.name} at position {record.position}: arity mismatch")
                return
            try:
                caps = [_to_int(c) for c in caps]
            except ValueError as e:
                report.degraded.append(DegradedRecord(
                    position=record.position,
                    event_name=record.name,
                    reason=f"bad caps: {e}",
                    partial=values,
                    tx_ref=record.tx_ref,
                ))
                return
            report.weights.apply_event(Event(
                position=record.position,
                name=WEIGHTS_PUBLISHED,
                args={
                    "day": values["day"],
                    "topicId": values["topic_id"],
                    "accounts": [_to_str(a) for a in accounts],
                    "caps": caps,
                    "contextHash": values.get("context_hash", b""),
                },
                timestamp=record.timestamp or 0,
                tx_ref=record.tx_ref,
            ))

        else:
            proposal = report.proposals.get(values["proposal_id"])
            if proposal is None:
                logger.warning(
                    f"{record.name} for unknown proposal {values['proposal_id']} at {record.position}"
                )
                report.degraded.append(DegradedRecord(
                    position=record.position,
                    event_name=record.name,
                    reason="references unknown proposal",
                    partial=values,
                    tx_ref=record.tx_ref,
                ))
                return
            if canonical == PROPOSAL_CANCELED:
                proposal.canceled = True
            elif canonical == PROPOSAL_QUEUED:
                proposal.queued_eta = values.get("eta")
            else:
                proposal.executed = True

    def _apply_partial(
        self,
        report: ReconciliationReport,
        canonical: str,
        record: LogRecord,
        values: Dict[str, Any],
    ) -> None:
        proposal_id = values.get("proposal_id")
        if proposal_id is None:
            return

        if canonical == PROPOSAL_CREATED:
            if proposal_id not in report.proposals:
                report.proposals[proposal_id] = ReconciledProposal(
                    proposal_id=proposal_id,
                    proposer=values.get("proposer"),
                    topic_id=values.get("topic_id"),
                    window_start=values.get("window_start"),
                    window_end=values.get("window_end"),
                    description=values.get("description", ""),
                    tx_ref=record.tx_ref,
                    position=record.position,
                    degraded=True,
                )
            return

        # A damaged vote or status record makes the referenced proposal's audit incomplete
        proposal = report.proposals.get(proposal_id)
        if proposal is not None:
            proposal.degraded = True

    def _audit_cap(
        self,
        report: ReconciliationReport,
        proposal: ReconciledProposal,
        vote: ReconciledVote,
    ) -> None:
        if vote.timestamp is None or proposal.topic_id is None:
            return
        cap = report.weights.weight_at(vote.voter, vote.timestamp, proposal.topic_id)
        if vote.weight > cap:
            day = report.weights.day_of(vote.timestamp)
            report.cap_violations.append(CapViolation(
                vote=vote,
                topic_id=proposal.topic_id,
                day=day,
                cap=cap,
            ))
            logger.warning(
                f"Vote by {vote.voter} on {proposal.proposal_id} weight={vote.weight} "
                f"exceeds cap={cap} for day={day} topic={proposal.topic_id}"
            )
