"""
meritgov/events.py

Append-only event log shared by the live engine and the reconciler.

The live components emit one Event per state change. The log is the
only thing the reconciler reads, so every field needed to rebuild a
proposal, a vote or a weight batch travels in the event args.

Usage:
    from meritgov.events import EventLog

    log = EventLog("governance.jsonl")     # or EventLog() for in-memory
    log.on_event(lambda event: print(event.name))

    event = log.append("ProposalCanceled", {"id": 42}, timestamp=1700000000)
    print(event.position, event.tx_ref)

    restored = EventLog.load("governance.jsonl")
"""

import json
import logging
import hashlib
import os
from typing import Any, Callable, Dict, Iterator, List, Optional
from dataclasses import dataclass, field

from .errors import InvalidArgument

logger = logging.getLogger("meritgov.events")


# ============================================================================
# EVENT NAMES
# ============================================================================

PROPOSAL_CREATED = "ProposalCreated"
VOTE_CAST = "VoteCast"
WEIGHTS_PUBLISHED = "WeightsPublished"
PROPOSAL_CANCELED = "ProposalCanceled"
PROPOSAL_QUEUED = "ProposalQueued"
PROPOSAL_EXECUTED = "ProposalExecuted"
PUBLISHER_GRANTED = "PublisherGranted"
PUBLISHER_REVOKED = "PublisherRevoked"

EVENT_NAMES = (
    PROPOSAL_CREATED,
    VOTE_CAST,
    WEIGHTS_PUBLISHED,
    PROPOSAL_CANCELED,
    PROPOSAL_QUEUED,
    PROPOSAL_EXECUTED,
    PUBLISHER_GRANTED,
    PUBLISHER_REVOKED,
)


# ============================================================================
# SERIALIZATION
# ============================================================================

class EventEncoder(json.JSONEncoder):
    """JSON encoder that keeps bytes values recoverable."""

    def default(self, obj):
        if isinstance(obj, (bytes, bytearray)):
            return {"__meritgov_type__": "bytes", "value": "0x" + bytes(obj).hex()}
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        return super().default(obj)


def event_decoder(obj: dict) -> Any:
    """Object hook reversing EventEncoder."""
    if obj.get("__meritgov_type__") == "bytes":
        value = obj.get("value", "")
        if value.startswith("0x"):
            value = value[2:]
        return bytes.fromhex(value)
    return obj


def serialize_event(data: Any) -> str:
    """Serialize an event payload to a single JSON line."""
    return json.dumps(data, cls=EventEncoder, sort_keys=True, separators=(",", ":"))


def deserialize_event(line: str) -> Any:
    """Deserialize a JSON line produced by serialize_event."""
    return json.loads(line, object_hook=event_decoder)


def compute_tx_ref(position: int, name: str, args: Any) -> str:
    """Deterministic reference standing in for a transaction hash."""
    payload = serialize_event([position, name, args])
    return "0x" + hashlib.sha256(payload.encode()).hexdigest()


# ============================================================================
# EVENT
# ============================================================================

@dataclass
class Event:
    """A single immutable log record."""
    position: int
    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0
    tx_ref: str = ""

    def __post_init__(self):
        if not self.tx_ref:
            self.tx_ref = compute_tx_ref(self.position, self.name, self.args)

    def to_dict(self) -> dict:
        return {
            "position": self.position,
            "name": self.name,
            "args": self.args,
            "timestamp": self.timestamp,
            "tx_ref": self.tx_ref,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        return cls(
            position=data["position"],
            name=data["name"],
            args=data.get("args", {}),
            timestamp=data.get("timestamp", 0),
            tx_ref=data.get("tx_ref", ""),
        )


# ============================================================================
# EVENT LOG
# ============================================================================

class EventLog:
    """
    Ordered, append-only sequence of events.

    When constructed with a path, every append is also written to that
    file as one JSON line, and EventLog.load() restores the sequence.
    """

    def __init__(self, path: Optional[str] = None):
        """
        Initialize EventLog.

        Args:
            path: Optional JSON-lines file backing the log
        """
        self.path = os.path.expanduser(path) if path else None
        self._events: List[Event] = []
        self._listeners: List[Callable[[Event], None]] = []

    @classmethod
    def load(cls, path: str) -> "EventLog":
        """
        Load a log from a JSON-lines file.

        A missing file yields an empty log bound to that path.
        """
        log = cls(path)
        if log.path and os.path.exists(log.path):
            with open(log.path, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    log._events.append(Event.from_dict(deserialize_event(line)))
            logger.info(f"Loaded {len(log._events)} events from {log.path}")
        return log

    def append(self, name: str, args: Dict[str, Any], timestamp: int = 0) -> Event:
        """
        Append a new event at the end of the log.

        Args:
            name: Event name (see EVENT_NAMES)
            args: Event arguments
            timestamp: Engine time at emission

        Returns:
            The recorded Event

        Raises:
            InvalidArgument: if name is not one of EVENT_NAMES
        """
        if name not in EVENT_NAMES:
            raise InvalidArgument(f"unknown event name {name!r}")

        event = Event(
            position=len(self._events),
            name=name,
            args=dict(args),
            timestamp=timestamp,
        )

        if self.path:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "a") as f:
                f.write(serialize_event(event.to_dict()) + "\n")

        self._events.append(event)
        logger.debug(f"Appended {name} at position {event.position}")

        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Event listener error on {name}: {e}")

        return event

    def on_event(self, callback: Callable[[Event], None]) -> None:
        """Register a callback invoked after every append."""
        self._listeners.append(callback)

    def events(self, since: int = 0) -> List[Event]:
        """Get events at or after a log position."""
        return list(self._events[since:])

    def last(self) -> Optional[Event]:
        return self._events[-1] if self._events else None

    def count(self, name: Optional[str] = None) -> int:
        """Count events, optionally only those with a given name."""
        if name is None:
            return len(self._events)
        return sum(1 for e in self._events if e.name == name)

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[Event]:
        return iter(list(self._events))

    def __getitem__(self, position: int) -> Event:
        return self._events[position]


# ============================================================================
# RAW RECORDS
# ============================================================================

def read_records(path: str) -> List[Any]:
    """
    Read a JSON-lines file without interpreting record shapes.

    Used by the audit path, which must see every line: decoded lines are
    returned as mappings (whatever keys they carry) and lines that are
    not valid JSON are returned as the raw string. A missing file yields
    no records.
    """
    path = os.path.expanduser(path)
    records: List[Any] = []
    if not os.path.exists(path):
        return records
    with open(path, "r") as f:
        for number, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(deserialize_event(line))
            except ValueError as e:
                logger.warning(f"Line {number} of {path} is not JSON: {e}")
                records.append(line)
    return records
