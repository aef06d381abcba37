"""
meritgov/protocol/weights.py

Oracle weight registry: day-keyed, topic-keyed, account-keyed vote caps.

An authorized publisher pushes caps in batches for one (day, topic).
Each cap bounds how much weight an account may count on that topic on
that day. Lookups are strictly daily: a day with no published entry
has a cap of zero.

Usage:
    from meritgov.protocol.weights import WeightRegistry

    registry = WeightRegistry(config, event_log)
    registry.publish("EPublisher", day=5, topic_id=1,
                     accounts=["EVoter"], caps=[100000], context_hash=b"...")

    cap = registry.weight_at("EVoter", timestamp=5 * 86400 + 10, topic_id=1)
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple, Union
from dataclasses import dataclass, asdict

from ..clock import SystemClock
from ..config import GovernanceConfig
from ..errors import ArityMismatch, InvalidArgument, Unauthorized, reports_rejections
from ..events import (
    Event,
    EventLog,
    WEIGHTS_PUBLISHED,
    PUBLISHER_GRANTED,
    PUBLISHER_REVOKED,
)

logger = logging.getLogger("meritgov.protocol.weights")

PUBLISHER_ROLE = "publisher"
ADMIN_ROLE = "admin"

# (day, topic_id, account)
WeightKey = Tuple[int, int, str]


@dataclass(frozen=True)
class WeightEntry:
    """A published cap for one account on one topic for one day."""
    day: int
    topic_id: int
    account: str
    cap: int
    context_hash: Union[bytes, str] = b""

    @property
    def key(self) -> WeightKey:
        return (self.day, self.topic_id, self.account)

    def to_dict(self) -> dict:
        data = asdict(self)
        if isinstance(self.context_hash, bytes):
            data["context_hash"] = "0x" + self.context_hash.hex()
        return data


def _check_uint(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidArgument(f"{name} must be a non-negative integer, got {value!r}")
    return value


class WeightRegistry:
    """
    Stores and serves per-day, per-topic, per-account weight caps.

    A later publish for the same (day, topic, account) key overwrites
    the earlier cap. Reads never mutate state.
    """

    def __init__(
        self,
        config: Optional[GovernanceConfig] = None,
        event_log: Optional[EventLog] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize WeightRegistry.

        Args:
            config: Engine configuration (admin and initial publishers)
            event_log: Log receiving WeightsPublished events
            clock: Returns the current time in seconds
        """
        self.config = config or GovernanceConfig()
        self.event_log = event_log
        self._clock = clock or SystemClock()
        self._entries: Dict[WeightKey, WeightEntry] = {}
        self._publishers: Set[str] = set(self.config.publishers)
        self._batches = 0
        self._rejection_listeners: List[Callable[[Exception], None]] = []

    # ========================================================================
    # ROLES
    # ========================================================================

    def on_rejection(self, callback: Callable[[Exception], None]) -> None:
        """Register a callback invoked with every rejected publish or role change."""
        self._rejection_listeners.append(callback)

    def is_publisher(self, account: str) -> bool:
        return account in self._publishers

    def get_publishers(self) -> List[str]:
        return sorted(self._publishers)

    @reports_rejections
    def grant_publisher(self, caller: str, account: str) -> None:
        """
        Authorize an account to publish caps (admin only).

        Raises:
            Unauthorized: if caller is not the configured admin
        """
        self._require_admin(caller)
        if account in self._publishers:
            logger.debug(f"Publisher already granted: {account}")
            return
        self._emit(PUBLISHER_GRANTED, {"account": account, "sender": caller})
        self._publishers.add(account)
        logger.info(f"Granted publisher role to {account}")

    @reports_rejections
    def revoke_publisher(self, caller: str, account: str) -> None:
        """
        Remove an account's publisher role (admin only).

        Raises:
            Unauthorized: if caller is not the configured admin
        """
        self._require_admin(caller)
        if account not in self._publishers:
            logger.debug(f"Publisher not present: {account}")
            return
        self._emit(PUBLISHER_REVOKED, {"account": account, "sender": caller})
        self._publishers.discard(account)
        logger.info(f"Revoked publisher role from {account}")

    def _require_admin(self, caller: str) -> None:
        if not self.config.admin or caller != self.config.admin:
            logger.warning(f"Rejected admin action from {caller}")
            raise Unauthorized(caller, ADMIN_ROLE)

    # ========================================================================
    # PUBLISH
    # ========================================================================

    @reports_rejections
    def publish(
        self,
        caller: str,
        day: int,
        topic_id: int,
        accounts: Sequence[str],
        caps: Sequence[int],
        context_hash: Union[bytes, str] = b"",
    ) -> List[WeightEntry]:
        """
        Publish a batch of caps for one (day, topic).

        Args:
            caller: Account submitting the batch
            day: Day index (timestamp // seconds_per_day)
            topic_id: Topic the caps apply to
            accounts: Accounts, parallel to caps
            caps: Cap per account
            context_hash: Opaque audit correlation tag

        Returns:
            The recorded entries, in input order

        Raises:
            Unauthorized: caller is not a publisher
            ArityMismatch: accounts and caps differ in length
            InvalidArgument: negative day, topic or cap
        """
        if not self.is_publisher(caller):
            logger.warning(f"Rejected weight publish from {caller} for day={day} topic={topic_id}")
            raise Unauthorized(caller, PUBLISHER_ROLE)

        accounts = list(accounts)
        caps = list(caps)
        if len(accounts) != len(caps):
            raise ArityMismatch(
                f"publish day={day} topic={topic_id}", (len(accounts), len(caps))
            )

        _check_uint(day, "day")
        _check_uint(topic_id, "topic_id")
        for account, cap in zip(accounts, caps):
            _check_uint(cap, f"cap for {account}")
            if not account:
                raise InvalidArgument(f"empty account in publish day={day} topic={topic_id}")

        event = self._emit(WEIGHTS_PUBLISHED, {
            "day": day,
            "topicId": topic_id,
            "accounts": accounts,
            "caps": caps,
            "contextHash": context_hash,
            "sender": caller,
        })
        entries = self._apply_batch(day, topic_id, accounts, caps, context_hash)

        logger.info(
            f"Published {len(entries)} caps for day={day} topic={topic_id}"
            + (f" at position {event.position}" if event else "")
        )
        return entries

    def _apply_batch(
        self,
        day: int,
        topic_id: int,
        accounts: List[str],
        caps: List[int],
        context_hash: Union[bytes, str],
    ) -> List[WeightEntry]:
        entries = []
        for account, cap in zip(accounts, caps):
            entry = WeightEntry(
                day=day,
                topic_id=topic_id,
                account=account,
                cap=cap,
                context_hash=context_hash,
            )
            self._entries[entry.key] = entry
            entries.append(entry)
        self._batches += 1
        return entries

    def _emit(self, name: str, args: Dict[str, Any]) -> Optional[Event]:
        if self.event_log is None:
            return None
        return self.event_log.append(name, args, timestamp=self._clock())

    # ========================================================================
    # QUERIES
    # ========================================================================

    def day_of(self, timestamp: int) -> int:
        """Day index containing a timestamp."""
        return timestamp // self.config.seconds_per_day

    def entry_at(self, account: str, timestamp: int, topic_id: int) -> Optional[WeightEntry]:
        """Get the entry in force at a timestamp, or None if none was published."""
        return self._entries.get((self.day_of(timestamp), topic_id, account))

    def weight_at(self, account: str, timestamp: int, topic_id: int) -> int:
        """
        Get the cap for an account on a topic at a timestamp.

        Returns 0 when nothing was published for that exact day.
        """
        entry = self.entry_at(account, timestamp, topic_id)
        return entry.cap if entry else 0

    def weight_on_day(self, account: str, day: int, topic_id: int) -> int:
        entry = self._entries.get((day, topic_id, account))
        return entry.cap if entry else 0

    def topics_on_day(self, day: int) -> List[int]:
        """Topics that have at least one entry for a day."""
        return sorted({key[1] for key in self._entries if key[0] == day})

    def entries(self) -> List[WeightEntry]:
        return sorted(self._entries.values(), key=lambda e: e.key)

    def get_stats(self) -> dict:
        return {
            "entries": len(self._entries),
            "batches": self._batches,
            "publishers": len(self._publishers),
            "days": len({key[0] for key in self._entries}),
        }

    # ========================================================================
    # REPLAY
    # ========================================================================

    def apply_event(self, event: Event) -> bool:
        """
        Re-apply a persisted event without validation.

        Used to restore live state from this registry's own log.

        Returns:
            True if the event changed registry state
        """
        args = event.args
        if event.name == WEIGHTS_PUBLISHED:
            self._apply_batch(
                args["day"],
                args["topicId"],
                list(args["accounts"]),
                list(args["caps"]),
                args.get("contextHash", b""),
            )
            return True
        if event.name == PUBLISHER_GRANTED:
            self._publishers.add(args["account"])
            return True
        if event.name == PUBLISHER_REVOKED:
            self._publishers.discard(args["account"])
            return True
        return False
