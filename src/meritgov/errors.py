"""
meritgov/errors.py

Exception taxonomy for the governance engine.

Every failure is raised before any state is touched, so a caught
GovernanceError always means "nothing happened". Each exception keeps
the identifiers it was raised for as attributes, and renders them in
its message so the condition can be diagnosed without replaying the log.
"""

import functools
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger("meritgov.errors")


class GovernanceError(Exception):
    """Base class for all governance engine errors."""
    pass


class ArityMismatch(GovernanceError, ValueError):
    """Parallel sequences were given with different lengths."""

    def __init__(self, what: str, lengths: tuple):
        self.what = what
        self.lengths = tuple(lengths)
        super().__init__(
            f"{what}: parallel sequences differ in length {list(self.lengths)}"
        )


class InvalidArgument(GovernanceError, ValueError):
    """An argument is out of its valid range."""
    pass


class Unauthorized(GovernanceError):
    """Caller lacks the role required for the operation."""

    def __init__(self, account: str, role: str):
        self.account = account
        self.role = role
        super().__init__(f"account {account!r} is not authorized as {role}")


class UnknownProposal(GovernanceError, KeyError):
    """Operation references a proposal id that was never created."""

    def __init__(self, proposal_id: int):
        self.proposal_id = proposal_id
        super().__init__(proposal_id)

    def __str__(self) -> str:
        return f"unknown proposal {self.proposal_id}"


class InvalidStateTransition(GovernanceError):
    """Operation attempted while the proposal is in the wrong state."""

    def __init__(
        self,
        proposal_id: int,
        state: Any,
        action: str,
        expected: Optional[str] = None,
    ):
        self.proposal_id = proposal_id
        self.state = state
        self.action = action
        self.expected = expected
        state_name = getattr(state, "name", state)
        message = f"cannot {action} proposal {proposal_id} in state {state_name}"
        if expected:
            message += f" (requires {expected})"
        super().__init__(message)


class DuplicateVote(GovernanceError):
    """Voter already has a recorded vote on the proposal."""

    def __init__(self, proposal_id: int, voter: str):
        self.proposal_id = proposal_id
        self.voter = voter
        super().__init__(f"account {voter!r} already voted on proposal {proposal_id}")


def reports_rejections(method: Callable) -> Callable:
    """
    Pass any GovernanceError raised by an engine method to the
    instance's rejection listeners, then re-raise it unchanged.

    The instance keeps its callbacks in `_rejection_listeners`.
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except GovernanceError as error:
            for callback in list(self._rejection_listeners):
                try:
                    callback(error)
                except Exception as e:
                    logger.error(f"Rejection listener error on {type(error).__name__}: {e}")
            raise

    return wrapper
