"""Error taxonomy for the capture-to-schedule pipeline.

Every failure is scoped to one session or one action; none of these is
fatal to the process.
"""

from __future__ import annotations


class PactBridgeError(Exception):
    """Base class for all pipeline errors."""


class QuotaExceeded(PactBridgeError):
    """The account's tier does not allow another recording (or comment) this period."""

    def __init__(self, account_id: int, limit: int, resource: str = "recording") -> None:
        super().__init__(
            f"Account {account_id} reached its {resource} limit ({limit}) for this period"
        )
        self.account_id = account_id
        self.limit = limit
        self.resource = resource


class ExtractionFailed(PactBridgeError):
    """The extraction collaborator failed or returned an unusable payload."""

    def __init__(self, session_id: int, reason: str) -> None:
        super().__init__(f"Extraction failed for session {session_id}: {reason}")
        self.session_id = session_id
        self.reason = reason


class SchedulingPartialFailure(PactBridgeError):
    """Scheduling did not complete; the action is still `confirmed`."""

    def __init__(self, action_id: int, reason: str) -> None:
        super().__init__(f"Could not schedule action {action_id}: {reason}")
        self.action_id = action_id
        self.reason = reason


class InvalidTransition(PactBridgeError):
    """A state change that is not allowed from the current state."""

    def __init__(self, entity: str, current: str, attempted: str) -> None:
        super().__init__(f"{entity}: cannot {attempted} from '{current}'")
        self.entity = entity
        self.current = current
        self.attempted = attempted
