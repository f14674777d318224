"""
Job lifecycle state machine.

The transitions themselves are executed by the repository as conditional
UPDATEs; this module holds the rules those UPDATEs encode so that workers,
the API and tests agree on them.
"""

from jobqueue.constants import TERMINAL_STATES, JobState

# Edges of the lifecycle graph. RUNNING -> RUNNING is a reclaim after lease
# expiry; DEAD -> QUEUED is the operator requeue.
TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.QUEUED: frozenset({JobState.RUNNING}),
    JobState.RUNNING: frozenset(
        {JobState.RUNNING, JobState.SUCCESS, JobState.QUEUED, JobState.DEAD}
    ),
    JobState.SUCCESS: frozenset(),
    JobState.DEAD: frozenset({JobState.QUEUED}),
}


class InvalidTransitionError(ValueError):
    """Raised when a transition is not an edge of the lifecycle graph."""

    def __init__(self, current: JobState, target: JobState):
        super().__init__(f"Invalid job transition: {current} -> {target}")
        self.current = current
        self.target = target


def can_transition(current: JobState, target: JobState) -> bool:
    """Check whether ``current -> target`` is a defined edge."""
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: JobState, target: JobState) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is allowed."""
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def is_terminal(state: JobState) -> bool:
    return state in TERMINAL_STATES


def failure_outcome(retry_count: int, max_retries: int) -> tuple[JobState, int]:
    """
    Decide where a failed execution goes.

    Every failure consumes one retry. The job is dead-lettered once the
    incremented count reaches ``max_retries``.

    Args:
        retry_count: The job's retry count before this failure.
        max_retries: The job's retry budget.

    Returns:
        Tuple of (next_state, next_retry_count).
    """
    next_count = retry_count + 1
    if next_count >= max_retries:
        return JobState.DEAD, next_count
    return JobState.QUEUED, next_count
