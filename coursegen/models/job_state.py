"""Job state machine: the only legal status edges.

Every status write goes through
``JobRepository.compare_and_set``, which checks the edge here before issuing
a conditional UPDATE on the expected prior status.
"""

from typing import Dict, FrozenSet, Iterable

from .generation_job import JobStatus

TERMINAL_STATES: FrozenSet[JobStatus] = frozenset({
    JobStatus.COMPLETED,
    JobStatus.DEAD,
    JobStatus.CANCELED,
})

NON_TERMINAL_STATES: FrozenSet[JobStatus] = frozenset(set(JobStatus) - TERMINAL_STATES)

# States in which a worker holds a lease.
LEASED_STATES: FrozenSet[JobStatus] = frozenset({JobStatus.CLAIMED, JobStatus.RUNNING})

ALLOWED_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.CLAIMED, JobStatus.CANCELED}),
    # -> PENDING is the expired-lease sweep.
    JobStatus.CLAIMED: frozenset({JobStatus.RUNNING, JobStatus.FAILED, JobStatus.PENDING, JobStatus.CANCELED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.PENDING, JobStatus.CANCELED}),
    # -> PENDING only through the retry controller.
    JobStatus.FAILED: frozenset({JobStatus.PENDING, JobStatus.DEAD, JobStatus.CANCELED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.DEAD: frozenset(),
    JobStatus.CANCELED: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Return True if ``current -> target`` is an edge of the state machine."""
    return JobStatus(target) in ALLOWED_TRANSITIONS[JobStatus(current)]


def is_terminal(status: JobStatus) -> bool:
    return JobStatus(status) in TERMINAL_STATES


def illegal_sources(expected: Iterable[JobStatus], target: JobStatus) -> list[JobStatus]:
    """Expected prior states from which ``target`` is not reachable."""
    return [JobStatus(s) for s in expected if not can_transition(s, target)]
