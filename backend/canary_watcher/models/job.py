"""
Job and PipelineRun domain models plus the job state machine

    pending ──► running ──► done
       ▲           │──────► failed   (non-retryable)
       │           │──────► retry ──► running (due claim)
       │           └──────► dead     (attempts exhausted)
       └──────────────────── retry   (manual requeue)
                             retry ──► dead

done, failed and dead are terminal.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, FrozenSet

from canary_watcher.errors import InvalidTransition


class JobType(str, Enum):
    DISCOVER = 'discover'
    FETCH = 'fetch'
    EXTRACT = 'extract'
    MAP = 'map'
    AGGREGATE = 'aggregate'


class JobStatus(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    RETRY = 'retry'
    DONE = 'done'
    FAILED = 'failed'
    DEAD = 'dead'


class RunStatus(str, Enum):
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'


ALLOWED_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING}),
    JobStatus.RETRY: frozenset({JobStatus.RUNNING, JobStatus.PENDING, JobStatus.DEAD}),
    JobStatus.RUNNING: frozenset({JobStatus.DONE, JobStatus.RETRY, JobStatus.FAILED, JobStatus.DEAD}),
    JobStatus.DONE: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.DEAD: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

CLAIMABLE_STATUSES = (JobStatus.PENDING, JobStatus.RETRY)

DEFAULT_PRIORITIES = {
    JobType.DISCOVER: 10,
    JobType.FETCH: 50,
    JobType.EXTRACT: 60,
    JobType.MAP: 70,
    JobType.AGGREGATE: 90,
}


def can_transition(from_status, to_status) -> bool:
    return JobStatus(to_status) in ALLOWED_TRANSITIONS[JobStatus(from_status)]


def check_transition(from_status, to_status) -> None:
    """Raise InvalidTransition unless from_status -> to_status is an allowed edge"""
    if not can_transition(from_status, to_status):
        raise InvalidTransition(JobStatus(from_status).value, JobStatus(to_status).value)


@dataclass
class Job:
    id: str
    type: JobType
    status: JobStatus = JobStatus.PENDING
    run_id: Optional[str] = None
    payload: dict = field(default_factory=dict)
    priority: int = 100
    dedupe_key: Optional[str] = None
    attempts: int = 0
    max_attempts: int = 5
    available_at: Optional[datetime] = None
    locked_at: Optional[datetime] = None
    locked_by: Optional[str] = None
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            'id': str(self.id),
            'type': self.type.value,
            'status': self.status.value,
            'run_id': str(self.run_id) if self.run_id else None,
            'payload': self.payload,
            'priority': self.priority,
            'dedupe_key': self.dedupe_key,
            'attempts': self.attempts,
            'max_attempts': self.max_attempts,
            'available_at': self.available_at.isoformat() if self.available_at else None,
            'last_error': self.last_error,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class PipelineRun:
    id: str
    status: RunStatus = RunStatus.RUNNING
    scoring_version: str = 'v1'
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    items_discovered: int = 0
    items_processed: int = 0
    items_failed: int = 0
    error_log: Optional[str] = None
