"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - QUEUED -> RUNNING (lease claimed)
    - RUNNING -> SUCCESS (execution succeeded)
    - RUNNING -> QUEUED (execution failed, retries left)
    - RUNNING -> DEAD (execution failed, retries exhausted)
    - RUNNING -> RUNNING (lease expired, reclaimed by another worker)

    SUCCESS and DEAD are terminal.
    """

    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    DEAD = "dead"


TERMINAL_STATES: frozenset[JobState] = frozenset({JobState.SUCCESS, JobState.DEAD})

# Default values
DEFAULT_MAX_RETRIES = 3
DEFAULT_LEASE_DURATION_SECONDS = 30.0
MAX_ERROR_LENGTH = 4000

# API constants
API_V1_PREFIX = "/v1"

# Metrics names
METRIC_QUEUE_DEPTH = "job_queue_depth"
METRIC_JOBS_SUBMITTED = "jobs_submitted_total"
METRIC_JOBS_DEDUPLICATED = "jobs_deduplicated_total"
METRIC_JOBS_FINALIZED = "jobs_finalized_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_LEASE_EXPIRED = "lease_expired_total"
METRIC_LEASE_ACQUIRED = "lease_acquired_total"
METRIC_CLAIM_EMPTY = "claim_empty_total"

# Trace span names
SPAN_SUBMIT_JOB = "submit_job"
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_FINALIZE_JOB = "finalize_job"
