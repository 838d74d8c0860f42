"""
Persistence Layer

Provides job tracking for the pipeline.
"""

from .jobs import JobTracker, Job, JobStatus, InvalidTransitionError, TERMINAL_STATUSES

__all__ = [
    "JobTracker",
    "Job",
    "JobStatus",
    "InvalidTransitionError",
    "TERMINAL_STATUSES",
]
