"""
Services module.
Contains the idempotent submission front end.
"""

from jobqueue.services.submission import SubmissionService

__all__ = ["SubmissionService"]
