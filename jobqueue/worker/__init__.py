"""
Worker module.
Contains the lease manager, the handler registry, and the worker loop.
"""

from jobqueue.worker.lease import LeaseManager
from jobqueue.worker.main import Worker, run

__all__ = ["LeaseManager", "Worker", "run"]
