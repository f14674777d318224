"""
API routes module.
"""

from jobqueue.api.routes.health import router as health_router
from jobqueue.api.routes.jobs import router as jobs_router

__all__ = ["jobs_router", "health_router"]
