"""
Durable Job Queue

An at-least-once job queue with idempotent submission, lease-based claiming
using FOR UPDATE SKIP LOCKED, crash recovery through lease expiry, and
bounded retry with dead-lettering.
"""

__version__ = "1.0.0"
