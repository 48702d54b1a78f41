"""
Durable Job Queue

A PostgreSQL-backed job queue: transactional enqueue, a guarded status
state machine, LISTEN/NOTIFY wake signals for consumers, and scheduled
retention cleanup of finished jobs.
"""

__version__ = "1.0.0"
