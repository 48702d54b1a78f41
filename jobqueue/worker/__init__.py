"""
Worker module.
Contains the reference consumer and its job handlers.
"""

from jobqueue.worker.main import Worker, run

__all__ = ["Worker", "run"]
