"""
Reaper module.
Contains the retention reaper and its pg_cron schedule registration.
"""

from jobqueue.reaper.main import Reaper, run
from jobqueue.reaper.schedule import (
    register_retention_schedule,
    retention_delete_command,
    unregister_retention_schedule,
)

__all__ = [
    "Reaper",
    "run",
    "register_retention_schedule",
    "retention_delete_command",
    "unregister_retention_schedule",
]
