"""
System Utils Package

    state.py      - Process-wide task set and pipeline counters
    helpers.py    - Thread executor, tracked tasks, time helpers
"""

from .helpers import (
    run_in_daemon_executor,
    shutdown_daemon_executor,
    create_tracked_task,
    utc_now,
    month_start,
)

__all__ = [
    'run_in_daemon_executor',
    'shutdown_daemon_executor',
    'create_tracked_task',
    'utc_now',
    'month_start',
]
