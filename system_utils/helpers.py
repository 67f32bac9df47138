"""
Helper functions for system_utils package.
Pure utility functions with minimal dependencies.

Dependencies: state (for task tracking and counters)
"""
from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from . import state
from logging_config import get_logger

logger = get_logger(__name__)


# =============================================================================
# Thread Executor for Blocking Operations
# =============================================================================
# Blocking I/O (vendor HTTP via requests, PortAudio streams, JSON file store)
# runs here so the event loop never stalls.

_thread_executor: Optional[ThreadPoolExecutor] = None


def _get_daemon_executor() -> ThreadPoolExecutor:
    """Get or create the thread executor for blocking operations."""
    global _thread_executor
    if _thread_executor is None:
        _thread_executor = ThreadPoolExecutor(
            max_workers=16,
            thread_name_prefix="SoundScout_Worker"
        )
    return _thread_executor


async def run_in_daemon_executor(func: Callable, *args: Any) -> Any:
    """
    Run a blocking function in the shared thread executor.

    Args:
        func: Blocking function to run
        *args: Arguments to pass to the function

    Returns:
        Result of the function
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_get_daemon_executor(), func, *args)


def shutdown_daemon_executor():
    """Shutdown the thread executor. Call during app cleanup."""
    global _thread_executor
    if _thread_executor is not None:
        # wait=False ensures we don't block if a vendor call is hung
        _thread_executor.shutdown(wait=False, cancel_futures=True)
        _thread_executor = None


def create_tracked_task(coro):
    """
    Create a background task with automatic cleanup and error logging.
    Prevents silent failures and ensures tasks complete even if references are lost.
    """
    task = asyncio.create_task(coro)
    state._background_tasks.add(task)

    def cleanup(t):
        state._background_tasks.discard(t)
        if t.cancelled():
            return  # Expected during shutdown
        exc = t.exception()
        if exc is not None:
            logger.error(f"Background task failed: {exc}", exc_info=exc)

    task.add_done_callback(cleanup)
    return task


# =============================================================================
# Time helpers
# =============================================================================

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def month_start(moment: datetime) -> datetime:
    """First instant of the calendar month containing `moment` (same tz)."""
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


# =============================================================================
# Periodic state summary
# =============================================================================

def _log_app_state(force: bool = False) -> None:
    """Log pipeline counters at most once per STATE_LOG_INTERVAL."""
    current_time = time.time()
    if not force and current_time - state._last_state_log_time < state.STATE_LOG_INTERVAL:
        return
    state._last_state_log_time = current_time

    if not logger.isEnabledFor(logging.INFO):
        return

    counters = state.get_counters()
    current_time_str = time.strftime("%I:%M %p - %b %d, %Y")
    logger.info(
        f"\nRecognition Pipeline Summary:\n"
        f"|- Time: {current_time_str}\n"
        f"|- Requests: {counters['requests']}\n"
        f"|  |- Matched: {counters['matched']}\n"
        f"|  |- Not found: {counters['not_found']}\n"
        f"|  `- Errors: {counters['errors']}\n"
        f"|- Refusals: rate={counters['rate_limited']} quota={counters['limit_reached']}\n"
        f"|- Persist failures: {counters['persist_failures']}\n"
        f"`- Background tasks: {len(state._background_tasks)}"
    )
