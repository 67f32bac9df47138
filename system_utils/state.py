"""
Shared State Module for system_utils package.
Contains process-wide singletons: background task set and pipeline counters.

It imports NOTHING from the system_utils package to prevent circular imports.
"""
from __future__ import annotations

import asyncio
from typing import Dict, Set

# Strong references to fire-and-forget tasks (asyncio only keeps weak ones)
_background_tasks: Set[asyncio.Task] = set()

# State logging interval
STATE_LOG_INTERVAL = 300  # Seconds between pipeline summaries
_last_state_log_time: float = 0

# Pipeline counters, bumped by the orchestrator and read by the summary logger
_pipeline_counters: Dict[str, int] = {
    "requests": 0,
    "matched": 0,
    "not_found": 0,
    "errors": 0,
    "rate_limited": 0,
    "limit_reached": 0,
    "persist_failures": 0,
}


def bump(counter: str) -> None:
    _pipeline_counters[counter] = _pipeline_counters.get(counter, 0) + 1


def get_counters() -> Dict[str, int]:
    return dict(_pipeline_counters)


def reset_counters() -> None:
    for key in _pipeline_counters:
        _pipeline_counters[key] = 0
