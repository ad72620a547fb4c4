"""Shared utilities for Heartline.

- backoff: exponential backoff with jitter and a consecutive-failure tracker
- timers: cancellable one-shot asyncio timers
- async_utils: thread bridging and background task helpers
- logging: CLI logging setup
"""

from heartline.utils.async_utils import run_in_thread, spawn, task_callback
from heartline.utils.backoff import BackoffPolicy, ConsecutiveFailureTracker
from heartline.utils.timers import ScheduledTask

__all__ = [
    "BackoffPolicy",
    "ConsecutiveFailureTracker",
    "ScheduledTask",
    "run_in_thread",
    "spawn",
    "task_callback",
]
