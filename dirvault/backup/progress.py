"""
Liveness heartbeat for long-running writes.

The work runs on a single background worker while the calling thread wakes
up every `interval` seconds to report that the run is still alive. The
worker's result (or exception) is always awaited in full.
"""

import time
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, Optional, TypeVar


logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 30

T = TypeVar('T')


def log_progress(elapsed_seconds: float):
    """Default progress callback: log that the write is still running."""
    logger.info(f"Backup write still in progress ({elapsed_seconds:.0f}s elapsed)")


def run_with_heartbeat(
    func: Callable[[], T],
    progress_callback: Optional[Callable[[float], None]] = None,
    interval: float = DEFAULT_INTERVAL_SECONDS
) -> T:
    """
    Run func on a worker thread, invoking progress_callback while waiting.

    Args:
        func: Zero-argument callable doing the actual work
        progress_callback: Called with elapsed seconds once per interval; None disables it
        interval: Seconds between callbacks

    Returns:
        Whatever func returns

    Raises:
        Whatever func raises
    """
    if progress_callback is None or interval is None or interval <= 0:
        return func()

    started = time.monotonic()

    with ThreadPoolExecutor(max_workers=1, thread_name_prefix='dirvault-writer') as pool:
        future = pool.submit(func)

        while True:
            try:
                return future.result(timeout=interval)
            except FutureTimeout:
                try:
                    progress_callback(time.monotonic() - started)
                except Exception as e:
                    # Observation hook only; never let it break the write
                    logger.warning(f"Progress callback failed: {e}")
