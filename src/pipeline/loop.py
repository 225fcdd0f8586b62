"""Long-running loop shared by both agents.

Runs one iteration, logs its duration, then waits the configured interval.
SIGINT/SIGTERM set the stop event: the unit in flight finishes, the wait is
cut short and the loop returns so the caller can release the pool.
"""

import logging
import signal
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def install_signal_handlers(stop_event: threading.Event) -> None:
    """Set stop_event on SIGINT/SIGTERM. Main thread only."""

    def _handle(signum, _frame):
        logger.info(f"Received {signal.Signals(signum).name}, finishing current unit before shutdown")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def run_loop(
    iteration: Callable[[threading.Event], object],
    sleep_ms: int,
    stop_event: Optional[threading.Event] = None,
    label: str = "loop",
    once: bool = False,
) -> None:
    """Run iteration until stopped.

    Errors escaping an iteration are logged; the loop goes on to the next one.

    Args:
        iteration: Called with the stop event once per iteration
        sleep_ms: Wait between iterations
        stop_event: Set to stop the loop (a fresh event when omitted)
        label: Log prefix
        once: Run a single iteration and return
    """
    stop_event = stop_event or threading.Event()
    logger.info(f"[{label}] Loop start (interval {sleep_ms}ms)")

    while not stop_event.is_set():
        started = time.monotonic()
        try:
            iteration(stop_event)
        except Exception as e:
            logger.exception(f"[{label}] Iteration failed: {e}")
        elapsed_ms = int((time.monotonic() - started) * 1000)

        if once:
            logger.info(f"[{label}] Single iteration complete in {elapsed_ms}ms")
            break
        logger.info(f"[{label}] Iteration complete in {elapsed_ms}ms, sleeping {sleep_ms}ms")
        stop_event.wait(sleep_ms / 1000)

    logger.info(f"[{label}] Loop stopped")
