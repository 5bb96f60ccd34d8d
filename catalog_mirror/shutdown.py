"""Stop batch jobs between items on SIGINT/SIGTERM.

The first signal lets the product or category in flight finish (so its
store write lands) and the job returns a partial summary. A second signal
exits at once with status 130.
"""

import signal
import sys
import threading
from typing import Dict, Optional

from catalog_mirror.logging_config import get_logger

__all__ = [
    "ShutdownHandler",
    "get_shutdown_handler",
    "shutdown_requested",
    "mark_item",
]

logger = get_logger("shutdown")

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownHandler:
    """Process-wide stop flag for batch loops.

    Usage:
        handler = get_shutdown_handler().install()
        try:
            for record in targets:
                if handler.shutdown_requested:
                    break
                handler.mark_item(record.slug)
                ...
        finally:
            handler.uninstall()
    """

    _instance: Optional["ShutdownHandler"] = None
    _lock = threading.Lock()

    def __init__(self) -> None:
        self._stop = threading.Event()
        self._saved: Dict[int, object] = {}
        self.current_item: Optional[str] = None

    @classmethod
    def get_instance(cls) -> "ShutdownHandler":
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls()
        return cls._instance

    def install(self) -> "ShutdownHandler":
        """Take over SIGINT/SIGTERM. Must run on the main thread."""
        if not self._saved:
            for signum in _SIGNALS:
                self._saved[signum] = signal.getsignal(signum)
                signal.signal(signum, self._on_first_signal)
        return self

    def uninstall(self) -> None:
        for signum, previous in self._saved.items():
            signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        self._saved.clear()
        self.current_item = None

    def _on_first_signal(self, signum: int, frame) -> None:
        in_flight = f" ({self.current_item})" if self.current_item else ""
        logger.warning(
            f"{signal.Signals(signum).name} received, stopping after the current item{in_flight}. "
            f"Signal again to quit now."
        )
        self._stop.set()
        signal.signal(signum, self._on_second_signal)

    def _on_second_signal(self, signum: int, frame) -> None:
        logger.error(f"Quitting without finishing {self.current_item or 'the current item'}")
        sys.exit(130)

    @property
    def shutdown_requested(self) -> bool:
        return self._stop.is_set()

    def request_shutdown(self) -> None:
        self._stop.set()

    def mark_item(self, label: str) -> None:
        """Record which item the batch is working on, for the stop message."""
        self.current_item = label

    def reset(self) -> None:
        self._stop.clear()
        self.current_item = None


def get_shutdown_handler() -> ShutdownHandler:
    return ShutdownHandler.get_instance()


def shutdown_requested() -> bool:
    """True once a stop signal arrived; batch loops check this between items."""
    return get_shutdown_handler().shutdown_requested


def mark_item(label: str) -> None:
    get_shutdown_handler().mark_item(label)
