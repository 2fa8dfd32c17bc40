"""Run a propagation on a dedicated background thread.

The worker is the only writer of slice state while it runs. Observers may
read slices for display and may freeze a slice or cancel the run; both are
flags polled by the controller between iterations.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from PropagationController import (
    ProgressCallback,
    PropagationController,
    PropagationResult,
)
from VolumeData import VolumeStack

logger = logging.getLogger(__name__)


class PropagationWorker:
    """Background thread wrapper around a PropagationController.

    Usage:
        worker = PropagationWorker(controller)
        worker.start()
        ...
        worker.freeze(12)  # stop evolving slice 12 at the next iteration
        worker.join()
        result = worker.result
    """

    def __init__(
        self,
        controller: PropagationController,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.controller = controller
        if progress_callback is not None:
            controller.progress_callback = progress_callback

        self.result: Optional[PropagationResult] = None
        self.error: Optional[BaseException] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def volume(self) -> VolumeStack:
        return self.controller.volume

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start propagation in a daemon thread.

        Raises:
            RuntimeError: If the worker was already started.
        """
        if self._thread is not None:
            raise RuntimeError("PropagationWorker can only be started once")
        self._thread = threading.Thread(target=self._run, name="PropagationWorker", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        try:
            logger.info("Starting propagation in background thread...")
            self.result = self.controller.run()
            logger.info("Background propagation finished")
        except Exception as e:
            logger.error(f"Propagation failed: {e}")
            self.error = e

    def join(self, timeout: Optional[float] = None) -> Optional[PropagationResult]:
        """Wait for the thread to finish and return the result (None on failure)."""
        if self._thread is not None:
            self._thread.join(timeout)
        return self.result

    def freeze(self, slice_index: int) -> None:
        """Ask the worker to stop evolving one slice at its next iteration boundary."""
        self.volume[slice_index].freeze()

    def cancel(self) -> None:
        """Stop evolving every remaining slice; the run still commits all slices."""
        self.controller.cancel_token.cancel()
