"""
Render coalescing.

A burst of mutations inside one scheduling quantum produces a single render.
The guard is set on the first request and cleared only after the render
completes; requests arriving while the guard is set are dropped, except those
issued by the render itself, which are carried into the next cycle.

The scheduling opportunity is pluggable:
- an explicit defer(callback) hook (e.g. a GUI toolkit's "call later")
- otherwise loop.call_soon() on the running asyncio loop
- otherwise the owner calls flush()
"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DeferFn = Callable[[Callable[[], None]], None]


class RenderScheduler:
    """Single in-flight render with burst coalescing.

    Thread safety: Not thread-safe (cooperative, single-threaded).

    Args:
        render: Synchronous render callable
        defer: Optional hook that runs its argument at the next scheduling opportunity
    """

    def __init__(self, render: Callable[[], None], defer: Optional[DeferFn] = None):
        self._render = render
        self._defer = defer
        self._pending = False
        self._rendering = False
        self._rerun_requested = False
        self._queued = False
        self.render_count = 0

    @property
    def pending(self) -> bool:
        """True while a render is requested and not yet completed."""
        return self._pending

    def request(self) -> None:
        """Ask for a render at the next scheduling opportunity."""
        if self._pending:
            if self._rendering:
                self._rerun_requested = True
            return
        self._pending = True
        self._defer_run()

    def flush(self) -> int:
        """Run the render queued without a defer hook or event loop.

        One call is one scheduling opportunity: a render requested by the
        render itself stays queued for the next flush().

        Returns:
            Number of renders executed (0 or 1)
        """
        if not self._queued:
            return 0
        self._queued = False
        return 1 if self._run() else 0

    def cancel(self) -> None:
        """Drop any requested render. Later requests schedule normally."""
        self._pending = False
        self._queued = False
        self._rerun_requested = False

    def _defer_run(self) -> None:
        if self._defer is not None:
            self._defer(self._run)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._queued = True
        else:
            loop.call_soon(self._run)

    def _run(self) -> bool:
        if not self._pending:
            # Cancelled after the callback was deferred
            return False
        self._rendering = True
        self.render_count += 1
        try:
            self._render()
        except Exception as e:
            logger.error(f"Render error: {e}")
        finally:
            self._rendering = False
            self._pending = False

        if self._rerun_requested:
            self._rerun_requested = False
            self.request()
        return True
