"""Background report polling for the status console."""

import threading
import time
from dataclasses import dataclass
from queue import Queue

import structlog

from sakai_status.dispatcher import EndpointDispatcher
from sakai_status.threads import MAIN_GROUP, ThreadGroup

logger = structlog.get_logger(__name__)


@dataclass(slots=True, frozen=True)
class RenderedReport:
    """Text of one report as rendered at a point in time."""

    path: str
    body: str
    rendered_at: float


class ReportPoller:
    """
    Renders the selected report on a daemon thread and pushes the result to a
    thread-safe Queue every ``poll_rate`` seconds.

    The selected path can be changed at any time; ``refresh()`` renders it
    again without waiting for the next tick.
    """

    def __init__(
        self,
        dispatcher: EndpointDispatcher,
        update_queue: Queue[RenderedReport],
        poll_rate: float = 2.0,
    ) -> None:
        """
        Initialize the ReportPoller.

        Args:
            dispatcher: Renders report paths to text.
            update_queue: Thread-safe queue to push rendered reports to.
            poll_rate: How often to re-render (in seconds). Default 2.0s.
        """
        self._dispatcher = dispatcher
        self._queue = update_queue
        self._poll_rate = poll_rate
        self._path: str | None = None
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._group = ThreadGroup("console", MAIN_GROUP)

    @property
    def poll_rate(self) -> float:
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def path(self) -> str | None:
        return self._path

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def select(self, path: str) -> None:
        """Switch to another report and render it right away."""
        self._path = path
        self.refresh()

    def refresh(self) -> None:
        self._wake_event.set()

    def start(self) -> None:
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = self._group.thread(target=self._poll_loop, name="ReportPoller", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the polling thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        self._wake_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def render_now(self) -> RenderedReport | None:
        """Render the selected report on the calling thread."""
        path = self._path
        if path is None:
            return None
        return RenderedReport(path, self._dispatcher.render(path), time.time())

    def _poll_loop(self) -> None:
        while True:
            # Cleared before rendering so a refresh during the render is kept
            self._wake_event.clear()
            if self._stop_event.is_set():
                break
            report = self.render_now()
            if report is not None:
                self._queue.put(report)
                logger.debug("report_polled", path=report.path, size=len(report.body))

            # Wait for poll_rate seconds, a refresh, or a stop request
            self._wake_event.wait(timeout=self._poll_rate)
