"""
tillpoint/sync/scheduler.py
---------------------------
Background sync timer.

    start()            first pass after `startup_delay`, then every `interval`
    set_online(True)   an offline → online transition runs a pass right away
    stop()             cancels the timer, closes the client; a pass in flight finishes

Connectivity follows the passes: one that cannot reach the remote at
all takes the scheduler offline. While offline each tick only asks the
remote for its status, and the first answer brings it back online and
runs the pass.

At most one pass runs at a time: run_once() takes a non-blocking lock and
returns None when another pass holds it, so a slow pass is never doubled
up by the next tick.
"""
import logging
import threading
from typing import Callable, Optional

from tillpoint.sync.client import SyncClient, SyncReport, SyncUnreachable

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(self, app, client_factory: Optional[Callable[[], SyncClient]] = None,
                 interval: float = 60, startup_delay: float = 5):
        self.app = app
        self.client_factory = client_factory or (lambda: SyncClient.from_config(app.config))
        self.interval = interval
        self.startup_delay = startup_delay
        self.online = True
        self.passes = 0
        self.last_report: Optional[SyncReport] = None
        self._client: Optional[SyncClient] = None

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_app(cls, app, client_factory=None) -> 'SyncScheduler':
        return cls(
            app,
            client_factory=client_factory,
            interval=app.config['SYNC_INTERVAL_SECONDS'],
            startup_delay=app.config['SYNC_STARTUP_DELAY_SECONDS'],
        )

    # ── Lifecycle ─────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._wake.clear()
        self._thread = threading.Thread(target=self._loop, name='tillpoint-sync', daemon=True)
        self._thread.start()
        logger.info(f"Sync scheduler started (interval {self.interval}s, "
                    f"first pass in {self.startup_delay}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        self._wake.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        if not self.running:
            self.close()
        logger.info("Sync scheduler stopped")

    def wait(self) -> None:
        """Block until the scheduler stops (short joins keep Ctrl+C responsive)."""
        while self.running:
            self._thread.join(0.5)

    def set_online(self, online: bool) -> None:
        was_online, self.online = self.online, online
        if online and not was_online:
            logger.info("Connectivity regained; triggering sync")
            self._wake.set()

    def _loop(self) -> None:
        delay = self.startup_delay
        while not self._stop.is_set():
            self._wake.wait(delay)
            self._wake.clear()
            if self._stop.is_set():
                break
            self.run_once()
            delay = self.interval

    # ── One pass ──────────────────────────────────────────────────

    @property
    def client(self) -> SyncClient:
        """One client (and HTTP session) for the scheduler's lifetime."""
        if self._client is None:
            self._client = self.client_factory()
        return self._client

    def close(self) -> None:
        client, self._client = self._client, None
        close = getattr(client, 'close', None)
        if close is not None:
            close()

    def run_once(self) -> Optional[SyncReport]:
        """
        Run a pass now. None when a pass is already in flight, or when
        offline and the remote still does not answer.
        """
        if not self._lock.acquire(blocking=False):
            logger.info("Sync pass already in flight; skipped")
            return None
        try:
            with self.app.app_context():
                if not self.online:
                    try:
                        self.client.remote_status()
                    except SyncUnreachable as exc:
                        logger.debug(f"Still offline; sync pass skipped ({exc})")
                        return None
                    self.online = True
                    logger.info("Sync remote reachable again")

                report = self.client.sync_all()
            self.passes += 1
            self.last_report = report
            if report.unreachable:
                self.online = False
                logger.warning("Sync remote unreachable; going offline")
            return report
        finally:
            self._lock.release()
