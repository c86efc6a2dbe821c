"""
Sync triggers and the periodic sync scheduler.

A SyncTrigger runs sync passes for one project with single-flight
semantics: at most one pass is in flight, and any number of requests
arriving meanwhile collapse into one trailing pass. The SyncScheduler
requests a sync for every project whose interval elapsed.
"""

import logging
import threading
import time
from typing import Callable, Dict, Iterable, Optional

from .errors import ConcurrencyError
from .project import MultiBranchProject
from .report import SyncReport


logger = logging.getLogger(__name__)

# Pause before re-running a pass that could not get the project lock
BUSY_RETRY_DELAY = 1.0


class SyncTrigger:
    """Single-flight, coalescing sync runner for one project."""

    def __init__(
        self,
        project: MultiBranchProject,
        on_report: Optional[Callable[[SyncReport], None]] = None,
    ):
        self.project = project
        self._on_report = on_report
        self._state_lock = threading.Lock()
        self._running = False
        self._pending = False
        self._pending_force_enable = False
        self._idle = threading.Event()
        self._idle.set()
        self._thread: Optional[threading.Thread] = None
        self.last_report: Optional[SyncReport] = None
        self.last_run: Optional[float] = None

    def is_running(self) -> bool:
        with self._state_lock:
            return self._running

    def request(self, force_enable: bool = False) -> bool:
        """
        Request a sync pass.

        Returns:
            True if a new pass was started, False if the request was
            coalesced into the pass already in flight
        """
        with self._state_lock:
            if self._running:
                self._pending = True
                self._pending_force_enable = self._pending_force_enable or force_enable
                logger.debug(f"Sync of {self.project.name} already running, coalesced")
                return False
            self._running = True
            self._idle.clear()

        self._thread = threading.Thread(
            target=self._drain,
            args=(force_enable,),
            name=f"sync-{self.project.name}",
            daemon=True,
        )
        self._thread.start()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until no pass is running or pending."""
        return self._idle.wait(timeout)

    def _drain(self, force_enable: bool) -> None:
        while True:
            self._run_once(force_enable)

            with self._state_lock:
                if not self._pending:
                    self._running = False
                    self._idle.set()
                    return
                self._pending = False
                force_enable = self._pending_force_enable
                self._pending_force_enable = False

    def _run_once(self, force_enable: bool) -> None:
        try:
            report = self.project.sync_branches(force_enable=force_enable)
        except ConcurrencyError as e:
            # A cascade or manual pass holds the lock; run again afterwards
            logger.info(str(e))
            with self._state_lock:
                self._pending = True
                self._pending_force_enable = self._pending_force_enable or force_enable
            time.sleep(BUSY_RETRY_DELAY)
            return
        except Exception as e:
            logger.error(f"Sync failed for {self.project.name}: {e}", exc_info=True)
            return
        finally:
            self.last_run = time.monotonic()

        self.last_report = report
        if self._on_report is not None:
            try:
                self._on_report(report)
            except Exception as e:
                logger.warning(f"Sync report callback failed: {e}")


class SyncScheduler:
    """
    Timer-based scheduler for syncing multi-branch projects.

    Each project is synced on its own interval; projects never wait for
    each other.
    """

    def __init__(
        self,
        projects: Iterable[MultiBranchProject] = (),
        tick_interval: float = 1.0,
        on_report: Optional[Callable[[SyncReport], None]] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            projects: Projects to schedule
            tick_interval: How often due projects are checked (seconds)
            on_report: Called with every finished sync report
        """
        self.tick_interval = tick_interval
        self._on_report = on_report
        self._triggers: Dict[str, SyncTrigger] = {}
        self._triggers_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        for project in projects:
            self.add_project(project)

    def add_project(self, project: MultiBranchProject) -> SyncTrigger:
        with self._triggers_lock:
            trigger = self._triggers.get(project.name)
            if trigger is None:
                trigger = SyncTrigger(project, on_report=self._on_report)
                self._triggers[project.name] = trigger
            return trigger

    def remove_project(self, name: str) -> None:
        with self._triggers_lock:
            self._triggers.pop(name, None)

    def trigger(self, name: str) -> Optional[SyncTrigger]:
        with self._triggers_lock:
            return self._triggers.get(name)

    def request_sync(self, name: str, force_enable: bool = False) -> bool:
        """
        Request an immediate sync of one project (event-driven trigger).

        Raises:
            KeyError: If the project is not scheduled
        """
        trigger = self.trigger(name)
        if trigger is None:
            raise KeyError(f"Project '{name}' is not scheduled")
        return trigger.request(force_enable=force_enable)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """
        Start the scheduler background thread.

        Idempotent: Safe to call multiple times
        """
        if self.is_running():
            logger.debug("Sync scheduler already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._scheduler_loop, name="sync-scheduler", daemon=True
        )
        self._thread.start()
        logger.info("Sync scheduler started")

    def stop(self, timeout: float = 5.0) -> None:
        """
        Stop the scheduler background thread.

        Passes already in flight finish on their own threads.

        Idempotent: Safe to call multiple times
        """
        if not self.is_running():
            logger.debug("Sync scheduler already stopped")
            return

        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

        logger.info("Sync scheduler stopped")

    def run_due(self, now: Optional[float] = None) -> int:
        """
        Request a sync for every project whose interval has elapsed.

        Returns:
            Number of passes started
        """
        now = time.monotonic() if now is None else now
        with self._triggers_lock:
            triggers = list(self._triggers.values())

        started = 0
        for trigger in triggers:
            last_run = trigger.last_run
            due = last_run is None or now - last_run >= trigger.project.sync_interval()
            if due and not trigger.is_running():
                if trigger.request():
                    started += 1
        return started

    def _scheduler_loop(self) -> None:
        logger.debug("Sync scheduler loop started")

        while not self._stop_event.is_set():
            try:
                self.run_due()
            except Exception as e:
                logger.error(f"Error in sync scheduler loop: {e}", exc_info=True)

            self._stop_event.wait(self.tick_interval)

        logger.debug("Sync scheduler loop exited")
