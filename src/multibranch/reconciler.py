"""
Reconciliation Engine - synchronizes child jobs with the source's branches.

One pass:
1. No source configured: delete every child and stop
2. Fetch branch heads once (time-boxed); failure aborts the pass untouched
3. Create children for new branches
4. Delete (or retain as orphans) children whose branch disappeared
5. Copy the template into every live child, then re-apply its branch
   binding and child-local fields
6. Keep per-child enable state; new children follow the parent
7. Schedule builds for new branches
8. Notify downstream collaborators

Failures of one child are recorded and never stop its siblings.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Set

from .config import SourceConfig
from .errors import ConcurrencyError, FatalFetchError
from .interfaces import BranchSource, ChangeNotifier, JobBackend, JobKind, LoggingNotifier
from .models import BranchHead, Child
from .naming import encode
from .report import SyncReport, write_sync_log
from .retention import ImmediateDeletion, RetentionDecision, RetentionPolicy

if TYPE_CHECKING:
    from .project import MultiBranchProject


logger = logging.getLogger(__name__)

NEW_BRANCH_CAUSE = "New branch detected."

SourceFactory = Callable[[SourceConfig], BranchSource]


class ReconciliationEngine:
    """
    Runs synchronization passes for one project.

    All collaborators are injected; the engine holds no global state.
    """

    def __init__(
        self,
        project: "MultiBranchProject",
        backend: JobBackend,
        job_kind: JobKind,
        source_factory: SourceFactory,
        retention: Optional[RetentionPolicy] = None,
        notifier: Optional[ChangeNotifier] = None,
        fetch_timeout: Optional[float] = 60.0,
        lock_timeout: Optional[float] = 30.0,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Initialize the engine.

        Args:
            project: Project whose children are reconciled
            backend: Job backend for create/update/enable/build/delete
            job_kind: Applies the template to children
            source_factory: Builds a branch source from the project's source config
            retention: Policy for children whose branch disappeared
            notifier: Downstream collaborators told about topology changes
            fetch_timeout: Upper bound in seconds for fetching heads (None = no bound)
            lock_timeout: Seconds to wait for the project lock (None = wait forever)
            clock: Source of the current time
        """
        self.project = project
        self.backend = backend
        self.job_kind = job_kind
        self.source_factory = source_factory
        self.retention = retention or ImmediateDeletion()
        self.notifier = notifier or LoggingNotifier()
        self.fetch_timeout = fetch_timeout
        self.lock_timeout = lock_timeout
        self._clock = clock

    def run_pass(self, force_enable: bool = False) -> SyncReport:
        """
        Run one reconciliation pass.

        Args:
            force_enable: Enable existing children that are disabled (unless
                the parent itself is disabled)

        Returns:
            Report of what happened to each child

        Raises:
            ConcurrencyError: If the project lock could not be acquired in time
        """
        lock = self.project.lock
        if self.lock_timeout is None:
            acquired = lock.acquire()
        else:
            acquired = lock.acquire(timeout=self.lock_timeout)
        if not acquired:
            raise ConcurrencyError(
                f"Project {self.project.name} is busy; sync request will be coalesced"
            )

        try:
            report = SyncReport(project=self.project.name, started_at=self._clock())
            self._run_locked(report, force_enable)
            report.finish()
        finally:
            lock.release()

        write_sync_log(self.project.store.sync_log_file, report)
        logger.info(f"Sync of {self.project.name} finished: {report.summary()}")
        return report

    def _run_locked(self, report: SyncReport, force_enable: bool) -> None:
        project = self.project
        source_config = project.state.source

        if source_config is None:
            report.note("SCM not selected.")
            self._delete_all(report)
            if report.deleted:
                self._notify()
            return

        try:
            source = self.source_factory(source_config)
            heads = self._fetch_heads(source)
        except FatalFetchError as e:
            report.abort(str(e))
            return

        branches = self._index_heads(heads, report)
        new_names = self._create_missing(branches, report)
        self._handle_removed(branches, report)
        unconfigured = self._propagate(
            source, branches, set(new_names), force_enable, report
        )
        new_names = self._roll_back_unconfigured(new_names, unconfigured, report)
        self._enforce_parent_disabled(report)

        if project.state.suppress_trigger_new_branch_build:
            if new_names:
                report.note("Builds for new branches are suppressed.")
        else:
            self._schedule_builds(new_names, report)

        self._notify()

    def _fetch_heads(self, source: BranchSource) -> Set[BranchHead]:
        """
        Fetch heads in a worker thread so a stuck fetch cannot hold the lock.

        Raises:
            FatalFetchError: If the fetch fails or exceeds fetch_timeout
        """
        executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"fetch-{self.project.name}"
        )
        try:
            future = executor.submit(source.fetch_heads)
            heads = future.result(timeout=self.fetch_timeout)
        except FuturesTimeoutError:
            raise FatalFetchError(
                f"Fetching branches timed out after {self.fetch_timeout}s"
            )
        except Exception as e:
            raise FatalFetchError(f"Failed to fetch branches: {e}") from e
        finally:
            executor.shutdown(wait=False)

        return set(heads)

    def _index_heads(
        self, heads: Set[BranchHead], report: SyncReport
    ) -> Dict[str, BranchHead]:
        branches: Dict[str, BranchHead] = {}
        for head in sorted(heads, key=lambda h: (h.name, h.revision or "")):
            name = encode(head.name)
            if name in branches:
                report.skip(name, f"duplicate branch head '{head.name}'")
                continue
            branches[name] = head
        return branches

    def _create_missing(
        self, branches: Dict[str, BranchHead], report: SyncReport
    ) -> List[str]:
        registry = self.project.registry
        new_names: List[str] = []

        for name in branches:
            if name in registry:
                continue
            try:
                child = self.backend.create_child(self.project, name)
                registry.put(name, child)
            except Exception as e:
                report.fail(name, "create", e)
                continue
            new_names.append(name)
            report.created.append(name)

        return new_names

    def _handle_removed(
        self, branches: Dict[str, BranchHead], report: SyncReport
    ) -> None:
        now = self._clock()
        for child in self.project.registry.list():
            name = child.encoded_name
            if name in branches:
                if child.orphaned:
                    report.note(f"Branch {name} reappeared")
                    child.clear_orphaned()
                continue

            child.mark_orphaned(now)
            try:
                decision = self.retention.decide(child, now)
                if decision == RetentionDecision.DELETE:
                    self._delete_child(child, report)
                else:
                    self.backend.update_child_config(child, child.config)
                    report.orphaned.append(name)
            except Exception as e:
                report.fail(name, "delete", e)

    def _delete_child(self, child: Child, report: SyncReport) -> None:
        self.backend.delete_child(child)
        self.project.registry.remove(child.encoded_name)
        self.project.forget_child(child.encoded_name)
        report.deleted.append(child.encoded_name)

    def _delete_all(self, report: SyncReport) -> None:
        for child in self.project.registry.list():
            try:
                self.backend.delete_child(child)
            except Exception as e:
                report.fail(child.encoded_name, "delete", e)
                continue
            self.project.registry.remove(child.encoded_name)
            self.project.forget_child(child.encoded_name)
            report.deleted.append(child.encoded_name)

    def _propagate(
        self,
        source: BranchSource,
        branches: Dict[str, BranchHead],
        new_names: Set[str],
        force_enable: bool,
        report: SyncReport,
    ) -> Set[str]:
        """Apply the template to every live child; returns children that failed."""
        failed: Set[str] = set()
        template = self.project.template_store.get()
        parent_disabled = self.project.disabled

        for name, head in branches.items():
            child = self.project.registry.get(name)
            if child is None:
                # Creation failed earlier in this pass
                continue
            try:
                binding = source.build_binding(head)
                config = self.job_kind.configure_from_template(child, template, binding)

                if name in new_names or force_enable:
                    config.disabled = parent_disabled
                elif parent_disabled:
                    config.disabled = True

                self.backend.update_child_config(child, config)
            except Exception as e:
                report.fail(name, "update", e)
                failed.add(name)
                continue
            if name not in new_names:
                report.updated.append(name)
        return failed

    def _roll_back_unconfigured(
        self, new_names: List[str], unconfigured: Set[str], report: SyncReport
    ) -> List[str]:
        """
        Remove children created in this pass that never got the template.

        They would otherwise stay unbound and miss their first build; the
        next pass creates them again.
        """
        kept: List[str] = []
        for name in new_names:
            if name not in unconfigured:
                kept.append(name)
                continue
            report.created.remove(name)
            try:
                self.backend.delete_child(self.project.registry.get(name))
            except Exception as e:
                report.fail(name, "delete", e)
                continue
            self.project.registry.remove(name)
            self.project.forget_child(name)
            report.note(f"Removed unconfigured project for branch {name}")
        return kept

    def _enforce_parent_disabled(self, report: SyncReport) -> None:
        if not self.project.disabled:
            return
        for child in self.project.registry.list():
            if child.disabled:
                continue
            try:
                self.backend.set_enabled(child, False)
            except Exception as e:
                report.fail(child.encoded_name, "disable", e)

    def _schedule_builds(self, new_names: List[str], report: SyncReport) -> None:
        for name in new_names:
            child = self.project.registry.get(name)
            if child is None:
                continue
            if child.disabled:
                report.skip(name, "disabled, build not scheduled")
                continue
            try:
                self.backend.schedule_build(child, NEW_BRANCH_CAUSE)
            except Exception as e:
                report.fail(name, "schedule build", e)
                continue
            report.builds_scheduled.append(name)

    def _notify(self) -> None:
        try:
            self.notifier.topology_changed(self.project)
        except Exception as e:
            logger.warning(f"Change notification for {self.project.name} failed: {e}")
