import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .batch import depth_batches, run_in_waves
from .config_sync import ConfigSync
from .models import PATH_PROPERTY
from .pull import Puller
from .state import OperationLog, PathIndex, StateStore, SyncState, now_iso
from .vault import LocalVault, base_name, parent_path, safe_rel_path

# One sync cycle per process; a second request while one runs is dropped.
SYNC_RUN_LOCK = threading.Lock()

NOTICES = {
    "fetching": "An error occurred fetching Google Drive files.",
    "deleting": "An error occurred deleting Google Drive files.",
    "creating_folders": "An error occurred creating Google Drive folders.",
    "creating_files": "An error occurred creating Google Drive files.",
    "modifying": "An error occurred modifying Google Drive files.",
    "config": "An error occurred syncing configuration files to Google Drive.",
}

SYNC_COMPLETE = "Sync complete!"
SYNC_COMPLETE_RELOAD = "Sync complete, but some files were pulled from Google Drive, so you should reload the vault."
PULLED_RELOAD = "Some files were pulled from Google Drive, so you should reload the vault."


class LogReporter:
    """Default progress/notice sink: the ``push`` logger."""

    def __init__(self):
        self.logger = logging.getLogger("push")

    def progress(self, message: str):
        self.logger.info(message)

    def notice(self, message: str):
        self.logger.info("notice: %s", message)


@dataclass
class PushResult:
    status: str = "success"
    pulled: bool = False
    deleted: List[str] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    notices: List[str] = field(default_factory=list)
    config_failed: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "pulled": self.pulled,
            "deleted": list(self.deleted),
            "created": list(self.created),
            "modified": list(self.modified),
            "dropped": list(self.dropped),
            "failed": dict(self.failed),
            "notices": list(self.notices),
            "config_failed": list(self.config_failed),
        }


class PushEngine:
    def __init__(
        self,
        cfg: dict,
        client,
        vault: LocalVault,
        store: StateStore,
        log_func,
        reporter=None,
        puller=None,
        config_sync=None,
        lock: Optional[threading.Lock] = None,
    ):
        self.cfg = cfg
        self.client = client
        self.vault = vault
        self.store = store
        self.log_func = log_func
        self.reporter = reporter or LogReporter()
        self.lock = lock or SYNC_RUN_LOCK
        self._stamp = now_iso()

        sync_cfg = cfg.get("sync", {})
        self.concurrency = int(sync_cfg.get("concurrency", 5))
        self.sync_config_dir = bool(sync_cfg.get("sync_config_dir", True))

        self.puller = puller or Puller(cfg, client, vault, store, log_func, self.reporter)
        self.config_sync = config_sync or ConfigSync(cfg, client, vault, store, log_func)

    def _log(self, level: str, message: str, detail: Optional[dict] = None):
        self.log_func(level, "push", message, json.dumps(detail, ensure_ascii=False) if detail else None)

    def _notify_failure(self, result: PushResult, phase: str):
        message = NOTICES[phase]
        if message in result.notices:
            return
        result.notices.append(message)
        self.reporter.notice(message)

    # -- local change intake -------------------------------------------

    def record_local_change(self, state: SyncState, path: str, op: str) -> Optional[str]:
        if self.vault.in_config_dir(path):
            return None
        return OperationLog(state.operations).record_change(path, op)

    def queue_local_change(self, path: str, op: str) -> Optional[str]:
        """Queue a local change for the next cycle; safe while a cycle runs.

        Returns the normalised path, or None when the path is not tracked.
        Raises ValueError for an unknown operation or a path leaving the vault.
        """
        rel = safe_rel_path(path)
        if not rel or self.vault.in_config_dir(rel):
            return None
        self.store.append_change(rel, op)
        return rel

    def _absorb_queued(self, state: SyncState) -> int:
        changes = self.store.drain_changes()
        for path, op in changes:
            self.record_local_change(state, path, op)
        if changes:
            self._log("INFO", "queued_changes_absorbed", {"count": len(changes)})
        return len(changes)

    # -- entry points ---------------------------------------------------

    def push(self, state: SyncState) -> PushResult:
        """Run one pull-check + push cycle against ``state``.

        ``state`` is mutated in place and persisted through the store.
        """
        result = PushResult()
        if not self.lock.acquire(blocking=False):
            self._log("WARNING", "push_skipped sync_busy")
            result.status = "busy"
            return result
        try:
            self._run(state, result)
        finally:
            self.lock.release()
        return result

    def sync_config(self, state: SyncState) -> PushResult:
        """Run the config subtree sync on its own."""
        result = PushResult()
        if not self.lock.acquire(blocking=False):
            self._log("WARNING", "config_sync_skipped sync_busy")
            result.status = "busy"
            return result
        try:
            self._sync_config(state, result)
            result.status = "partial" if result.notices else "success"
        finally:
            self.lock.release()
        return result

    # -- phases ---------------------------------------------------------

    def _run(self, state: SyncState, result: PushResult):
        # Next pull cursor and the modifiedTime of every write in this cycle.
        # Must be taken before the pull query.
        cycle_started = now_iso()
        self._stamp = cycle_started

        if self._absorb_queued(state):
            self.store.save(state)

        try:
            result.pulled = bool(self.puller(state, True))
        except Exception as e:
            self._log("ERROR", "pull_check_failed", {"error": str(e)})
            self._notify_failure(result, "fetching")
            result.status = "failed"
            return

        log = OperationLog(state.operations)
        index = PathIndex(state.drive_id_to_path)
        deletes, creates, modifies = log.partition()
        processed = [*deletes, *creates, *modifies]
        failed: Set[str] = set()
        self._log("INFO", "push_started", {"delete": len(deletes), "create": len(creates), "modify": len(modifies)})

        if deletes:
            self._push_deletes(deletes, index, result, failed)
            self.store.save(state)
        self.reporter.progress("Syncing (33%)")

        if creates:
            self._push_creates(creates, index, result, failed)
            self.store.save(state)
        self.reporter.progress("Syncing (67%)")

        if modifies:
            self._push_modifies(modifies, index, result, failed)
        self.reporter.progress("Syncing (90%)")

        for path in failed:
            result.failed[path] = log.get(path) or ""

        if self.sync_config_dir:
            snapshot = state.model_copy(deep=True)
            OperationLog(snapshot.operations).clear(processed, keep=failed)
            self._sync_config(snapshot, result)

        log.clear(processed, keep=failed)
        self._absorb_queued(state)
        self.store.save(state)
        self.store.mark_synced(cycle_started)

        if failed or result.config_failed or result.notices:
            result.status = "partial"
            if result.pulled:
                result.notices.append(PULLED_RELOAD)
                self.reporter.notice(PULLED_RELOAD)
        else:
            message = SYNC_COMPLETE_RELOAD if result.pulled else SYNC_COMPLETE
            result.notices.append(message)
            self.reporter.notice(message)

        self._log("INFO", "push_finished", result.to_dict())

    def _push_deletes(self, paths: List[str], index: PathIndex, result: PushResult, failed: Set[str]):
        resolved: Dict[str, List[str]] = {}
        missing = []
        for path in paths:
            file_id = index.resolve_path(path)
            if file_id:
                resolved[path] = [file_id]
            else:
                missing.append(path)

        if missing:
            try:
                for file_id, path in self.client.ids_from_paths(missing):
                    resolved.setdefault(path, []).append(file_id)
            except Exception as e:
                self._log("ERROR", "delete_resolution_failed", {"error": str(e)})

        unresolved = [p for p in paths if p not in resolved]
        if unresolved:
            # Never delete with an incomplete id set.
            self._log("ERROR", "delete_phase_aborted", {"unresolved": unresolved})
            failed.update(paths)
            self._notify_failure(result, "fetching")
            return

        ids = [file_id for path in paths for file_id in resolved[path]]
        try:
            self.client.batch_delete(ids)
        except Exception as e:
            self._log("ERROR", "batch_delete_failed", {"error": str(e), "count": len(ids)})
            failed.update(paths)
            self._notify_failure(result, "deleting")
            return

        for file_id in ids:
            index.forget(file_id)
        result.deleted.extend(paths)

    def _push_creates(self, paths: List[str], index: PathIndex, result: PushResult, failed: Set[str]):
        folders = []
        files = []
        for path in paths:
            if self.vault.is_folder(path):
                if path in index:
                    result.created.append(path)
                else:
                    folders.append(path)
            elif self.vault.is_file(path):
                files.append(path)
            else:
                result.dropped.append(path)
                self._log("INFO", "create_dropped_local_missing", {"path": path})

        for batch in depth_batches(folders):
            results = run_in_waves([self._create_folder(p, index) for p in batch], self.concurrency)
            for path, folder_id in zip(batch, results):
                if folder_id is None:
                    failed.add(path)
                    self._notify_failure(result, "creating_folders")
                    continue
                index.record(folder_id, path)
                result.created.append(path)

        results = run_in_waves([self._create_file(p, index) for p in files], self.concurrency)
        for path, file_id in zip(files, results):
            if file_id is None:
                failed.add(path)
                self._notify_failure(result, "creating_files")
                continue
            index.record(file_id, path)
            result.created.append(path)

    def _push_modifies(self, paths: List[str], index: PathIndex, result: PushResult, failed: Set[str]):
        targets = []
        for path in paths:
            if not self.vault.is_file(path):
                result.dropped.append(path)
                continue
            file_id = index.resolve_path(path)
            if not file_id:
                self._log("ERROR", "modify_unresolved", {"path": path})
                failed.add(path)
                self._notify_failure(result, "modifying")
                continue
            targets.append((path, file_id))

        results = run_in_waves([self._update_file(p, i) for p, i in targets], self.concurrency)
        for (path, _file_id), updated in zip(targets, results):
            if updated is None:
                failed.add(path)
                self._notify_failure(result, "modifying")
                continue
            result.modified.append(path)

    def _sync_config(self, state: SyncState, result: PushResult):
        try:
            result.config_failed = self.config_sync.run(state)
        except Exception as e:
            self._log("ERROR", "config_sync_failed", {"error": str(e)})
            self._notify_failure(result, "config")
            return
        if result.config_failed:
            self._notify_failure(result, "config")

    # -- remote actions -------------------------------------------------

    def _parent_id(self, path: str, index: PathIndex) -> Optional[str]:
        parent = parent_path(path)
        if not parent:
            return None
        parent_id = index.resolve_path(parent)
        if not parent_id:
            raise RuntimeError(f"parent_not_indexed: {parent}")
        return parent_id

    def _create_folder(self, path: str, index: PathIndex):
        def action():
            return self.client.create_folder(
                name=base_name(path),
                parent=self._parent_id(path, index),
                properties={PATH_PROPERTY: path},
                modified_time=self._stamp,
            )
        return action

    def _create_file(self, path: str, index: PathIndex):
        existing = index.resolve_path(path)
        if existing:
            # Already created by an earlier, partially committed run.
            return self._update_file(path, existing)

        def action():
            return self.client.upload_file(
                self.vault.read_binary(path),
                base_name(path),
                self._parent_id(path, index),
                {"properties": {PATH_PROPERTY: path}, "modifiedTime": self._stamp},
            )
        return action

    def _update_file(self, path: str, file_id: str):
        def action():
            return self.client.update_file(file_id, self.vault.read_binary(path), {"modifiedTime": self._stamp})
        return action
