import json
from typing import Optional

from .batch import run_in_waves
from .models import DEFAULT_FIELDS, RemoteObject
from .query import QueryMatch, TimeComparison
from .state import OperationLog, PathIndex, StateStore, SyncState
from .vault import LocalVault, is_safe_path, path_depth, safe_rel_path


class Puller:
    """Bring remote changes made since the last sync into the vault.

    Remote wins: a pulled path drops whatever local operation was pending for it.
    """

    def __init__(self, cfg: dict, client, vault: LocalVault, store: StateStore, log_func, reporter=None):
        self.cfg = cfg
        self.client = client
        self.vault = vault
        self.store = store
        self.log_func = log_func
        self.reporter = reporter

        sync_cfg = cfg.get("sync", {})
        self.concurrency = int(sync_cfg.get("concurrency", 5))

    def _log(self, level: str, message: str, detail: Optional[dict] = None):
        self.log_func(level, "pull", message, json.dumps(detail, ensure_ascii=False) if detail else None)

    def __call__(self, state: SyncState, silent: bool = False) -> bool:
        return self.pull(state, silent=silent)

    def _changed_objects(self) -> list[RemoteObject]:
        since = self.store.last_synced_at()
        matches = [QueryMatch(modified_time=TimeComparison(">", since))] if since else None
        remote = self.client.search_files(matches, include=[*DEFAULT_FIELDS, "modifiedTime"])
        already_pulled = self.store.pulled_versions()

        changed = []
        for obj in remote:
            # Tagged objects (sync root, config subtree) are handled elsewhere.
            if obj.tag is not None or not obj.path:
                continue
            if not is_safe_path(obj.path):
                self._log("WARNING", "remote_path_rejected", {"id": obj.id, "path": obj.path})
                continue
            if obj.modified_time and already_pulled.get(obj.id) == obj.modified_time:
                continue
            changed.append(obj)
        return changed

    def pull(self, state: SyncState, silent: bool = False) -> bool:
        changed = self._changed_objects()
        if not changed:
            self._log("INFO", "pull_nothing_changed")
            return False

        index = PathIndex(state.drive_id_to_path)
        log = OperationLog(state.operations)
        versions: dict[str, str] = {}

        def take(obj: RemoteObject):
            path = safe_rel_path(obj.path)
            index.record(obj.id, path)
            if obj.modified_time:
                versions[obj.id] = obj.modified_time
            aborted = log.discard(path)
            if aborted:
                self._log("WARNING", "local_operation_aborted", {"path": path, "operation": aborted})

        folders = sorted((o for o in changed if o.is_folder), key=lambda o: path_depth(o.path))
        for folder in folders:
            self.vault.mkdir(folder.path)
            take(folder)

        files = [o for o in changed if not o.is_folder]

        def download(obj: RemoteObject):
            def action():
                self.vault.write_binary(obj.path, self.client.get_file(obj.id))
                return obj.id
            return action

        results = run_in_waves([download(o) for o in files], self.concurrency)
        failed = []
        for obj, result in zip(files, results):
            if result is None:
                failed.append(obj.path)
                continue
            take(obj)

        self.store.save(state)
        self.store.remember_pulled(versions)
        pulled = len(folders) + len(files) - len(failed)
        self._log("INFO", "pull_done", {"folders": len(folders), "files": len(files) - len(failed), "failed": failed})

        if failed:
            raise RuntimeError(f"pull_download_failed: {len(failed)} file(s)")

        if not silent and self.reporter is not None:
            self.reporter.notice(f"Pulled {pulled} item(s) from Google Drive.")
        return pulled > 0
