import hashlib
import json
from typing import Dict, List, Optional

from .batch import depth_batches, run_in_waves
from .models import DEFAULT_FIELDS, PATH_PROPERTY, Tag
from .query import QueryMatch
from .state import StateStore, SyncState, now_iso
from .vault import LocalVault, base_name, parent_path


class ConfigSync:
    """Mirror the host configuration directory to CONFIG-tagged remote objects.

    Unlike the vault, this subtree is diffed against the remote listing on
    every run instead of going through the operation log.
    """

    def __init__(self, cfg: dict, client, vault: LocalVault, store: StateStore, log_func):
        self.cfg = cfg
        self.client = client
        self.vault = vault
        self.store = store
        self.log_func = log_func

        sync_cfg = cfg.get("sync", {})
        self.config_dir = vault.config_dir or sync_cfg.get("config_dir", "")
        self.concurrency = int(sync_cfg.get("concurrency", 5))

    def _log(self, level: str, message: str, detail: Optional[dict] = None):
        self.log_func(level, "config_sync", message, json.dumps(detail, ensure_ascii=False) if detail else None)

    def _properties(self, path: str) -> dict:
        return {PATH_PROPERTY: path, **Tag.CONFIG.as_property()}

    def run(self, state: SyncState) -> List[str]:
        """Sync the config subtree; returns the paths that could not be synced.

        Raises when the remote listing or the grouped delete fails.
        """
        if not self.config_dir:
            return []

        self.store.save(state)

        if not self.vault.is_folder(self.config_dir):
            local_folders: List[str] = []
            local_files: List[str] = []
        else:
            local_folders = [self.config_dir, *self.vault.list("folder", self.config_dir)]
            local_files = self.vault.list("file", self.config_dir)
        local_paths = set(local_folders) | set(local_files)

        remote = self.client.search_files(
            [QueryMatch(properties=Tag.CONFIG.as_property())],
            include=[*DEFAULT_FIELDS, "md5Checksum"],
        )
        remote_by_path = {obj.path: obj for obj in remote if obj.path}

        stale = [obj.id for obj in remote if not obj.path or obj.path not in local_paths]
        if stale:
            self.client.batch_delete(stale)
            self._log("INFO", "config_remote_deleted", {"count": len(stale)})

        failed: List[str] = []
        folder_ids = {path: obj.id for path, obj in remote_by_path.items() if obj.is_folder}

        missing_folders = [p for p in local_folders if p not in folder_ids]
        for batch in depth_batches(missing_folders):
            results = run_in_waves([self._create_folder(p, folder_ids) for p in batch], self.concurrency)
            for path, folder_id in zip(batch, results):
                if folder_id is None:
                    failed.append(path)
                else:
                    folder_ids[path] = folder_id

        actions = []
        action_paths = []
        for path in local_files:
            existing = remote_by_path.get(path)
            if existing is None:
                actions.append(self._upload(path, folder_ids))
            elif existing.md5_checksum != _md5(self.vault.read_binary(path)):
                actions.append(self._update(path, existing.id))
            else:
                continue
            action_paths.append(path)

        for path, result in zip(action_paths, run_in_waves(actions, self.concurrency)):
            if result is None:
                failed.append(path)

        self._log(
            "INFO",
            "config_sync_done",
            {
                "folders_created": len(missing_folders) - len([p for p in failed if p in missing_folders]),
                "files_pushed": len(action_paths) - len([p for p in failed if p in action_paths]),
                "failed": failed,
            },
        )
        return failed

    def _parent_id(self, path: str, folder_ids: Dict[str, str]) -> Optional[str]:
        parent = parent_path(path)
        if not parent:
            return None
        parent_id = folder_ids.get(parent)
        if not parent_id:
            raise RuntimeError(f"parent_not_synced: {parent}")
        return parent_id

    def _create_folder(self, path: str, folder_ids: Dict[str, str]):
        def action():
            return self.client.create_folder(
                name=base_name(path),
                parent=self._parent_id(path, folder_ids),
                properties=self._properties(path),
                modified_time=now_iso(),
            )
        return action

    def _upload(self, path: str, folder_ids: Dict[str, str]):
        def action():
            return self.client.upload_file(
                self.vault.read_binary(path),
                base_name(path),
                self._parent_id(path, folder_ids),
                {"properties": self._properties(path), "modifiedTime": now_iso()},
            )
        return action

    def _update(self, path: str, file_id: str):
        def action():
            return self.client.update_file(file_id, self.vault.read_binary(path), {"modifiedTime": now_iso()})
        return action


def _md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()
