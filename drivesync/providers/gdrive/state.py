import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

Operation = Literal["create", "delete", "modify"]
OPERATIONS = ("create", "delete", "modify")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SyncState(BaseModel):
    """Everything the push engine persists between runs."""

    model_config = ConfigDict(populate_by_name=True)

    operations: Dict[str, Operation] = Field(default_factory=dict)
    drive_id_to_path: Dict[str, str] = Field(default_factory=dict, alias="driveIdToPath")


class StateStore:
    """Persists ``SyncState`` plus two local-only companions.

    The cursor file holds the pull cursor and the remote versions already
    pulled past it. The inbox file queues local changes reported while a sync
    cycle may be running; only the engine folds them into the operation log.
    """

    def __init__(self, state_file: str, cursor_file: str, inbox_file: Optional[str] = None):
        self.state_file = Path(state_file).expanduser()
        self.cursor_file = Path(cursor_file).expanduser()
        self.inbox_file = (
            Path(inbox_file).expanduser() if inbox_file else self.cursor_file.with_name("pending_changes.jsonl")
        )

    def load(self) -> SyncState:
        if not self.state_file.exists():
            return SyncState()
        text = self.state_file.read_text(encoding="utf-8").strip()
        if not text:
            return SyncState()
        return SyncState.model_validate_json(text)

    @staticmethod
    def dumps(state: SyncState) -> str:
        return json.dumps(state.model_dump(by_alias=True), ensure_ascii=False, indent=2, sort_keys=True) + "\n"

    def save(self, state: SyncState) -> bool:
        """Write the state file; returns False when the content on disk is already identical."""
        text = self.dumps(state)
        if self.state_file.exists() and self.state_file.read_text(encoding="utf-8") == text:
            return False
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        self.state_file.write_text(text, encoding="utf-8")
        return True

    # -- pull cursor ----------------------------------------------------

    def _read_cursor(self) -> dict:
        if not self.cursor_file.exists():
            return {}
        try:
            payload = json.loads(self.cursor_file.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}
        return payload if isinstance(payload, dict) else {}

    def _write_cursor(self, payload: dict) -> None:
        self.cursor_file.parent.mkdir(parents=True, exist_ok=True)
        self.cursor_file.write_text(json.dumps(payload, sort_keys=True), encoding="utf-8")

    def last_synced_at(self) -> Optional[str]:
        value = self._read_cursor().get("last_synced_at")
        return value if isinstance(value, str) and value else None

    def pulled_versions(self) -> Dict[str, str]:
        """Remote ``modifiedTime`` per id for objects pulled past the cursor."""
        value = self._read_cursor().get("pulled")
        return dict(value) if isinstance(value, dict) else {}

    def remember_pulled(self, versions: Dict[str, str]) -> None:
        if not versions:
            return
        payload = self._read_cursor()
        pulled = payload.get("pulled") if isinstance(payload.get("pulled"), dict) else {}
        payload["pulled"] = {**pulled, **versions}
        self._write_cursor(payload)

    def mark_synced(self, timestamp: Optional[str] = None) -> str:
        """Advance the cursor to ``timestamp``.

        Pass the time taken before the pull query of the cycle, never the
        commit time, or remote edits made during the cycle are skipped.
        """
        ts = timestamp or now_iso()
        pulled = {i: v for i, v in self.pulled_versions().items() if v > ts}
        payload: dict = {"last_synced_at": ts}
        if pulled:
            payload["pulled"] = pulled
        self._write_cursor(payload)
        return ts

    # -- change inbox ---------------------------------------------------

    def append_change(self, path: str, op: Operation) -> None:
        if op not in OPERATIONS:
            raise ValueError(f"invalid_operation: {op}")
        self.inbox_file.parent.mkdir(parents=True, exist_ok=True)
        with self.inbox_file.open("a", encoding="utf-8") as f:
            f.write(json.dumps({"path": path, "op": op}, ensure_ascii=False) + "\n")

    @staticmethod
    def _read_changes(path: Path) -> List[Tuple[str, str]]:
        if not path.exists():
            return []
        out = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                item = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(item, dict) and item.get("path") and item.get("op") in OPERATIONS:
                out.append((str(item["path"]), str(item["op"])))
        return out

    def queued_changes(self) -> List[Tuple[str, str]]:
        return self._read_changes(self._draining_file()) + self._read_changes(self.inbox_file)

    def _draining_file(self) -> Path:
        return self.inbox_file.with_name(self.inbox_file.name + ".draining")

    def drain_changes(self) -> List[Tuple[str, str]]:
        """Take every queued change, oldest first, and empty the inbox.

        The inbox is renamed before reading so appends that race the drain land
        in a fresh inbox instead of being truncated away.
        """
        draining = self._draining_file()
        # Left over from an interrupted drain; those changes are older.
        changes = self._read_changes(draining)
        draining.unlink(missing_ok=True)
        if self.inbox_file.exists():
            os.replace(self.inbox_file, draining)
            changes.extend(self._read_changes(draining))
            draining.unlink(missing_ok=True)
        return changes

    def preview(self) -> SyncState:
        """The stored state with queued changes folded in; nothing is written."""
        state = self.load()
        log = OperationLog(state.operations)
        for path, op in self.queued_changes():
            log.record_change(path, op)
        return state


class PathIndex:
    """Bidirectional view over ``SyncState.drive_id_to_path``.

    Only the id -> path side is persisted; the inverse is rebuilt lazily.
    """

    def __init__(self, id_to_path: Dict[str, str]):
        self._id_to_path = id_to_path
        self._path_to_id: Optional[Dict[str, str]] = None

    def _inverse(self) -> Dict[str, str]:
        if self._path_to_id is None:
            self._path_to_id = {path: file_id for file_id, path in self._id_to_path.items()}
        return self._path_to_id

    def resolve_path(self, path: str) -> Optional[str]:
        return self._inverse().get(path)

    def resolve_id(self, file_id: str) -> Optional[str]:
        return self._id_to_path.get(file_id)

    def record(self, file_id: str, path: str) -> None:
        inverse = self._inverse()
        stale = inverse.get(path)
        if stale and stale != file_id:
            self._id_to_path.pop(stale, None)
        old_path = self._id_to_path.get(file_id)
        if old_path is not None and inverse.get(old_path) == file_id:
            inverse.pop(old_path, None)
        self._id_to_path[file_id] = path
        inverse[path] = file_id

    def forget(self, file_id: str) -> Optional[str]:
        path = self._id_to_path.pop(file_id, None)
        if path is not None and self._path_to_id is not None and self._path_to_id.get(path) == file_id:
            self._path_to_id.pop(path, None)
        return path

    def __len__(self) -> int:
        return len(self._id_to_path)

    def __contains__(self, path: str) -> bool:
        return path in self._inverse()


class OperationLog:
    """Pending local changes keyed by path; at most one operation per path."""

    def __init__(self, operations: Dict[str, str]):
        self._ops = operations

    def set(self, path: str, op: Operation) -> None:
        if op not in OPERATIONS:
            raise ValueError(f"invalid_operation: {op}")
        self._ops[path] = op

    def get(self, path: str) -> Optional[str]:
        return self._ops.get(path)

    def record_change(self, path: str, op: Operation) -> Optional[str]:
        """Fold a new local event into the log; returns the resulting entry."""
        if op not in OPERATIONS:
            raise ValueError(f"invalid_operation: {op}")
        previous = self._ops.get(path)
        if op == "create":
            result = "modify" if previous == "delete" else "create"
        elif op == "modify":
            result = "create" if previous == "create" else "modify"
        else:
            result = None if previous == "create" else "delete"

        if result is None:
            self._ops.pop(path, None)
        else:
            self._ops[path] = result
        return result

    def record_rename(self, old_path: str, new_path: str) -> None:
        self.record_change(old_path, "delete")
        self.record_change(new_path, "create")

    def discard(self, path: str) -> Optional[str]:
        return self._ops.pop(path, None)

    def partition(self) -> Tuple[List[str], List[str], List[str]]:
        deletes = sorted(p for p, op in self._ops.items() if op == "delete")
        creates = sorted(p for p, op in self._ops.items() if op == "create")
        modifies = sorted(p for p, op in self._ops.items() if op == "modify")
        return deletes, creates, modifies

    def clear(self, processed: Iterable[str], keep: Iterable[str] = ()) -> List[str]:
        keep_set = set(keep)
        cleared = []
        for path in processed:
            if path in keep_set:
                continue
            if self._ops.pop(path, None) is not None:
                cleared.append(path)
        return cleared

    def pending(self) -> Dict[str, str]:
        return dict(self._ops)

    def __len__(self) -> int:
        return len(self._ops)

    def __contains__(self, path: str) -> bool:
        return path in self._ops
