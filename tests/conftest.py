import hashlib
import itertools
import threading
from pathlib import Path

import pytest

from drivesync.providers.gdrive.models import FOLDER_MIME_TYPE, RemoteObject, Tag
from drivesync.providers.gdrive.push import PushEngine
from drivesync.providers.gdrive.state import StateStore
from drivesync.providers.gdrive.vault import LocalVault


class FakeDrive:
    """In-memory stand-in for DriveClient that records every call."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.objects: dict[str, RemoteObject] = {}
        self.contents: dict[str, bytes] = {}
        self.fail_paths: set[str] = set()
        self.fail_ids: set[str] = set()
        self.fail_batch_delete = False
        self.fail_search = False
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def add(self, file_id: str, path: str, folder: bool = False, content: bytes = b"", modified_time: str = "",
            tag: Tag | None = None) -> RemoteObject:
        props = {"path": path}
        if tag is not None:
            props.update(tag.as_property())
        obj = RemoteObject(
            id=file_id,
            name=path.rsplit("/", 1)[-1],
            mime_type=FOLDER_MIME_TYPE if folder else "text/markdown",
            properties=props,
            modified_time=modified_time,
            md5_checksum="" if folder else hashlib.md5(content).hexdigest(),
        )
        self.objects[file_id] = obj
        if not folder:
            self.contents[file_id] = content
        return obj

    def mutations(self) -> list[tuple]:
        return [c for c in self.calls if c[0] not in ("search_files", "get_file", "ids_from_paths")]

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def search_files(self, matches=None, order="descending", include=None, include_root=False):
        self._record("search_files", matches)
        if self.fail_search:
            raise RuntimeError("list_files_failed_status_500: boom")
        out = []
        for obj in self.objects.values():
            if obj.tag == Tag.ROOT and not include_root:
                continue
            if matches and not any(self._matches(obj, m) for m in matches):
                continue
            out.append(obj)
        return out

    @staticmethod
    def _matches(obj: RemoteObject, match) -> bool:
        if match.properties and any(obj.properties.get(k) != v for k, v in match.properties.items()):
            return False
        if match.modified_time is not None and not obj.modified_time > match.modified_time.value:
            return False
        return True

    def ids_from_paths(self, paths):
        self._record("ids_from_paths", list(paths))
        return [(o.id, o.path) for o in self.objects.values() if o.path in paths]

    def create_folder(self, name, parent=None, description=None, properties=None, modified_time=None):
        path = (properties or {}).get("path", name)
        self._record("create_folder", path, parent)
        if path in self.fail_paths:
            raise RuntimeError("create_folder_failed_status_500")
        obj = self.add(f"folder-{next(self._ids)}", path, folder=True, modified_time=modified_time or "")
        obj.properties.update(properties or {})
        return obj.id

    def upload_file(self, content, name, parent=None, metadata=None):
        meta = metadata or {}
        path = meta.get("properties", {}).get("path", name)
        self._record("upload_file", path, parent)
        if path in self.fail_paths:
            raise RuntimeError("upload_file_failed_status_500")
        obj = self.add(f"file-{next(self._ids)}", path, content=content, modified_time=meta.get("modifiedTime", ""))
        obj.properties.update(meta.get("properties", {}))
        return obj.id

    def update_file(self, file_id, content, metadata=None):
        self._record("update_file", file_id)
        if file_id in self.fail_ids:
            raise RuntimeError("update_file_failed_status_503")
        self.contents[file_id] = content
        if file_id in self.objects:
            self.objects[file_id].md5_checksum = hashlib.md5(content).hexdigest()
        return file_id

    def batch_delete(self, ids):
        self._record("batch_delete", list(ids))
        if self.fail_batch_delete:
            raise RuntimeError("batch_delete_failed_status_500")
        for file_id in ids:
            self.objects.pop(file_id, None)
            self.contents.pop(file_id, None)
        return ""

    def get_file(self, file_id):
        self._record("get_file", file_id)
        if file_id in self.fail_ids:
            raise RuntimeError("download_failed_status_500")
        return self.contents[file_id]


class RecordingReporter:
    def __init__(self):
        self.progress_messages: list[str] = []
        self.notices: list[str] = []

    def progress(self, message: str):
        self.progress_messages.append(message)

    def notice(self, message: str):
        self.notices.append(message)


@pytest.fixture
def fake_drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def vault_root(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    root.mkdir()
    return root


def write(root: Path, rel: str, content: bytes = b"x") -> None:
    full = root / rel
    full.parent.mkdir(parents=True, exist_ok=True)
    full.write_bytes(content)


def make_engine(tmp_path: Path, client, *, puller=None, sync_config_dir: bool = False, lock=None,
                concurrency: int = 5):
    vault = LocalVault(str(tmp_path / "vault"), ".config")
    store = StateStore(str(tmp_path / "vault" / ".config" / "drivesync" / "data.json"), str(tmp_path / "cursor.json"))
    reporter = RecordingReporter()
    engine = PushEngine(
        cfg={"sync": {"concurrency": concurrency, "sync_config_dir": sync_config_dir, "config_dir": ".config"}},
        client=client,
        vault=vault,
        store=store,
        log_func=lambda *_: None,
        reporter=reporter,
        puller=puller or (lambda _state, _silent: False),
        lock=lock or threading.Lock(),
    )
    return engine, store, reporter
