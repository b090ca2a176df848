from pathlib import Path

import pytest
from conftest import FakeDrive, RecordingReporter

from drivesync.providers.gdrive.models import Tag
from drivesync.providers.gdrive.pull import Puller
from drivesync.providers.gdrive.state import StateStore, SyncState
from drivesync.providers.gdrive.vault import LocalVault


def _puller(tmp_path: Path, client: FakeDrive):
    vault = LocalVault(str(tmp_path / "vault"), ".config")
    store = StateStore(str(tmp_path / "vault" / ".config" / "drivesync" / "data.json"), str(tmp_path / "cursor.json"))
    reporter = RecordingReporter()
    puller = Puller({"sync": {"concurrency": 3}}, client, vault, store, lambda *_: None, reporter)
    return puller, store, reporter


def test_first_pull_downloads_everything_untagged(tmp_path: Path, vault_root: Path, fake_drive: FakeDrive):
    fake_drive.add("id-dir", "remote", folder=True)
    fake_drive.add("id-f", "remote/note.md", content=b"from drive")
    fake_drive.add("id-root", "", folder=True, tag=Tag.ROOT)
    fake_drive.add("id-cfg", ".config/app.json", content=b"{}", tag=Tag.CONFIG)
    puller, store, _reporter = _puller(tmp_path, fake_drive)
    state = SyncState()

    pulled = puller(state, True)

    assert pulled is True
    assert (vault_root / "remote" / "note.md").read_bytes() == b"from drive"
    assert not (vault_root / ".config" / "app.json").exists()
    assert state.drive_id_to_path == {"id-dir": "remote", "id-f": "remote/note.md"}
    assert store.load().drive_id_to_path == state.drive_id_to_path


def test_pull_uses_cursor_to_limit_changes(tmp_path: Path, vault_root: Path, fake_drive: FakeDrive):
    fake_drive.add("id-old", "old.md", content=b"old", modified_time="2024-01-01T00:00:00.000Z")
    fake_drive.add("id-new", "new.md", content=b"new", modified_time="2024-06-01T00:00:00.000Z")
    puller, store, _reporter = _puller(tmp_path, fake_drive)
    store.mark_synced("2024-03-01T00:00:00.000Z")
    state = SyncState()

    puller(state, True)

    assert (vault_root / "new.md").exists()
    assert not (vault_root / "old.md").exists()
    assert state.drive_id_to_path == {"id-new": "new.md"}


def test_pulled_path_drops_pending_local_operation(tmp_path: Path, vault_root: Path, fake_drive: FakeDrive):
    fake_drive.add("id-a", "a.md", content=b"remote wins")
    puller, _store, _reporter = _puller(tmp_path, fake_drive)
    state = SyncState(operations={"a.md": "modify", "b.md": "create"})

    puller(state, True)

    assert state.operations == {"b.md": "create"}
    assert (vault_root / "a.md").read_bytes() == b"remote wins"


def test_nothing_changed_returns_false(tmp_path: Path, vault_root: Path, fake_drive: FakeDrive):
    puller, _store, reporter = _puller(tmp_path, fake_drive)

    assert puller(SyncState(), False) is False
    assert reporter.notices == []


def test_non_silent_pull_reports_count(tmp_path: Path, vault_root: Path, fake_drive: FakeDrive):
    fake_drive.add("id-a", "a.md")
    fake_drive.add("id-b", "b.md")
    puller, _store, reporter = _puller(tmp_path, fake_drive)

    puller(SyncState(), False)

    assert reporter.notices == ["Pulled 2 item(s) from Google Drive."]


def test_download_failure_raises_after_keeping_successes(tmp_path: Path, vault_root: Path, fake_drive: FakeDrive):
    fake_drive.add("id-ok", "ok.md", content=b"ok")
    fake_drive.add("id-bad", "bad.md")
    fake_drive.fail_ids.add("id-bad")
    puller, store, _reporter = _puller(tmp_path, fake_drive)
    state = SyncState()

    with pytest.raises(RuntimeError, match="pull_download_failed"):
        puller(state, True)

    assert state.drive_id_to_path == {"id-ok": "ok.md"}
    assert store.load().drive_id_to_path == {"id-ok": "ok.md"}


def test_listing_failure_propagates(tmp_path: Path, vault_root: Path, fake_drive: FakeDrive):
    fake_drive.fail_search = True
    puller, _store, _reporter = _puller(tmp_path, fake_drive)

    with pytest.raises(RuntimeError, match="list_files_failed"):
        puller(SyncState(), True)


def test_remote_path_leaving_vault_is_skipped(tmp_path: Path, vault_root: Path, fake_drive: FakeDrive):
    fake_drive.add("id-bad", "../escaped.txt", content=b"outside")
    fake_drive.add("id-ok", "ok.md", content=b"inside")
    puller, _store, _reporter = _puller(tmp_path, fake_drive)
    state = SyncState()

    puller(state, True)

    assert not (tmp_path / "escaped.txt").exists()
    assert (vault_root / "ok.md").read_bytes() == b"inside"
    assert state.drive_id_to_path == {"id-ok": "ok.md"}
    assert ("get_file", "id-bad") not in fake_drive.calls


def test_version_pulled_past_cursor_is_not_pulled_twice(tmp_path: Path, vault_root: Path, fake_drive: FakeDrive):
    obj = fake_drive.add("id-a", "a.md", content=b"one", modified_time="2024-06-01T00:00:00.000Z")
    puller, store, _reporter = _puller(tmp_path, fake_drive)
    store.mark_synced("2024-05-01T00:00:00.000Z")

    assert puller(SyncState(), True) is True

    state = SyncState(operations={"a.md": "modify"})
    assert puller(state, True) is False
    assert state.operations == {"a.md": "modify"}

    obj.modified_time = "2024-06-02T00:00:00.000Z"
    fake_drive.contents["id-a"] = b"two"
    assert puller(state, True) is True
    assert (vault_root / "a.md").read_bytes() == b"two"
    assert state.operations == {}
