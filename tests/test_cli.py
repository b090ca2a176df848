import json
from pathlib import Path

from typer.testing import CliRunner

from drivesync.cli import main as cli_module
from drivesync.core.config import AppConfig

runner = CliRunner()


def _mock_cfg(tmp_path: Path) -> AppConfig:
    cfg = AppConfig()
    (tmp_path / "vault").mkdir(exist_ok=True)
    cfg.sync.vault_root = str(tmp_path / "vault")
    cfg.sync.cursor_file = str(tmp_path / "runtime" / "cursor.json")
    cfg.sync.sync_config_dir = False
    cfg.auth.token_file = str(tmp_path / "runtime" / "missing_tokens.json")
    cfg.logging.file = str(tmp_path / "runtime" / "service.log")
    return cfg


def _patch(monkeypatch, tmp_path: Path) -> AppConfig:
    cfg = _mock_cfg(tmp_path)
    monkeypatch.setattr(cli_module, "load_config", lambda *_args: cfg)
    monkeypatch.setattr(cli_module, "RUN_HISTORY_PATH", tmp_path / "runtime" / "run_history.jsonl")
    monkeypatch.setattr(cli_module, "setup_logging", lambda *_args: None)
    return cfg


def test_record_and_rename_update_operation_log(monkeypatch, tmp_path: Path):
    _patch(monkeypatch, tmp_path)

    res = runner.invoke(cli_module.app, ["record", "a.md", "create"])
    assert res.exit_code == 0
    assert json.loads(res.stdout)["entry"] == "create"

    res = runner.invoke(cli_module.app, ["rename", "a.md", "b.md"])
    assert res.exit_code == 0
    payload = json.loads(res.stdout)
    assert payload["old"] is None
    assert payload["new"] == "create"


def test_record_rejects_unknown_operation(monkeypatch, tmp_path: Path):
    _patch(monkeypatch, tmp_path)

    res = runner.invoke(cli_module.app, ["record", "a.md", "touch"])

    assert res.exit_code == 2
    assert "invalid_operation" in res.stdout


def test_push_failure_exits_non_zero_and_writes_history(monkeypatch, tmp_path: Path):
    _patch(monkeypatch, tmp_path)
    runner.invoke(cli_module.app, ["record", "a.md", "delete"])

    res = runner.invoke(cli_module.app, ["push"])

    assert res.exit_code == 2
    history = (tmp_path / "runtime" / "run_history.jsonl").read_text(encoding="utf-8").splitlines()
    last = json.loads(history[-1])
    assert last["run_type"] == "push"
    assert last["status"] == "failed"


def test_config_validate_strict_flags_missing_vault(monkeypatch, tmp_path: Path):
    cfg = _patch(monkeypatch, tmp_path)
    cfg.sync.vault_root = str(tmp_path / "nope")

    res = runner.invoke(cli_module.app, ["config-validate", "--path", str(tmp_path / "config.yaml"), "--strict"])

    assert res.exit_code == 2
    payload = json.loads(res.stdout)
    assert payload["ok"] is False
    assert any(e.startswith("vault_root_missing") for e in payload["errors"])


def test_record_rejects_path_leaving_vault(monkeypatch, tmp_path: Path):
    _patch(monkeypatch, tmp_path)

    res = runner.invoke(cli_module.app, ["record", "../x.md", "create"])

    assert res.exit_code == 2
    assert not (tmp_path / "runtime" / "pending_changes.jsonl").exists()
