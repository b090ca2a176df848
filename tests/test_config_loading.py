from pathlib import Path

from drivesync.core import config as config_module
from drivesync.core.config import AppConfig, resolve_state_file


def test_load_config_creates_from_template(monkeypatch, tmp_path: Path):
    template = tmp_path / "config.yaml.example"
    target = tmp_path / "config.yaml"
    runtime_dir = tmp_path / "runtime"
    template.write_text(
        "\n".join(
            [
                "auth:",
                "  client_id: tpl_client_id",
                "  client_secret: tpl_client_secret",
                "  token_file: /tmp/user_tokens.json",
                "sync:",
                "  vault_root: /tmp/vault",
                "  concurrency: 3",
                "logging:",
                f"  file: {runtime_dir / 'service.log'}",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", template)
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.auth.client_id == "tpl_client_id"
    assert cfg.auth.client_secret == "tpl_client_secret"
    assert cfg.sync.vault_root == "/tmp/vault"
    assert cfg.sync.concurrency == 3


def test_load_config_creates_defaults_when_template_missing(monkeypatch, tmp_path: Path):
    target = tmp_path / "config.yaml"
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", tmp_path / "missing-template.yaml")
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.sync.concurrency == 5
    assert cfg.sync.config_dir == ".config"


def test_load_config_falls_back_when_template_invalid(monkeypatch, tmp_path: Path):
    template = tmp_path / "config.yaml.example"
    target = tmp_path / "config.yaml"
    template.write_text("auth: [invalid\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_TEMPLATE_PATH", template)
    monkeypatch.setattr(config_module, "ensure_runtime_dirs", lambda _cfg: None)

    cfg = config_module.load_config(target)

    assert target.exists()
    assert cfg.sync.root_folder_name == "DriveSync"


def test_state_file_defaults_inside_config_dir():
    cfg = AppConfig()
    cfg.sync.vault_root = "/tmp/vault"

    assert resolve_state_file(cfg) == Path("/tmp/vault/.config/drivesync/data.json")

    cfg.sync.state_file = "/tmp/elsewhere.json"
    assert resolve_state_file(cfg) == Path("/tmp/elsewhere.json")
