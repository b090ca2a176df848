from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field

PROJECT_ROOT = Path(os.environ.get("DRIVESYNC_HOME") or Path.home() / ".drivesync")
RUNTIME_DIR = PROJECT_ROOT / "runtime"
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"
DEFAULT_CONFIG_TEMPLATE_PATH = PROJECT_ROOT / "config.yaml.example"
RUN_HISTORY_PATH = RUNTIME_DIR / "run_history.jsonl"
AUTH_STATE_PATH = RUNTIME_DIR / "auth_state.txt"

DEFAULT_VAULT_ROOT = str(Path.home() / "Vault")


class DriveAuthConfig(BaseModel):
    client_id: str = ""
    client_secret: str = ""
    token_file: str = str(RUNTIME_DIR / "user_tokens.json")
    scope: str = "https://www.googleapis.com/auth/drive.file"
    timeout_sec: int = 30


class SyncConfig(BaseModel):
    vault_root: str = DEFAULT_VAULT_ROOT
    # Host application configuration directory, synced by tag instead of the operation log.
    config_dir: str = ".config"
    # Empty means <vault_root>/<config_dir>/drivesync/data.json
    state_file: str = ""
    # Local-only pull cursor; kept out of the synced state file.
    cursor_file: str = str(RUNTIME_DIR / "cursor.json")
    root_folder_name: str = "DriveSync"
    concurrency: int = Field(default=5, ge=1, le=20)
    page_size: int = Field(default=1000, ge=1, le=1000)
    sync_config_dir: bool = True
    exclude_dirs: list[str] = Field(default_factory=lambda: [
        ".git",
        ".trash",
        "__pycache__",
    ])


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = str(RUNTIME_DIR / "service.log")


class AppConfig(BaseModel):
    auth: DriveAuthConfig = Field(default_factory=DriveAuthConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    web_bind_host: str = "127.0.0.1"
    web_port: int = 8766


def resolve_state_file(cfg: AppConfig) -> Path:
    if cfg.sync.state_file:
        return Path(cfg.sync.state_file).expanduser()
    return Path(cfg.sync.vault_root).expanduser() / cfg.sync.config_dir / "drivesync" / "data.json"


def ensure_runtime_dirs(cfg: AppConfig):
    Path(cfg.logging.file).expanduser().parent.mkdir(parents=True, exist_ok=True)
    Path(cfg.sync.cursor_file).expanduser().parent.mkdir(parents=True, exist_ok=True)


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    import yaml

    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        if DEFAULT_CONFIG_TEMPLATE_PATH.exists():
            try:
                template_text = DEFAULT_CONFIG_TEMPLATE_PATH.read_text(encoding="utf-8")
                data = yaml.safe_load(template_text) or {}
                cfg = AppConfig.model_validate(data)
                path.write_text(template_text, encoding="utf-8")
            except Exception:
                cfg = AppConfig()
                path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        else:
            cfg = AppConfig()
            path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        ensure_runtime_dirs(cfg)
        return cfg

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = AppConfig.model_validate(data)
    ensure_runtime_dirs(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path = DEFAULT_CONFIG_PATH):
    import yaml

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
