from __future__ import annotations

from dataclasses import dataclass

from drivesync.core.config import AppConfig, resolve_state_file
from drivesync.core.logging_setup import make_log_func

from .drive_client import DriveClient
from .push import PushEngine
from .state import StateStore
from .vault import LocalVault


@dataclass
class SyncRuntime:
    cfg: AppConfig
    client: DriveClient
    vault: LocalVault
    store: StateStore
    engine: PushEngine


def build_client(cfg: AppConfig) -> DriveClient:
    return DriveClient(
        client_id=cfg.auth.client_id,
        client_secret=cfg.auth.client_secret,
        token_file=cfg.auth.token_file,
        scope=cfg.auth.scope,
        root_folder_name=cfg.sync.root_folder_name,
        timeout=int(cfg.auth.timeout_sec),
        page_size=cfg.sync.page_size,
    )


def build_runtime(cfg: AppConfig, reporter=None, log_func=None) -> SyncRuntime:
    client = build_client(cfg)
    vault = LocalVault(cfg.sync.vault_root, cfg.sync.config_dir, cfg.sync.exclude_dirs)
    store = StateStore(str(resolve_state_file(cfg)), cfg.sync.cursor_file)
    engine = PushEngine(
        cfg.model_dump(),
        client,
        vault,
        store,
        log_func or make_log_func(),
        reporter=reporter,
    )
    return SyncRuntime(cfg=cfg, client=client, vault=vault, store=store, engine=engine)
