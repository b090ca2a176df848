from __future__ import annotations

import json
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from drivesync.core.config import (
    AUTH_STATE_PATH,
    DEFAULT_CONFIG_PATH,
    RUN_HISTORY_PATH,
    load_config,
    resolve_state_file,
)
from drivesync.core.logging_setup import setup_logging
from drivesync.providers.gdrive.runtime import build_client, build_runtime
from drivesync.providers.gdrive.state import OPERATIONS, OperationLog, PathIndex, now_iso

app = typer.Typer(add_completion=False)
console = Console()

DEFAULT_REDIRECT_URI = "http://127.0.0.1:8766/oauth/callback"


class ConsoleReporter:
    def progress(self, message: str):
        console.print(f"[dim]{message}[/dim]")

    def notice(self, message: str):
        console.print(message)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _append_run_history(summary: dict) -> None:
    RUN_HISTORY_PATH.parent.mkdir(parents=True, exist_ok=True)
    with RUN_HISTORY_PATH.open("a", encoding="utf-8") as f:
        f.write(json.dumps(summary, ensure_ascii=False))
        f.write("\n")


def _build_runtime():
    cfg = load_config()
    setup_logging(cfg.logging.level, cfg.logging.file)
    return build_runtime(cfg, reporter=ConsoleReporter())


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


@app.command("config-show")
def config_show(path: Path = DEFAULT_CONFIG_PATH):
    """Show current config.yaml."""
    cfg = load_config(path)
    _print_json(cfg.model_dump())


@app.command("config-validate")
def config_validate(
    path: Path = DEFAULT_CONFIG_PATH,
    strict: bool = typer.Option(False, "--strict", help="Return non-zero when validation fails."),
):
    """Validate config and runtime prerequisites."""
    out: dict[str, Any] = {
        "ok": True,
        "checked_at": _now_iso(),
        "config_path": str(path),
        "checks": {
            "config_exists": path.exists(),
            "client_id_configured": False,
            "client_secret_configured": False,
            "token_file_exists": False,
            "vault_root_exists": False,
            "config_dir_top_level": False,
            "log_parent_ready": False,
        },
        "warnings": [],
        "errors": [],
    }

    try:
        cfg = load_config(path)
    except Exception as e:
        out["ok"] = False
        out["errors"].append(f"load_config_failed: {e}")
        _print_json(out)
        if strict:
            raise typer.Exit(2)
        return

    out["checks"]["client_id_configured"] = bool(cfg.auth.client_id)
    out["checks"]["client_secret_configured"] = bool(cfg.auth.client_secret)

    token_path = Path(cfg.auth.token_file).expanduser()
    out["checks"]["token_file_exists"] = token_path.exists()
    if not token_path.exists():
        out["warnings"].append(f"token_file_missing: {token_path}")

    vault_root = Path(cfg.sync.vault_root).expanduser()
    out["checks"]["vault_root_exists"] = vault_root.is_dir()
    if not vault_root.is_dir():
        out["errors"].append(f"vault_root_missing: {vault_root}")

    config_dir = cfg.sync.config_dir.strip("/")
    out["checks"]["config_dir_top_level"] = bool(config_dir) and "/" not in config_dir
    if cfg.sync.sync_config_dir and not out["checks"]["config_dir_top_level"]:
        out["errors"].append(f"config_dir_not_top_level: {cfg.sync.config_dir}")

    try:
        Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
        out["checks"]["log_parent_ready"] = True
    except Exception as e:
        out["errors"].append(f"log_parent_unavailable: {e}")

    if not out["checks"]["client_id_configured"] or not out["checks"]["client_secret_configured"]:
        out["warnings"].append("auth_incomplete: client_id/client_secret not fully configured")

    out["ok"] = len(out["errors"]) == 0
    _print_json(out)
    if strict and not out["ok"]:
        raise typer.Exit(2)


@app.command("auth-url")
def auth_url(
    redirect_uri: str = typer.Option(DEFAULT_REDIRECT_URI, "--redirect-uri", help="OAuth redirect URI of the client."),
):
    """Generate the Google OAuth consent URL."""
    try:
        cfg = load_config()
        client = build_client(cfg)
        state = secrets.token_hex(16)
        url = client.create_oauth_authorize_url(redirect_uri=redirect_uri, state=state)
        AUTH_STATE_PATH.parent.mkdir(parents=True, exist_ok=True)
        AUTH_STATE_PATH.write_text(state, encoding="utf-8")
        _print_json(
            {
                "ok": True,
                "auth_url": url,
                "state": state,
                "state_path": str(AUTH_STATE_PATH),
                "redirect_uri": redirect_uri,
                "token_file": cfg.auth.token_file,
            }
        )
    except Exception as e:
        _print_json({"ok": False, "error": str(e)})
        raise typer.Exit(2)


@app.command("auth-exchange")
def auth_exchange(
    code: str = typer.Option(..., "--code", help="OAuth code returned by Google."),
    redirect_uri: str = typer.Option(DEFAULT_REDIRECT_URI, "--redirect-uri"),
):
    """Exchange an OAuth code for tokens and save them to token_file."""
    try:
        cfg = load_config()
        client = build_client(cfg)
        token_data = client.exchange_code_for_tokens(code, redirect_uri)
        _print_json(
            {
                "ok": True,
                "saved_to": cfg.auth.token_file,
                "expires_in": token_data.get("expires_in"),
                "created_at": token_data.get("created_at"),
                "has_access_token": bool(token_data.get("access_token")),
                "has_refresh_token": bool(token_data.get("refresh_token")),
            }
        )
    except Exception as e:
        _print_json({"ok": False, "error": str(e)})
        raise typer.Exit(2)


@app.command()
def status():
    """Show configuration and pending-sync summary."""
    cfg = load_config()
    runtime = build_runtime(cfg)
    state = runtime.store.preview()
    deletes, creates, modifies = OperationLog(state.operations).partition()

    table = Table(title="drivesync status")
    table.add_column("Key")
    table.add_column("Value")
    table.add_row("config", str(DEFAULT_CONFIG_PATH))
    table.add_row("vault_root", cfg.sync.vault_root)
    table.add_row("state_file", str(resolve_state_file(cfg)))
    table.add_row("last_synced_at", runtime.store.last_synced_at() or "(never)")
    table.add_row("indexed", str(len(PathIndex(state.drive_id_to_path))))
    table.add_row("pending_delete", str(len(deletes)))
    table.add_row("pending_create", str(len(creates)))
    table.add_row("pending_modify", str(len(modifies)))
    table.add_row("token_file_exists", "yes" if Path(cfg.auth.token_file).expanduser().exists() else "no")
    table.add_row("log", cfg.logging.file)
    console.print(table)


@app.command("ops")
def ops():
    """List pending operations."""
    runtime = build_runtime(load_config())
    state = runtime.store.preview()
    table = Table(title="pending operations")
    table.add_column("Path")
    table.add_column("Operation")
    for path, op in sorted(state.operations.items()):
        table.add_row(path, op)
    console.print(table)


@app.command("record")
def record(
    path: str = typer.Argument(..., help="Vault-relative path."),
    op: str = typer.Argument(..., help="create, delete or modify."),
):
    """Queue a local change for the operation log."""
    if op not in OPERATIONS:
        _print_json({"ok": False, "error": f"invalid_operation: {op}"})
        raise typer.Exit(2)
    runtime = build_runtime(load_config())
    try:
        rel = runtime.engine.queue_local_change(path, op)
    except ValueError as e:
        _print_json({"ok": False, "error": str(e)})
        raise typer.Exit(2)
    entry = runtime.store.preview().operations.get(rel) if rel else None
    _print_json({"ok": True, "path": path, "queued": rel is not None, "entry": entry})


@app.command("rename")
def rename(old_path: str = typer.Argument(...), new_path: str = typer.Argument(...)):
    """Queue a local rename as delete(old) + create(new)."""
    runtime = build_runtime(load_config())
    try:
        old_rel = runtime.engine.queue_local_change(old_path, "delete")
        new_rel = runtime.engine.queue_local_change(new_path, "create")
    except ValueError as e:
        _print_json({"ok": False, "error": str(e)})
        raise typer.Exit(2)
    ops = runtime.store.preview().operations
    _print_json({"ok": True, "old": ops.get(old_rel or ""), "new": ops.get(new_rel or "")})


@app.command("push")
def push():
    """Pull remote changes, then push pending local operations."""
    runtime = _build_runtime()
    state = runtime.store.load()
    result = runtime.engine.push(state)
    summary = {"run_type": "push", "finished_at": _now_iso(), **result.to_dict()}
    _append_run_history(summary)
    _print_json(summary)
    if result.status != "success":
        raise typer.Exit(2)


@app.command("pull")
def pull():
    """Pull remote changes into the vault."""
    runtime = _build_runtime()
    started = now_iso()
    state = runtime.store.load()
    try:
        pulled = runtime.engine.puller(state, False)
    except Exception as e:
        _print_json({"ok": False, "error": str(e)})
        raise typer.Exit(2)
    runtime.store.mark_synced(started)
    summary = {"run_type": "pull", "finished_at": _now_iso(), "ok": True, "pulled": bool(pulled)}
    _append_run_history(summary)
    _print_json(summary)


@app.command("config-sync")
def config_sync():
    """Sync the host configuration directory only."""
    runtime = _build_runtime()
    state = runtime.store.load()
    result = runtime.engine.sync_config(state)
    _print_json(result.to_dict())
    if result.status != "success":
        raise typer.Exit(2)


@app.command("remote-info")
def remote_info(path: str = typer.Argument(..., help="Vault-relative path.")):
    """Show remote metadata for an indexed path."""
    runtime = build_runtime(load_config())
    state = runtime.store.load()
    file_id = PathIndex(state.drive_id_to_path).resolve_path(path)
    if not file_id:
        _print_json({"ok": False, "error": f"path_not_indexed: {path}"})
        raise typer.Exit(2)
    try:
        meta = runtime.client.get_file_metadata(file_id)
    except Exception as e:
        _print_json({"ok": False, "error": str(e)})
        raise typer.Exit(2)
    _print_json(
        {
            "ok": True,
            "id": meta.id,
            "name": meta.name,
            "mime_type": meta.mime_type,
            "modified_time": meta.modified_time,
            "properties": meta.properties,
        }
    )


def main():
    app()


if __name__ == "__main__":
    main()
