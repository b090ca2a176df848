from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from drivesync.core.config import load_config
from drivesync.providers.gdrive.push import SYNC_RUN_LOCK
from drivesync.providers.gdrive.runtime import build_runtime
from drivesync.providers.gdrive.state import OPERATIONS, OperationLog, now_iso

router = APIRouter(prefix="/api")

logger = logging.getLogger("web")


class OperationIn(BaseModel):
    path: str
    op: str
    # Set for renames; records delete(previous_path) + create(path).
    previous_path: str | None = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _build_runtime():
    return build_runtime(load_config())


@router.get("/healthz")
def healthz():
    return {
        "ok": True,
        "status": "alive",
        "checked_at": _now_iso(),
    }


@router.get("/status")
def status():
    runtime = _build_runtime()
    state = runtime.store.preview()
    deletes, creates, modifies = OperationLog(state.operations).partition()
    return {
        "ok": True,
        "syncing": SYNC_RUN_LOCK.locked(),
        "last_synced_at": runtime.store.last_synced_at(),
        "indexed": len(state.drive_id_to_path),
        "pending": {
            "delete": len(deletes),
            "create": len(creates),
            "modify": len(modifies),
        },
    }


@router.get("/operations")
def list_operations():
    runtime = _build_runtime()
    state = runtime.store.preview()
    return {"ok": True, "operations": dict(sorted(state.operations.items()))}


@router.post("/operations")
def record_operation(payload: OperationIn):
    """Queue one local change for the operation log.

    The next sync cycle folds it into the log.
    """
    if payload.op not in OPERATIONS:
        raise HTTPException(status_code=400, detail=f"invalid_operation: {payload.op}")
    if not payload.path.strip("/"):
        raise HTTPException(status_code=400, detail="path_missing")

    runtime = _build_runtime()
    try:
        if payload.previous_path:
            runtime.engine.queue_local_change(payload.previous_path, "delete")
        rel = runtime.engine.queue_local_change(payload.path, payload.op)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    entry = runtime.store.preview().operations.get(rel) if rel else None
    return {"ok": True, "path": payload.path, "queued": rel is not None, "entry": entry}


@router.post("/actions/push")
def run_push():
    """Run one push cycle now and return its result."""
    runtime = _build_runtime()
    state = runtime.store.load()
    result = runtime.engine.push(state)
    if result.status == "busy":
        raise HTTPException(status_code=409, detail="sync_busy")
    logger.info("web_push_finished status=%s", result.status)
    return result.to_dict()


@router.post("/actions/pull")
def run_pull():
    runtime = _build_runtime()
    if not SYNC_RUN_LOCK.acquire(blocking=False):
        raise HTTPException(status_code=409, detail="sync_busy")
    try:
        started = now_iso()
        state = runtime.store.load()
        pulled = runtime.engine.puller(state, True)
        runtime.store.mark_synced(started)
    except Exception as e:
        logger.exception("web_pull_failed")
        raise HTTPException(status_code=502, detail=f"pull_failed: {e}")
    finally:
        SYNC_RUN_LOCK.release()
    return {"ok": True, "pulled": bool(pulled)}


@router.post("/actions/config-sync")
def run_config_sync():
    runtime = _build_runtime()
    state = runtime.store.load()
    result = runtime.engine.sync_config(state)
    if result.status == "busy":
        raise HTTPException(status_code=409, detail="sync_busy")
    return result.to_dict()
