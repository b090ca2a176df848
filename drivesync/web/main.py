from __future__ import annotations

from fastapi import FastAPI

from drivesync import __version__
from drivesync.core.config import load_config
from drivesync.web.api import router as api_router


def build_app() -> FastAPI:
    api = FastAPI(title="drivesync", version=__version__)
    api.include_router(api_router)
    return api


def main():
    import uvicorn

    cfg = load_config()

    from drivesync.core.logging_setup import setup_logging

    setup_logging(cfg.logging.level, cfg.logging.file)

    uvicorn.run(
        build_app(),
        host=cfg.web_bind_host,
        port=cfg.web_port,
        log_level=cfg.logging.level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
