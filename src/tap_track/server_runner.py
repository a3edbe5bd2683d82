"""Helpers to launch the session store service."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import uvicorn

from .paths import get_store_path
from .webapp import create_app


def run_store_server(
    *,
    host: str = "127.0.0.1",
    port: int = 8765,
    db_path: Optional[Path] = None,
    log_level: str = "info",
) -> None:
    """Serve the ``timer_sessions`` collection over HTTP."""
    app = create_app(db_path=db_path or get_store_path())
    logging.getLogger("uvicorn.error").setLevel(log_level.upper())
    uvicorn.run(app, host=host, port=port, log_level=log_level)
