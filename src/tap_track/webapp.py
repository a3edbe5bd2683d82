"""FastAPI application serving the ``timer_sessions`` collection."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from .db import complete_session, database_connection, fetch_sessions_for_user, insert_session, row_to_wire
from .errors import ActiveSessionConflictError, SessionAlreadyCompletedError, SessionNotFoundError
from .paths import get_store_path
from .schema import CompletionPatch, SessionRecord

logger = logging.getLogger(__name__)


def create_app(*, db_path: Optional[Path] = None) -> FastAPI:
    """Instantiate the FastAPI application."""
    resolved_db_path = Path(db_path or get_store_path())

    app = FastAPI(title="TapTrack session store", version="0.3.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db_path = resolved_db_path

    @app.on_event("startup")
    async def _startup() -> None:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
        with database_connection(resolved_db_path):
            logger.info("Serving timer sessions from %s", resolved_db_path)

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        return {
            "ok": True,
            "database_path": str(request.app.state.db_path),
        }

    @app.get("/api/timer_sessions")
    def list_sessions(
        request: Request,
        user_id: str = Header(alias="X-User-Id", min_length=1),
    ) -> Dict[str, Any]:
        with database_connection(request.app.state.db_path) as conn:
            rows = fetch_sessions_for_user(conn, user_id)
        return {"sessions": [row_to_wire(row) for row in rows]}

    @app.put("/api/timer_sessions/{session_id}")
    def put_session(
        session_id: str,
        payload: Dict[str, Any],
        request: Request,
        user_id: str = Header(alias="X-User-Id", min_length=1),
        require_no_active: bool = Query(
            default=False,
            description="Reject an active session when the owner already has one.",
        ),
    ) -> Dict[str, Any]:
        try:
            record = SessionRecord.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(
                status_code=400, detail=exc.errors(include_url=False, include_context=False)
            ) from exc
        if record.id != session_id:
            raise HTTPException(status_code=400, detail="id does not match the URL")
        if record.user_id != user_id:
            raise HTTPException(status_code=400, detail="userId does not match the caller")

        with database_connection(request.app.state.db_path) as conn:
            try:
                row, created = insert_session(
                    conn, record, require_no_active=require_no_active
                )
            except ActiveSessionConflictError as exc:
                raise HTTPException(
                    status_code=409,
                    detail={"message": str(exc), "active_id": exc.active_id},
                ) from exc
            except SessionNotFoundError as exc:
                # The id exists but belongs to someone else.
                raise HTTPException(status_code=400, detail="id already in use") from exc
        if created:
            logger.info("Created session %s for %s", session_id, user_id)
        return {"session": row_to_wire(row), "created": created}

    @app.patch("/api/timer_sessions/{session_id}")
    def patch_session(
        session_id: str,
        payload: CompletionPatch,
        request: Request,
        user_id: str = Header(alias="X-User-Id", min_length=1),
    ) -> Dict[str, Any]:
        with database_connection(request.app.state.db_path) as conn:
            try:
                row, changed = complete_session(
                    conn,
                    session_id,
                    user_id,
                    end_time=payload.end_time,
                    duration=payload.duration,
                )
            except SessionNotFoundError as exc:
                raise HTTPException(status_code=404, detail="Session not found") from exc
            except SessionAlreadyCompletedError as exc:
                raise HTTPException(status_code=409, detail={"message": str(exc)}) from exc
        if changed:
            logger.info("Completed session %s for %s", session_id, user_id)
        return {"session": row_to_wire(row)}

    return app
