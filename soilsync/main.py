import logging
import os
import sqlite3
import time
import uuid
from typing import Any, Dict, NamedTuple, Optional

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from .config import Settings
from .errors import CameraUnavailable, MissingImageData, SoilSyncError
from .models import AnalyzeRequest, AnalyzeResponse, HistoryEntry, SoilAnalysisRecord
from .presentation import dashboard_summary, export_text, render_view
from .services.acquisition import MAX_UPLOAD_BYTES, accept_upload, capture_still
from .services.analysis import SoilAnalysisClient
from .services.demo_data import get_demo_analysis
from .storage import HistoryStore, SessionStore

logger = logging.getLogger(__name__)

SESSION_COOKIE = "soilsync_session"
SESSION_HEADER = "x-session-id"
CLIENT_COOKIE = "soilsync_client"
CLIENT_HEADER = "x-client-id"
CLIENT_COOKIE_MAX_AGE = 365 * 24 * 60 * 60
FALLBACK_WARNING = "Using demo data — AI analysis unavailable"


class Identity(NamedTuple):
    """Per-browser ids: a session id for the current result, a durable client id for history."""

    session_id: str
    client_id: str
    new_session: bool
    new_client: bool


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def _identity(request: Request) -> Identity:
    sid = request.headers.get(SESSION_HEADER) or request.cookies.get(SESSION_COOKIE)
    cid = request.headers.get(CLIENT_HEADER) or request.cookies.get(CLIENT_COOKIE)
    return Identity(
        session_id=sid or uuid.uuid4().hex,
        client_id=cid or uuid.uuid4().hex,
        new_session=not sid,
        new_client=not cid,
    )


def _respond(body: Dict[str, Any], ident: Identity, status_code: int = 200) -> JSONResponse:
    response = JSONResponse(content=body, status_code=status_code)
    if ident.new_session:
        response.set_cookie(SESSION_COOKIE, ident.session_id, httponly=True, samesite="lax")
    if ident.new_client:
        response.set_cookie(CLIENT_COOKIE, ident.client_id, max_age=CLIENT_COOKIE_MAX_AGE, httponly=True, samesite="lax")
    return response


def _error(message: str, status_code: int, **extra: Any) -> JSONResponse:
    return JSONResponse(content={"success": False, "error": message, **extra}, status_code=status_code)


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[SoilAnalysisClient] = None,
    session_store: Optional[SessionStore] = None,
    history_store=None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(title="SoilSync API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.client = client or SoilAnalysisClient(settings)
    app.state.sessions = session_store or SessionStore(ttl=settings.session_ttl, max_sessions=settings.max_sessions)
    app.state.history = history_store or HistoryStore(settings.db_path, limit=settings.history_limit)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok", "demo": not settings.has_credentials}

    @app.post("/api/analyze", response_model=AnalyzeResponse, response_model_exclude_none=True)
    def analyze(req: AnalyzeRequest, request: Request):
        """Analyse a soil photo, falling back to demo data on provider failure."""
        analysis_client: SoilAnalysisClient = request.app.state.client
        farm_name = _clean(req.farmName)
        location = _clean(req.location)
        warning = None

        if analysis_client.uses_demo(bool(req.demo)):
            time.sleep(settings.demo_delay)
            record = get_demo_analysis(farmName=farm_name, location=location)
        elif not req.imageData:
            return _error(MissingImageData.message, 400)
        else:
            try:
                record = analysis_client.analyze(req.imageData, farm_name, location)
            except Exception as e:
                logger.warning(
                    "soil analysis failed, serving demo data: %s",
                    e,
                    exc_info=True,
                    extra={"event": "analysis_fallback", "error_type": type(e).__name__},
                )
                record = get_demo_analysis(farmName=farm_name, location=location)
                warning = FALLBACK_WARNING

        ident = _identity(request)
        _store_result(request.app, ident, record, req.imageData)
        logger.info("/api/analyze session=%s id=%s score=%s fallback=%s", ident.session_id, record.id, record.soilHealth.score, bool(warning))

        body = AnalyzeResponse(data=record, warning=warning)
        return _respond(body.model_dump(mode="json", exclude_none=True), ident)

    @app.post("/api/upload")
    async def upload(file: UploadFile = File(...)):
        try:
            # One byte past the limit is enough to reject an oversized stream.
            data = await file.read(MAX_UPLOAD_BYTES + 1)
            image_data = accept_upload(data, file.content_type, file.filename)
        except SoilSyncError as e:
            return _error(e.message, 400)
        return {"success": True, "imageData": image_data}

    @app.post("/api/capture")
    def capture(request: Request):
        try:
            image_data = capture_still(request.app.state.settings.camera_index)
        except CameraUnavailable as e:
            logger.info("camera unavailable, falling back to upload: %s", e)
            return _error(e.message, 503, fallback="upload")
        return {"success": True, "imageData": image_data}

    @app.get("/api/results")
    def results(request: Request, tab: Optional[str] = None):
        ident = _identity(request)
        record = request.app.state.sessions.get(ident.session_id)
        if record is None:
            return _error("No analysis found", 404, redirect="/analyze")
        try:
            view = render_view(record, tab)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _respond({"success": True, "view": view}, ident)

    @app.get("/api/results/export", response_class=PlainTextResponse)
    def results_export(request: Request):
        record = request.app.state.sessions.get(_identity(request).session_id)
        if record is None:
            raise HTTPException(status_code=404, detail="No analysis found")
        return PlainTextResponse(export_text(record))

    @app.delete("/api/results")
    def end_session(request: Request):
        request.app.state.sessions.clear(_identity(request).session_id)
        response = JSONResponse(content={"success": True})
        response.delete_cookie(SESSION_COOKIE)
        return response

    @app.get("/api/history")
    def history(request: Request):
        ident = _identity(request)
        entries = request.app.state.history.list(ident.client_id)
        body = {
            "success": True,
            "entries": [e.model_dump(mode="json", exclude_none=True) for e in entries],
            "summary": dashboard_summary(entries),
        }
        return _respond(body, ident)

    @app.delete("/api/history")
    def clear_history(request: Request, confirm: bool = False):
        if not confirm:
            return _error("Confirmation required to clear history", 400)
        ident = _identity(request)
        request.app.state.history.clear(ident.client_id)
        logger.info("analysis history cleared for client %s", ident.client_id)
        return _respond({"success": True, "entries": []}, ident)

    return app


def _store_result(app: FastAPI, ident: Identity, record: SoilAnalysisRecord, image_data: Optional[str]) -> None:
    app.state.sessions.set(ident.session_id, record)
    # History is best-effort; a storage failure must not lose the result.
    try:
        app.state.history.prepend(ident.client_id, HistoryEntry.from_record(record, image_data))
    except sqlite3.Error as e:
        logger.warning("failed to append analysis history: %s", e)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
