"""Flask application exposing the animation job controls via HTTP."""
from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from flask import Flask, g, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from config import ANIMATION_RESUME_ON_BOOT
from jobs import ConflictError, PersistenceError, StepInProgressError, StepProcessor
from observability.logger import bind_trace_id, clear_trace_id, get_logger
from observability.metrics import get_registry
from orchestrate import build_processor, gather_health_status, resume_active_job

LOGGER = get_logger("animation.api")


class ApiError(Exception):
    """Exception translated into an HTTP error response."""

    def __init__(self, message: str, status_code: int = 400, **details: Any) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.details = details


def create_app(processor: Optional[StepProcessor] = None, *, resume: Optional[bool] = None) -> Flask:
    app = Flask(__name__)
    if hasattr(app, "json"):
        app.json.ensure_ascii = False
    CORS(app, resources={r"/api/*": {"origins": "*"}})

    if processor is None:
        processor = build_processor()
        resume = ANIMATION_RESUME_ON_BOOT if resume is None else resume
    if resume:
        resume_active_job(processor)
    app.extensions["animation_processor"] = processor

    @app.before_request
    def _bind_request_trace() -> None:
        trace_id = request.headers.get("X-Trace-Id") or uuid.uuid4().hex
        g.trace_id = trace_id
        bind_trace_id(trace_id)

    @app.after_request
    def _append_trace(response):  # type: ignore[override]
        trace_id = getattr(g, "trace_id", None)
        if trace_id:
            response.headers.setdefault("X-Trace-Id", trace_id)
        clear_trace_id()
        return response

    @app.teardown_request
    def _teardown_trace(_exc):  # type: ignore[override]
        clear_trace_id()

    @app.errorhandler(ApiError)
    def _handle_api_error(exc: ApiError):  # type: ignore[override]
        LOGGER.warning("api_error", extra={"error": exc.message, "code": exc.status_code})
        body: Dict[str, Any] = {
            "message": exc.message,
            "code": exc.status_code,
            "trace_id": getattr(g, "trace_id", None),
        }
        body.update(exc.details)
        return jsonify({"error": body}), exc.status_code

    @app.errorhandler(Exception)
    def _handle_generic_error(exc: Exception):  # type: ignore[override]
        if isinstance(exc, HTTPException):
            return jsonify({"error": {"message": exc.description, "code": exc.code}}), exc.code
        LOGGER.exception("unhandled_error")
        trace_id = getattr(g, "trace_id", None)
        return jsonify({"error": {"message": "Internal server error", "trace_id": trace_id}}), 500

    @app.post("/api/animation/start")
    def start_animation():
        payload = _require_json(request)
        subject_id = str(payload.get("subject_id") or payload.get("storyFolderName") or "").strip()
        variant = str(payload.get("variant") or payload.get("language") or "").strip()
        if not subject_id:
            raise ApiError("subject_id is required")
        if not variant:
            raise ApiError("variant is required")
        try:
            snapshot = processor.start(subject_id, variant)
        except ConflictError as exc:
            raise ApiError(
                str(exc),
                status_code=409,
                active={"subject_id": exc.active.subject_id, "variant": exc.active.variant},
            ) from exc
        except FileNotFoundError as exc:
            raise ApiError(str(exc), status_code=404) from exc
        except ValueError as exc:
            raise ApiError(str(exc), status_code=400) from exc
        except PersistenceError as exc:
            raise ApiError(str(exc), status_code=503) from exc
        return jsonify(snapshot), 202

    @app.post("/api/animation/run-next")
    def run_next():
        try:
            snapshot = processor.run_next()
        except PersistenceError as exc:
            raise ApiError(str(exc), status_code=503) from exc
        if snapshot is None:
            snapshot = processor.status()
        return jsonify(snapshot)

    @app.get("/api/animation/status")
    def animation_status():
        return jsonify(processor.status())

    @app.delete("/api/animation/job")
    def abort_animation():
        try:
            aborted = processor.abort()
        except StepInProgressError as exc:
            raise ApiError(str(exc), status_code=409) from exc
        except PersistenceError as exc:
            raise ApiError(str(exc), status_code=503) from exc
        return jsonify({"aborted": aborted, "state": processor.status()})

    @app.get("/api/health")
    def health():
        status = gather_health_status(processor=processor)
        status["metrics"] = get_registry().snapshot()
        http_status = 200 if status.get("ok") else 503
        return jsonify(status), http_status

    return app


def _require_json(req) -> Dict[str, Any]:
    try:
        data = req.get_json(force=True)  # type: ignore[no-any-return]
    except Exception as exc:  # noqa: BLE001
        raise ApiError("Invalid JSON body") from exc
    if not isinstance(data, dict):
        raise ApiError("Expected a JSON object")
    return data
