"""Flask application factory for the clipline web service."""

import logging
import time
import traceback
from datetime import UTC, datetime
from pathlib import Path

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from clipline.config import get_settings
from clipline.core.clipper import default_guard
from clipline.core.recovery import recover_stale_jobs
from clipline.db import get_session_factory, init_db
from clipline.services.ffmpeg_service import check_dependencies
from clipline.web.api import api_bp
from clipline.web.jobs import JobManager

logger = logging.getLogger(__name__)


def _startup_checks(app: Flask) -> None:
    """Reap stale clip jobs and warn about missing tools or migrations."""
    settings = app.config["settings"]
    session = app.config["session_factory"]()
    try:
        reaped = recover_stale_jobs(session, settings)
        if reaped:
            logger.warning("Marked %d stale clip job(s) as Failed: %s", len(reaped), reaped)

        from clipline.migrations import get_pending_migrations

        pending = get_pending_migrations(session)
        if pending:
            migration_list = ", ".join(m.version for m in pending)
            logger.warning(
                "Database migration required. Pending: %s. Run: clipline migrate",
                migration_list,
            )
    finally:
        session.close()

    deps = check_dependencies(settings)
    if not deps.ok:
        logger.warning(deps.message)
    app.config["dependencies"] = deps


def create_app(settings=None) -> Flask:
    """Create and configure the Flask app.

    Args:
        settings: Optional Settings override (used in tests).
    """
    app = Flask(__name__)

    if settings is None:
        settings = get_settings()

    app.config["settings"] = settings
    init_db(settings.database_url)
    app.config["session_factory"] = get_session_factory(settings.database_url)

    logs_dir = settings.logs_dir
    Path(logs_dir).mkdir(parents=True, exist_ok=True)
    app.config["job_manager"] = JobManager(
        logs_dir, max_workers=settings.max_workers, guard=default_guard
    )

    app.register_blueprint(api_bp, url_prefix="/api")

    _startup_checks(app)

    @app.errorhandler(Exception)
    def handle_exception(e):
        """Global exception handler for unhandled errors."""
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description}), e.code

        error_log = Path(logs_dir) / "web_errors.log"
        try:
            ts = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
            with open(error_log, "a", encoding="utf-8") as f:
                f.write(f"\n{'=' * 80}\n")
                f.write(f"Timestamp: {ts}\n")
                f.write(f"Method: {request.method}\n")
                f.write(f"Path: {request.path}\n")
                f.write(f"Error: {e}\n")
                f.write("Traceback:\n")
                f.write(traceback.format_exc())
                f.write(f"{'=' * 80}\n")
        except OSError:
            pass

        logger.exception("Unhandled exception in request")

        error_str = str(e).lower()
        if "no such column" in error_str or "no such table" in error_str:
            return jsonify(
                {
                    "error": "Database schema out of date",
                    "hint": "Run `clipline migrate` to update the database schema.",
                    "details": str(e),
                }
            ), 500

        return jsonify({"error": "Internal server error", "details": str(e)}), 500

    @app.before_request
    def _start_timer():
        g.start_time = time.monotonic()

    @app.after_request
    def _log_request(response):
        duration_ms = (time.monotonic() - getattr(g, "start_time", time.monotonic())) * 1000
        logger.info(
            "%s %s %s %.0fms",
            request.method,
            request.path,
            response.status_code,
            duration_ms,
        )
        return response

    return app
