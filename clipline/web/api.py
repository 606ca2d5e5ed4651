"""API blueprint for the clipline web service."""

import logging
import re
from datetime import UTC, datetime
from functools import wraps
from pathlib import Path

from flask import Blueprint, current_app, jsonify, request, send_file

from clipline import __version__
from clipline.core import store
from clipline.core.paths import clip_path, source_path
from clipline.models.clip import Clip
from clipline.models.clip_job import ClipJob
from clipline.models.video import Video, VideoStatus

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)

_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------


@api_bp.route("/health")
def health():
    """Health check for monitoring and proxy verification."""
    return jsonify(
        {
            "status": "ok",
            "time": datetime.now(UTC).isoformat(),
            "version": __version__,
        }
    )


def _get_session():
    return current_app.config["session_factory"]()


def _get_settings():
    return current_app.config["settings"]


def _get_job_manager():
    return current_app.config["job_manager"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _valid_video_id(view):
    """Reject ids that could escape the videos directory."""

    @wraps(view)
    def wrapper(video_id: str, *args, **kwargs):
        if not _VIDEO_ID_RE.match(video_id):
            return jsonify({"error": f"Invalid video id: {video_id}"}), 400
        return view(video_id, *args, **kwargs)

    return wrapper


def _within(base: str, path: Path) -> bool:
    try:
        path.resolve().relative_to(Path(base).resolve())
    except ValueError:
        return False
    return True


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _video_to_dict(video: Video) -> dict:
    """Serialize a Video ORM object to a JSON-safe dict."""
    meta = video.metadata_record
    return {
        "video_id": video.video_id,
        "filename": video.filename,
        "status": video.status,
        "created_at": _iso(video.created_at),
        "error_message": video.error_message,
        "rotation_raw": video.rotation_raw,
        "metadata": (
            {
                "duration_seconds": meta.duration_seconds,
                "frame_rate": meta.frame_rate,
                "width": meta.width,
                "height": meta.height,
                "aspect_ratio": meta.aspect_ratio,
                "aspect_ratio_str": meta.aspect_ratio_str,
                "codec_name": meta.codec_name,
                "codec_long_name": meta.codec_long_name,
                "container_format": meta.container_format,
                "byte_size": meta.byte_size,
                "extracted_at": _iso(video.metadata_extracted_at),
            }
            if meta
            else None
        ),
    }


def _clip_to_dict(clip: Clip) -> dict:
    return {
        "clip_id": clip.clip_id,
        "video_id": clip.video_id,
        "clip_index": clip.clip_index,
        "path": clip.path,
        "duration_seconds": clip.duration_seconds,
        "frame_rate": clip.frame_rate,
        "width": clip.width,
        "height": clip.height,
        "byte_size": clip.byte_size,
        "updated_at": _iso(clip.updated_at),
    }


def _clip_job_to_dict(job: ClipJob | None, video_id: str) -> dict:
    if job is None:
        return {
            "video_id": video_id,
            "state": "NotStarted",
            "last_error_text": None,
            "last_exit_code": None,
            "updated_at": None,
        }
    return {
        "video_id": job.video_id,
        "state": job.state,
        "last_error_text": job.last_error_text,
        "last_exit_code": job.last_exit_code,
        "updated_at": _iso(job.updated_at),
    }


def _submit_job(action, video_id):
    """Submit a background job, return (response, status_code)."""
    session = _get_session()
    try:
        if store.get_video(session, video_id) is None:
            return jsonify({"error": f"Video not found: {video_id}"}), 404
    finally:
        session.close()

    mgr = _get_job_manager()
    active = mgr.active_for_video(video_id, action=action)
    if active:
        return jsonify(
            {
                "error": f"A {action} job is already active",
                "job_id": active.job_id,
            }
        ), 409

    job = mgr.submit(
        action=action,
        video_id=video_id,
        app=current_app._get_current_object(),
    )
    return jsonify({"job_id": job.job_id, "state": job.state}), 202


# ---------------------------------------------------------------------------
# Video list + detail
# ---------------------------------------------------------------------------


@api_bp.route("/videos")
def list_videos():
    status = request.args.get("status")
    if status and status not in {s.value for s in VideoStatus}:
        return jsonify({"error": f"Invalid status: {status}"}), 400

    session = _get_session()
    try:
        videos = store.list_videos(session, status=status)
        return jsonify([_video_to_dict(v) for v in videos])
    finally:
        session.close()


@api_bp.route("/videos/<video_id>")
@_valid_video_id
def get_video(video_id: str):
    session = _get_session()
    try:
        video = store.get_video(session, video_id)
        if not video:
            return jsonify({"error": f"Video not found: {video_id}"}), 404

        data = _video_to_dict(video)
        data["clip_job"] = _clip_job_to_dict(store.get_clip_job(session, video_id), video_id)
        data["clip_count"] = len(store.list_clips(session, video_id))
        return jsonify(data)
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Video actions
# ---------------------------------------------------------------------------


@api_bp.route("/videos/import", methods=["POST"])
def import_video():
    """Import an MP4 from a server-side path, then extract its metadata in the background."""
    from clipline.core.importer import import_video as do_import

    body = request.get_json(silent=True) or {}
    picked = body.get("path")
    if not picked:
        return jsonify({"error": "Missing 'path'"}), 400

    session = _get_session()
    settings = _get_settings()
    try:
        video = do_import(session, picked, settings)
        video_id = video.video_id
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    finally:
        session.close()

    job = _get_job_manager().submit(
        action="extract_metadata",
        video_id=video_id,
        app=current_app._get_current_object(),
    )
    return jsonify({"video_id": video_id, "job_id": job.job_id}), 201


@api_bp.route("/videos/<video_id>/status", methods=["POST"])
@_valid_video_id
def set_video_status(video_id: str):
    """Set review status. Approving also queues clip generation."""
    body = request.get_json(silent=True) or {}
    status = body.get("status")

    session = _get_session()
    try:
        if store.get_video(session, video_id) is None:
            return jsonify({"error": f"Video not found: {video_id}"}), 404
        video = store.update_video_status(session, video_id, status or "")
        data = _video_to_dict(video)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    finally:
        session.close()

    if status == VideoStatus.APPROVED.value:
        mgr = _get_job_manager()
        active = mgr.active_for_video(video_id, action="generate")
        if active:
            data["job_id"] = active.job_id
        else:
            job = mgr.submit(
                action="generate",
                video_id=video_id,
                app=current_app._get_current_object(),
            )
            data["job_id"] = job.job_id
    return jsonify(data)


@api_bp.route("/videos/<video_id>", methods=["DELETE"])
@_valid_video_id
def delete_video(video_id: str):
    session = _get_session()
    settings = _get_settings()
    try:
        if not store.delete_video(session, video_id, settings):
            return jsonify({"error": f"Video not found: {video_id}"}), 404
        return jsonify({"ok": True, "deleted": 1})
    finally:
        session.close()


@api_bp.route("/videos/delete", methods=["POST"])
def delete_videos():
    """Delete several videos at once. Unknown ids are ignored."""
    body = request.get_json(silent=True) or {}
    video_ids = body.get("video_ids")
    if not isinstance(video_ids, list) or not video_ids:
        return jsonify({"error": "'video_ids' must be a non-empty list"}), 400
    bad = [v for v in video_ids if not isinstance(v, str) or not _VIDEO_ID_RE.match(v)]
    if bad:
        return jsonify({"error": f"Invalid video ids: {bad}"}), 400

    session = _get_session()
    settings = _get_settings()
    try:
        deleted = sum(1 for v in video_ids if store.delete_video(session, v, settings))
        return jsonify({"ok": True, "deleted": deleted})
    finally:
        session.close()


@api_bp.route("/videos/<video_id>/extract-metadata", methods=["POST"])
@_valid_video_id
def extract_metadata(video_id: str):
    return _submit_job("extract_metadata", video_id)


@api_bp.route("/videos/<video_id>/generate", methods=["POST"])
@_valid_video_id
def generate_clips(video_id: str):
    return _submit_job("generate", video_id)


@api_bp.route("/videos/<video_id>/backfill", methods=["POST"])
@_valid_video_id
def backfill_clips(video_id: str):
    return _submit_job("backfill", video_id)


# ---------------------------------------------------------------------------
# Clips
# ---------------------------------------------------------------------------


@api_bp.route("/videos/<video_id>/clips")
@_valid_video_id
def list_clips(video_id: str):
    session = _get_session()
    try:
        if store.get_video(session, video_id) is None:
            return jsonify({"error": f"Video not found: {video_id}"}), 404
        return jsonify([_clip_to_dict(c) for c in store.list_clips(session, video_id)])
    finally:
        session.close()


@api_bp.route("/videos/<video_id>/clip-job")
@_valid_video_id
def get_clip_job(video_id: str):
    session = _get_session()
    try:
        if store.get_video(session, video_id) is None:
            return jsonify({"error": f"Video not found: {video_id}"}), 404
        return jsonify(_clip_job_to_dict(store.get_clip_job(session, video_id), video_id))
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Job status + logs
# ---------------------------------------------------------------------------


@api_bp.route("/jobs/<job_id>")
def get_job(job_id: str):
    mgr = _get_job_manager()
    job = mgr.get(job_id)
    if not job:
        return jsonify({"error": "Job not found"}), 404

    data = job.to_dict()

    # Include the persisted clip job state for real-time progress
    session = _get_session()
    try:
        data["clip_job_state"] = store.get_clip_job_state(session, job.video_id).value
    finally:
        session.close()

    return jsonify(data)


@api_bp.route("/videos/<video_id>/action-log")
@_valid_video_id
def video_action_log(video_id: str):
    tail = request.args.get("tail", 200, type=int)
    log_path = _get_job_manager().log_path(video_id)

    if not log_path.exists():
        return jsonify({"lines": []})

    lines = log_path.read_text(encoding="utf-8").splitlines()
    return jsonify({"lines": lines[-tail:]})


# ---------------------------------------------------------------------------
# Media (byte-range capable for HTML5 scrubbing)
# ---------------------------------------------------------------------------


@api_bp.route("/videos/<video_id>/media/original")
@_valid_video_id
def get_original_media(video_id: str):
    settings = _get_settings()
    path = source_path(settings, video_id)
    if not _within(settings.videos_dir, path) or not path.is_file():
        return jsonify({"error": "Original video not found"}), 404
    return send_file(str(path.resolve()), mimetype="video/mp4", conditional=True)


@api_bp.route("/videos/<video_id>/media/clips/<int:clip_index>")
@_valid_video_id
def get_clip_media(video_id: str, clip_index: int):
    settings = _get_settings()
    path = clip_path(settings, video_id, clip_index)
    if not _within(settings.videos_dir, path) or not path.is_file():
        return jsonify({"error": f"Clip {clip_index} not found"}), 404
    return send_file(str(path.resolve()), mimetype="video/mp4", conditional=True)
