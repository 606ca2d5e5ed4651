import logging
import sys

import click

from clipline.config import get_settings
from clipline.db import get_session_factory, init_db
from clipline.models.clip_job import ClipJobState
from clipline.models.video import VideoStatus

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """clipline - cut approved videos into fixed-length clips"""
    ctx.ensure_object(dict)

    # Don't initialize database during resilient parsing (help, completion)
    if ctx.resilient_parsing:
        return

    # Allow tests to inject settings and session_factory via ctx.obj
    if "settings" not in ctx.obj:
        ctx.obj["settings"] = get_settings()
    settings = ctx.obj["settings"]

    if "session_factory" not in ctx.obj:
        init_db(settings.database_url)
        ctx.obj["session_factory"] = get_session_factory(settings.database_url)
        _check_pending_migrations(ctx.obj["session_factory"])


def _check_pending_migrations(session_factory):
    """Warn if there are pending migrations."""
    from sqlalchemy.exc import SQLAlchemyError

    from clipline.migrations import get_pending_migrations

    session = session_factory()
    try:
        pending = get_pending_migrations(session)
        if pending:
            migration_list = ", ".join(m.version for m in pending)
            logging.warning("Database migration required. Pending: %s", migration_list)
            logging.warning("  Run: clipline migrate")
    except SQLAlchemyError as e:
        logging.warning("Could not check migration status: %s", e)
    finally:
        session.close()


video_ids_option = click.option(
    "--video-id",
    "video_ids",
    multiple=True,
    required=True,
    help="Video ID(s) (repeatable).",
)


# ---------------------------------------------------------------------------
# Videos
# ---------------------------------------------------------------------------


@cli.command(name="import")
@click.argument("paths", nargs=-1, required=True, type=click.Path(dir_okay=False))
@click.option(
    "--no-metadata", is_flag=True, default=False, help="Skip metadata extraction after import."
)
@click.pass_context
def import_cmd(ctx: click.Context, paths: tuple[str, ...], no_metadata: bool) -> None:
    """Import MP4 file(s) as Pending videos."""
    from clipline.core.importer import import_video
    from clipline.core.metadata import extract_and_persist_metadata

    settings = ctx.obj["settings"]
    session = ctx.obj["session_factory"]()
    failed = False
    try:
        for path in paths:
            try:
                video = import_video(session, path, settings)
            except ValueError as e:
                click.echo(f"[FAIL] {path}: {e}", err=True)
                failed = True
                continue
            click.echo(f"[OK] {path} -> {video.video_id}")
            if not no_metadata and extract_and_persist_metadata(
                session, video.video_id, settings
            ) is None:
                click.echo(f"  !! metadata extraction failed for {video.video_id}", err=True)
    finally:
        session.close()
    if failed:
        sys.exit(1)


@cli.command(name="list")
@click.option(
    "--status",
    type=click.Choice([s.value for s in VideoStatus]),
    default=None,
    help="Only show videos with this status.",
)
@click.pass_context
def list_cmd(ctx: click.Context, status: str | None) -> None:
    """List videos, newest first."""
    from clipline.core import store

    session = ctx.obj["session_factory"]()
    try:
        videos = store.list_videos(session, status=status)
        click.echo(f"=== Videos: {len(videos)} ===")
        if not videos:
            click.echo("  (none)")
        for v in videos:
            job_state = store.get_clip_job_state(session, v.video_id).value
            duration = f"{v.duration_seconds:.1f}s" if v.duration_seconds else "?"
            err = f"  !! {v.error_message.splitlines()[0][:40]}" if v.error_message else ""
            click.echo(
                f"  [{v.status:<8}] {v.video_id}  {duration:>8}  "
                f"clips:{job_state:<10} {v.filename[:40]}{err}"
            )
    finally:
        session.close()


@cli.command()
@click.option("--video-id", required=True, help="Video ID to show.")
@click.pass_context
def show(ctx: click.Context, video_id: str) -> None:
    """Show metadata, clip job and error for a video."""
    from clipline.core import store

    session = ctx.obj["session_factory"]()
    try:
        video = store.get_video(session, video_id)
        if video is None:
            click.echo(f"Video not found: {video_id}", err=True)
            sys.exit(1)

        click.echo(f"Video:     {video.video_id}")
        click.echo(f"File:      {video.filename}")
        click.echo(f"Source:    {video.source_path}")
        click.echo(f"Status:    {video.status}")
        meta = video.metadata_record
        if meta:
            click.echo(f"Duration:  {meta.duration_seconds}s")
            click.echo(f"Size:      {meta.width}x{meta.height} ({meta.aspect_ratio_str})")
            click.echo(f"FPS:       {meta.frame_rate}")
            click.echo(f"Codec:     {meta.codec_name} [{meta.container_format}]")
            click.echo(f"Rotation:  {meta.rotation_raw}")
            click.echo(f"Bytes:     {meta.byte_size}")
        else:
            click.echo("Metadata:  (not extracted)")

        job = store.get_clip_job(session, video_id)
        click.echo(f"Clip job:  {job.state if job else ClipJobState.NOT_STARTED.value}")
        if job and job.last_exit_code is not None:
            click.echo(f"Exit code: {job.last_exit_code}")
        click.echo(f"Clips:     {len(store.list_clips(session, video_id))}")
        if video.error_message:
            click.echo(f"Error:\n{video.error_message}")
    finally:
        session.close()


def _set_status(ctx: click.Context, video_ids: tuple[str, ...], status: str) -> None:
    from clipline.core import store

    session = ctx.obj["session_factory"]()
    try:
        for vid in video_ids:
            try:
                store.update_video_status(session, vid, status)
                click.echo(f"[OK] {vid} -> {status}")
            except ValueError as e:
                click.echo(f"[FAIL] {vid}: {e}", err=True)
    finally:
        session.close()


@cli.command()
@video_ids_option
@click.option(
    "--generate", "run_generate", is_flag=True, default=False, help="Generate clips right away."
)
@click.pass_context
def approve(ctx: click.Context, video_ids: tuple[str, ...], run_generate: bool) -> None:
    """Approve video(s) for clip generation."""
    _set_status(ctx, video_ids, VideoStatus.APPROVED.value)
    if run_generate:
        ctx.invoke(generate, video_ids=video_ids)


@cli.command()
@video_ids_option
@click.pass_context
def reject(ctx: click.Context, video_ids: tuple[str, ...]) -> None:
    """Reject video(s). A running clip job stops before its next clip."""
    _set_status(ctx, video_ids, VideoStatus.REJECTED.value)


@cli.command(name="set-status")
@video_ids_option
@click.argument("status", type=click.Choice([s.value for s in VideoStatus]))
@click.pass_context
def set_status(ctx: click.Context, video_ids: tuple[str, ...], status: str) -> None:
    """Set the review status of video(s)."""
    _set_status(ctx, video_ids, status)


@cli.command(name="extract-metadata")
@video_ids_option
@click.pass_context
def extract_metadata(ctx: click.Context, video_ids: tuple[str, ...]) -> None:
    """(Re)extract source metadata with ffprobe."""
    from clipline.core.metadata import extract_and_persist_metadata

    settings = ctx.obj["settings"]
    session = ctx.obj["session_factory"]()
    try:
        for vid in video_ids:
            try:
                meta = extract_and_persist_metadata(session, vid, settings)
            except ValueError as e:
                click.echo(f"[FAIL] {vid}: {e}", err=True)
                continue
            if meta is None:
                click.echo(f"[FAIL] {vid}: metadata extraction failed (see 'show')", err=True)
            else:
                click.echo(
                    f"[OK] {vid}: {meta.duration_seconds}s {meta.width}x{meta.height} "
                    f"@ {meta.frame_rate} fps"
                )
    finally:
        session.close()


@cli.command()
@video_ids_option
@click.option("--yes", is_flag=True, default=False, help="Don't ask for confirmation.")
@click.pass_context
def delete(ctx: click.Context, video_ids: tuple[str, ...], yes: bool) -> None:
    """Delete video(s), their clips and files."""
    from clipline.core import store

    if not yes:
        click.confirm(f"Delete {len(video_ids)} video(s) and all their files?", abort=True)

    settings = ctx.obj["settings"]
    session = ctx.obj["session_factory"]()
    try:
        for vid in video_ids:
            if store.delete_video(session, vid, settings):
                click.echo(f"[OK] deleted {vid}")
            else:
                click.echo(f"[FAIL] {vid}: not found", err=True)
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Clips
# ---------------------------------------------------------------------------


@cli.command()
@video_ids_option
@click.pass_context
def generate(ctx: click.Context, video_ids: tuple[str, ...]) -> None:
    """Generate clips for approved video(s)."""
    from clipline.core.clipper import generate_clips_for_video

    settings = ctx.obj["settings"]
    session = ctx.obj["session_factory"]()
    try:
        for vid in video_ids:
            try:
                result = generate_clips_for_video(session, vid, settings)
            except Exception as e:
                click.echo(f"[FAIL] {vid}: {e}", err=True)
                continue

            if result.skipped:
                click.echo(f"[SKIP] {vid}: {result.skipped_reason}")
            elif result.state == ClipJobState.DONE:
                click.echo(
                    f"[OK] {vid}: {result.segments_total} clip(s) "
                    f"({result.generated} generated, {result.reused} reused)"
                )
            else:
                click.echo(f"[FAIL] {vid}: {result.error}", err=True)
    finally:
        session.close()


@cli.command()
@video_ids_option
@click.pass_context
def backfill(ctx: click.Context, video_ids: tuple[str, ...]) -> None:
    """Rebuild clip rows from the clip files on disk."""
    from clipline.core import store
    from clipline.core.backfill import backfill_clip_metadata

    settings = ctx.obj["settings"]
    session = ctx.obj["session_factory"]()
    try:
        for vid in video_ids:
            if store.get_video(session, vid) is None:
                click.echo(f"[FAIL] {vid}: not found", err=True)
                continue
            result = backfill_clip_metadata(session, vid, settings)
            click.echo(
                f"[OK] {vid}: scanned={result.scanned} "
                f"upserted={result.upserted} failed={result.failed}"
            )
    finally:
        session.close()


@cli.command()
@click.option("--video-id", required=True, help="Video ID.")
@click.pass_context
def clips(ctx: click.Context, video_id: str) -> None:
    """List the clips of a video."""
    from clipline.core import store

    session = ctx.obj["session_factory"]()
    try:
        rows = store.list_clips(session, video_id)
        click.echo(f"=== Clips for {video_id}: {len(rows)} ===")
        for c in rows:
            duration = f"{c.duration_seconds:.2f}s" if c.duration_seconds else "?"
            click.echo(
                f"  #{c.clip_index:03d}  {duration:>8}  {c.width}x{c.height}  "
                f"{c.byte_size or 0:>10} B  {c.path}"
            )
    finally:
        session.close()


@cli.command()
@click.pass_context
def recover(ctx: click.Context) -> None:
    """Mark clip jobs stuck in Generating as Failed."""
    from clipline.core.recovery import recover_stale_jobs

    settings = ctx.obj["settings"]
    session = ctx.obj["session_factory"]()
    try:
        reaped = recover_stale_jobs(session, settings)
        if not reaped:
            click.echo("No stale clip jobs.")
        for vid in reaped:
            click.echo(f"[OK] recovered {vid}")
    finally:
        session.close()


@cli.command()
@click.pass_context
def doctor(ctx: click.Context) -> None:
    """Check that ffmpeg and ffprobe are available."""
    from clipline.services.ffmpeg_service import check_dependencies

    status = check_dependencies(ctx.obj["settings"])
    if status.ok:
        click.echo(f"[OK] {status.message}")
    else:
        click.echo(f"[FAIL] {status.message}", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@cli.command(name="init-db")
@click.pass_context
def init_db_cmd(ctx: click.Context) -> None:
    """Initialize the database (create tables)."""
    click.echo("Database initialized successfully.")


@cli.command()
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Show what would be applied without making changes.",
)
@click.pass_context
def migrate(ctx: click.Context, dry_run: bool) -> None:
    """Run pending database migrations."""
    from clipline.migrations import get_pending_migrations, run_migrations

    session = ctx.obj["session_factory"]()
    try:
        pending = get_pending_migrations(session)

        if not pending:
            click.echo("Database is up to date. No migrations needed.")
            return

        click.echo(f"Found {len(pending)} pending migration(s):")
        for migration in pending:
            click.echo(f"  - {migration.version}: {migration.description}")

        if dry_run:
            click.echo("\n[DRY RUN] No changes were made.")
            return

        click.echo("\nApplying migrations...")
        run_migrations(session, dry_run=False)
        click.echo("\nAll migrations completed successfully!")
    except Exception as e:
        click.echo(f"\nMigration failed: {e}", err=True)
        sys.exit(1)
    finally:
        session.close()


@cli.command(name="migrate-status")
@click.pass_context
def migrate_status(ctx: click.Context) -> None:
    """Show migration status (applied and pending)."""
    from clipline.migrations import get_applied_migrations, get_pending_migrations

    session = ctx.obj["session_factory"]()
    try:
        applied = get_applied_migrations(session)
        pending = get_pending_migrations(session)

        if applied:
            click.echo(f"Applied migrations ({len(applied)}):")
            for version in applied:
                click.echo(f"  [x] {version}")
        else:
            click.echo("No migrations applied yet.")

        if pending:
            click.echo(f"\nPending migrations ({len(pending)}):")
            for migration in pending:
                click.echo(f"  - {migration.version}: {migration.description}")
            click.echo("\nRun 'clipline migrate' to apply pending migrations.")
        else:
            click.echo("\nDatabase is up to date.")
    finally:
        session.close()


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address (use 0.0.0.0 for LAN).")
@click.option("--port", default=5000, type=int, help="Port number.")
@click.pass_context
def web(ctx: click.Context, host: str, port: int) -> None:
    """Start the web API."""
    from clipline.web.app import create_app

    app = create_app(ctx.obj["settings"])
    click.echo(f"Starting API on http://{host}:{port}")
    app.run(host=host, port=port, debug=False, threaded=True)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
