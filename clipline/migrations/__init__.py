"""Database migration system for clipline."""

import json
import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime

from sqlalchemy import text
from sqlalchemy.orm import Session

from clipline.models.migration import SchemaMigration

logger = logging.getLogger(__name__)


class Migration(ABC):
    """Base class for database migrations."""

    @property
    @abstractmethod
    def version(self) -> str:
        """Unique version identifier for this migration."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of this migration."""

    @abstractmethod
    def up(self, session: Session) -> None:
        """Apply the migration."""

    def is_applied(self, session: Session) -> bool:
        return session.get(SchemaMigration, self.version) is not None

    def mark_applied(self, session: Session) -> None:
        if self.is_applied(session):
            logger.info("Migration %s already marked as applied", self.version)
            return

        session.add(
            SchemaMigration(
                version=self.version,
                description=self.description,
                applied_at=datetime.now(UTC),
            )
        )
        session.commit()
        logger.info("Marked migration %s as applied", self.version)


def _table_exists(session: Session, table: str) -> bool:
    result = session.execute(
        text("SELECT name FROM sqlite_master WHERE type='table' AND name=:name"),
        {"name": table},
    )
    return result.fetchone() is not None


def _column_names(session: Session, table: str) -> list[str]:
    result = session.execute(text(f"PRAGMA table_info({table})"))
    return [row[1] for row in result.fetchall()]


class SplitVideoMetadataJsonMigration(Migration):
    """Migration v1: move the legacy videos.metadata_json blob into typed columns.

    Older databases stored the whole probe summary as one JSON string. The
    blob is left in place; rows that already have typed metadata are not
    touched.
    """

    # typed column -> (SQL type, key in the legacy JSON blob)
    COLUMNS = {
        "duration_seconds": ("REAL", "duration_seconds"),
        "frame_rate": ("REAL", "fps"),
        "width": ("INTEGER", "width"),
        "height": ("INTEGER", "height"),
        "aspect_ratio": ("REAL", "aspect_ratio"),
        "aspect_ratio_str": ("VARCHAR(32)", "aspect_ratio_str"),
        "codec_name": ("VARCHAR(64)", "codec"),
        "codec_long_name": ("VARCHAR(255)", "codec_long_name"),
        "container_format": ("VARCHAR(128)", "container_format"),
        "byte_size": ("INTEGER", "file_size_bytes"),
        "metadata_extracted_at": ("TIMESTAMP", None),
    }

    @property
    def version(self) -> str:
        return "001_split_video_metadata_json"

    @property
    def description(self) -> str:
        return "Copy legacy videos.metadata_json into typed metadata columns"

    def up(self, session: Session) -> None:
        logger.info("Running migration: %s", self.version)

        if not _table_exists(session, "videos"):
            logger.info("No videos table yet (skipped)")
            self.mark_applied(session)
            return

        # Step 1: add any typed column the table is missing
        columns = _column_names(session, "videos")
        for column, (sql_type, _) in self.COLUMNS.items():
            if column not in columns:
                session.execute(text(f"ALTER TABLE videos ADD COLUMN {column} {sql_type}"))
                logger.info("Added videos.%s", column)
        session.commit()

        # Step 2: copy values out of the blob
        if "metadata_json" not in columns:
            logger.info("No metadata_json column (nothing to copy)")
            self.mark_applied(session)
            return

        rows = session.execute(
            text(
                "SELECT video_id, metadata_json FROM videos "
                "WHERE metadata_json IS NOT NULL AND metadata_extracted_at IS NULL"
            )
        ).fetchall()

        copied = 0
        # SQLAlchemy DateTime storage format on SQLite
        now = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S.%f")
        for video_id, blob in rows:
            try:
                legacy = json.loads(blob)
            except (TypeError, ValueError):
                logger.warning("Skipping video %s: metadata_json is not valid JSON", video_id)
                continue
            if not isinstance(legacy, dict):
                logger.warning("Skipping video %s: metadata_json is not an object", video_id)
                continue

            values = {
                column: legacy.get(key)
                for column, (_, key) in self.COLUMNS.items()
                if key is not None
            }
            values["metadata_extracted_at"] = now
            values["video_id"] = video_id
            assignments = ", ".join(f"{c} = :{c}" for c in values if c != "video_id")
            session.execute(
                text(f"UPDATE videos SET {assignments} WHERE video_id = :video_id"), values
            )
            copied += 1
        session.commit()
        logger.info("Copied metadata for %d video(s)", copied)

        self.mark_applied(session)


# Registry of all available migrations
MIGRATIONS: list[Migration] = [
    SplitVideoMetadataJsonMigration(),
]


def _ensure_migrations_table(session: Session) -> None:
    SchemaMigration.__table__.create(session.get_bind(), checkfirst=True)


def get_pending_migrations(session: Session) -> list[Migration]:
    """Get list of migrations that haven't been applied yet."""
    _ensure_migrations_table(session)
    return [m for m in MIGRATIONS if not m.is_applied(session)]


def get_applied_migrations(session: Session) -> list[str]:
    """Get list of applied migration versions, oldest first."""
    _ensure_migrations_table(session)
    query = session.query(SchemaMigration).order_by(SchemaMigration.applied_at)
    return [m.version for m in query.all()]


def run_migrations(session: Session, dry_run: bool = False) -> list[str]:
    """Run all pending migrations. Returns the versions applied (or that would be)."""
    pending = get_pending_migrations(session)

    if not pending:
        logger.info("No pending migrations")
        return []

    logger.info("Found %d pending migration(s)", len(pending))

    versions = []
    for migration in pending:
        if dry_run:
            logger.info("[DRY RUN] Would apply: %s - %s", migration.version, migration.description)
        else:
            try:
                migration.up(session)
            except Exception as e:
                session.rollback()
                logger.error("Migration %s failed: %s", migration.version, e)
                raise
        versions.append(migration.version)
    return versions
