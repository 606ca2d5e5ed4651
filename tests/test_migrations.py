"""Tests for the database migration system."""

import json
from datetime import UTC, datetime

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clipline.db import Base
from clipline.migrations import (
    MIGRATIONS,
    SplitVideoMetadataJsonMigration,
    get_applied_migrations,
    get_pending_migrations,
    run_migrations,
)
from clipline.models import clip, clip_job, migration, video  # noqa: F401
from clipline.models.video import Video


@pytest.fixture
def memory_session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session = sessionmaker(bind=engine)()
    yield session
    session.close()


@pytest.fixture
def legacy_session(memory_session):
    """A database in the old layout: probe summary stored as one JSON blob."""
    memory_session.execute(
        text("""
            CREATE TABLE videos (
                video_id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL,
                filename TEXT NOT NULL,
                source_path TEXT NOT NULL,
                status TEXT NOT NULL,
                metadata_json TEXT,
                rotation_raw TEXT,
                error_message TEXT
            )
        """)
    )
    legacy = {
        "fps": 29.97,
        "duration_seconds": 250.0,
        "width": 1920,
        "height": 1080,
        "aspect_ratio": 1.7777,
        "aspect_ratio_str": "16:9",
        "codec": "h264",
        "codec_long_name": "H.264 / AVC",
        "container_format": "mov,mp4,m4a,3gp,3g2,mj2",
        "file_size_bytes": 123456,
    }
    rows = [
        ("v1", json.dumps(legacy)),
        ("v2", None),
        ("v3", "{not json"),
    ]
    for vid, blob in rows:
        memory_session.execute(
            text(
                "INSERT INTO videos (video_id, created_at, filename, source_path, status, "
                "metadata_json) VALUES (:vid, :now, 'a.mp4', '/x/original.mp4', 'Pending', :blob)"
            ),
            {"vid": vid, "now": "2024-01-01 00:00:00", "blob": blob},
        )
    memory_session.commit()
    return memory_session


def test_registry_versions_are_unique():
    versions = [m.version for m in MIGRATIONS]
    assert len(versions) == len(set(versions))


def test_fresh_database_has_one_pending(memory_session):
    pending = get_pending_migrations(memory_session)
    assert [m.version for m in pending] == ["001_split_video_metadata_json"]
    assert get_applied_migrations(memory_session) == []


def test_dry_run_changes_nothing(legacy_session):
    versions = run_migrations(legacy_session, dry_run=True)
    assert versions == ["001_split_video_metadata_json"]
    assert len(get_pending_migrations(legacy_session)) == 1
    columns = [r[1] for r in legacy_session.execute(text("PRAGMA table_info(videos)"))]
    assert "duration_seconds" not in columns


def test_legacy_blob_is_copied_into_columns(legacy_session):
    run_migrations(legacy_session)

    v1 = legacy_session.get(Video, "v1")
    assert v1.duration_seconds == 250.0
    assert v1.frame_rate == pytest.approx(29.97)
    assert (v1.width, v1.height) == (1920, 1080)
    assert v1.codec_name == "h264"
    assert v1.byte_size == 123456
    assert v1.metadata_extracted_at is not None

    # No blob, or a broken one: left without metadata
    assert legacy_session.get(Video, "v2").metadata_extracted_at is None
    assert legacy_session.get(Video, "v3").metadata_extracted_at is None

    assert get_applied_migrations(legacy_session) == ["001_split_video_metadata_json"]
    assert get_pending_migrations(legacy_session) == []


def test_migration_is_idempotent(legacy_session):
    m = SplitVideoMetadataJsonMigration()
    m.up(legacy_session)
    m.up(legacy_session)
    assert m.is_applied(legacy_session)
    assert get_applied_migrations(legacy_session) == [m.version]


def test_current_schema_only_marks_applied(memory_session):
    Base.metadata.create_all(memory_session.get_bind())
    memory_session.add(
        Video(
            video_id="v1",
            filename="a.mp4",
            source_path="/x",
            status="Pending",
            created_at=datetime.now(UTC),
        )
    )
    memory_session.commit()

    run_migrations(memory_session)

    assert get_pending_migrations(memory_session) == []
    assert memory_session.get(Video, "v1").metadata_extracted_at is None


def test_no_videos_table(memory_session):
    run_migrations(memory_session)
    assert get_pending_migrations(memory_session) == []
