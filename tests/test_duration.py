"""Tests for duration resolution: cached metadata first, then a probe."""

import pytest

from clipline.core import store
from clipline.core.duration import get_duration_seconds
from clipline.errors import DurationUnknown, ProbeError
from clipline.services.ffprobe_service import MediaMetadata


def test_uses_cached_duration_without_probing(db_session, test_settings, media_tools, video_factory):
    video_factory("v1")
    store.save_video_metadata(db_session, "v1", MediaMetadata(duration_seconds=42.5))

    assert get_duration_seconds(db_session, "v1", test_settings) == 42.5
    assert media_tools.probes == []


def test_probes_and_persists_when_missing(db_session, test_settings, media_tools, video_factory):
    video = video_factory("v1")
    media_tools.durations[video.source_path] = 250.0

    assert get_duration_seconds(db_session, "v1", test_settings) == 250.0
    assert len(media_tools.probes) == 1

    # Second call is served from the store
    assert get_duration_seconds(db_session, "v1", test_settings) == 250.0
    assert len(media_tools.probes) == 1
    assert store.get_video(db_session, "v1").frame_rate == pytest.approx(29.97, abs=0.001)


@pytest.mark.parametrize("cached", [0.0, None])
def test_unusable_cached_value_triggers_probe(
    db_session, test_settings, media_tools, video_factory, cached
):
    video_factory("v1")
    store.save_video_metadata(db_session, "v1", MediaMetadata(duration_seconds=cached))

    assert get_duration_seconds(db_session, "v1", test_settings) == 250.0
    assert len(media_tools.probes) == 1


def test_probe_without_duration_raises(db_session, test_settings, media_tools, video_factory):
    video = video_factory("v1")
    media_tools.durations[video.source_path] = None

    with pytest.raises(DurationUnknown):
        get_duration_seconds(db_session, "v1", test_settings)


def test_zero_duration_probe_raises(db_session, test_settings, media_tools, video_factory):
    video = video_factory("v1")
    media_tools.durations[video.source_path] = 0.0

    with pytest.raises(DurationUnknown):
        get_duration_seconds(db_session, "v1", test_settings)


def test_probe_failure_propagates(db_session, test_settings, media_tools, video_factory):
    video_factory("v1")
    media_tools.probe_failures.add("original.mp4")

    with pytest.raises(ProbeError):
        get_duration_seconds(db_session, "v1", test_settings)


def test_unknown_video(db_session, test_settings, media_tools):
    with pytest.raises(ValueError, match="Video not found"):
        get_duration_seconds(db_session, "missing", test_settings)
