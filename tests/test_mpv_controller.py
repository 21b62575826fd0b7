"""Tests for mpv IPC event translation (no mpv process needed)."""
import pytest
from client.mpv_controller import MpvPlayer
from client.player import (
    EVENT_PLAY, EVENT_PAUSE, EVENT_SEEKED, EVENT_ENDED, EVENT_READY,
    EVENT_BUFFERING, EVENT_BUFFERING_DONE,
)


@pytest.fixture
def player():
    p = MpvPlayer("movie.mp4", media_root="/media")
    p.events = []
    p.listener = p.events.append
    return p


def _prop(name, data):
    return {"event": "property-change", "id": 1, "name": name, "data": data}


def test_pause_property_emits_play_and_pause(player):
    player.handle_event(_prop("pause", True))  # initial value, already paused
    player.handle_event(_prop("pause", False))
    player.handle_event(_prop("pause", True))
    assert player.events == [EVENT_PLAY, EVENT_PAUSE]
    assert player.paused


def test_time_pos_tracked(player):
    player.handle_event(_prop("time-pos", 12.25))
    player.handle_event(_prop("time-pos", None))
    assert player.current_time == 12.25


def test_seek_completion_emits_seeked_once(player):
    player.handle_event({"event": "playback-restart"})
    player.handle_event({"event": "seek"})
    player.handle_event({"event": "playback-restart"})
    assert player.events == [EVENT_SEEKED]


def test_file_loaded_marks_ready(player):
    assert not player.is_ready
    player.handle_event({"event": "file-loaded"})
    assert player.is_ready
    assert player.events == [EVENT_READY]
    player.handle_event({"event": "start-file"})
    assert not player.is_ready


def test_buffering_and_eof(player):
    player.handle_event(_prop("paused-for-cache", True))
    player.handle_event(_prop("paused-for-cache", False))
    player.handle_event(_prop("eof-reached", False))
    player.handle_event(_prop("eof-reached", True))
    assert player.events == [EVENT_BUFFERING, EVENT_BUFFERING_DONE, EVENT_ENDED]


def test_seekable_ranges_feed_can_seek_to(player):
    assert player.can_seek_to(500.0)
    player.handle_event(_prop("demuxer-cache-state", {
        "seekable-ranges": [{"start": 0.0, "end": 30.0}, {"start": 60.0, "end": 90.0}],
    }))
    assert player.buffered_ranges() == [(0.0, 30.0), (60.0, 90.0)]
    assert player.can_seek_to(75.0)
    assert not player.can_seek_to(45.0)


def test_absolute_media_path(player):
    assert player.absolute_media_path.endswith("movie.mp4")
