import numpy as np
import pytest

from playback import PlaybackAdapter
from conftest import FakePlayer


CLIP = (np.zeros(800, dtype=np.float32), 16000)


class Players:
    def __init__(self):
        self.created = []

    def __call__(self, samplerate, on_finished, on_error):
        player = FakePlayer(samplerate, on_finished, on_error)
        self.created.append(player)
        return player

    @property
    def last(self):
        return self.created[-1]


@pytest.fixture
def players():
    return Players()


@pytest.fixture
def make_adapter(qtbot, players):
    created = []

    def factory(urls=None, loader=None):
        fetched = []

        def default_urls(item_id):
            return [f"https://cdn.example/{item_id}.mp3"]

        def default_loader(url):
            fetched.append(url)
            return CLIP

        adapter = PlaybackAdapter(
            audio_urls=urls or default_urls,
            loader=loader or default_loader,
            player_factory=players,
        )
        adapter.fetched = fetched
        created.append(adapter)
        return adapter

    yield factory
    # fetch threads must finish before their adapter is collected
    for adapter in created:
        qtbot.waitUntil(lambda: not adapter._workers, timeout=2000)


def test_fetches_then_plays(qtbot, players, make_adapter):
    adapter = make_adapter()
    with qtbot.waitSignal(adapter.playback_started, timeout=2000) as blocker:
        adapter.play(1)
    assert blocker.args == [1]
    assert adapter.fetched == ["https://cdn.example/1.mp3"]
    assert players.last.play_calls == 1
    assert players.last.sr == 16000
    assert adapter.playing_item == 1
    assert not adapter.loading


def test_loading_flag_is_reported(qtbot, players, make_adapter):
    adapter = make_adapter()
    states = []
    adapter.loading_changed.connect(states.append)
    with qtbot.waitSignal(adapter.playback_started, timeout=2000):
        adapter.play(1)
    assert states == [True, False]


def test_cached_clip_is_not_fetched_again(qtbot, players, make_adapter):
    adapter = make_adapter()
    with qtbot.waitSignal(adapter.playback_started, timeout=2000):
        adapter.play(1)
    with qtbot.waitSignal(adapter.playback_started, timeout=500):
        adapter.play(1)
    assert len(adapter.fetched) == 1
    assert len(players.created) == 1
    assert players.last.play_calls == 2


def test_item_without_clips_fails(qtbot, players, make_adapter):
    adapter = make_adapter(urls=lambda item_id: [])
    with qtbot.waitSignal(adapter.playback_failed, timeout=2000) as blocker:
        adapter.play(4)
    assert blocker.args[0] == 4
    assert players.created == []


def test_fetch_errors_fail_and_are_retried(qtbot, players, make_adapter):
    calls = []

    def flaky(url):
        calls.append(url)
        if len(calls) == 1:
            raise IOError("connection reset")
        return CLIP

    adapter = make_adapter(loader=flaky)
    with qtbot.waitSignal(adapter.playback_failed, timeout=2000) as blocker:
        adapter.play(1)
    assert blocker.args == [1, "connection reset"]
    assert 1 not in adapter.cache

    qtbot.waitUntil(lambda: not adapter._workers, timeout=2000)
    with qtbot.waitSignal(adapter.playback_started, timeout=2000):
        adapter.play(1)
    assert len(calls) == 2


def test_superseded_request_is_cached_but_not_played(qtbot, players, make_adapter):
    adapter = make_adapter()
    adapter.play(1)
    adapter.play(2)
    with qtbot.waitSignal(adapter.playback_started, timeout=2000) as blocker:
        pass
    qtbot.waitUntil(lambda: 1 in adapter.cache and 2 in adapter.cache, timeout=2000)
    assert blocker.args == [2]
    assert adapter.playing_item == 2
    assert sum(p.play_calls for p in players.created) == 1


def test_stop_cancels_pending_playback(qtbot, players, make_adapter):
    adapter = make_adapter()
    started = []
    adapter.playback_started.connect(started.append)
    adapter.play(1)
    adapter.stop()
    qtbot.waitUntil(lambda: 1 in adapter.cache, timeout=2000)
    qtbot.wait(20)
    assert started == []


def test_device_finished_is_reported(qtbot, players, make_adapter):
    adapter = make_adapter()
    with qtbot.waitSignal(adapter.playback_started, timeout=2000):
        adapter.play(1)
    with qtbot.waitSignal(adapter.playback_finished, timeout=500) as blocker:
        players.last.on_finished()
    assert blocker.args == [1]
    assert adapter.playing_item is None


def test_device_error_is_reported(qtbot, players, make_adapter):
    adapter = make_adapter()
    adapter.cache[1] = CLIP
    adapter._ensure_player(CLIP[1]).fail_with = "device unavailable"
    started = []
    adapter.playback_started.connect(started.append)
    with qtbot.waitSignal(adapter.playback_failed, timeout=500) as blocker:
        adapter.play(1)
    assert blocker.args == [1, "device unavailable"]
    assert adapter.playing_item is None
    assert started == []


def test_new_sample_rate_replaces_player(qtbot, players, make_adapter):
    adapter = make_adapter()
    adapter.cache[1] = CLIP
    adapter.cache[2] = (np.zeros(10, dtype=np.float32), 44100)
    adapter.play(1)
    first = players.last
    adapter.play(2)
    assert first.closed
    assert players.last is not first
    assert players.last.sr == 44100


def test_no_audio_source_fails_immediately(qtbot, players):
    adapter = PlaybackAdapter(audio_urls=None, player_factory=players)
    with qtbot.waitSignal(adapter.playback_failed, timeout=500) as blocker:
        adapter.play(9)
    assert blocker.args == [9, "no audio source configured"]


def test_close_releases_player(qtbot, players, make_adapter):
    adapter = make_adapter()
    adapter.cache[1] = CLIP
    adapter.play(1)
    player = players.last
    adapter.close()
    assert player.closed
    assert adapter.player is None


def test_pause_and_resume_apply_to_current_clip(qtbot, players, make_adapter):
    adapter = make_adapter()
    adapter.pause()  # nothing playing yet
    adapter.cache[1] = CLIP
    adapter.play(1)
    adapter.pause()
    assert players.last.paused
    assert adapter.playing_item == 1
    adapter.resume()
    assert not players.last.paused
