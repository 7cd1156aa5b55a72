"""
Reference pronunciation playback for practice items.

Clip URLs come from the vocabulary data source, audio is downloaded and
decoded off the GUI thread, and decoded clips are cached per item. Playback
is best effort: every failure ends up as a ``playback_failed`` signal.
"""

from __future__ import annotations

import io
import logging
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
import requests
from pydub import AudioSegment
from PyQt5 import QtCore

log = logging.getLogger(__name__)

Clip = Tuple[np.ndarray, int]  # (float32 mono samples, sample rate)


def download_clip(url: str, timeout: float = 10.0) -> Clip:
    """Download an mp3 clip and decode it to float32 mono."""
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()
    segment = AudioSegment.from_file(io.BytesIO(response.content), format="mp3")
    if segment.channels > 1:
        segment = segment.set_channels(1)
    samples = np.array(segment.get_array_of_samples(), dtype=np.float32)
    scale = float(1 << (8 * segment.sample_width - 1))
    return samples / scale, int(segment.frame_rate)


class AudioFetchWorker(QtCore.QThread):
    """
    Resolves and downloads the reference clip of one item.
    Emits:
      completed(item_id: int, clip: object)   # clip is Clip or None (no audio)
      failed(item_id: int, message: str)
    """

    completed = QtCore.pyqtSignal(int, object)
    failed = QtCore.pyqtSignal(int, str)

    def __init__(
        self,
        item_id: int,
        audio_urls: Callable[[int], List[str]],
        loader: Callable[[str], Clip],
        parent=None,
    ):
        super().__init__(parent)
        self._item_id = item_id
        self._audio_urls = audio_urls
        self._loader = loader

    def run(self) -> None:
        try:
            urls = self._audio_urls(self._item_id) or []
            clip = self._loader(urls[0]) if urls else None
            self.completed.emit(self._item_id, clip)
        except Exception as e:
            self.failed.emit(self._item_id, str(e))


def _default_player_factory(samplerate: int, on_finished, on_error):
    from audio_player import AudioPlayer

    return AudioPlayer(samplerate, on_finished=on_finished, on_error=on_error)


class PlaybackAdapter(QtCore.QObject):
    """
    Plays the reference pronunciation of an item, at most one at a time.
    Emits:
      loading_changed(loading: bool)
      playback_started(item_id: int)
      playback_finished(item_id: int)
      playback_failed(item_id: int, message: str)
    """

    loading_changed = QtCore.pyqtSignal(bool)
    playback_started = QtCore.pyqtSignal(int)
    playback_finished = QtCore.pyqtSignal(int)
    playback_failed = QtCore.pyqtSignal(int, str)

    # Re-emitted on the GUI thread from the audio callback thread
    _finished_from_device = QtCore.pyqtSignal()
    _error_from_device = QtCore.pyqtSignal(str)

    def __init__(
        self,
        audio_urls: Optional[Callable[[int], List[str]]] = None,
        loader: Callable[[str], Clip] = download_clip,
        player_factory=_default_player_factory,
        parent=None,
    ):
        super().__init__(parent)
        self._audio_urls = audio_urls
        self._loader = loader
        self._player_factory = player_factory
        self.player = None
        self._player_sr: Optional[int] = None
        # item_id -> decoded clip, or None when the item has no audio
        self.cache: Dict[int, Optional[Clip]] = {}
        self._requested: Optional[int] = None
        self._playing: Optional[int] = None
        self._workers: Dict[int, AudioFetchWorker] = {}
        self.loading = False

        self._finished_from_device.connect(self._on_device_finished)
        self._error_from_device.connect(self._on_device_error)

    # --------------------------- public API ---------------------------

    def play(self, item_id: int) -> None:
        self.stop()
        self._requested = item_id
        if item_id in self.cache:
            self._play_cached(item_id)
            return
        if self._audio_urls is None:
            self._fail(item_id, "no audio source configured")
            return
        if item_id in self._workers:
            # fetch already in flight; it will play on completion
            return
        self._set_loading(True)
        worker = AudioFetchWorker(item_id, self._audio_urls, self._loader)
        worker.completed.connect(self._on_fetched)
        worker.failed.connect(self._on_fetch_failed)
        worker.finished.connect(lambda: self._release(item_id))
        self._workers[item_id] = worker
        worker.start()

    def pause(self) -> None:
        if self._playing is not None and self.player is not None:
            self.player.pause()

    def resume(self) -> None:
        if self._playing is not None and self.player is not None:
            self.player.resume()

    def stop(self) -> None:
        self._requested = None
        self._playing = None
        if self.player is not None:
            self.player.stop()

    def close(self) -> None:
        self.stop()
        if self.player is not None:
            try:
                self.player.close()
            except Exception as e:
                log.debug(f"Ignoring player close failure: {e}")
            self.player = None

    @property
    def playing_item(self) -> Optional[int]:
        return self._playing

    # --------------------------- fetching -----------------------------

    @QtCore.pyqtSlot(int, object)
    def _on_fetched(self, item_id: int, clip: object) -> None:
        self.cache[item_id] = clip
        self._set_loading(bool(self._workers.keys() - {item_id}))
        if item_id == self._requested:
            self._play_cached(item_id)

    @QtCore.pyqtSlot(int, str)
    def _on_fetch_failed(self, item_id: int, message: str) -> None:
        log.error(f"Failed to fetch audio for item {item_id}: {message}")
        self._set_loading(bool(self._workers.keys() - {item_id}))
        if item_id == self._requested:
            self._fail(item_id, message)

    def _release(self, item_id: int) -> None:
        worker = self._workers.pop(item_id, None)
        if worker is not None:
            worker.deleteLater()

    # --------------------------- playing ------------------------------

    def _play_cached(self, item_id: int) -> None:
        clip = self.cache.get(item_id)
        if clip is None:
            self._fail(item_id, "no audio available")
            return
        data, sr = clip
        try:
            player = self._ensure_player(sr)
            player.set_data(data)
            self._playing = item_id
            player.play()
        except Exception as e:
            log.error(f"Could not play audio for item {item_id}: {e}")
            self._playing = None
            self._fail(item_id, str(e))
            return
        # play() reports device errors synchronously through on_error
        if self._playing == item_id:
            self.playback_started.emit(item_id)

    def _ensure_player(self, samplerate: int):
        if self.player is not None and self._player_sr == samplerate:
            return self.player
        self._replace_player(
            self._player_factory(
                samplerate,
                self._finished_from_device.emit,
                self._error_from_device.emit,
            )
        )
        self._player_sr = samplerate
        return self.player

    def _replace_player(self, new_player) -> None:
        if self.player is not None:
            try:
                self.player.close()
            except Exception as e:
                log.debug(f"Ignoring player close failure: {e}")
        self.player = new_player

    @QtCore.pyqtSlot()
    def _on_device_finished(self) -> None:
        if self._playing is None:
            return
        item_id = self._playing
        self._playing = None
        self.playback_finished.emit(item_id)

    @QtCore.pyqtSlot(str)
    def _on_device_error(self, message: str) -> None:
        item_id = self._playing
        if item_id is None:
            return
        self._playing = None
        log.error(f"Audio device error for item {item_id}: {message}")
        self._fail(item_id, message)

    def _fail(self, item_id: int, message: str) -> None:
        self.playback_failed.emit(item_id, message)

    def _set_loading(self, loading: bool) -> None:
        if loading != self.loading:
            self.loading = loading
            self.loading_changed.emit(loading)
