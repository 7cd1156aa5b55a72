from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple
from urllib.error import URLError

import numpy as np
import sounddevice as sd
import whisper
from PyQt5 import QtCore
from whisper.tokenizer import LANGUAGES

from settings import whisper_options
from speech_capture import RecognitionResult

log = logging.getLogger(__name__)

MIN_INTERIM_SECONDS = 0.4
SILENCE_RMS = 1e-3


def whisper_language(language_tag: str) -> Optional[str]:
    """Map a BCP-47 tag such as 'ja-JP' to a whisper language code."""
    base = (language_tag or "").split("-")[0].strip().lower()
    return base if base in LANGUAGES else None


def confidence_from_segments(segments: Optional[List[dict]]) -> float:
    vals: List[float] = []
    for seg in segments or []:
        lp = seg.get("avg_logprob", None)
        if lp is None:
            continue
        # Map avg_logprob ~ [-1, 0] to [0, 1]
        vals.append(max(0.0, min(1.0, float(lp) + 1.0)))
    return float(sum(vals) / len(vals)) if vals else 0.0


class TranscribeWorker(QtCore.QThread):
    """
    Runs Whisper on a recorded buffer in a background thread.
    Emits:
      completed(text: str, confidence: float, final: bool)
      failed(message: str)
    """

    completed = QtCore.pyqtSignal(str, float, bool)
    failed = QtCore.pyqtSignal(str)

    def __init__(
        self,
        model,
        audio: np.ndarray,
        final: bool,
        parent=None,
        options: Optional[Dict] = None,
        owner=None,
    ):
        super().__init__(parent)
        self._model = model
        self._audio = audio
        self._final = final
        self._options = options or {}
        # recognizer that asked for this pass; queued work is dropped once it is done
        self.owner = owner

    def run(self) -> None:
        try:
            result = self._model.transcribe(self._audio, **self._options)
            text = str(result.get("text", "")).strip()
            conf = confidence_from_segments(result.get("segments"))
            self.completed.emit(text, conf, self._final)
        except Exception as e:
            try:
                self.failed.emit(str(e))
            except Exception:
                pass


class ModelLoadWorker(QtCore.QThread):
    """
    Loads (and on first use downloads) a Whisper model in a background thread.
    Emits:
      loaded(model: object)
      failed(code: str, message: str)   # code is "network" or "unknown"
    """

    loaded = QtCore.pyqtSignal(object)
    failed = QtCore.pyqtSignal(str, str)

    def __init__(self, model_name: str, parent=None):
        super().__init__(parent)
        self._model_name = model_name

    def run(self) -> None:
        try:
            model = whisper.load_model(self._model_name)
            self.loaded.emit(model)
        except (URLError, ConnectionError) as e:
            self.failed.emit("network", str(e))
        except Exception as e:
            self.failed.emit("unknown", str(e))


class WhisperSpeechProvider(QtCore.QObject):
    """
    Speech capability backed by the microphone and a local Whisper model.
    The model is loaded on first use and shared by every recognizer, so
    transcription passes run one at a time.
    """

    def __init__(self, settings: Dict, parent=None):
        super().__init__(parent)
        self.settings = settings
        self.samplerate = 16_000
        self.model = None
        self._loading = False
        # loader threads are referenced until they finish
        self._loaders: List[ModelLoadWorker] = []
        self._waiting: List[Tuple[Callable[[], None], Callable[[str], None]]] = []
        self._queue: List[TranscribeWorker] = []
        self._running: Optional[TranscribeWorker] = None

    def is_supported(self) -> bool:
        try:
            return bool(sd.query_devices(kind="input"))
        except Exception:
            return False

    def create_recognizer(self) -> "WhisperRecognizer":
        return WhisperRecognizer(self)

    # ------------------------ model ----------------------------------

    @property
    def loading(self) -> bool:
        return self._loading

    def ensure_model(
        self, on_ready: Callable[[], None], on_error: Callable[[str], None]
    ) -> None:
        """Call on_ready once the model is available, on_error(code) if it
        cannot be loaded. Never blocks the calling thread."""
        if self.model is not None:
            on_ready()
            return
        self._waiting.append((on_ready, on_error))
        if self._loading:
            return
        model_name = self.settings.get("model_name", "small")
        log.info(f"Loading Whisper model '{model_name}'")
        loader = ModelLoadWorker(model_name)
        loader.loaded.connect(self._on_model_loaded)
        loader.failed.connect(self._on_model_failed)
        loader.finished.connect(lambda: self._release_loader(loader))
        self._loaders.append(loader)
        self._loading = True
        loader.start()

    @QtCore.pyqtSlot(object)
    def _on_model_loaded(self, model) -> None:
        self.model = model
        self._loading = False
        waiting, self._waiting = self._waiting, []
        for on_ready, _ in waiting:
            on_ready()

    @QtCore.pyqtSlot(str, str)
    def _on_model_failed(self, code: str, message: str) -> None:
        log.error(f"Could not load Whisper model: {message}")
        self._loading = False
        waiting, self._waiting = self._waiting, []
        for _, on_error in waiting:
            on_error(code)

    def _release_loader(self, loader: ModelLoadWorker) -> None:
        if loader in self._loaders:
            self._loaders.remove(loader)
        loader.deleteLater()

    # ------------------------ transcription queue ---------------------

    def run_worker(self, worker: TranscribeWorker) -> None:
        self._queue.append(worker)
        self._pump()

    def cancel(self, owner) -> None:
        """Drop queued passes of a recognizer; a running pass finishes."""
        kept = []
        for worker in self._queue:
            if worker.owner is owner:
                worker.deleteLater()
            else:
                kept.append(worker)
        self._queue = kept

    def _pump(self) -> None:
        if self._running is not None:
            return
        while self._queue:
            worker = self._queue.pop(0)
            if worker.owner is not None and worker.owner.is_done:
                worker.deleteLater()
                continue
            self._running = worker
            worker.finished.connect(lambda: self._release(worker))
            worker.start()
            return

    def _release(self, worker: TranscribeWorker) -> None:
        if self._running is worker:
            self._running = None
        worker.deleteLater()
        self._pump()


class WhisperRecognizer(QtCore.QObject):
    """
    One recording. Interim hypotheses are produced by periodically
    transcribing the audio captured so far; stop() runs a final pass.
    """

    def __init__(self, provider: WhisperSpeechProvider, parent=None):
        super().__init__(parent)
        self.lang = "ja-JP"
        self.on_start = None
        self.on_result = None
        self.on_error = None
        self.on_end = None

        self._provider = provider
        self._sr = provider.samplerate
        self._language: Optional[str] = None
        self._blocks: List[np.ndarray] = []
        self._lock = threading.Lock()
        self._stream = None
        self._interim_timer: Optional[QtCore.QTimer] = None
        self._busy = False
        self._final_requested = False
        self._done = False

    @property
    def is_done(self) -> bool:
        return self._done

    # ------------------------ capability API ------------------------

    def start(self) -> None:
        self._language = whisper_language(self.lang)
        if self._language is None:
            self._fail("language-not-supported")
            return
        self._provider.ensure_model(self._on_model_ready, self._on_model_error)

    def _on_model_ready(self) -> None:
        # stop() or abort() may have ended this recording while the model loaded
        if self._done or self._final_requested:
            return
        try:
            self._stream = sd.InputStream(
                samplerate=self._sr,
                channels=1,
                dtype="float32",
                blocksize=2048,
                latency="high",
                callback=self._record_callback,
            )
            self._stream.start()
        except sd.PortAudioError as e:
            log.error(f"Could not open input stream: {e}")
            self._close_stream()
            self._fail("audio-capture")
            return

        interval = int(self._provider.settings.get("interim_interval_ms", 1200))
        self._interim_timer = QtCore.QTimer(self)
        self._interim_timer.setInterval(max(100, interval))
        self._interim_timer.timeout.connect(self._transcribe_interim)
        self._interim_timer.start()
        self._emit("on_start")

    def _on_model_error(self, code: str) -> None:
        if self._done:
            return
        self._fail(code)

    def stop(self) -> None:
        if self._done or self._final_requested:
            return
        self._final_requested = True
        self._stop_capture()
        if not self._busy:
            self._transcribe_final()

    def abort(self) -> None:
        if self._done:
            return
        self._stop_capture()
        self._fail("aborted")

    # ------------------------ recording ------------------------------

    def _record_callback(self, indata, frames, time_info, status):
        with self._lock:
            self._blocks.append(indata[:, 0].copy())

    def _audio_so_far(self) -> np.ndarray:
        with self._lock:
            if not self._blocks:
                return np.zeros(0, dtype=np.float32)
            return np.concatenate(self._blocks).astype(np.float32)

    def _stop_capture(self) -> None:
        if self._interim_timer is not None:
            self._interim_timer.stop()
            self._interim_timer = None
        self._close_stream()

    def _close_stream(self) -> None:
        if self._stream is not None:
            try:
                self._stream.stop()
            except Exception:
                pass
            try:
                self._stream.close()
            except Exception:
                pass
            self._stream = None

    # ------------------------ transcription --------------------------

    def _options(self) -> Dict:
        return whisper_options(self._provider.settings, language=self._language)

    def _transcribe_interim(self) -> None:
        if self._busy or self._done or self._final_requested:
            return
        audio = self._audio_so_far()
        if audio.size < int(self._sr * MIN_INTERIM_SECONDS):
            return
        self._launch(audio, final=False)

    def _transcribe_final(self) -> None:
        audio = self._audio_so_far()
        if audio.size == 0 or float(np.sqrt(np.mean(audio * audio))) < SILENCE_RMS:
            self._fail("no-speech")
            return
        self._launch(audio, final=True)

    def _launch(self, audio: np.ndarray, final: bool) -> None:
        self._busy = True
        worker = TranscribeWorker(
            self._provider.model, audio, final, options=self._options(), owner=self
        )
        worker.completed.connect(self._on_transcribed)
        worker.failed.connect(self._on_failed)
        self._provider.run_worker(worker)

    @QtCore.pyqtSlot(str, float, bool)
    def _on_transcribed(self, text: str, confidence: float, final: bool) -> None:
        self._busy = False
        if self._done:
            return
        if not final:
            if self._final_requested:
                self._transcribe_final()
                return
            if text:
                self._emit("on_result", [RecognitionResult(text, confidence, False)])
            return
        if not text:
            self._fail("no-speech")
            return
        self._emit("on_result", [RecognitionResult(text, confidence, True)])
        self._finish()

    @QtCore.pyqtSlot(str)
    def _on_failed(self, message: str) -> None:
        self._busy = False
        if self._done:
            return
        log.error(f"Transcription failed: {message}")
        self._stop_capture()
        self._fail("unknown")

    # ------------------------ callbacks ------------------------------

    def _fail(self, code: str) -> None:
        self._emit("on_error", code)
        self._finish()

    def _finish(self) -> None:
        if self._done:
            return
        self._done = True
        self._stop_capture()
        self._provider.cancel(self)
        self._emit("on_end")

    def _emit(self, name: str, *args) -> None:
        cb = getattr(self, name, None)
        if cb is not None:
            cb(*args)
