"""
Capture lifecycle over a pluggable speech-to-text capability.

The capability (see ``whisper_capture.WhisperSpeechProvider``) is injected as
a provider so the session can be driven by a scripted fake in tests.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from PyQt5 import QtCore

log = logging.getLogger(__name__)

ERROR_CODES = (
    "no-speech",
    "audio-capture",
    "not-allowed",
    "network",
    "aborted",
    "language-not-supported",
    "unknown",
)


class CaptureState(str, enum.Enum):
    IDLE = "idle"
    LISTENING = "listening"
    FINALIZED = "finalized"
    ERRORED = "errored"


@dataclass(frozen=True)
class RecognitionResult:
    transcript: str
    confidence: float = 0.0
    is_final: bool = False


@dataclass(frozen=True)
class TranscriptSnapshot:
    final_text: str = ""
    interim_text: str = ""
    confidence: float = 0.0
    error_code: Optional[str] = None


def map_error_code(code: Any) -> str:
    code = str(code or "").strip().lower()
    return code if code in ERROR_CODES else "unknown"


class SpeechCaptureSession(QtCore.QObject):
    """
    Wraps one speech recognizer at a time in a typed state machine.
    Emits:
      state_changed(state: str)
      transcript_changed(snapshot: TranscriptSnapshot)
      final_transcript(text: str)
      error_occurred(code: str)
    """

    state_changed = QtCore.pyqtSignal(str)
    transcript_changed = QtCore.pyqtSignal(object)
    final_transcript = QtCore.pyqtSignal(str)
    error_occurred = QtCore.pyqtSignal(str)

    def __init__(self, provider, parent=None):
        super().__init__(parent)
        self._provider = provider
        self._recognizer = None
        # Bumped whenever the current recognizer is replaced or torn down
        self._generation = 0
        self._alive = True
        self._ended = False
        # set once the current recognizer reports an error; later results are dropped
        self._errored = False

        self.state = CaptureState.IDLE
        self.final_text = ""
        self.interim_text = ""
        self.confidence = 0.0
        self.error_code: Optional[str] = None

    # --------------------------- properties ---------------------------

    @property
    def is_supported(self) -> bool:
        try:
            return bool(self._provider is not None and self._provider.is_supported())
        except Exception:
            log.exception("Speech provider support check failed")
            return False

    @property
    def is_listening(self) -> bool:
        return self.state == CaptureState.LISTENING

    def snapshot(self) -> TranscriptSnapshot:
        return TranscriptSnapshot(
            final_text=self.final_text,
            interim_text=self.interim_text,
            confidence=self.confidence,
            error_code=self.error_code,
        )

    # --------------------------- lifecycle ----------------------------

    def start(self, language_tag: str = "ja-JP") -> bool:
        if not self._alive:
            return False
        if not self.is_supported:
            log.warning("Speech recognition is not supported on this host")
            self.error_code = "unknown"
            self._emit_transcript()
            return False

        self._discard_recognizer(abort=True)

        recognizer = self._provider.create_recognizer()
        recognizer.lang = language_tag
        gen = self._generation
        recognizer.on_start = lambda: self._on_start(gen)
        recognizer.on_result = lambda results: self._on_result(gen, results)
        recognizer.on_error = lambda code: self._on_error(gen, code)
        recognizer.on_end = lambda: self._on_end(gen)
        self._recognizer = recognizer
        self._ended = False

        self._clear_fields()
        self._set_state(CaptureState.LISTENING)
        self._emit_transcript()
        try:
            recognizer.start()
        except Exception as e:
            log.error(f"Failed to start speech recognition: {e}")
            self._discard_recognizer(abort=False)
            self.error_code = "unknown"
            self._set_state(CaptureState.ERRORED)
            self._emit_transcript()
            self.error_occurred.emit(self.error_code)
            return False
        # the recognizer may already have failed synchronously
        return self.state == CaptureState.LISTENING

    def stop(self) -> None:
        """Ask the recognizer to finish; results and end arrive later."""
        if self._recognizer is None or self._ended:
            return
        try:
            self._recognizer.stop()
        except Exception as e:
            log.error(f"Failed to stop speech recognition: {e}")
            self._on_end(self._generation)

    def abort(self) -> None:
        """Tear down the active recognizer immediately, dropping its results."""
        self._discard_recognizer(abort=True)
        if self.state != CaptureState.IDLE:
            self._set_state(CaptureState.IDLE)

    def reset(self) -> None:
        self._clear_fields()
        if self.state in (CaptureState.FINALIZED, CaptureState.ERRORED):
            self._set_state(CaptureState.IDLE)
        self._emit_transcript()

    def close(self) -> None:
        self._discard_recognizer(abort=True)
        self._alive = False

    # --------------------------- callbacks ----------------------------

    def _is_current(self, gen: int) -> bool:
        return self._alive and gen == self._generation and self._recognizer is not None

    def _on_start(self, gen: int) -> None:
        if not self._is_current(gen):
            return
        log.debug("Started listening")

    def _on_result(self, gen: int, results: Sequence[RecognitionResult]) -> None:
        if not self._is_current(gen) or self._ended or self._errored:
            return
        results = list(results or [])
        final_parts = [r for r in results if r.is_final]
        final_text = "".join(r.transcript for r in final_parts)
        interim_text = "".join(r.transcript for r in results if not r.is_final)

        previous_final = self.final_text
        if final_text:
            self.final_text = final_text
            self.interim_text = ""
            self.confidence = float(final_parts[-1].confidence)
            log.debug(f"Final result: {final_text} confidence: {self.confidence}")
            if self.state == CaptureState.LISTENING:
                self._set_state(CaptureState.FINALIZED)
        elif interim_text:
            log.debug(f"Interim: {interim_text}")
            self.interim_text = interim_text
        else:
            return

        self._emit_transcript()
        if self.final_text and self.final_text != previous_final:
            self.final_transcript.emit(self.final_text)

    def _on_error(self, gen: int, code: Any) -> None:
        if not self._is_current(gen) or self._ended:
            return
        self._errored = True
        mapped = map_error_code(code)
        log.info(f"Speech recognition error: {mapped}")
        if self.error_code is None:
            self.error_code = mapped
        self._set_state(CaptureState.ERRORED)
        self._emit_transcript()
        self.error_occurred.emit(self.error_code)

    def _on_end(self, gen: int) -> None:
        if not self._is_current(gen) or self._ended:
            return
        self._ended = True
        log.debug(f"Ended. Final transcript: {self.final_text!r}")

        promoted = False
        if not self._errored and not self.final_text and self.interim_text:
            log.debug(f"Using interim as final: {self.interim_text}")
            self.final_text = self.interim_text
            self.interim_text = ""
            promoted = True

        if self.state == CaptureState.LISTENING:
            self._set_state(
                CaptureState.FINALIZED if self.final_text else CaptureState.IDLE
            )
        elif promoted and self.state != CaptureState.ERRORED:
            self._set_state(CaptureState.FINALIZED)

        # Further callbacks from this recognizer are inert
        self._recognizer = None
        self._generation += 1

        self._emit_transcript()
        if promoted:
            self.final_transcript.emit(self.final_text)

    # --------------------------- helpers ------------------------------

    def _discard_recognizer(self, abort: bool) -> None:
        recognizer = self._recognizer
        self._recognizer = None
        self._generation += 1
        if recognizer is not None and abort and not self._ended:
            try:
                recognizer.abort()
            except Exception as e:
                log.debug(f"Ignoring abort failure: {e}")
        self._ended = False
        self._errored = False

    def _clear_fields(self) -> None:
        self.final_text = ""
        self.interim_text = ""
        self.confidence = 0.0
        self.error_code = None

    def _set_state(self, state: CaptureState) -> None:
        if state == self.state:
            return
        self.state = state
        self.state_changed.emit(state.value)

    def _emit_transcript(self) -> None:
        self.transcript_changed.emit(self.snapshot())
