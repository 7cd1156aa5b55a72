"""
Wires the reading-aloud practice core together: settings, speech capture,
reference audio playback, the session engine and run history.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Dict, Optional, Sequence

from PyQt5 import QtCore

import db
from logger import setup_logging
from playback import PlaybackAdapter
from practice_engine import PracticeMode, PracticeSessionEngine, SessionStats
from settings import default_settings, load_settings, settings_path
from speech_capture import SpeechCaptureSession
from vocab_source import (
    Assignment,
    PracticeItem,
    WaniKaniClient,
    assignments_from_json,
    items_from_subjects,
)

log = logging.getLogger(__name__)


def load_export(path: str) -> tuple[list[PracticeItem], list[Assignment]]:
    """
    Read a JSON export of the form {"subjects": [...], "assignments": [...]}
    as returned by the vocabulary API.
    """
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    return (
        items_from_subjects(data.get("subjects") or []),
        assignments_from_json(data.get("assignments") or []),
    )


class ReadingPracticeApp(QtCore.QObject):
    """
    Composition root for one learner. Collaborators can be injected; the
    defaults use the microphone + Whisper and the WaniKani API.
    """

    def __init__(
        self,
        settings: Optional[Dict] = None,
        speech_provider=None,
        playback: Optional[PlaybackAdapter] = None,
        db_session=None,
        parent=None,
    ):
        super().__init__(parent)
        self.settings = settings or load_settings(default_settings(), settings_path())

        if speech_provider is None:
            from whisper_capture import WhisperSpeechProvider

            speech_provider = WhisperSpeechProvider(self.settings, parent=self)
        self.capture = SpeechCaptureSession(speech_provider, parent=self)

        if playback is None:
            token = self.settings.get("api_token")
            client = WaniKaniClient(token) if token else None
            playback = PlaybackAdapter(
                client.pronunciation_audio_urls if client else None, parent=self
            )
        self.playback = playback

        self.db = db_session or db.get_session(self.settings.get("db_path", "practice.db"))

        self.engine = PracticeSessionEngine(
            capture=self.capture,
            playback=self.playback,
            auto_advance_ms=int(self.settings.get("auto_advance_ms", 1500)),
            language_tag=self.settings.get("language", "ja-JP"),
            correct_threshold=int(self.settings.get("correct_threshold", 90)),
            close_threshold=int(self.settings.get("close_threshold", 70)),
            parent=self,
        )
        self.engine.set_filter(self.settings.get("stage_filter", "all"))
        self.engine.set_shuffle(bool(self.settings.get("shuffle", False)))
        mode = self.settings.get("mode", PracticeMode.MANUAL.value)
        if mode == PracticeMode.VOICE.value and not self.capture.is_supported:
            log.warning("Speech capture unavailable, falling back to manual mode")
            mode = PracticeMode.MANUAL.value
        self.engine.set_mode(mode)

        self.engine.completed.connect(self._record_run)
        self.playback.playback_failed.connect(self._on_playback_failed)

    def load_items(
        self, items: Sequence[PracticeItem], assignments: Sequence[Assignment] = ()
    ) -> int:
        self.engine.set_source(items, assignments)
        return len(self.engine.deck)

    def history(self):
        return db.get_all_runs(self.db)

    def close(self) -> None:
        self.engine.end()
        self.capture.close()
        self.playback.close()

    @QtCore.pyqtSlot(object)
    def _record_run(self, stats: SessionStats) -> None:
        try:
            db.add_run(
                self.db,
                self.engine.mode.value,
                self.engine.stage_filter.value,
                stats.total,
                stats.correct,
                stats.incorrect,
            )
        except Exception as e:
            log.error(f"Could not save practice run: {e}")

    @QtCore.pyqtSlot(int, str)
    def _on_playback_failed(self, item_id: int, message: str) -> None:
        log.info(f"No reference audio for item {item_id}: {message}")


def main() -> None:
    """Console run of one manual session over a JSON export."""
    setup_logging()
    if len(sys.argv) < 2:
        print("usage: reading_practice.py EXPORT.json")
        sys.exit(2)

    qt_app = QtCore.QCoreApplication(sys.argv)
    app = ReadingPracticeApp()
    app.engine.set_mode(PracticeMode.MANUAL)
    if not app.load_items(*load_export(sys.argv[1])):
        print("No items match the current filter.")
        sys.exit(1)

    engine = app.engine
    engine.start()
    try:
        while engine.current_item is not None:
            item = engine.current_item
            input(f"[{engine.index + 1}/{len(engine.deck)}] {item.display_text}  (enter to reveal) ")
            engine.reveal()
            qt_app.processEvents()
            print(f"  {', '.join(item.primary_readings)}  {', '.join(item.meanings)}")
            answer = input("  correct? [y/n] ").strip().lower()
            engine.grade(answer.startswith("y"))
    except (EOFError, KeyboardInterrupt):
        print()
    stats = engine.stats
    print(f"{stats.correct}/{stats.total} correct ({stats.accuracy}%)")
    app.close()


if __name__ == "__main__":
    main()
