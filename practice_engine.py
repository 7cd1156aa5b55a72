"""
Practice session state machine for reading vocabulary aloud.

A session walks a deck of items. Each item starts hidden; the learner either
reveals it and grades themselves (manual mode) or says the reading out loud
and the recognized text is scored (voice mode), after which the item is
revealed and graded automatically once a short delay has passed.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import random
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from PyQt5 import QtCore

from pronunciation import (
    CLOSE_THRESHOLD,
    CORRECT_THRESHOLD,
    ScoreResult,
    matches_any_reading,
)
from vocab_source import UNKNOWN_STAGE, Assignment, PracticeItem, build_stage_lookup

log = logging.getLogger(__name__)

DEFAULT_AUTO_ADVANCE_MS = 1500


class SessionState(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


class PracticeMode(str, enum.Enum):
    MANUAL = "manual"
    VOICE = "voice"


class StageFilter(str, enum.Enum):
    ALL = "all"
    APPRENTICE = "apprentice"
    GURU = "guru"
    MASTER = "master"
    ENLIGHTENED = "enlightened"
    BURNED = "burned"

    def matches(self, stage: int) -> bool:
        if self is StageFilter.ALL:
            return True
        lo, hi = _STAGE_BANDS[self]
        return lo <= stage <= hi


_STAGE_BANDS = {
    StageFilter.APPRENTICE: (1, 4),
    StageFilter.GURU: (5, 6),
    StageFilter.MASTER: (7, 7),
    StageFilter.ENLIGHTENED: (8, 8),
    StageFilter.BURNED: (9, 9),
}


@dataclass(frozen=True)
class SessionStats:
    total: int = 0
    correct: int = 0
    incorrect: int = 0

    @property
    def accuracy(self) -> int:
        if self.total == 0:
            return 0
        return int(100.0 * self.correct / self.total + 0.5)

    def graded(self, correct: bool) -> "SessionStats":
        return SessionStats(
            total=self.total + 1,
            correct=self.correct + (1 if correct else 0),
            incorrect=self.incorrect + (0 if correct else 1),
        )


def _shuffle_key(seed: int, item_id: int) -> float:
    # Keyed per item so the order never depends on previous draws
    return random.Random(f"{seed}:{item_id}").random()


def build_deck(
    items: Iterable[PracticeItem],
    assignments: Iterable[Assignment] = (),
    stage_filter: StageFilter = StageFilter.ALL,
    shuffle: bool = False,
    seed: int = 0,
) -> Tuple[PracticeItem, ...]:
    """
    Derive the ordered deck for a session.

    Items without readings are dropped, mastery stages come from the
    non-hidden assignments (unknown otherwise), the stage filter is applied,
    and with ``shuffle`` the deck is ordered by a seeded per-item key, so the
    same inputs always give the same order.
    """
    stages = build_stage_lookup(assignments)
    stage_filter = StageFilter(stage_filter)
    deck = [
        dataclasses.replace(
            item, mastery_stage=stages.get(item.item_id, UNKNOWN_STAGE)
        )
        for item in items
        if item.readings
    ]
    deck = [item for item in deck if stage_filter.matches(item.mastery_stage)]
    if shuffle:
        deck.sort(key=lambda item: (_shuffle_key(seed, item.item_id), item.item_id))
    return tuple(deck)


class PracticeSessionEngine(QtCore.QObject):
    """
    Owns the deck, the current position, reveal state, statistics and the
    auto-advance timer of one practice session.
    Emits:
      state_changed(state: str)
      item_changed(item: object)        # PracticeItem or None
      revealed(item: object)
      scored(result: object)            # ScoreResult
      stats_changed(stats: object)      # SessionStats
      deck_changed(size: int)
      mode_changed(mode: str)
      completed(stats: object)
    """

    state_changed = QtCore.pyqtSignal(str)
    item_changed = QtCore.pyqtSignal(object)
    revealed = QtCore.pyqtSignal(object)
    scored = QtCore.pyqtSignal(object)
    stats_changed = QtCore.pyqtSignal(object)
    deck_changed = QtCore.pyqtSignal(int)
    mode_changed = QtCore.pyqtSignal(str)
    completed = QtCore.pyqtSignal(object)

    def __init__(
        self,
        capture=None,
        playback=None,
        auto_advance_ms: int = DEFAULT_AUTO_ADVANCE_MS,
        language_tag: str = "ja-JP",
        correct_threshold: int = CORRECT_THRESHOLD,
        close_threshold: int = CLOSE_THRESHOLD,
        parent=None,
    ):
        super().__init__(parent)
        self.capture = capture
        self.playback = playback
        self.auto_advance_ms = int(auto_advance_ms)
        self.language_tag = language_tag
        self.correct_threshold = int(correct_threshold)
        self.close_threshold = int(close_threshold)

        self._items: Tuple[PracticeItem, ...] = ()
        self._assignments: Tuple[Assignment, ...] = ()
        self.stage_filter = StageFilter.ALL
        self.shuffle = False
        self.shuffle_seed = 0
        self.deck: Tuple[PracticeItem, ...] = ()

        self.state = SessionState.NOT_STARTED
        self.mode = PracticeMode.MANUAL
        self.index = 0
        self.is_revealed = False
        self.stats = SessionStats()
        self.last_score: Optional[ScoreResult] = None
        self._last_scored_transcript: Optional[str] = None
        self._auto_advance: Optional[QtCore.QTimer] = None

        if self.capture is not None:
            self.capture.final_transcript.connect(self._on_final_transcript)

    # --------------------------- properties ---------------------------

    @property
    def current_item(self) -> Optional[PracticeItem]:
        if self.state != SessionState.IN_PROGRESS or self.index >= len(self.deck):
            return None
        return self.deck[self.index]

    @property
    def is_complete(self) -> bool:
        return self.state == SessionState.COMPLETE

    @property
    def auto_advance_pending(self) -> bool:
        return self._auto_advance is not None

    @property
    def voice_available(self) -> bool:
        return self.capture is not None and self.capture.is_supported

    # --------------------------- deck ---------------------------------

    def set_source(
        self, items: Sequence[PracticeItem], assignments: Sequence[Assignment] = ()
    ) -> None:
        self._items = tuple(items)
        self._assignments = tuple(assignments)
        self._rebuild_deck()

    def set_filter(self, stage_filter) -> None:
        self.stage_filter = StageFilter(stage_filter)
        self._rebuild_deck()

    def set_shuffle(self, enabled: bool, seed: Optional[int] = None) -> None:
        self.shuffle = bool(enabled)
        if seed is not None:
            self.shuffle_seed = int(seed)
        self._rebuild_deck()

    def reshuffle(self, seed: Optional[int] = None) -> None:
        """Enable shuffling with a fresh seed (time based unless given)."""
        if seed is None:
            seed = int(QtCore.QDateTime.currentMSecsSinceEpoch())
        self.set_shuffle(True, seed)

    def _rebuild_deck(self) -> None:
        self._cancel_auto_advance()
        self._abort_capture()
        self.deck = build_deck(
            self._items,
            self._assignments,
            self.stage_filter,
            self.shuffle,
            self.shuffle_seed,
        )
        self.index = 0
        self.is_revealed = False
        self._clear_item_scoring()
        if self.state != SessionState.NOT_STARTED:
            self._set_state(
                SessionState.IN_PROGRESS if self.deck else SessionState.NOT_STARTED
            )
        log.debug(
            f"Deck rebuilt: {len(self.deck)} items "
            f"(filter={self.stage_filter.value}, shuffle={self.shuffle})"
        )
        self.deck_changed.emit(len(self.deck))
        self.item_changed.emit(self.current_item)

    # --------------------------- session ------------------------------

    def start(self) -> bool:
        if not self.deck:
            log.debug("Refusing to start: no items match the filter")
            return False
        self._cancel_auto_advance()
        self._abort_capture()
        self.index = 0
        self.is_revealed = False
        self._clear_item_scoring()
        self.stats = SessionStats()
        self._set_state(SessionState.IN_PROGRESS)
        self.stats_changed.emit(self.stats)
        self.item_changed.emit(self.current_item)
        return True

    def restart(self) -> bool:
        return self.start()

    def end(self) -> None:
        self._cancel_auto_advance()
        self._abort_capture()
        if self.playback is not None:
            self.playback.stop()
        self.index = 0
        self.is_revealed = False
        self._clear_item_scoring()
        self._set_state(SessionState.NOT_STARTED)
        self.item_changed.emit(None)

    def set_mode(self, mode) -> bool:
        mode = PracticeMode(mode)
        if self.state == SessionState.IN_PROGRESS and self.is_revealed:
            log.debug("Refusing mode switch while an item is revealed")
            return False
        self._cancel_auto_advance()
        self._abort_capture()
        if mode != self.mode:
            self.mode = mode
            self.mode_changed.emit(mode.value)
        return True

    # --------------------------- item actions -------------------------

    def reveal(self) -> bool:
        item = self.current_item
        if item is None or self.is_revealed:
            return False
        self.is_revealed = True
        self.revealed.emit(item)
        self._play_reference(item)
        return True

    def grade(self, correct: bool) -> bool:
        if self.current_item is None or not self.is_revealed:
            return False
        self._cancel_auto_advance()
        self.stats = self.stats.graded(bool(correct))
        self.stats_changed.emit(self.stats)
        self._advance()
        return True

    def skip(self) -> bool:
        if self.current_item is None or self.is_revealed:
            return False
        self._cancel_auto_advance()
        self._advance()
        return True

    def _advance(self) -> None:
        self._abort_capture()
        self.index = min(self.index + 1, len(self.deck))
        self.is_revealed = False
        self._clear_item_scoring()
        if self.index >= len(self.deck):
            self._set_state(SessionState.COMPLETE)
            self.item_changed.emit(None)
            log.info(
                f"Session complete: {self.stats.correct}/{self.stats.total} "
                f"({self.stats.accuracy}%)"
            )
            self.completed.emit(self.stats)
            return
        self.item_changed.emit(self.current_item)

    # --------------------------- voice mode ---------------------------

    def start_listening(self) -> bool:
        if (
            self.mode != PracticeMode.VOICE
            or self.capture is None
            or self.current_item is None
            or self.is_revealed
        ):
            return False
        return bool(self.capture.start(self.language_tag))

    def stop_listening(self) -> None:
        if self.capture is not None:
            self.capture.stop()

    @QtCore.pyqtSlot(str)
    def _on_final_transcript(self, transcript: str) -> None:
        item = self.current_item
        if (
            self.mode != PracticeMode.VOICE
            or item is None
            or self.is_revealed
            or not transcript
            or not transcript.strip()
        ):
            return
        if transcript == self._last_scored_transcript:
            return
        self._last_scored_transcript = transcript

        result = matches_any_reading(
            transcript,
            item.primary_readings,
            self.correct_threshold,
            self.close_threshold,
        )
        if result is None:
            return
        log.info(
            f"Scored {transcript!r} against {result.reading!r}: "
            f"{result.similarity_score} ({result.feedback})"
        )
        self.last_score = result
        self.scored.emit(result)
        self.reveal()
        self._schedule_auto_advance(result.counts_as_correct)

    def _schedule_auto_advance(self, correct: bool) -> None:
        self._cancel_auto_advance()
        index = self.index
        timer = QtCore.QTimer(self)
        timer.setSingleShot(True)
        timer.setInterval(max(0, self.auto_advance_ms))
        timer.timeout.connect(lambda: self._on_auto_advance(timer, index, correct))
        self._auto_advance = timer
        timer.start()

    def _on_auto_advance(self, timer: QtCore.QTimer, index: int, correct: bool) -> None:
        if timer is not self._auto_advance:
            return
        self._auto_advance = None
        timer.deleteLater()
        if index != self.index:
            return
        self.grade(correct)

    def _cancel_auto_advance(self) -> None:
        timer = self._auto_advance
        self._auto_advance = None
        if timer is not None:
            timer.stop()
            timer.deleteLater()

    # --------------------------- helpers ------------------------------

    def _clear_item_scoring(self) -> None:
        self.last_score = None
        self._last_scored_transcript = None

    def _abort_capture(self) -> None:
        if self.capture is not None:
            self.capture.abort()
            self.capture.reset()

    def _play_reference(self, item: PracticeItem) -> None:
        if self.playback is None:
            return
        try:
            self.playback.play(item.item_id)
        except Exception as e:
            log.warning(f"Reference audio unavailable for {item.item_id}: {e}")

    def _set_state(self, state: SessionState) -> None:
        if state == self.state:
            return
        self.state = state
        self.state_changed.emit(state.value)
