"""
Pronunciation scoring for kana readings.

Compares the *text* returned by speech recognition with the known readings
of an item. Nothing here looks at audio.
"""

from __future__ import annotations

import math
import re
import unicodedata
from dataclasses import dataclass
from typing import Optional, Sequence

import jiwer

CORRECT = "correct"
CLOSE = "close"
INCORRECT = "incorrect"

CORRECT_THRESHOLD = 90
CLOSE_THRESHOLD = 70

_KATAKANA_START = 0x30A1
_KATAKANA_END = 0x30F6
_KANA_OFFSET = 0x60


@dataclass(frozen=True)
class ScoreResult:
    similarity_score: int
    feedback: str
    reading: str = ""
    spoken_normalized: str = ""
    expected_normalized: str = ""

    @property
    def counts_as_correct(self) -> bool:
        # "close" is graded as correct in session statistics
        return self.feedback in (CORRECT, CLOSE)


def katakana_to_hiragana(text: str) -> str:
    return "".join(
        chr(ord(ch) - _KANA_OFFSET)
        if _KATAKANA_START <= ord(ch) <= _KATAKANA_END
        else ch
        for ch in text
    )


def normalize_reading(text: str) -> str:
    """
    Fold a kana string to the form used for comparison.

    NFKC folds full-width latin and half-width katakana, katakana becomes
    hiragana, and punctuation, symbols and whitespace are removed. The long
    vowel mark and the small kana (っ, ゃ, ゅ, ょ) are phonetic content and
    are kept.
    """
    text = unicodedata.normalize("NFKC", text or "")
    text = katakana_to_hiragana(text).casefold()
    return re.sub(r"[\W_]+", "", text)


def levenshtein(a: str, b: str) -> int:
    """Character-level edit distance."""
    if a == b:
        return 0
    if not a or not b:
        return max(len(a), len(b))
    out = jiwer.process_characters(a, b)
    return int(out.substitutions + out.deletions + out.insertions)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def classify(
    score: int,
    correct_at: int = CORRECT_THRESHOLD,
    close_at: int = CLOSE_THRESHOLD,
) -> str:
    if close_at > correct_at:
        raise ValueError("close threshold must not exceed correct threshold")
    if score >= correct_at:
        return CORRECT
    if score >= close_at:
        return CLOSE
    return INCORRECT


def similarity(a: str, b: str) -> int:
    """0..100 similarity of two already-normalized strings."""
    if a == b:
        return 100
    longest = max(len(a), len(b))
    score = _round_half_up(100.0 * (1.0 - levenshtein(a, b) / longest))
    return max(0, min(100, score))


def score_pronunciation(
    transcript: str,
    reading: str,
    correct_at: int = CORRECT_THRESHOLD,
    close_at: int = CLOSE_THRESHOLD,
) -> ScoreResult:
    spoken = normalize_reading(transcript)
    expected = normalize_reading(reading)
    score = similarity(spoken, expected)
    return ScoreResult(
        similarity_score=score,
        feedback=classify(score, correct_at, close_at),
        reading=reading,
        spoken_normalized=spoken,
        expected_normalized=expected,
    )


def matches_any_reading(
    transcript: str,
    readings: Sequence[str],
    correct_at: int = CORRECT_THRESHOLD,
    close_at: int = CLOSE_THRESHOLD,
) -> Optional[ScoreResult]:
    """
    Score a transcript against every acceptable reading and return the best.

    Returns None when there is nothing to score (blank transcript or no
    readings). Ties keep the earliest reading.
    """
    if not transcript or not transcript.strip() or not readings:
        return None
    best: Optional[ScoreResult] = None
    for reading in readings:
        result = score_pronunciation(transcript, reading, correct_at, close_at)
        if best is None or result.similarity_score > best.similarity_score:
            best = result
    return best
