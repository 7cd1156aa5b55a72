"""
Vocabulary data model and the WaniKani-shaped data source it is read from.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import requests

UNKNOWN_STAGE = -1
PRACTICE_KINDS = ("vocabulary", "kana_vocabulary")


@dataclass(frozen=True)
class Reading:
    text: str
    primary: bool = True


@dataclass(frozen=True)
class PracticeItem:
    """One vocabulary item as seen by a practice session."""

    item_id: int
    display_text: str
    meanings: Tuple[str, ...] = ()
    readings: Tuple[Reading, ...] = ()
    mastery_stage: int = UNKNOWN_STAGE
    level: int = 0

    @property
    def primary_readings(self) -> List[str]:
        return [r.text for r in self.readings if r.primary]


@dataclass(frozen=True)
class Assignment:
    subject_id: int
    srs_stage: int
    hidden: bool = False


def item_from_subject(subject: dict) -> PracticeItem:
    data = subject.get("data") or {}
    meanings = data.get("meanings") or []
    readings = data.get("readings") or []
    return PracticeItem(
        item_id=int(subject["id"]),
        display_text=str(data.get("characters") or ""),
        # primary meanings first
        meanings=tuple(
            str(m.get("meaning", ""))
            for m in sorted(meanings, key=lambda m: not m.get("primary"))
        ),
        readings=tuple(
            Reading(str(r.get("reading", "")), bool(r.get("primary", False)))
            for r in readings
        ),
        level=int(data.get("level", 0) or 0),
    )


def items_from_subjects(subjects: Iterable[dict]) -> List[PracticeItem]:
    """Convert API subjects to practice items, keeping vocabulary kinds only."""
    return [
        item_from_subject(s)
        for s in subjects or []
        if s.get("object") in PRACTICE_KINDS
    ]


def assignments_from_json(assignments: Iterable[dict]) -> List[Assignment]:
    out: List[Assignment] = []
    for a in assignments or []:
        data = a.get("data") or {}
        if "subject_id" not in data:
            continue
        out.append(
            Assignment(
                subject_id=int(data["subject_id"]),
                srs_stage=int(data.get("srs_stage", UNKNOWN_STAGE)),
                hidden=bool(data.get("hidden", False)),
            )
        )
    return out


def build_stage_lookup(assignments: Iterable[Assignment]) -> Dict[int, int]:
    # Hidden assignments count as absent
    return {a.subject_id: a.srs_stage for a in assignments if not a.hidden}


class WaniKaniError(Exception):
    pass


class WaniKaniClient:
    """Minimal client for the subject endpoint of the WaniKani v2 API."""

    BASE_URL = "https://api.wanikani.com/v2"

    def __init__(self, api_token: str, session: Optional[requests.Session] = None):
        self.api_token = api_token
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {api_token}"})
        self.logger = logging.getLogger(__name__)

    def get_subject(self, subject_id: int) -> dict:
        url = f"{self.BASE_URL}/subjects/{int(subject_id)}"
        self.logger.debug(f"Making request to: {url}")
        try:
            response = self.session.get(url, timeout=10)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            self.logger.error(f"Network error fetching subject {subject_id}: {e}")
            raise WaniKaniError(f"Failed to fetch subject {subject_id}: {e}") from e
        except ValueError as e:
            raise WaniKaniError(f"Invalid response for subject {subject_id}") from e

    def pronunciation_audio_urls(self, subject_id: int) -> List[str]:
        """URLs of the mp3 pronunciation clips for a subject (may be empty)."""
        details = self.get_subject(subject_id)
        audios = (details.get("data") or {}).get("pronunciation_audios") or []
        return [
            a["url"]
            for a in audios
            if a.get("content_type") == "audio/mpeg" and a.get("url")
        ]
