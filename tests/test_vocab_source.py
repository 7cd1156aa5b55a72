import pytest
import requests

from vocab_source import (
    UNKNOWN_STAGE,
    Assignment,
    WaniKaniClient,
    WaniKaniError,
    assignments_from_json,
    build_stage_lookup,
    item_from_subject,
    items_from_subjects,
)


SUBJECT = {
    "id": 2467,
    "object": "vocabulary",
    "data": {
        "characters": "一",
        "level": 1,
        "meanings": [
            {"meaning": "Single", "primary": False},
            {"meaning": "One", "primary": True},
        ],
        "readings": [
            {"reading": "いち", "primary": True},
            {"reading": "ひと", "primary": False},
        ],
    },
}


def test_item_from_subject():
    item = item_from_subject(SUBJECT)
    assert item.item_id == 2467
    assert item.display_text == "一"
    assert item.meanings == ("One", "Single")
    assert item.primary_readings == ["いち"]
    assert [r.text for r in item.readings] == ["いち", "ひと"]
    assert item.level == 1
    assert item.mastery_stage == UNKNOWN_STAGE


def test_only_vocabulary_kinds_are_practice_items():
    subjects = [
        SUBJECT,
        {"id": 1, "object": "radical", "data": {"characters": "一"}},
        {"id": 440, "object": "kanji", "data": {"characters": "一"}},
        {
            "id": 9001,
            "object": "kana_vocabulary",
            "data": {"characters": "ある", "readings": [{"reading": "ある", "primary": True}]},
        },
    ]
    assert [i.item_id for i in items_from_subjects(subjects)] == [2467, 9001]


def test_assignments_from_json_skips_entries_without_subject():
    raw = [
        {"data": {"subject_id": 2467, "srs_stage": 4}},
        {"data": {"subject_id": 9001, "srs_stage": 9, "hidden": True}},
        {"data": {"srs_stage": 1}},
    ]
    assert assignments_from_json(raw) == [
        Assignment(2467, 4, False),
        Assignment(9001, 9, True),
    ]


def test_stage_lookup_ignores_hidden():
    lookup = build_stage_lookup([Assignment(1, 3), Assignment(2, 8, hidden=True)])
    assert lookup == {1: 3}


class FakeResponse:
    def __init__(self, payload=None, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self.payload is None:
            raise ValueError("no json")
        return self.payload


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.headers = {}
        self.response = response
        self.exc = exc
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append((url, timeout))
        if self.exc:
            raise self.exc
        return self.response


def test_client_sends_bearer_token():
    session = FakeSession(FakeResponse({"id": 1}))
    client = WaniKaniClient("secret", session=session)
    assert client.get_subject(1) == {"id": 1}
    assert session.headers["Authorization"] == "Bearer secret"
    assert session.urls == [("https://api.wanikani.com/v2/subjects/1", 10)]


def test_pronunciation_audio_urls_keeps_mp3_only():
    payload = {
        "data": {
            "pronunciation_audios": [
                {"url": "https://cdn/a.webm", "content_type": "audio/webm"},
                {"url": "https://cdn/a.mp3", "content_type": "audio/mpeg"},
                {"url": "https://cdn/b.mp3", "content_type": "audio/mpeg"},
            ]
        }
    }
    client = WaniKaniClient("t", session=FakeSession(FakeResponse(payload)))
    assert client.pronunciation_audio_urls(2467) == ["https://cdn/a.mp3", "https://cdn/b.mp3"]


def test_subject_without_audio_has_no_urls():
    client = WaniKaniClient("t", session=FakeSession(FakeResponse({"data": {}})))
    assert client.pronunciation_audio_urls(5) == []


@pytest.mark.parametrize(
    "session",
    [
        FakeSession(FakeResponse({}, status=404)),
        FakeSession(exc=requests.ConnectionError("offline")),
        FakeSession(FakeResponse(None)),
    ],
)
def test_client_failures_raise_wanikani_error(session):
    client = WaniKaniClient("t", session=session)
    with pytest.raises(WaniKaniError):
        client.get_subject(1)
