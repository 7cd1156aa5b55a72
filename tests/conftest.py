import os

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest

from speech_capture import RecognitionResult
from vocab_source import Assignment, PracticeItem, Reading


class FakeRecognizer:
    """Scripted stand-in for a speech recognizer."""

    def __init__(self, provider):
        self.provider = provider
        self.lang = None
        self.on_start = None
        self.on_result = None
        self.on_error = None
        self.on_end = None
        self.started = False
        self.stop_calls = 0
        self.abort_calls = 0

    def start(self):
        self.started = True
        if self.provider.fail_start:
            raise RuntimeError("device busy")
        if self.provider.fail_code:
            self.on_error(self.provider.fail_code)
            self.on_end()
            return
        self.on_start()

    def stop(self):
        self.stop_calls += 1

    def abort(self):
        self.abort_calls += 1

    # scripting helpers
    def interim(self, *texts):
        self.on_result([RecognitionResult(t, 0.0, False) for t in texts])

    def results(self, *results):
        self.on_result(list(results))

    def error(self, code):
        self.on_error(code)

    def end(self):
        self.on_end()


class FakeSpeechProvider:
    def __init__(self, supported=True):
        self.supported = supported
        self.fail_start = False
        self.fail_code = None
        self.instances = []

    def is_supported(self):
        return self.supported

    def create_recognizer(self):
        rec = FakeRecognizer(self)
        self.instances.append(rec)
        return rec

    @property
    def last(self):
        return self.instances[-1]


class FakePlayer:
    def __init__(self, samplerate, on_finished=None, on_error=None):
        self.sr = samplerate
        self.on_finished = on_finished
        self.on_error = on_error
        self.data = None
        self.play_calls = 0
        self.stop_calls = 0
        self.closed = False
        self.fail_with = None
        self.paused = False

    def set_data(self, data):
        self.data = data

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    def play(self):
        self.play_calls += 1
        if self.fail_with and self.on_error:
            self.on_error(self.fail_with)

    def stop(self):
        self.stop_calls += 1

    def close(self):
        self.closed = True


class FakePlayback:
    """Records play requests made by the engine."""

    def __init__(self, raises=False):
        self.played = []
        self.stops = 0
        self.raises = raises

    def play(self, item_id):
        self.played.append(item_id)
        if self.raises:
            raise RuntimeError("no device")

    def stop(self):
        self.stops += 1


def make_item(item_id, reading, display=None, primary=True, extra=()):
    readings = (Reading(reading, primary),) + tuple(Reading(r, False) for r in extra)
    return PracticeItem(
        item_id=item_id,
        display_text=display or reading,
        meanings=(f"meaning {item_id}",),
        readings=readings,
    )


@pytest.fixture
def provider():
    return FakeSpeechProvider()


@pytest.fixture
def items():
    return [
        make_item(1, "かばん", "鞄"),
        make_item(2, "らーめん", "ラーメン"),
        make_item(3, "がっこう", "学校"),
    ]


@pytest.fixture
def assignments():
    return [
        Assignment(subject_id=1, srs_stage=2),
        Assignment(subject_id=2, srs_stage=5),
        Assignment(subject_id=3, srs_stage=9),
    ]
