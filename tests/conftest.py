"""Shared fixtures for knock player tests."""

import pytest

from knock_player.models import Segment


class FakeStream:
    """Stands in for sounddevice.OutputStream."""

    def __init__(self, sample_rate, callback, fail_start=False):
        self.sample_rate = sample_rate
        self.callback = callback
        self.fail_start = fail_start
        self.started = 0
        self.stopped = 0
        self.closed = 0

    def start(self):
        if self.fail_start:
            raise OSError("device busy")
        self.started += 1

    def stop(self):
        self.stopped += 1

    def close(self):
        self.closed += 1


class RecordingDispatcher:
    """Collects commands instead of running engines."""

    def __init__(self):
        self.commands = []
        self.cancels = 0

    def post(self, command):
        self.commands.append(command)

    def cancel_pending(self):
        self.cancels += 1


@pytest.fixture
def stream_factory():
    """Factory that records every FakeStream it creates."""
    streams = []

    def factory(sample_rate, callback):
        stream = FakeStream(sample_rate, callback)
        streams.append(stream)
        return stream

    factory.streams = streams
    return factory


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def abc_segments():
    """A at 100ms, B at 150ms, C at 150ms."""
    return (
        Segment("A", "First line.", 100, "voice", speak=True),
        Segment("B", "(knock)", 50, "sound", cue="knock-soft"),
        Segment("C", "“Who is it?”", 0, "whisper", speak=True),
    )


@pytest.fixture
def quick_segments():
    """Short timeline with a silent pause and a cue."""
    return (
        Segment("line-1", "Hello.", 10, "voice", speak=True),
        Segment("pause", " ", 10, "voice"),
        Segment("knock", "(knock)", 0, "sound", cue="knock-hard"),
        Segment("visual", "CAMERA: hallway", 10, "visual"),
    )
