"""Tests for speech synthesis and the single-utterance speech engine."""

import asyncio
from unittest.mock import patch, MagicMock

import pytest
from pydub import AudioSegment

from knock_player.constants import SPEECH_TAG
from knock_player.speech import SpeechEngine, synthesize_speech


class FakeAudio:
    sample_rate = 8000

    def __init__(self):
        self.played = []
        self.stopped = []

    async def play(self, samples, tag=None):
        self.played.append((tag, len(samples)))
        return True

    def stop(self, tag):
        self.stopped.append(tag)


def _fake_synth(delay=0.0, fail=False):
    calls = []

    async def synth(text, **kwargs):
        calls.append((text, kwargs))
        await asyncio.sleep(delay)
        if fail:
            raise ConnectionError("edge-tts unreachable")
        return AudioSegment.silent(duration=50)

    synth.calls = calls
    return synth


def _stream_factory(chunks_per_call):
    """Mock edge_tts.Communicate whose stream() yields the next chunk list."""
    calls = iter(chunks_per_call)

    def factory(text, voice, **kwargs):
        chunks = next(calls)
        mock = MagicMock()

        async def stream():
            for chunk in chunks:
                if isinstance(chunk, Exception):
                    raise chunk
                yield chunk
        mock.stream = stream
        return mock
    return factory


# --- synthesize_speech ---

@patch("knock_player.speech.AudioSegment.from_file", return_value=AudioSegment.silent(duration=100))
@patch("knock_player.speech.edge_tts.Communicate")
def test_synthesize_collects_audio_chunks(mock_comm, mock_decode):
    mock_comm.side_effect = _stream_factory([[
        {"type": "WordBoundary", "offset": 0},
        {"type": "audio", "data": b"abc"},
        {"type": "audio", "data": b"def"},
    ]])
    result = asyncio.run(synthesize_speech("Namaste", attempts=1))
    assert len(result) == 100
    buffer = mock_decode.call_args[0][0]
    assert buffer.getvalue() == b"abcdef"
    assert mock_comm.call_args.kwargs["rate"] == "-20%"


@patch("knock_player.speech.AudioSegment.from_file", return_value=AudioSegment.silent(duration=100))
@patch("knock_player.speech.edge_tts.Communicate")
def test_synthesize_retries(mock_comm, mock_decode, monkeypatch):
    monkeypatch.setattr("knock_player.speech.TTS_RETRY_BASE_DELAY", 0)
    mock_comm.side_effect = _stream_factory([
        [ConnectionError("reset")],
        [],
        [{"type": "audio", "data": b"ok"}],
    ])
    result = asyncio.run(synthesize_speech("Hello", attempts=3))
    assert isinstance(result, AudioSegment)
    assert mock_comm.call_count == 3


@patch("knock_player.speech.edge_tts.Communicate")
def test_synthesize_raises_when_exhausted(mock_comm, monkeypatch):
    monkeypatch.setattr("knock_player.speech.TTS_RETRY_BASE_DELAY", 0)
    mock_comm.side_effect = _stream_factory([[ConnectionError("down")]] * 2)
    with pytest.raises(ConnectionError, match="down"):
        asyncio.run(synthesize_speech("Hello", attempts=2))


# --- SpeechEngine ---

def test_speak_plays_through_audio():
    audio = FakeAudio()
    synth = _fake_synth()

    async def scenario():
        engine = SpeechEngine(audio, synthesize=synth)
        engine.speak("Main akela tha ghar mein.")
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert len(audio.played) == 1
    tag, length = audio.played[0]
    assert tag == SPEECH_TAG
    assert abs(length - 400) <= 2
    assert synth.calls[0][1]["voice"] == "hi-IN-MadhurNeural"
    assert synth.calls[0][1]["attempts"] == 1


def test_speak_whitespace_is_noop():
    audio = FakeAudio()
    synth = _fake_synth()

    async def scenario():
        engine = SpeechEngine(audio, synthesize=synth)
        engine.speak("   ")
        engine.speak("")
        await asyncio.sleep(0.01)
        return engine

    engine = asyncio.run(scenario())
    assert synth.calls == []
    assert engine.current is None


def test_new_speak_supersedes_previous():
    audio = FakeAudio()
    synth = _fake_synth(delay=0.05)

    async def scenario():
        engine = SpeechEngine(audio, synthesize=synth)
        engine.speak("first")
        await asyncio.sleep(0.01)
        engine.speak("second")
        await asyncio.sleep(0.1)
        return engine

    engine = asyncio.run(scenario())
    assert len(audio.played) == 1
    assert engine.current.text == "second"
    assert SPEECH_TAG in audio.stopped


def test_cancel_stops_and_clears():
    audio = FakeAudio()
    synth = _fake_synth(delay=0.05)

    async def scenario():
        engine = SpeechEngine(audio, synthesize=synth)
        engine.speak("never heard")
        await asyncio.sleep(0.01)
        engine.cancel()
        engine.cancel()
        await asyncio.sleep(0.1)
        return engine

    engine = asyncio.run(scenario())
    assert audio.played == []
    assert engine.current is None
    assert set(audio.stopped) == {SPEECH_TAG}


def test_disabled_engine_is_silent():
    audio = FakeAudio()
    synth = _fake_synth()

    async def scenario():
        SpeechEngine(audio, enabled=False, synthesize=synth).speak("hello")
        await asyncio.sleep(0.01)

    asyncio.run(scenario())
    assert synth.calls == []


def test_synthesis_failure_is_logged_not_raised(caplog):
    audio = FakeAudio()

    async def scenario():
        engine = SpeechEngine(audio, synthesize=_fake_synth(fail=True))
        engine.speak("hello")
        await asyncio.sleep(0.02)

    asyncio.run(scenario())
    assert audio.played == []
    assert "Speech synthesis failed" in caplog.text
