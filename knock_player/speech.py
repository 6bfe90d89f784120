"""Speech via edge-tts: one active utterance at a time, plus in-memory synthesis with retry."""

import asyncio
import io
import logging

import edge_tts
from pydub import AudioSegment

from knock_player.audio import to_float_samples
from knock_player.constants import (
    LIVE_TTS_ATTEMPTS,
    SPEECH_PITCH,
    SPEECH_RATE,
    SPEECH_TAG,
    SPEECH_VOICE,
    SPEECH_VOLUME,
    TTS_RETRY_BASE_DELAY,
    TTS_RETRY_COUNT,
)

logger = logging.getLogger(__name__)


def _communicate(text: str, voice: str, rate: str, pitch: str, volume: str):
    return edge_tts.Communicate(text, voice, rate=rate, pitch=pitch, volume=volume)


async def synthesize_speech(
    text: str,
    voice: str = SPEECH_VOICE,
    rate: str = SPEECH_RATE,
    pitch: str = SPEECH_PITCH,
    volume: str = SPEECH_VOLUME,
    attempts: int = TTS_RETRY_COUNT,
) -> AudioSegment:
    """Synthesize text in memory and decode it with pydub.

    Retries on network errors or empty audio with exponential backoff.
    Raises the last error when every attempt fails.
    """
    last_error = None
    for attempt in range(attempts):
        try:
            data = bytearray()
            async for chunk in _communicate(text, voice, rate, pitch, volume).stream():
                if chunk["type"] == "audio":
                    data.extend(chunk["data"])
            if data:
                return AudioSegment.from_file(io.BytesIO(bytes(data)), format="mp3")
            last_error = Exception(f"TTS produced no audio for: {text[:50]}...")
        except Exception as e:
            last_error = e

        if attempt < attempts - 1:
            await asyncio.sleep(TTS_RETRY_BASE_DELAY * (2 ** attempt))

    raise last_error


class Utterance:
    def __init__(self, text: str):
        self.text = text
        self.task: asyncio.Task | None = None


class SpeechEngine:
    """Speaks one utterance at a time through the audio engine.

    speak() supersedes whatever is currently being synthesized or played.
    When disabled, or when synthesis fails, speech is silently absent.
    """

    def __init__(
        self,
        audio,
        voice: str = SPEECH_VOICE,
        rate: str = SPEECH_RATE,
        pitch: str = SPEECH_PITCH,
        volume: str = SPEECH_VOLUME,
        enabled: bool = True,
        synthesize=synthesize_speech,
    ):
        self.audio = audio
        self.voice = voice
        self.rate = rate
        self.pitch = pitch
        self.volume = volume
        self.enabled = enabled
        self._synthesize = synthesize
        self._current: Utterance | None = None

    @property
    def current(self) -> Utterance | None:
        return self._current

    def speak(self, text: str) -> None:
        if not self.enabled or not text.strip():
            return
        self.cancel()
        utterance = Utterance(text)
        utterance.task = asyncio.get_running_loop().create_task(self._say(utterance))
        self._current = utterance

    async def _say(self, utterance: Utterance) -> None:
        try:
            clip = await self._synthesize(
                utterance.text,
                voice=self.voice,
                rate=self.rate,
                pitch=self.pitch,
                volume=self.volume,
                attempts=LIVE_TTS_ATTEMPTS,
            )
        except Exception as e:
            logger.warning("Speech synthesis failed for %r: %s", utterance.text[:40], e)
            self._finish(utterance)
            return

        if self._current is not utterance:
            return
        samples = to_float_samples(clip, self.audio.sample_rate)
        await self.audio.play(samples, tag=SPEECH_TAG)
        self._finish(utterance)

    def _finish(self, utterance: Utterance) -> None:
        # Playback continues in the mixer; only the synthesis slot is released.
        if self._current is utterance:
            utterance.task = None

    def cancel(self) -> None:
        """Stop speech immediately and forget the current utterance."""
        utterance, self._current = self._current, None
        if utterance is not None and utterance.task is not None:
            utterance.task.cancel()
        self.audio.stop(SPEECH_TAG)
