"""A performance session: engines, dispatcher and scheduler with one teardown."""

import logging

from knock_player.audio import AudioEngine
from knock_player.commands import CommandDispatcher
from knock_player.constants import SETTLE_DELAY_MS, SPEECH_VOICE
from knock_player.scheduler import PlaybackScheduler
from knock_player.script import THE_KNOCK
from knock_player.speech import SpeechEngine

logger = logging.getLogger(__name__)


class Performance:
    """Owns everything a run touches.

    Use as an async context manager; leaving the block cancels timers and
    speech and releases the audio output exactly once.

        async with Performance() as perf:
            perf.play()
            await perf.wait()
    """

    def __init__(
        self,
        segments=THE_KNOCK,
        audio: AudioEngine | None = None,
        speech: SpeechEngine | None = None,
        settle_delay_ms: int = SETTLE_DELAY_MS,
        audio_enabled: bool = True,
        speech_enabled: bool = True,
        voice: str = SPEECH_VOICE,
    ):
        self.audio = audio if audio is not None else AudioEngine(enabled=audio_enabled)
        self.speech = speech if speech is not None else SpeechEngine(
            self.audio, voice=voice, enabled=speech_enabled,
        )
        self.dispatcher = CommandDispatcher(self.audio, self.speech)
        self.scheduler = PlaybackScheduler(segments, self.dispatcher, settle_delay_ms=settle_delay_ms)
        self._closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    @property
    def segments(self):
        return self.scheduler.segments

    @property
    def is_playing(self) -> bool:
        """True while a run has timers left to fire.

        A run stopped by scheduler.cancel() keeps is_playing in its state
        but has no pending timers, so the control is available again.
        """
        state = self.scheduler.state
        return state.is_playing and bool(state.pending_timers)

    @property
    def label(self) -> str:
        """Caption of the play control."""
        if self.is_playing:
            return "Playing…"
        if self.scheduler.state.visible_ids:
            return "Replay Sequence"
        return "Play The Knock"

    def subscribe(self, listener) -> None:
        self.scheduler.subscribe(listener)

    def play(self) -> bool:
        """The Play/Replay control. Ignored while a run is in progress."""
        if self._closed:
            raise RuntimeError("Performance has been closed")
        if self.is_playing:
            logger.debug("Play ignored: run %d still playing", self.scheduler.run)
            return False
        self.scheduler.cancel()
        self.scheduler.start()
        return True

    async def wait(self) -> bool:
        return await self.scheduler.wait()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.scheduler.cancel()
        await self.dispatcher.aclose()
        await self.audio.aclose()
        logger.debug("Performance closed")
