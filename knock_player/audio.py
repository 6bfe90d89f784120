"""Live audio output: one lazily-opened sounddevice stream feeding a mixer."""

import asyncio
import logging
import threading

import numpy as np
from pydub import AudioSegment

from knock_player.constants import OUTPUT_BLOCKSIZE, SAMPLE_RATE
from knock_player.cues import cue_samples

logger = logging.getLogger(__name__)

# sounddevice raises OSError at import time when PortAudio is missing.
try:
    import sounddevice as sd
    SOUNDDEVICE_AVAILABLE = True
except (ImportError, OSError):
    sd = None
    SOUNDDEVICE_AVAILABLE = False


class AudioUnavailableError(RuntimeError):
    """The output context cannot be created, resumed, or has been released."""


def to_float_samples(audio: AudioSegment, sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    """Convert an AudioSegment to mono float32 samples at sample_rate."""
    audio = audio.set_frame_rate(sample_rate).set_channels(1).set_sample_width(2)
    samples = np.array(audio.get_array_of_samples(), dtype=np.float32)
    return samples / 32768.0


def open_sounddevice_stream(sample_rate: int, callback):
    """Default stream factory for OutputContext."""
    if not SOUNDDEVICE_AVAILABLE:
        raise AudioUnavailableError("sounddevice/PortAudio is not available")
    return sd.OutputStream(
        samplerate=sample_rate,
        channels=1,
        dtype="float32",
        blocksize=OUTPUT_BLOCKSIZE,
        callback=callback,
    )


class OutputContext:
    """A resumable output stream that sums every queued buffer.

    Buffers are queued with a tag so a whole class of sound (the active
    utterance) can be stopped at once. The stream callback runs on the
    PortAudio thread, so the voice list is guarded by a lock.
    """

    def __init__(self, stream_factory=open_sounddevice_stream, sample_rate: int = SAMPLE_RATE):
        self.sample_rate = sample_rate
        self.state = "suspended"
        self._lock = threading.Lock()
        self._voices = []       # [tag, samples, position]
        self._frames = 0
        self._stream = stream_factory(sample_rate, self._callback)

    @property
    def current_time(self) -> float:
        """Seconds of audio rendered since the context was opened."""
        return self._frames / self.sample_rate

    @property
    def active_tags(self) -> list:
        with self._lock:
            return [voice[0] for voice in self._voices]

    def resume(self) -> None:
        if self.state == "closed":
            raise AudioUnavailableError("Output context has been closed")
        if self.state == "suspended":
            self._stream.start()
            self.state = "running"

    def suspend(self) -> None:
        if self.state == "running":
            self._stream.stop()
            self.state = "suspended"

    def close(self) -> None:
        if self.state == "closed":
            return
        self.state = "closed"
        with self._lock:
            self._voices.clear()
        self._stream.close()

    def play(self, samples: np.ndarray, tag: str | None = None) -> None:
        """Queue samples to start at the next rendered block."""
        if self.state == "closed":
            return
        with self._lock:
            self._voices.append([tag, np.asarray(samples, dtype=np.float32), 0])

    def stop(self, tag: str) -> None:
        with self._lock:
            self._voices = [v for v in self._voices if v[0] != tag]

    def mix(self, frames: int) -> np.ndarray:
        """Render the next block of frames and drop finished buffers."""
        out = np.zeros(frames, dtype=np.float32)
        with self._lock:
            remaining = []
            for voice in self._voices:
                _, samples, pos = voice
                chunk = samples[pos:pos + frames]
                out[: len(chunk)] += chunk
                voice[2] = pos + len(chunk)
                if voice[2] < len(samples):
                    remaining.append(voice)
            self._voices = remaining
        self._frames += frames
        return np.clip(out, -1.0, 1.0)

    def _callback(self, outdata, frames, time_info, status) -> None:
        if status:
            logger.debug("Output stream status: %s", status)
        outdata[:, 0] = self.mix(frames)


class AudioEngine:
    """Owns the process-wide output context.

    The context is created on the first ensure_ready() and released exactly
    once by close(); after that it is never reacquired.
    """

    def __init__(self, stream_factory=open_sounddevice_stream, sample_rate: int = SAMPLE_RATE, enabled: bool = True):
        self.sample_rate = sample_rate
        self.enabled = enabled
        self._stream_factory = stream_factory
        self._context: OutputContext | None = None
        self._opening: asyncio.Task | None = None
        self._closed = False
        self._lock = asyncio.Lock()

    @property
    def context(self) -> OutputContext | None:
        return self._context

    @property
    def closed(self) -> bool:
        return self._closed

    async def ensure_ready(self) -> OutputContext:
        """Create the output context if needed and make sure it is running.

        Raises AudioUnavailableError when audio is disabled, the backend is
        missing, the stream cannot be opened or resumed, or after close().
        """
        async with self._lock:
            if self._closed:
                raise AudioUnavailableError("Audio engine has been closed")
            if not self.enabled:
                raise AudioUnavailableError("Audio output is disabled")

            if self._context is None:
                if self._opening is None:
                    self._opening = asyncio.get_running_loop().create_task(
                        asyncio.to_thread(OutputContext, self._stream_factory, self.sample_rate)
                    )
                opening = self._opening
                # A cancelled caller leaves the open running; close() or the
                # next caller takes over its result.
                try:
                    context = await asyncio.shield(opening)
                except AudioUnavailableError:
                    self._forget_opening(opening)
                    raise
                except Exception as e:
                    self._forget_opening(opening)
                    raise AudioUnavailableError(f"Cannot open output stream: {e}") from e
                if self._closed:
                    # close() ran while the stream was opening and owns the result
                    raise AudioUnavailableError("Audio engine has been closed")
                self._forget_opening(opening)
                self._context = context
                logger.debug("Opened output context at %d Hz", self.sample_rate)

            if self._context.state != "running":
                try:
                    await asyncio.to_thread(self._context.resume)
                except AudioUnavailableError:
                    raise
                except Exception as e:
                    raise AudioUnavailableError(f"Cannot resume output stream: {e}") from e

            return self._context

    async def render_cue(self, cue: str) -> None:
        """Start cue at the context's current time.

        A cue that cannot play is skipped; the next cue tries again.
        """
        try:
            context = await self.ensure_ready()
        except AudioUnavailableError as e:
            logger.debug("Skipping cue %s: %s", cue, e)
            return
        samples = cue_samples(cue, self.sample_rate)
        context.play(samples, tag=cue)
        logger.debug("Cue %s started at %.3fs", cue, context.current_time)

    async def play(self, samples: np.ndarray, tag: str | None = None) -> bool:
        """Queue arbitrary samples; returns False when no output is available."""
        try:
            context = await self.ensure_ready()
        except AudioUnavailableError as e:
            logger.debug("Dropping %s audio: %s", tag or "untagged", e)
            return False
        context.play(samples, tag=tag)
        return True

    def stop(self, tag: str) -> None:
        if self._context is not None:
            self._context.stop(tag)

    def _forget_opening(self, opening: asyncio.Task) -> None:
        if self._opening is opening:
            self._opening = None

    def close(self) -> None:
        """Release the output context. Safe to call more than once.

        A stream still being opened is closed as soon as the open finishes.
        """
        if self._closed:
            return
        self._closed = True
        if self._context is not None:
            self._context.close()
            logger.debug("Closed output context")
        self._context = None
        if self._opening is not None:
            opening, self._opening = self._opening, None
            if opening.done():
                _close_opened(opening)
            else:
                opening.add_done_callback(_close_opened)

    async def aclose(self) -> None:
        """close(), then wait out a stream still being opened so it is released too."""
        opening = self._opening
        self.close()
        if opening is not None and not opening.done():
            await asyncio.wait([opening])


def _close_opened(opening: asyncio.Task) -> None:
    if opening.cancelled() or opening.exception() is not None:
        return
    opening.result().close()
    logger.debug("Closed output context opened during shutdown")
