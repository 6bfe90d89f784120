"""Tests for the audio engine and output mixer."""

import asyncio
import time

import numpy as np
import pytest
from pydub import AudioSegment

from knock_player.audio import AudioEngine, AudioUnavailableError, OutputContext, to_float_samples


# --- Mixer ---

def test_mix_sums_buffers(stream_factory):
    ctx = OutputContext(stream_factory, sample_rate=1000)
    ctx.play(np.full(4, 0.25, dtype=np.float32), tag="a")
    ctx.play(np.full(2, 0.5, dtype=np.float32), tag="b")
    block = ctx.mix(4)
    assert block.tolist() == pytest.approx([0.75, 0.75, 0.25, 0.25])
    assert ctx.active_tags == []


def test_mix_clips_and_advances_time(stream_factory):
    ctx = OutputContext(stream_factory, sample_rate=1000)
    ctx.play(np.ones(10, dtype=np.float32))
    ctx.play(np.ones(10, dtype=np.float32))
    block = ctx.mix(5)
    assert block.max() == 1.0
    assert ctx.current_time == pytest.approx(0.005)
    assert len(ctx.active_tags) == 2


def test_stop_removes_tag(stream_factory):
    ctx = OutputContext(stream_factory, sample_rate=1000)
    ctx.play(np.ones(10, dtype=np.float32), tag="speech")
    ctx.play(np.ones(10, dtype=np.float32), tag="glitch")
    ctx.stop("speech")
    assert ctx.active_tags == ["glitch"]


def test_callback_writes_first_channel(stream_factory):
    ctx = OutputContext(stream_factory, sample_rate=1000)
    ctx.play(np.full(3, 0.5, dtype=np.float32))
    outdata = np.zeros((3, 1), dtype=np.float32)
    stream_factory.streams[0].callback(outdata, 3, None, None)
    assert outdata[:, 0].tolist() == pytest.approx([0.5, 0.5, 0.5])


def test_context_lifecycle(stream_factory):
    ctx = OutputContext(stream_factory)
    stream = stream_factory.streams[0]
    assert ctx.state == "suspended"
    ctx.resume()
    ctx.resume()
    assert ctx.state == "running"
    assert stream.started == 1
    ctx.suspend()
    assert ctx.state == "suspended"
    ctx.close()
    ctx.close()
    assert stream.closed == 1
    with pytest.raises(AudioUnavailableError):
        ctx.resume()


def test_to_float_samples_mono_range():
    audio = AudioSegment.silent(duration=100, frame_rate=22050).set_channels(2)
    samples = to_float_samples(audio, sample_rate=44100)
    assert samples.dtype == np.float32
    assert abs(len(samples) - 4410) <= 2
    assert np.all(samples == 0)


# --- Engine ---

def test_ensure_ready_creates_once(stream_factory):
    async def scenario():
        engine = AudioEngine(stream_factory)
        first = await engine.ensure_ready()
        second = await engine.ensure_ready()
        return first, second

    first, second = asyncio.run(scenario())
    assert first is second
    assert len(stream_factory.streams) == 1
    assert first.state == "running"


def test_ensure_ready_resumes_suspended_context(stream_factory):
    async def scenario():
        engine = AudioEngine(stream_factory)
        ctx = await engine.ensure_ready()
        ctx.suspend()
        await engine.ensure_ready()
        return ctx

    ctx = asyncio.run(scenario())
    assert ctx.state == "running"
    assert stream_factory.streams[0].started == 2


def test_ensure_ready_disabled():
    async def scenario():
        engine = AudioEngine(enabled=False)
        await engine.ensure_ready()

    with pytest.raises(AudioUnavailableError):
        asyncio.run(scenario())


def test_ensure_ready_wraps_open_failure():
    def broken_factory(sample_rate, callback):
        raise OSError("no default output device")

    async def scenario():
        await AudioEngine(broken_factory).ensure_ready()

    with pytest.raises(AudioUnavailableError, match="Cannot open"):
        asyncio.run(scenario())


def test_resume_failure_then_retry(stream_factory):
    """A failed resume does not disable audio; the next call tries again."""
    streams = stream_factory.streams

    def flaky_factory(sample_rate, callback):
        stream = stream_factory(sample_rate, callback)
        stream.fail_start = True
        return stream

    async def scenario():
        engine = AudioEngine(flaky_factory)
        with pytest.raises(AudioUnavailableError, match="Cannot resume"):
            await engine.ensure_ready()
        streams[0].fail_start = False
        return await engine.ensure_ready()

    ctx = asyncio.run(scenario())
    assert ctx.state == "running"
    assert len(streams) == 1


def test_closed_engine_never_reacquires(stream_factory):
    async def scenario():
        engine = AudioEngine(stream_factory)
        await engine.ensure_ready()
        engine.close()
        engine.close()
        with pytest.raises(AudioUnavailableError):
            await engine.ensure_ready()
        return engine

    engine = asyncio.run(scenario())
    assert engine.closed
    assert engine.context is None
    assert len(stream_factory.streams) == 1
    assert stream_factory.streams[0].closed == 1


def test_close_without_context_is_safe():
    engine = AudioEngine(enabled=False)
    engine.close()
    assert engine.closed


def test_render_cue_queues_samples(stream_factory):
    async def scenario():
        engine = AudioEngine(stream_factory, sample_rate=8000)
        await engine.render_cue("knock-soft")
        return engine.context

    ctx = asyncio.run(scenario())
    assert ctx.active_tags == ["knock-soft"]


def test_render_cue_skips_silently_when_unavailable():
    async def scenario():
        engine = AudioEngine(enabled=False)
        await engine.render_cue("glitch")
        return engine

    engine = asyncio.run(scenario())
    assert engine.context is None


def test_play_returns_false_when_unavailable():
    async def scenario():
        return await AudioEngine(enabled=False).play(np.zeros(10, dtype=np.float32), tag="speech")

    assert asyncio.run(scenario()) is False


def _slow(stream_factory, seconds=0.2):
    def factory(sample_rate, callback):
        time.sleep(seconds)
        return stream_factory(sample_rate, callback)
    return factory


def test_close_during_open_releases_stream(stream_factory):
    async def scenario():
        engine = AudioEngine(_slow(stream_factory))
        waiter = asyncio.get_running_loop().create_task(engine.ensure_ready())
        await asyncio.sleep(0.05)
        waiter.cancel()
        await asyncio.gather(waiter, return_exceptions=True)
        await engine.aclose()
        return engine

    engine = asyncio.run(scenario())
    assert engine.context is None
    assert len(stream_factory.streams) == 1
    assert stream_factory.streams[0].closed == 1


def test_close_without_waiting_releases_stream_when_open_finishes(stream_factory):
    async def scenario():
        engine = AudioEngine(_slow(stream_factory))
        waiter = asyncio.get_running_loop().create_task(engine.ensure_ready())
        await asyncio.sleep(0.05)
        engine.close()
        with pytest.raises(AudioUnavailableError):
            await waiter
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert stream_factory.streams[0].closed == 1


def test_cancelled_waiter_does_not_restart_open(stream_factory):
    async def scenario():
        engine = AudioEngine(_slow(stream_factory, 0.1))
        waiter = asyncio.get_running_loop().create_task(engine.ensure_ready())
        await asyncio.sleep(0.03)
        waiter.cancel()
        await asyncio.gather(waiter, return_exceptions=True)
        ctx = await engine.ensure_ready()
        engine.close()
        return ctx

    ctx = asyncio.run(scenario())
    assert ctx.state == "closed"
    assert len(stream_factory.streams) == 1
    assert stream_factory.streams[0].closed == 1
