"""Procedural sound cues synthesized with numpy.

Every cue is built from oscillators or noise shaped by gain and frequency
automation curves, then packed into a mono 16-bit AudioSegment.
"""

import numpy as np
from pydub import AudioSegment

from knock_player.constants import CUE_GAIN, SAMPLE_RATE
from knock_player.models import CUES

# Near-silence floor; exponential ramps cannot reach zero.
_FLOOR = 0.0001


def _automate(t: np.ndarray, points: list[tuple[float, float, str]]) -> np.ndarray:
    """Evaluate an automation curve at times t.

    points is a list of (time, value, curve) where curve is "set", "linear"
    or "exp". Ramps run from the previous point to this one; the curve holds
    its last value afterwards.
    """
    out = np.empty_like(t)
    prev_time, prev_value = points[0][0], points[0][1]
    out[:] = prev_value

    for time, value, curve in points:
        if curve == "set" or time <= prev_time:
            out[t >= time] = value
        else:
            mask = (t >= prev_time) & (t < time)
            frac = (t[mask] - prev_time) / (time - prev_time)
            if curve == "linear":
                out[mask] = prev_value + (value - prev_value) * frac
            else:
                out[mask] = prev_value * (value / prev_value) ** frac
            out[t >= time] = value
        prev_time, prev_value = time, value

    return out


def _oscillator(wave: str, freq: np.ndarray, sample_rate: int) -> np.ndarray:
    """Band-unlimited oscillator following a per-sample frequency curve."""
    phase = np.cumsum(freq) / sample_rate
    cycle = phase % 1.0
    if wave == "sine":
        return np.sin(2 * np.pi * phase)
    if wave == "triangle":
        return 2 * np.abs(2 * cycle - 1) - 1
    if wave == "sawtooth":
        return 2 * cycle - 1
    raise ValueError(f"Unknown waveform: {wave}")


def _tone(
    buffer: np.ndarray,
    sample_rate: int,
    wave: str,
    start: float,
    stop: float,
    freq_points: list[tuple[float, float, str]],
    gain_points: list[tuple[float, float, str]],
) -> None:
    """Mix one oscillator into buffer between start and stop (seconds)."""
    first = int(start * sample_rate)
    last = min(int(stop * sample_rate), len(buffer))
    if last <= first:
        return
    t = np.arange(first, last) / sample_rate
    freq = _automate(t, freq_points)
    gain = _automate(t, gain_points)
    buffer[first:last] += _oscillator(wave, freq, sample_rate) * gain


def _percussive(buffer, sample_rate, freq: float, decays: list[float]) -> None:
    gain_points = [(0.0, 0.0, "set")]
    gain_points += [(i * 0.03, val, "linear") for i, val in enumerate(decays)]
    gain_points.append((0.4, _FLOOR, "exp"))
    _tone(buffer, sample_rate, "triangle", 0.0, 0.45, [(0.0, freq, "set")], gain_points)


def _suspense(buffer, sample_rate) -> None:
    _tone(
        buffer, sample_rate, "sawtooth", 0.0, 4.6,
        freq_points=[(0.0, 54.0, "set"), (3.5, 44.0, "linear"), (4.2, 20.0, "linear")],
        gain_points=[
            (0.0, _FLOOR, "set"),
            (0.2, 0.12, "linear"),
            (3.3, 0.2, "linear"),
            (4.5, 0.00001, "exp"),
        ],
    )


def _heartbeat(buffer, sample_rate) -> None:
    # lub
    _tone(
        buffer, sample_rate, "sine", 0.0, 0.35,
        freq_points=[(0.0, 55.0, "set")],
        gain_points=[(0.0, _FLOOR, "set"), (0.02, 0.4, "exp"), (0.3, _FLOOR, "exp")],
    )
    # dub, overlapping the tail of the first beat
    _tone(
        buffer, sample_rate, "sine", 0.28, 0.62,
        freq_points=[(0.28, 48.0, "set")],
        gain_points=[(0.28, _FLOOR, "set"), (0.31, 0.3, "exp"), (0.6, _FLOOR, "exp")],
    )


def _glitch(buffer, sample_rate, rng: np.random.Generator) -> None:
    length = 0.12
    noise = rng.uniform(-1.0, 1.0, int(sample_rate * length))
    # The noise buffer is read at 1.8x speed and ends early, before the stop time.
    playback_rate = 1.8
    idx = (np.arange(int(len(noise) / playback_rate)) * playback_rate).astype(int)
    played = noise[idx]
    t = np.arange(len(played)) / sample_rate
    gain = _automate(t, [(0.0, 0.6, "set"), (length, _FLOOR, "linear")])
    buffer[: len(played)] += played * gain


CUE_DURATIONS = {
    "knock-soft": 0.45,
    "knock-hard": 0.45,
    "suspense": 4.6,
    "heartbeat": 0.62,
    "glitch": 0.12,
}


def cue_samples(cue: str, sample_rate: int = SAMPLE_RATE, seed: int = 0) -> np.ndarray:
    """Render a cue to float32 samples in [-1, 1].

    The glitch noise is drawn from a seeded generator so a performance sounds
    the same on every replay.
    """
    if cue not in CUES:
        raise ValueError(f"Unknown cue: {cue}")

    buffer = np.zeros(int(sample_rate * CUE_DURATIONS[cue]), dtype=np.float64)

    if cue == "knock-soft":
        _percussive(buffer, sample_rate, 180.0, [0.6, 0.12])
    elif cue == "knock-hard":
        _percussive(buffer, sample_rate, 160.0, [0.9, 0.25])
    elif cue == "suspense":
        _suspense(buffer, sample_rate)
    elif cue == "heartbeat":
        _heartbeat(buffer, sample_rate)
    elif cue == "glitch":
        _glitch(buffer, sample_rate, np.random.default_rng(seed))

    return np.clip(buffer * CUE_GAIN, -1.0, 1.0).astype(np.float32)


def synthesize_cue(cue: str, sample_rate: int = SAMPLE_RATE, seed: int = 0) -> AudioSegment:
    """Render a cue as a mono 16-bit AudioSegment."""
    samples = (cue_samples(cue, sample_rate, seed) * 32767).astype(np.int16)
    return AudioSegment(
        data=samples.tobytes(),
        sample_width=2,
        frame_rate=sample_rate,
        channels=1,
    )
