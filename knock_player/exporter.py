"""Offline render: mix the timeline's cues and speech into one audio file."""

import asyncio
import json
import logging
import os
from datetime import datetime, timezone

from pydub import AudioSegment

from knock_player.constants import (
    OUTPUT_BITRATE,
    RENDER_TAIL_MS,
    SAMPLE_RATE,
    SETTLE_DELAY_MS,
    SPEECH_VOICE,
    VERSION,
)
from knock_player.cues import synthesize_cue
from knock_player.scheduler import build_timer_plan, speech_text
from knock_player.script import TITLE, total_duration_ms
from knock_player.speech import synthesize_speech

logger = logging.getLogger(__name__)


def _speech_clip(text: str, voice: str, index: int) -> AudioSegment | None:
    """Synthesize one line with retry; None on failure."""
    try:
        return asyncio.run(synthesize_speech(text, voice=voice))
    except Exception as e:
        logger.warning("Skipping speech for line %d: %s", index, e)
        return None


def mix_timeline(
    segments,
    speech: bool = True,
    voice: str = SPEECH_VOICE,
    settle_delay_ms: int = SETTLE_DELAY_MS,
    synthesize=None,
) -> AudioSegment:
    """Overlay every cue and speech clip at its fire offset.

    A speech clip is cut off where the next one starts, the same way a new
    live utterance supersedes the previous one.
    """
    plan = build_timer_plan(segments)
    duration = total_duration_ms(segments) + settle_delay_ms + RENDER_TAIL_MS
    bed = AudioSegment.silent(duration=duration, frame_rate=SAMPLE_RATE)

    if synthesize is None:
        def synthesize(text, index):
            return _speech_clip(text, voice, index)

    spoken = []
    for firing in plan:
        seg = firing.segment
        if seg.kind == "sound" and seg.cue:
            bed = bed.overlay(synthesize_cue(seg.cue), position=firing.offset_ms)
        if speech and seg.speak:
            text = speech_text(seg)
            if text:
                spoken.append((firing.offset_ms, text, firing.index))

    for i, (offset, text, index) in enumerate(spoken):
        clip = synthesize(text, index)
        if clip is None:
            continue
        if i + 1 < len(spoken):
            clip = clip[: spoken[i + 1][0] - offset]
        bed = bed.overlay(clip, position=offset)

    return bed


def render_performance(
    segments,
    output_path: str,
    fmt: str = "mp3",
    speech: bool = True,
    voice: str = SPEECH_VOICE,
    title: str = TITLE,
    synthesize=None,
) -> str:
    """Render the performance to output_path and write a JSON manifest beside it.

    Returns the path of the audio file.
    """
    mixed = mix_timeline(segments, speech=speech, voice=voice, synthesize=synthesize)

    out_dir = os.path.dirname(output_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)

    export_args = {"format": fmt, "tags": {"title": title}}
    if fmt == "mp3":
        export_args["bitrate"] = OUTPUT_BITRATE
    mixed.export(output_path, **export_args)

    plan = build_timer_plan(segments)
    manifest = {
        "title": title,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "producer_version": VERSION,
        "settings": {"speech": speech, "voice": voice, "format": fmt},
        "timeline": [
            {"id": f.segment.id, "offset_ms": f.offset_ms, "kind": f.segment.kind, "cue": f.segment.cue}
            for f in plan
        ],
        "stats": {
            "segments": len(plan),
            "timeline_ms": total_duration_ms(segments),
            "duration_seconds": round(len(mixed) / 1000, 1),
        },
    }
    manifest_path = os.path.splitext(output_path)[0] + ".json"
    with open(manifest_path, "w") as f:
        json.dump(manifest, f, indent=2)

    return output_path
