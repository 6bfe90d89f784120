"""The authored timeline and JSON script loading with validation."""

import json
import logging
import os

from knock_player.models import CUES, KINDS, Script, Segment

logger = logging.getLogger(__name__)

TITLE = "The Knock"
FINAL_TEXT = "👁️ Sometimes… the one knocking isn’t outside."

THE_KNOCK = (
    Segment("line-1", "Raat ke do baje mere kamre ke darwaze pe kisi ne knock kiya…", 600, "voice", speak=True),
    Segment("pause-1", " ", 1000, "voice"),
    Segment("line-2", "Main akela tha ghar mein.", 0, "voice", speak=True),
    Segment("knock-soft", "(soft knock knock)", 300, "sound", cue="knock-soft"),
    Segment("line-3", "Pehle laga hawa hogi… lekin phir knock fir se hua — is baar zyada zor se.", 800, "voice", speak=True),
    Segment("knock-hard", "(knock knock — louder)", 200, "sound", cue="knock-hard"),
    Segment("visual-1", "CAMERA: Dark hallway • Flickering light • Something barely moves.", 700, "visual"),
    Segment("line-4", "Main ne flashlight uthayi, aur darwaze ke paas gaya.", 900, "voice", speak=True),
    Segment("suspense", "(low suspense hum rising)", 200, "sound", cue="suspense"),
    Segment("line-5", "Andar se awaaz aayi… ek ladki ki halki si fusi hui aawaz —", 900, "voice", speak=True),
    Segment("whisper", "“Please… madad karo…”", 600, "whisper", speak=True),
    Segment("line-6", "Darwaza kholte hi ek thandi hawa ka jhonka aaya… lekin koi nahi tha.", 1200, "voice", speak=True),
    Segment("visual-2", "CAMERA PAN: Empty hallway • drifting cold haze.", 400, "visual"),
    Segment("line-7", "Sirf floor pe ek purani polaroid photo padhi thi… meri.", 1000, "voice", speak=True),
    Segment("heartbeat", "(heartbeat — close, heavy)", 200, "sound", cue="heartbeat"),
    Segment("line-8", "Lekin us photo mein main darwaze ke bahar khada tha.", 900, "voice", speak=True),
    Segment("pause-2", " ", 1100, "voice"),
    Segment("line-9", "Mujhe ab tak samajh nahi aaya… us raat knock kisne kiya tha — main to andar tha.", 900, "voice", speak=True),
    Segment("glitch", "(glitch • lights cut to blackout)", 0, "sound", cue="glitch"),
)

BUILTIN_SCRIPT = Script(segments=THE_KNOCK, title=TITLE, final_text=FINAL_TEXT)


class ScriptError(ValueError):
    """Raised when a script file or record cannot be turned into segments."""


def total_duration_ms(segments) -> int:
    """Sum of all (clamped) delays, i.e. the offset of the last segment."""
    return sum(max(seg.delay, 0) for seg in segments)


def segment_from_dict(data: dict, position: int = 0) -> Segment:
    """Build a Segment from a JSON record.

    Negative delays are clamped to 0 so time never moves backward.
    """
    if not isinstance(data, dict):
        raise ScriptError(f"Segment {position} is not an object")

    seg_id = data.get("id")
    if not isinstance(seg_id, str) or not seg_id.strip():
        raise ScriptError(f"Segment {position} has no id")

    text = data.get("text", "")
    if not isinstance(text, str):
        raise ScriptError(f"Segment '{seg_id}': text must be a string")

    kind = data.get("kind", "voice")
    if kind not in KINDS:
        raise ScriptError(f"Segment '{seg_id}': unknown kind '{kind}'")

    delay = data.get("delay", 0)
    if isinstance(delay, bool) or not isinstance(delay, (int, float)):
        raise ScriptError(f"Segment '{seg_id}': delay must be a number")
    if delay < 0:
        logger.warning("Segment '%s' has negative delay %s, clamped to 0", seg_id, delay)
        delay = 0

    cue = data.get("cue")
    if cue is not None and cue not in CUES:
        raise ScriptError(f"Segment '{seg_id}': unknown cue '{cue}'")
    if cue is not None and kind != "sound":
        logger.warning("Segment '%s' carries cue '%s' but is not a sound segment; it will not play", seg_id, cue)

    return Segment(
        id=seg_id,
        text=text,
        delay=int(round(delay)),
        kind=kind,
        speak=bool(data.get("speak", False)),
        cue=cue,
    )


def segment_to_dict(segment: Segment) -> dict:
    data = {
        "id": segment.id,
        "text": segment.text,
        "delay": segment.delay,
        "kind": segment.kind,
    }
    if segment.speak:
        data["speak"] = True
    if segment.cue:
        data["cue"] = segment.cue
    return data


def parse_script(data) -> tuple[Segment, ...]:
    """Turn decoded JSON into an immutable tuple of segments.

    Accepts either a bare list of records or an object with a "segments" list.
    Segment ids must be unique.
    """
    if isinstance(data, dict):
        records = data.get("segments")
    else:
        records = data
    if not isinstance(records, list):
        raise ScriptError("Script must be a list of segments or an object with a 'segments' list")

    segments = []
    seen = set()
    for i, record in enumerate(records):
        seg = segment_from_dict(record, i)
        if seg.id in seen:
            raise ScriptError(f"Duplicate segment id '{seg.id}'")
        seen.add(seg.id)
        segments.append(seg)
    return tuple(segments)


def _read_json(path: str):
    if not os.path.exists(path):
        raise ScriptError(f"Script not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ScriptError(f"Malformed script {path}: {e}") from e


def load_script(path: str) -> tuple[Segment, ...]:
    """Load a script JSON file. Raises ScriptError on missing or malformed input."""
    return parse_script(_read_json(path))


def read_script(path: str) -> Script:
    """Load a script file with its title and final text.

    A bare list, or an object without a title, is titled after the file name
    and has no final text.
    """
    data = _read_json(path)
    segments = parse_script(data)
    meta = data if isinstance(data, dict) else {}

    title = meta.get("title", os.path.splitext(os.path.basename(path))[0])
    final_text = meta.get("final_text", "")
    if not isinstance(title, str) or not isinstance(final_text, str):
        raise ScriptError(f"Script {path}: title and final_text must be strings")
    return Script(segments=segments, title=title, final_text=final_text)


def dump_script(segments, title: str = TITLE, final_text: str = FINAL_TEXT) -> dict:
    """Serialize segments into the JSON layout read_script() reads."""
    return {
        "title": title,
        "final_text": final_text,
        "segments": [segment_to_dict(s) for s in segments],
    }
