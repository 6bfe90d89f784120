"""Data models for the timeline and its playback state."""

from dataclasses import dataclass, field

KINDS = ("voice", "sound", "visual", "whisper")
CUES = ("knock-soft", "knock-hard", "suspense", "heartbeat", "glitch")


@dataclass(frozen=True)
class Segment:
    id: str
    text: str
    delay: int          # ms after the previous segment fires
    kind: str           # one of KINDS
    speak: bool = False
    cue: str | None = None


@dataclass(frozen=True)
class PlannedFiring:
    index: int
    offset_ms: int      # cumulative offset from the start of the run
    segment: Segment


@dataclass
class PlaybackState:
    visible_ids: list[str] = field(default_factory=list)
    progress: float = 0.0
    is_playing: bool = False
    is_complete: bool = False
    pending_timers: set = field(default_factory=set)


@dataclass(frozen=True)
class Snapshot:
    """Read-only view of PlaybackState handed to the presentation layer."""

    visible_ids: tuple[str, ...]
    progress: float
    is_playing: bool
    is_complete: bool
    run: int = 0


@dataclass(frozen=True)
class Script:
    segments: tuple[Segment, ...]
    title: str
    final_text: str = ""    # shown once a run completes; empty shows nothing
