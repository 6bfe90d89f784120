"""Playback scheduler: drives the timeline over wall-clock time.

A run precomputes a timer plan (cumulative offset per segment) and arms one
event-loop timer per segment. Each firing reveals the segment, posts engine
commands, and advances progress. Every run has a generation number; timers
from an older generation are cancelled and, should one still be dequeued,
it does nothing.
"""

import asyncio
import logging
import re

from knock_player.commands import RenderCue, Speak, WarmUp
from knock_player.constants import SETTLE_DELAY_MS
from knock_player.models import PlannedFiring, PlaybackState, Segment, Snapshot

logger = logging.getLogger(__name__)

_QUOTES_RE = re.compile(r"[“”\"']")


def build_timer_plan(segments) -> tuple[PlannedFiring, ...]:
    """Cumulative fire offsets in script order; negative delays count as 0."""
    plan = []
    offset = 0
    for i, seg in enumerate(segments):
        offset += max(seg.delay, 0)
        plan.append(PlannedFiring(index=i, offset_ms=offset, segment=seg))
    return tuple(plan)


def speech_text(segment: Segment) -> str:
    """Text sent to the speech engine: quotation marks removed, trimmed."""
    return _QUOTES_RE.sub("", segment.text).strip()


class PlaybackScheduler:
    def __init__(self, segments, dispatcher, settle_delay_ms: int = SETTLE_DELAY_MS):
        self.segments = tuple(segments)
        self.plan = build_timer_plan(self.segments)
        self.dispatcher = dispatcher
        self.settle_delay_ms = settle_delay_ms
        self.state = PlaybackState()
        self._run = 0
        self._cursor = 0        # index of the next segment to fire in this run
        self._listeners = []
        self._done: asyncio.Event | None = None

    @property
    def run(self) -> int:
        return self._run

    def snapshot(self) -> Snapshot:
        return Snapshot(
            visible_ids=tuple(self.state.visible_ids),
            progress=self.state.progress,
            is_playing=self.state.is_playing,
            is_complete=self.state.is_complete,
            run=self._run,
        )

    def subscribe(self, listener) -> None:
        """Call listener(snapshot) after every state change."""
        self._listeners.append(listener)

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in self._listeners:
            listener(snapshot)

    def start(self) -> None:
        """Begin a new run from the top of the script.

        Must be called from inside a running event loop. Timers of any
        previous run are disarmed first, so two runs never overlap.
        """
        loop = asyncio.get_running_loop()
        self._disarm()

        self.state.visible_ids = []
        self.state.progress = 0.0
        self.state.is_playing = True
        self.state.is_complete = False
        self._cursor = 0
        self._done = asyncio.Event()
        run = self._run

        self.dispatcher.cancel_pending()
        self.dispatcher.post(WarmUp())

        anchor = loop.time()
        for firing in self.plan:
            self._arm(loop, anchor + firing.offset_ms / 1000, self._fire_through, run, firing.index)
        if not self.plan:
            self._arm(loop, anchor + self.settle_delay_ms / 1000, self._settle, run)

        logger.debug("Run %d started: %d segments armed", run, len(self.plan))
        self._notify()

    def cancel(self) -> None:
        """Disarm every pending timer and drop the run's pending cues and speech.

        Safe in any state.
        """
        self._disarm()
        self.dispatcher.cancel_pending()

    async def wait(self) -> bool:
        """Wait until the current run ends; True if it completed, False if cancelled."""
        if self._done is not None:
            await self._done.wait()
        return self.state.is_complete

    def _disarm(self) -> None:
        if self._done is not None:
            # release waiters of the abandoned run
            self._done.set()
        for handle in self.state.pending_timers:
            handle.cancel()
        self.state.pending_timers.clear()
        self._run += 1

    def _arm(self, loop, when: float, callback, *args) -> None:
        handle = None

        def fire():
            self.state.pending_timers.discard(handle)
            callback(*args)

        handle = loop.call_at(when, fire)
        self.state.pending_timers.add(handle)

    def _fire_through(self, run: int, index: int) -> None:
        # Timers sharing an offset can be dequeued in any order, so a firing
        # catches up every earlier segment first.
        if run != self._run:
            return
        while self._cursor <= index:
            self._fire(self.plan[self._cursor])
            self._cursor += 1
        self._notify()

    def _fire(self, firing: PlannedFiring) -> None:
        seg = firing.segment

        if seg.id not in self.state.visible_ids:
            self.state.visible_ids.append(seg.id)

        if seg.kind == "sound" and seg.cue:
            self.dispatcher.post(RenderCue(seg.cue, seg.id))

        if seg.speak:
            self.dispatcher.post(Speak(speech_text(seg), seg.id))

        self.state.progress = (firing.index + 1) / len(self.plan)
        logger.debug("Fired %s at %dms (%.0f%%)", seg.id, firing.offset_ms, self.state.progress * 100)

        if firing.index == len(self.plan) - 1:
            loop = asyncio.get_running_loop()
            self._arm(loop, loop.time() + self.settle_delay_ms / 1000, self._settle, self._run)

    def _settle(self, run: int) -> None:
        if run != self._run:
            return
        self.state.progress = 1.0
        self.state.is_complete = True
        self.state.is_playing = False
        logger.debug("Run %d complete", run)
        self._notify()
        if self._done is not None:
            self._done.set()
