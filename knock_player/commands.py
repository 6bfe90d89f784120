"""Commands the scheduler posts to the engines, and the dispatcher that runs them."""

import asyncio
import logging
from dataclasses import dataclass

from knock_player.audio import AudioUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WarmUp:
    pass


@dataclass(frozen=True)
class RenderCue:
    cue: str
    segment_id: str = ""


@dataclass(frozen=True)
class Speak:
    text: str
    segment_id: str = ""


class CommandDispatcher:
    """Delivers commands to the audio and speech engines in posting order.

    post() never blocks; a consumer task drains the queue. Cue renders run
    as their own tasks so a slow render never holds up later commands.
    """

    def __init__(self, audio, speech):
        self.audio = audio
        self.speech = speech
        self._queue: asyncio.Queue | None = None
        self._consumer: asyncio.Task | None = None
        self._cue_tasks: set[asyncio.Task] = set()
        self._closed = False

    def post(self, command) -> None:
        if self._closed:
            logger.debug("Dispatcher closed, dropping %s", command)
            return
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._queue.put_nowait(command)
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.get_running_loop().create_task(self._consume())

    async def _consume(self) -> None:
        while True:
            command = await self._queue.get()
            try:
                await self._handle(command)
            finally:
                self._queue.task_done()

    async def _handle(self, command) -> None:
        if isinstance(command, WarmUp):
            try:
                await self.audio.ensure_ready()
            except AudioUnavailableError as e:
                logger.debug("Audio warm-up failed: %s", e)
        elif isinstance(command, RenderCue):
            task = asyncio.get_running_loop().create_task(self.audio.render_cue(command.cue))
            self._cue_tasks.add(task)
            task.add_done_callback(self._cue_done)
        elif isinstance(command, Speak):
            self.speech.speak(command.text)
        else:
            raise TypeError(f"Unknown command: {command!r}")

    def _cue_done(self, task: asyncio.Task) -> None:
        self._cue_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Cue render failed: %s", task.exception())

    async def drain(self) -> None:
        """Wait until every posted command has been handled."""
        if self._queue is not None:
            await self._queue.join()

    def cancel_pending(self) -> None:
        """Forget everything a cancelled run still owes.

        Queued cues and speech are dropped, cue renders still waiting on the
        output context are cancelled, and the current utterance is silenced.
        Queued warm-ups are kept. Cues already started play out.
        """
        if self._queue is not None:
            kept = []
            while not self._queue.empty():
                command = self._queue.get_nowait()
                self._queue.task_done()
                if isinstance(command, WarmUp):
                    kept.append(command)
            for command in kept:
                self._queue.put_nowait(command)
        for task in list(self._cue_tasks):
            task.cancel()
        self.speech.cancel()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        tasks = list(self._cue_tasks)
        if self._consumer is not None:
            tasks.append(self._consumer)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._cue_tasks.clear()
        self._consumer = None
