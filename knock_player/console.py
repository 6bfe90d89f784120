"""Terminal presentation of a performance."""

from knock_player.constants import PROGRESS_BAR_WIDTH
from knock_player.script import FINAL_TEXT

# Per-kind line decoration
_STYLES = {
    "voice": "{text}",
    "sound": "~ {text} ~",
    "visual": "[{text}]",
    "whisper": "… {text} …",
}


def progress_bar(progress: float, width: int = PROGRESS_BAR_WIDTH) -> str:
    progress = min(max(progress, 0.0), 1.0)
    filled = int(round(progress * width))
    return f"[{'#' * filled}{'-' * (width - filled)}] {progress * 100:3.0f}%"


def format_line(kind: str, text: str) -> str:
    return _STYLES.get(kind, "{text}").format(text=text.strip())


class ConsolePresenter:
    """Prints newly revealed segments with the progress bar.

    Reads snapshots only; whitespace-only segments advance the bar but
    print nothing. A new run starts a fresh transcript.
    """

    def __init__(self, segments, final_text: str = FINAL_TEXT, out=print):
        self._by_id = {seg.id: seg for seg in segments}
        self.final_text = final_text
        self._out = out
        self._run = None
        self._shown: set[str] = set()
        self._finished = False

    def __call__(self, snapshot) -> None:
        if snapshot.run != self._run:
            self._run = snapshot.run
            self._shown = set()
            self._finished = False

        for seg_id in snapshot.visible_ids:
            if seg_id in self._shown:
                continue
            self._shown.add(seg_id)
            seg = self._by_id.get(seg_id)
            if seg is None or not seg.text.strip():
                continue
            self._out(f"{progress_bar(snapshot.progress)}  {format_line(seg.kind, seg.text)}")

        if snapshot.is_complete and not self._finished:
            self._finished = True
            if self.final_text:
                self._out("")
                self._out(self.final_text)
