"""CLI interface with subcommand routing."""

import argparse
import asyncio
import json
import logging
import shutil
import sys

from knock_player.audio import AudioEngine, AudioUnavailableError, SOUNDDEVICE_AVAILABLE
from knock_player.console import ConsolePresenter, progress_bar
from knock_player.constants import SPEECH_VOICE, VERSION
from knock_player.cues import CUE_DURATIONS
from knock_player.exporter import render_performance
from knock_player.models import CUES
from knock_player.performance import Performance
from knock_player.scheduler import build_timer_plan
from knock_player.script import BUILTIN_SCRIPT, ScriptError, dump_script, read_script, total_duration_ms

logger = logging.getLogger(__name__)


def _load_script(path: str | None):
    """Built-in script, or a JSON script file."""
    if not path:
        return BUILTIN_SCRIPT
    try:
        return read_script(path)
    except ScriptError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)


def _ask_replay() -> bool:
    if not sys.stdin.isatty():
        return False
    response = input("Replay? [y/N] ").strip().lower()
    return response == "y"


async def _perform(script, args) -> None:
    presenter = ConsolePresenter(script.segments, final_text=script.final_text)
    async with Performance(
        script.segments,
        audio_enabled=not args.no_audio,
        speech_enabled=not args.no_speech,
        voice=args.voice,
    ) as perf:
        perf.subscribe(presenter)
        while True:
            print(f"> {perf.label}")
            perf.play()
            await perf.wait()
            print()
            if not await asyncio.to_thread(_ask_replay):
                break


def cmd_play(args):
    """Play the timeline in the terminal with sound and speech."""
    script = _load_script(args.script)
    if not args.no_audio and not SOUNDDEVICE_AVAILABLE:
        print("Warning: no audio output available (install PortAudio); playing silently.", file=sys.stderr)
    try:
        asyncio.run(_perform(script, args))
    except KeyboardInterrupt:
        print("\nStopped.")


def cmd_plan(args):
    """Print the timer plan: when each segment fires."""
    script = _load_script(args.script)
    segments = script.segments

    if args.json:
        data = dump_script(segments, title=script.title, final_text=script.final_text)
        print(json.dumps(data, indent=2, ensure_ascii=False))
        return

    plan = build_timer_plan(segments)
    total = len(plan)
    for firing in plan:
        seg = firing.segment
        flags = []
        if seg.speak:
            flags.append("speak")
        if seg.cue:
            flags.append(f"cue={seg.cue}")
        flag_str = f" ({', '.join(flags)})" if flags else ""
        progress = progress_bar((firing.index + 1) / total, width=10)
        print(f"{firing.offset_ms:>6}ms  {progress}  {seg.id:<12} {seg.kind:<8}{flag_str}")
    print(f"\nTotal: {total} segments, {total_duration_ms(segments) / 1000:.1f}s")


async def _preview_cue(cue: str) -> None:
    audio = AudioEngine()
    try:
        await audio.ensure_ready()
        await audio.render_cue(cue)
        await asyncio.sleep(CUE_DURATIONS[cue] + 0.2)
    finally:
        await audio.aclose()


def cmd_cues(args):
    """List the procedural cues, or play one."""
    if not args.play:
        for cue in CUES:
            print(f"  {cue:<12} {CUE_DURATIONS[cue]:.2f}s")
        return

    if args.play not in CUES:
        print(f"Error: Unknown cue '{args.play}'. Choose from: {', '.join(CUES)}", file=sys.stderr)
        raise SystemExit(1)
    try:
        asyncio.run(_preview_cue(args.play))
    except AudioUnavailableError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)


def cmd_render(args):
    """Render the performance to an audio file."""
    if not shutil.which("ffmpeg") and (args.format != "wav" or not args.no_speech):
        print("Error: ffmpeg is required but not found.", file=sys.stderr)
        print("Install ffmpeg, or use --format wav --no-speech.", file=sys.stderr)
        raise SystemExit(1)

    script = _load_script(args.script)
    print(f"Rendering {script.title}: {len(script.segments)} segments...")
    output_path = render_performance(
        script.segments,
        args.output,
        fmt=args.format,
        speech=not args.no_speech,
        voice=args.voice,
        title=script.title,
    )
    print(f"Done: {output_path}")


def main():
    parser = argparse.ArgumentParser(
        prog="knock",
        description="Play a timed horror micro-story with procedural sound and speech",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command")

    play_parser = subparsers.add_parser("play", help="Play the timeline")
    play_parser.add_argument("--script", help="Path to a JSON script (default: The Knock)")
    play_parser.add_argument("--no-audio", action="store_true", help="Disable sound cues and speech output")
    play_parser.add_argument("--no-speech", action="store_true", help="Disable speech")
    play_parser.add_argument("--voice", default=SPEECH_VOICE, help="edge-tts voice name")
    play_parser.set_defaults(func=cmd_play)

    plan_parser = subparsers.add_parser("plan", help="Show when each segment fires")
    plan_parser.add_argument("--script", help="Path to a JSON script (default: The Knock)")
    plan_parser.add_argument("--json", action="store_true", help="Print the script as JSON")
    plan_parser.set_defaults(func=cmd_plan)

    cues_parser = subparsers.add_parser("cues", help="List or preview sound cues")
    cues_parser.add_argument("--play", metavar="CUE", help="Play a single cue")
    cues_parser.set_defaults(func=cmd_cues)

    render_parser = subparsers.add_parser("render", help="Render the performance to an audio file")
    render_parser.add_argument("output", help="Output audio path")
    render_parser.add_argument("--script", help="Path to a JSON script (default: The Knock)")
    render_parser.add_argument("--no-speech", action="store_true", help="Cues only")
    render_parser.add_argument("--format", choices=["mp3", "wav"], default="mp3", help="Output format")
    render_parser.add_argument("--voice", default=SPEECH_VOICE, help="edge-tts voice name")
    render_parser.set_defaults(func=cmd_render)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        raise SystemExit(1)

    args.func(args)


if __name__ == "__main__":
    main()
