"""Rich console rendering for recordings, transcriptions and history."""

import logging
import queue
import sys
import threading
from typing import Iterable, Optional

from pubsub import pub
from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text
from rich.live import Live

from ..models.session import CaptureState, RecordingSession
from ..models.transcription import ProgressEvent, TranscriptionResult
from ..transcription.catalog import ModelOption
from ..transcription.publisher import PROGRESS_TOPIC

logger = logging.getLogger(__name__)

_PHASE_LABELS = {
    "loading": "Loading model",
    "transcribing": "Transcribing",
    "merging": "Merging",
    "done": "Done",
}


def _clock(seconds: float) -> str:
    total = int(seconds)
    return f"{total // 60:02d}:{total % 60:02d}"


def level_bar(levels: Iterable[float], width: int = 40) -> str:
    """Render the most recent ``width`` levels as a block waveform."""
    blocks = " ▁▂▃▄▅▆▇█"
    recent = list(levels)[-width:]
    return "".join(blocks[min(int(level * (len(blocks) - 1) + 0.5), len(blocks) - 1)] for level in recent)


def render_session(session: RecordingSession) -> Panel:
    """Live recording panel: state, elapsed time and waveform."""
    if session.state == CaptureState.RECORDING:
        status_text, status_style = "● RECORDING", "bold red"
    elif session.state == CaptureState.PAUSED:
        status_text, status_style = "❚❚ PAUSED", "bold yellow"
    else:
        status_text, status_style = session.state.value.upper(), "bold white"

    header = Text.assemble((status_text, status_style), "  |  ", (_clock(session.elapsed_seconds), "bold"))
    if session.error:
        header.append(f"\n\nInput stopped: {session.error}", style="bold red")
    body = Text.assemble(
        header, "\n\n",
        (level_bar(session.levels) or " ", "green"), "\n\n",
        ("Enter", "bold green"), " stop and transcribe  ",
        ("p", "bold yellow"), " pause/resume  ",
        ("q", "bold red"), " discard",
    )
    return Panel(Align.center(body), title="VoiceMemo", border_style="bright_blue")


def render_result(result: TranscriptionResult, show_segments: bool = True) -> Panel:
    """Full transcription with metadata and (optionally) timed segments."""
    meta = Text.assemble(
        ("Duration: ", "bold"), result.formatted_duration, "   ",
        ("Words: ", "bold"), str(result.word_count), "   ",
        ("Language: ", "bold"), result.language, "   ",
        ("Created: ", "bold"), result.timestamp.strftime("%Y-%m-%d %H:%M"),
    )
    body = Text.assemble(meta, "\n\n", (result.text or "(no speech detected)", "white"))

    if show_segments and len(result.segments) > 1:
        body.append("\n\n")
        for segment in result.segments:
            body.append(segment.timestamp_label + " ", style="cyan")
            body.append(segment.text + "\n")

    return Panel(body, title=f"Transcription {result.id[:8]}", border_style="blue")


def render_history(results: Iterable[TranscriptionResult], query: Optional[str] = None) -> Table:
    title = "History" if not query else f"History matching '{query}'"
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Created", style="white")
    table.add_column("Duration", justify="right")
    table.add_column("Words", justify="right")
    table.add_column("Text", style="white", overflow="ellipsis", max_width=60)

    for result in results:
        preview = result.text if len(result.text) <= 60 else result.text[:57] + "..."
        table.add_row(
            result.id[:8],
            result.timestamp.strftime("%Y-%m-%d %H:%M"),
            result.formatted_duration,
            str(result.word_count),
            preview,
        )
    return table


def render_models(options: Iterable[ModelOption], selected: Optional[str] = None) -> Table:
    table = Table(title="Models", show_header=True, header_style="bold magenta")
    table.add_column("", width=1)
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("Language")
    for option in options:
        marker = "*" if option.id == selected else ""
        table.add_row(marker, option.id, option.name, option.size, option.language or "multilingual")
    return table


class TranscriptionProgressView:
    """Shows ``transcription.progress`` events as a rich progress bar.

    Use as a context manager around a blocking transcription call.
    """

    def __init__(self, console: Console, topic: str = PROGRESS_TOPIC):
        self.console = console
        self.topic = topic
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            console=console,
            transient=True,
        )
        self.task_id = None

    def __enter__(self) -> "TranscriptionProgressView":
        self.progress.start()
        self.task_id = self.progress.add_task("Starting", total=1.0)
        # pypubsub holds listeners weakly; the bound method lives as long as self
        pub.subscribe(self.on_progress, self.topic)
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        pub.unsubscribe(self.on_progress, self.topic)
        self.progress.stop()

    def on_progress(self, event: ProgressEvent) -> None:
        description = _PHASE_LABELS.get(event.phase, event.phase)
        if event.chunk_count and event.chunk_count > 1 and event.phase == "transcribing":
            description = f"{description} chunk {event.chunk_index + 1}/{event.chunk_count}"
        self.progress.update(self.task_id, completed=event.value, description=description)


class RecordingScreen:
    """Live recording view driven by line-based keyboard input."""

    def __init__(self, console: Console, refresh_interval: float = 0.1):
        self.console = console
        self.refresh_interval = refresh_interval
        self.commands: "queue.Queue[str]" = queue.Queue()

    def _read_input(self) -> None:
        for line in sys.stdin:
            self.commands.put(line.strip().lower())
        self.commands.put("q")

    def run(self, service) -> str:
        """Record until the user stops or discards, or the input stream fails.

        Args:
            service: MemoService with a recording already started

        Returns:
            "stop" to transcribe, "discard" to throw the recording away
        """
        reader = threading.Thread(target=self._read_input, daemon=True, name="KeyboardInput")
        reader.start()

        with Live(render_session(service.get_session()), console=self.console, refresh_per_second=10) as live:
            while True:
                try:
                    command = self.commands.get(timeout=self.refresh_interval)
                except queue.Empty:
                    session = service.get_session()
                    live.update(render_session(session))
                    if session.error:
                        logger.warning(f"Recording interrupted: {session.error}")
                        return "stop"
                    continue

                logger.debug(f"Recording command: {command!r}")
                if command == "":
                    return "stop"
                if command == "q":
                    return "discard"
                if command == "p":
                    if service.get_session().state == CaptureState.PAUSED:
                        service.resume_recording()
                    else:
                        service.pause_recording()
                live.update(render_session(service.get_session()))
