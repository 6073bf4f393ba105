"""Main application entry point for VoiceMemo."""

import sys
import argparse
import logging
from pathlib import Path
from typing import Optional

from rich.console import Console

from .config import VoiceMemoConfig
from .errors import VoiceMemoError, user_message_for
from .services.memo_service import MemoService, TranscriptionOutcome
from .transcription.catalog import MODEL_OPTIONS
from .ui.console import (
    RecordingScreen,
    TranscriptionProgressView,
    render_history,
    render_models,
    render_result,
)

logger = logging.getLogger(__name__)


class App:
    """Console front-end: one instance per command invocation."""

    def __init__(self, config_path: Optional[str] = None, log_level: Optional[str] = None, console: Optional[Console] = None):
        # Load configuration
        self.config = VoiceMemoConfig(config_path)
        # Command line overrides the configured log level
        if log_level:
            self.config.set('logging.level', log_level)
        setup_logging(self.config, self.config.get('logging.level', 'INFO'))
        self.console = console or Console()
        self.service: Optional[MemoService] = None

    def init(self, cleanup_on_start: bool = False) -> None:
        self.service = MemoService(self.config, cleanup_on_start=cleanup_on_start)

    def cleanup(self) -> None:
        if self.service is not None:
            self.service.shutdown()

    def record(self) -> int:
        path = self.service.start_recording()
        logger.info(f"Recording to {path}")
        action = RecordingScreen(self.console).run(self.service)
        if action == "discard":
            self.service.discard_recording()
            self.console.print("Recording discarded.", style="yellow")
            return 0

        with TranscriptionProgressView(self.console):
            outcome = self.service.stop_and_transcribe()
        return self._print_outcome(outcome)

    def transcribe(self, file_path: str) -> int:
        if not Path(file_path).is_file():
            self.console.print(f"No such file: {file_path}", style="bold red")
            return 1
        with TranscriptionProgressView(self.console):
            outcome = self.service.transcribe_file(file_path)
        return self._print_outcome(outcome)

    def history(self, query: Optional[str] = None) -> int:
        results = self.service.history(query)
        if not results:
            self.console.print("No transcriptions found.", style="dim")
            return 0
        self.console.print(render_history(results, query))
        return 0

    def show(self, id_or_prefix: str) -> int:
        result_id = self.service.resolve_id(id_or_prefix)
        if result_id is None:
            self.console.print(f"No transcription matches '{id_or_prefix}'.", style="bold red")
            return 1
        self.console.print(render_result(self.service.get_transcription(result_id)))
        return 0

    def delete(self, id_or_prefix: str) -> int:
        result_id = self.service.resolve_id(id_or_prefix)
        if result_id is None or not self.service.delete_transcription(result_id):
            self.console.print(f"No transcription matches '{id_or_prefix}'.", style="bold red")
            return 1
        self.console.print(f"Deleted {result_id}.", style="green")
        return 0

    def models(self) -> int:
        self.console.print(render_models(MODEL_OPTIONS, selected=self.config.get_model_id()))
        return 0

    def _print_outcome(self, outcome: TranscriptionOutcome) -> int:
        if outcome.result is not None:
            self.console.print(render_result(outcome.result))
        if outcome.error_message:
            self.console.print(outcome.error_message, style="bold red")
        elif outcome.saved:
            self.console.print(f"Saved as {outcome.result.id}.", style="green")
        return 0 if outcome.success else 1


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    # Get log file path from config
    log_file_path = config.get('logging.file_path', 'data/logs/voicememo.log')
    console_output = config.get('logging.console_output', True)

    # Create logs directory if it doesn't exist
    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler - only if enabled in config
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("VoiceMemo starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voicememo",
        description="VoiceMemo - record and transcribe voice memos on-device",
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: built-in settings)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="VoiceMemo v0.1.0"
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("record", help="Record from the microphone, then transcribe")

    transcribe = commands.add_parser("transcribe", help="Transcribe an existing audio file")
    transcribe.add_argument("file", help="Audio file (any format ffmpeg can decode)")

    history = commands.add_parser("history", help="List saved transcriptions")
    history.add_argument("--search", "-s", metavar="QUERY", help="Only show transcriptions containing QUERY")

    show = commands.add_parser("show", help="Show one saved transcription")
    show.add_argument("id", help="Transcription id or unique id prefix")

    delete = commands.add_parser("delete", help="Delete one saved transcription")
    delete.add_argument("id", help="Transcription id or unique id prefix")

    commands.add_parser("models", help="List available speech models")
    return parser


def main(argv: Optional[list] = None) -> None:
    """Main entry point for VoiceMemo."""
    args = build_parser().parse_args(argv)

    app = App(args.config, args.log_level)
    exit_code = 1
    try:
        app.init(cleanup_on_start=args.command in ("record", "transcribe"))
        if args.command == "record":
            exit_code = app.record()
        elif args.command == "transcribe":
            exit_code = app.transcribe(args.file)
        elif args.command == "history":
            exit_code = app.history(args.search)
        elif args.command == "show":
            exit_code = app.show(args.id)
        elif args.command == "delete":
            exit_code = app.delete(args.id)
        elif args.command == "models":
            exit_code = app.models()
    except KeyboardInterrupt:
        app.console.print("\nInterrupted.", style="yellow")
    except VoiceMemoError as e:
        logger.error(f"Command {args.command} failed: {e}")
        app.console.print(user_message_for(e), style="bold red")
    finally:
        app.cleanup()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
