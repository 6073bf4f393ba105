"""Cooperative cancellation shared by chunking and transcription loops."""

from threading import Event

from .errors import TranscriptionCancelled


class CancellationToken:
    """Checked between units of work; cancelling never interrupts a running call."""

    def __init__(self):
        self._event = Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TranscriptionCancelled("request cancelled")
