"""Error taxonomy for VoiceMemo.

Every error carries a ``user_message``: one short sentence that is safe to show
to the end user. The exception text itself may contain internal detail and is
meant for the logs only.
"""

from typing import Optional


class VoiceMemoError(Exception):
    """Base class for all VoiceMemo failures."""

    user_message = "Something went wrong."


class PermissionDenied(VoiceMemoError):
    """Raised when recording is attempted without microphone permission."""

    user_message = "Microphone permission is required to record."


class RecordingFailed(VoiceMemoError):
    """Raised when the input stream cannot be opened or breaks mid-recording."""

    user_message = "Recording failed."


class ExtractionFailed(VoiceMemoError):
    """Raised when audio cannot be decoded, sliced or exported."""

    user_message = "Could not process the audio file."


class ModelNotLoaded(VoiceMemoError):
    """Raised when transcription is attempted before any model was loaded."""

    user_message = "The speech recognition model is not loaded."


class BackendFailure(VoiceMemoError):
    """Raised for opaque transcription engine errors (load or transcribe)."""

    user_message = "Transcription failed."


class PersistenceFailure(VoiceMemoError):
    """Raised when a stored transcription cannot be written, read or decoded."""

    user_message = "Could not save or read the transcription."


class TranscriptionCancelled(VoiceMemoError):
    """Raised when a request is abandoned between chunks."""

    user_message = "Transcription was cancelled."


def user_message_for(error: Optional[BaseException]) -> str:
    """Map any exception to a single human-readable sentence."""
    if isinstance(error, VoiceMemoError):
        return error.user_message
    return VoiceMemoError.user_message
