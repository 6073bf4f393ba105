"""VoiceMemo - record, chunk and transcribe voice memos with an on-device Whisper model."""

__version__ = "0.1.0"
