"""Custom Exceptions for the CapSync application."""

from typing import Optional


class CapSyncError(Exception):
    """Base class for exceptions in this module."""
    user_message = "Caption processing failed. Please try again."


class ConfigurationError(CapSyncError):
    """Exception raised for errors in configuration loading."""
    user_message = "Caption service configuration error. Please contact support."


class FileSystemError(CapSyncError):
    """Exception raised for file system related errors (permissions, not found etc)."""
    pass


class ExtractionError(CapSyncError):
    """Exception raised when the audio track cannot be extracted from a video."""
    user_message = "Audio processing failed. Please ensure the video file is valid."


class TranscriptionError(CapSyncError):
    """Base class for transcription provider failures."""
    user_message = "Failed to generate captions. Please try again."


class AuthenticationError(TranscriptionError):
    """Provider credentials are missing or were rejected. Not retryable."""
    user_message = "Transcription service configuration error. Please contact support."


class InvalidInputError(TranscriptionError):
    """The provider could not decode or accept the audio. Not retryable."""
    user_message = "The video's audio is unsupported or corrupt."


class ProviderUnavailableError(TranscriptionError):
    """Network or service failure. The caller may retry with backoff."""
    user_message = "Transcription service is currently unavailable. Please try again later."


class RenderError(CapSyncError):
    """
    Exception raised when burning captions into a video fails.

    `diagnostic` holds the (already truncated) ffmpeg stderr tail. It is meant
    for logs only and must not be shown to end users.
    """
    user_message = "Render failed. Please try again."

    def __init__(self, message: str, diagnostic: Optional[str] = None, returncode: Optional[int] = None):
        super().__init__(message)
        self.diagnostic = diagnostic or ""
        self.returncode = returncode


class CaptionValidationError(CapSyncError):
    """Exception raised when caption segments cannot be rendered as given."""
    user_message = "Captions are missing or have invalid timing."


class FormattingError(CapSyncError):
    """Exception raised for errors during subtitle formatting or parsing."""
    user_message = "Subtitle file could not be read."
