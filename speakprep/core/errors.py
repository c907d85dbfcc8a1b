"""Error kinds raised by SpeakPrep.

Every failure leaves the capture session in a well-defined state; none of
these errors is fatal to the process.
"""

from typing import Optional


class SpeakPrepError(Exception):
    """Base class for all SpeakPrep errors."""


class DeviceUnavailable(SpeakPrepError):
    """Microphone access was denied or no input device could be opened.

    The session stays idle; calling ``start()`` again retries.
    """


class EmptyCapture(SpeakPrepError):
    """A capture produced no audio data."""

    def __init__(self, message: str = "No audio captured") -> None:
        super().__init__(message)


class SessionBusy(SpeakPrepError):
    """A capture is already running and the controller does not supersede it."""


class RecordingNotReady(SpeakPrepError):
    """The recording is still being captured or assembled."""


class UploadInProgress(SpeakPrepError):
    """A submission for the current recording is already running."""


class UploadFailure(SpeakPrepError):
    """The object store rejected the recording upload."""


class MetadataWriteFailure(SpeakPrepError):
    """The metadata record could not be written after a successful upload.

    Attributes:
        audio_url: Public URL of the object that was already uploaded.
    """

    def __init__(self, message: str, audio_url: Optional[str] = None) -> None:
        super().__init__(message)
        self.audio_url = audio_url


class QuestionImportError(SpeakPrepError):
    """A bulk question payload is malformed."""


class ResourceReleaseFailure(SpeakPrepError):
    """A teardown step failed. Recorded as a diagnostic, never raised.

    Attributes:
        resource: Name of the resource whose release failed.
        cause: The original exception.
    """

    def __init__(self, resource: str, cause: BaseException) -> None:
        super().__init__(f"Failed to release {resource}: {cause}")
        self.resource = resource
        self.cause = cause
