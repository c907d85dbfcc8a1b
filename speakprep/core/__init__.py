"""Core business logic for SpeakPrep."""

from .artifact import Artifact
from .config import AppConfig
from .devices import CaptureConstraints, PyAudioSource, list_input_devices
from .errors import (
    DeviceUnavailable,
    EmptyCapture,
    MetadataWriteFailure,
    QuestionImportError,
    RecordingNotReady,
    ResourceReleaseFailure,
    SessionBusy,
    SpeakPrepError,
    UploadFailure,
    UploadInProgress,
)
from .log import PracticeLogger
from .processing import apply_gain, auto_gain, calculate_amplitude, detect_driver_type
from .questions import QuestionNavigator, add_question, edit_vocabulary, import_questions, search_questions
from .recording import CaptureController, RecordingSession, SessionStatus
from .s3_upload import S3Uploader, build_object_key
from .scheduling import Scheduler, ThreadScheduler
from .storage import StorageManager
from .store import MetadataStore, Question, UserRecording
from .submission import RecordingSubmitter, build_recording_name

__all__ = [
    "AppConfig",
    "Artifact",
    "CaptureConstraints",
    "CaptureController",
    "DeviceUnavailable",
    "EmptyCapture",
    "MetadataStore",
    "MetadataWriteFailure",
    "PracticeLogger",
    "PyAudioSource",
    "Question",
    "QuestionImportError",
    "QuestionNavigator",
    "RecordingNotReady",
    "RecordingSession",
    "RecordingSubmitter",
    "ResourceReleaseFailure",
    "S3Uploader",
    "Scheduler",
    "SessionBusy",
    "SessionStatus",
    "SpeakPrepError",
    "StorageManager",
    "ThreadScheduler",
    "UploadFailure",
    "UploadInProgress",
    "UserRecording",
    "add_question",
    "apply_gain",
    "auto_gain",
    "build_object_key",
    "build_recording_name",
    "calculate_amplitude",
    "detect_driver_type",
    "edit_vocabulary",
    "import_questions",
    "list_input_devices",
    "search_questions",
]
