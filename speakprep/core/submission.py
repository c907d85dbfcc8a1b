"""Publishing a finished recording: object upload plus metadata record."""

from datetime import datetime, timezone
from typing import Optional, Protocol

from loguru import logger

from .artifact import content_type_for
from .config import FILE_FORMAT
from .errors import EmptyCapture, MetadataWriteFailure, RecordingNotReady, UploadFailure, UploadInProgress
from .log import PracticeLogger
from .recording import CaptureController, SessionStatus
from .store import Question, UserRecording


class ObjectStore(Protocol):
    def upload_bytes(self, name: str, data: bytes, content_type: str) -> str: ...


class RecordStore(Protocol):
    def insert_recording(self, *, question_id: str, audio_url: str, duration: int) -> UserRecording: ...


def build_recording_name(serial_number: int, file_format: str, now: Optional[datetime] = None) -> str:
    """Return ``recording-<serial>-<timestamp>.<ext>`` with a filename-safe ISO timestamp."""
    if now is None:
        now = datetime.now(timezone.utc)
    timestamp = now.strftime('%Y-%m-%dT%H-%M-%S-%f')[:-3] + 'Z'
    return f"recording-{serial_number}-{timestamp}.{file_format.lower()}"


class RecordingSubmitter:
    """Uploads the controller's artifact and records it in the metadata store.

    The controller's session is never modified beyond its ``uploading`` flag,
    so after a failure the same recording can be submitted again.
    """

    def __init__(
        self,
        object_store: ObjectStore,
        record_store: RecordStore,
        file_format: str = FILE_FORMAT,
        practice_logger: Optional[PracticeLogger] = None,
    ) -> None:
        self._object_store = object_store
        self._record_store = record_store
        self._file_format = file_format
        self._practice_logger = practice_logger

    def submit(self, controller: CaptureController, question: Question) -> UserRecording:
        """Publish the current recording for *question*.

        Raises:
            RecordingNotReady: The capture has not finished yet
            UploadInProgress: Another submission of this session is running
            EmptyCapture: There is nothing to upload
            UploadFailure: The object store rejected the upload
            MetadataWriteFailure: The record could not be stored
        """
        status = controller.status
        if status in (SessionStatus.CAPTURING, SessionStatus.STOPPING):
            raise RecordingNotReady(f"Recording is still {status.value}")
        artifact = controller.get_artifact()
        if status is not SessionStatus.READY or artifact is None:
            raise EmptyCapture()

        if not controller.begin_upload():
            raise UploadInProgress("Recording is already being uploaded")
        session = controller.session
        audio_url = None
        try:
            name = build_recording_name(question.serial_number, self._file_format)
            try:
                data = artifact.export(self._file_format)
                audio_url = self._object_store.upload_bytes(name, data, content_type_for(self._file_format))
            except Exception as e:
                raise UploadFailure(f"Failed to upload {name}: {e}") from e
            logger.info(f'Uploaded {name} -> {audio_url}')

            try:
                record = self._record_store.insert_recording(
                    question_id=question.id,
                    audio_url=audio_url,
                    duration=session.elapsed_seconds,
                )
            except Exception as e:
                raise MetadataWriteFailure(f"Failed to save recording metadata: {e}", audio_url=audio_url) from e
        except (UploadFailure, MetadataWriteFailure) as e:
            logger.error(str(e))
            self._log(session.session_id, question, audio_url, None, str(e))
            raise
        finally:
            controller.set_uploading(False)

        logger.info(f'Recording {record.id} saved for question {question.serial_number}')
        self._log(session.session_id, question, audio_url, record.id, None)
        return record

    def _log(self, session_id, question, audio_url, record_id, error) -> None:
        if self._practice_logger is None:
            return
        self._practice_logger.write_submission(
            session_id=session_id,
            question_serial=question.serial_number,
            audio_url=audio_url,
            record_id=record_id,
            error=error,
        )
