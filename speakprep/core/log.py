"""Local JSONL practice log for SpeakPrep.

Appends structured JSON Lines entries to a log file next to the local
recordings so a learner's attempts can be reviewed offline.

Record types
------------
``capture`` (event=``"start"``)
    Written when the microphone is granted, with device info.

``capture`` (event=``"end"``)
    Written when a capture resolves, with the final status, how it resolved
    (``flush`` or ``fallback``), chunk count, byte count and elapsed seconds.

``submission``
    Written once per upload attempt with the object URL, the metadata record
    id and the error message when the attempt failed.

Example log lines::

    {"type":"capture","event":"start","session_id":"c41f...","question_serial":3,"device_name":"USB Mic","sample_rate":16000,"channels":1,"started_at":"2026-10-18T14:30:22"}
    {"type":"capture","event":"end","session_id":"c41f...","status":"ready","resolved_by":"flush","chunk_count":42,"byte_count":1344000,"elapsed_seconds":42,"ended_at":"2026-10-18T14:31:04"}
    {"type":"submission","session_id":"c41f...","question_serial":3,"audio_url":"https://.../recording-3-....wav","record_id":"9b2e...","ok":true,"error":null,"submitted_at":"2026-10-18T14:31:06"}
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional


class PracticeLogger:
    """Appends JSONL entries for capture sessions and submissions.

    Thread-safe: capture completion may be reported from the encoder flush
    thread or a timer thread. A single :class:`threading.Lock` serialises
    file writes.

    Args:
        log_path: Path to the ``.jsonl`` log file. Parent directories are
            created automatically.
    """

    def __init__(self, log_path: Path) -> None:
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        self._log_path = log_path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._log_path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write_capture_start(
        self,
        session_id: str,
        device_name: str,
        sample_rate: int,
        channels: int,
        question_serial: Optional[int] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        """Append a capture-start record."""
        self._append({
            "type": "capture",
            "event": "start",
            "session_id": session_id,
            "question_serial": question_serial,
            "device_name": device_name,
            "sample_rate": sample_rate,
            "channels": channels,
            "started_at": _iso(started_at),
        })

    def write_capture_end(
        self,
        session_id: str,
        status: str,
        resolved_by: str,
        chunk_count: int,
        byte_count: int,
        elapsed_seconds: int,
        ended_at: Optional[datetime] = None,
    ) -> None:
        """Append a capture-end record.

        Args:
            session_id: Session identifier matching the start record.
            status: Final session status (``ready`` or ``failed``).
            resolved_by: ``flush`` when the encoder completed, ``fallback``
                when the flush timeout won.
            chunk_count: Number of chunks assembled.
            byte_count: Size of the assembled artifact.
            elapsed_seconds: Whole seconds counted while capturing.
            ended_at: Defaults to ``datetime.now()``.
        """
        self._append({
            "type": "capture",
            "event": "end",
            "session_id": session_id,
            "status": status,
            "resolved_by": resolved_by,
            "chunk_count": chunk_count,
            "byte_count": byte_count,
            "elapsed_seconds": elapsed_seconds,
            "ended_at": _iso(ended_at),
        })

    def write_submission(
        self,
        session_id: Optional[str],
        question_serial: Optional[int],
        audio_url: Optional[str],
        record_id: Optional[str],
        error: Optional[str] = None,
        submitted_at: Optional[datetime] = None,
    ) -> None:
        """Append a submission record; ``ok`` is derived from *error*."""
        self._append({
            "type": "submission",
            "session_id": session_id,
            "question_serial": question_serial,
            "audio_url": audio_url,
            "record_id": record_id,
            "ok": error is None,
            "error": error,
            "submitted_at": _iso(submitted_at),
        })

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _append(self, record: dict) -> None:
        """Serialise *record* as JSON and append it to the log file."""
        line = json.dumps(record, ensure_ascii=False) + "\n"
        with self._lock:
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(line)


def _iso(dt: Optional[datetime]) -> str:
    """Return a compact ISO 8601 string for *dt*, defaulting to now."""
    if dt is None:
        dt = datetime.now()
    return dt.replace(microsecond=0).isoformat()
