"""Capture lifecycle for SpeakPrep.

:class:`CaptureController` owns the microphone stream, the encoder, the
level tap and the timers of one practice attempt and moves a
:class:`RecordingSession` through its states::

    idle ──start──▶ capturing ──stop──▶ stopping ──▶ ready | failed
    {idle, ready, failed} ──start──▶ capturing   (prior artifact discarded)
    any ──reset/clear──▶ idle

Threads
-------
PyAudio delivers data on PortAudio's callback thread, the encoder flushes on
its own thread and the scheduler fires ticks on timer threads. All session
state is guarded by one re-entrant lock. Calls into the device layer that
can wait for the callback thread (encoder stop, stream release) are made
outside that lock, after the resources have been detached from the session.

Every callback handed to the device layer or the scheduler carries the
*generation* of the session that created it. ``reset()`` and ``start()``
bump the generation, so a late callback from a torn-down session is a no-op.

Stopping
--------
``stop()`` asks the encoder to flush and arms a fallback timer. The first of
the two completion signals closes a single-shot gate and assembles the
artifact from whatever chunks arrived; the second is ignored.
"""

import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Callable, List, Optional, Tuple

from loguru import logger

from .artifact import Artifact
from .config import FLUSH_TIMEOUT, LEVEL_INTERVAL
from .devices import AudioSource, CaptureConstraints, DeviceStream, Encoder, LevelTap
from .errors import DeviceUnavailable, EmptyCapture, ResourceReleaseFailure, SessionBusy, SpeakPrepError
from .log import PracticeLogger
from .scheduling import Scheduler, ThreadScheduler, TimerHandle

TICK_SECONDS = 1.0


class SessionStatus(str, Enum):
    IDLE = 'idle'
    CAPTURING = 'capturing'
    STOPPING = 'stopping'
    READY = 'ready'
    FAILED = 'failed'


@dataclass(frozen=True)
class RecordingSession:
    """Point-in-time view of the controller's session."""

    session_id: Optional[str]
    status: SessionStatus
    elapsed_seconds: int
    amplitude: float
    chunks: Tuple[bytes, ...]
    artifact: Optional[Artifact]
    uploading: bool
    last_error: Optional[SpeakPrepError] = None

    @property
    def byte_count(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)


class CompletionGate:
    """Single-shot gate: the first :meth:`close` wins, later calls return ``False``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._winner: Optional[str] = None

    def close(self, reason: str) -> bool:
        with self._lock:
            if self._winner is not None:
                return False
            self._winner = reason
            return True

    @property
    def winner(self) -> Optional[str]:
        return self._winner


ReleaseStep = Tuple[str, Callable[[], None]]


class CaptureController:
    """Owns the device resources of a single recording session at a time."""

    def __init__(
        self,
        source: AudioSource,
        constraints: Optional[CaptureConstraints] = None,
        scheduler: Optional[Scheduler] = None,
        flush_timeout: float = FLUSH_TIMEOUT,
        level_interval: float = LEVEL_INTERVAL,
        supersede: bool = True,
        practice_logger: Optional[PracticeLogger] = None,
    ) -> None:
        """Initialize the controller in the idle state.

        Args:
            source: Grants microphone streams
            constraints: Device constraints; echo cancellation, noise
                suppression and auto-gain are requested by default
            scheduler: Timer source, a :class:`ThreadScheduler` by default
            flush_timeout: Seconds to wait for the encoder after ``stop()``
            level_interval: Seconds between amplitude samples
            supersede: When ``True`` ``start()`` during a capture tears the
                running capture down first; when ``False`` it raises
                :class:`SessionBusy`
            practice_logger: Optional JSONL log of capture attempts
        """
        self._source = source
        self._constraints = constraints or CaptureConstraints()
        self._scheduler = scheduler or ThreadScheduler()
        self._flush_timeout = flush_timeout
        self._level_interval = level_interval
        self._supersede = supersede
        self._practice_logger = practice_logger

        self._lock = threading.RLock()
        self._settled = threading.Event()
        self._settled.set()
        self._generation = 0

        # Session state
        self._session_id: Optional[str] = None
        self._status = SessionStatus.IDLE
        self._elapsed_seconds = 0
        self._amplitude = 0.0
        self._chunks: List[bytes] = []
        self._artifact: Optional[Artifact] = None
        self._uploading = False
        self._last_error: Optional[SpeakPrepError] = None
        self._time_limit: Optional[int] = None
        self._audio_format = {}

        # Owned resources
        self._stream: Optional[DeviceStream] = None
        self._encoder: Optional[Encoder] = None
        self._level_tap: Optional[LevelTap] = None
        self._ticker: Optional[TimerHandle] = None
        self._sampler: Optional[TimerHandle] = None
        self._fallback: Optional[TimerHandle] = None
        self._gate: Optional[CompletionGate] = None

        self._release_failures: List[ResourceReleaseFailure] = []

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def session(self) -> RecordingSession:
        with self._lock:
            return RecordingSession(
                session_id=self._session_id,
                status=self._status,
                elapsed_seconds=self._elapsed_seconds,
                amplitude=self._amplitude,
                chunks=tuple(self._chunks),
                artifact=self._artifact,
                uploading=self._uploading,
                last_error=self._last_error,
            )

    @property
    def release_failures(self) -> List[ResourceReleaseFailure]:
        """Teardown errors swallowed since the last ``start()``, oldest first."""
        with self._lock:
            return list(self._release_failures)

    def get_artifact(self) -> Optional[Artifact]:
        """Return the recording assembled so far, or ``None`` before the first chunk.

        Mid-capture this is a partial snapshot; once ready it is the session's
        artifact.
        """
        with self._lock:
            if self._status is SessionStatus.READY and self._artifact is not None:
                return self._artifact
            if not self._chunks:
                return None
            return Artifact.from_chunks(list(self._chunks), **self._audio_format)

    def wait(self, timeout: Optional[float] = None) -> SessionStatus:
        """Block until the session leaves ``capturing``/``stopping`` or *timeout* expires."""
        self._settled.wait(timeout)
        return self._status

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, time_limit: Optional[int] = None, question_serial: Optional[int] = None) -> RecordingSession:
        """Open the microphone and begin capturing.

        Args:
            time_limit: When set, the controller stops itself once
                ``elapsed_seconds`` reaches it
            question_serial: Recorded in the practice log only

        Returns:
            Snapshot of the new session

        Raises:
            SessionBusy: A capture is running and ``supersede`` is off
            DeviceUnavailable: The microphone could not be opened; the
                session is left idle
        """
        with self._lock:
            if self._status in (SessionStatus.CAPTURING, SessionStatus.STOPPING):
                if not self._supersede:
                    raise SessionBusy(f"Capture {self._session_id} is still {self._status.value}")
                logger.info(f'Superseding capture {self._session_id}')
            self._release_failures = []
            steps = self._detach_resources()
            self._clear_state()
            generation = self._generation
        self._release(steps)

        try:
            stream = self._source.open(self._constraints)
        except DeviceUnavailable as e:
            with self._lock:
                if generation == self._generation:
                    self._last_error = e
            logger.warning(f'Capture not started: {e}')
            raise

        level_tap = None
        try:
            level_tap = stream.open_level_tap()
            encoder = stream.open_encoder(
                on_data=partial(self._on_data, generation),
                on_stop=partial(self._resolve, generation, 'flush'),
            )
        except Exception as e:
            steps = [('device stream', stream.stop_tracks)]
            if level_tap is not None:
                steps.append(('level tap', level_tap.close))
            self._release(steps)
            error = DeviceUnavailable(f"Could not start capture: {e}")
            with self._lock:
                if generation == self._generation:
                    self._last_error = error
            raise error from e

        # Publish only once every resource is attached
        with self._lock:
            superseded = generation != self._generation
            if not superseded:
                self._stream = stream
                self._level_tap = level_tap
                self._encoder = encoder
                self._session_id = uuid.uuid4().hex
                self._status = SessionStatus.CAPTURING
                self._time_limit = time_limit
                self._audio_format = {
                    'sample_rate': stream.sample_rate,
                    'channels': stream.channels,
                    'sample_width': stream.sample_width,
                }
                self._settled.clear()
                self._ticker = self._scheduler.call_every(TICK_SECONDS, partial(self._tick, generation))
                self._sampler = self._scheduler.call_later(
                    self._level_interval, partial(self._sample_level, generation)
                )
                session_id = self._session_id
        if superseded:
            logger.debug('Capture reset while the microphone was opening')
            self._release([('device stream', stream.stop_tracks), ('level tap', level_tap.close)])
            return self.session

        logger.info(f'Capture {session_id} started on {stream.device_name}')
        if self._practice_logger is not None:
            self._practice_logger.write_capture_start(
                session_id=session_id,
                device_name=stream.device_name,
                sample_rate=stream.sample_rate,
                channels=stream.channels,
                question_serial=question_serial,
            )

        try:
            encoder.start()
        except Exception as e:
            self.reset()
            error = DeviceUnavailable(f"Could not start capture: {e}")
            with self._lock:
                self._last_error = error
            raise error from e

        with self._lock:
            orphaned = self._encoder is not encoder
        if orphaned:
            # stop() or reset() detached the encoder before it was running
            logger.debug(f'Capture {session_id} ended while the encoder was starting')
            self._release([('encoder', partial(_stop_if_active, encoder))])
        return self.session

    def stop(self) -> SessionStatus:
        """Stop capturing and assemble the recording.

        A no-op returning the current status unless the session is capturing.
        The session resolves to ``ready`` or ``failed`` when the encoder's
        flush completes or ``flush_timeout`` elapses, whichever comes first;
        use :meth:`wait` to block on it.
        """
        with self._lock:
            if self._status is not SessionStatus.CAPTURING:
                logger.debug(f'stop() ignored while {self._status.value}')
                return self._status

            generation = self._generation
            self._status = SessionStatus.STOPPING
            self._amplitude = 0.0
            self._cancel_timer('_ticker')
            self._cancel_timer('_sampler')
            self._gate = CompletionGate()
            self._fallback = self._scheduler.call_later(
                self._flush_timeout, partial(self._resolve, generation, 'fallback')
            )

            encoder, self._encoder = self._encoder, None
            stream, self._stream = self._stream, None
            level_tap, self._level_tap = self._level_tap, None

        try:
            if encoder is not None:
                encoder.stop()
        except Exception as e:
            logger.warning(f'Encoder did not stop cleanly: {e}')
            self._resolve(generation, 'encoder-error')

        steps: List[ReleaseStep] = []
        if stream is not None:
            steps.append(('device stream', stream.stop_tracks))
        if level_tap is not None:
            steps.append(('level tap', level_tap.close))
        self._release(steps)
        return self._status

    def auto_stop(self, time_limit: int) -> bool:
        """Stop the capture if it has reached *time_limit* seconds.

        Returns:
            ``True`` if this call stopped the capture
        """
        with self._lock:
            due = self._status is SessionStatus.CAPTURING and self._elapsed_seconds >= time_limit
        if due:
            logger.info(f'Time limit of {time_limit}s reached')
            self.stop()
        return due

    def reset(self) -> RecordingSession:
        """Release every resource and return to ``idle``, from any state.

        Each release step runs even if an earlier one failed; failures are
        logged and kept in :attr:`release_failures`, never raised.
        """
        with self._lock:
            steps = self._detach_resources()
            self._clear_state()
            self._settled.set()
        self._release(steps)
        logger.debug('Capture session reset')
        return self.session

    clear = reset

    def set_uploading(self, uploading: bool) -> None:
        with self._lock:
            self._uploading = uploading

    def begin_upload(self) -> bool:
        """Set ``uploading`` unless it is already set; returns whether it was claimed."""
        with self._lock:
            if self._uploading:
                return False
            self._uploading = True
            return True

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _on_data(self, generation: int, data: bytes) -> None:
        with self._lock:
            if generation != self._generation:
                return
            if self._status not in (SessionStatus.CAPTURING, SessionStatus.STOPPING):
                return
            if data:
                self._chunks.append(bytes(data))

    def _tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._status is not SessionStatus.CAPTURING:
                return
            self._elapsed_seconds += 1
            time_limit = self._time_limit
        if time_limit is not None:
            self.auto_stop(time_limit)

    def _sample_level(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._status is not SessionStatus.CAPTURING:
                return
            level_tap = self._level_tap

        try:
            amplitude = level_tap.sample() if level_tap is not None else 0.0
        except Exception as e:
            logger.debug(f'Level sample failed: {e}')
            amplitude = None

        with self._lock:
            if generation != self._generation or self._status is not SessionStatus.CAPTURING:
                return
            if amplitude is not None:
                self._amplitude = max(0.0, min(1.0, float(amplitude)))
            self._sampler = self._scheduler.call_later(
                self._level_interval, partial(self._sample_level, generation)
            )

    def _resolve(self, generation: int, reason: str) -> None:
        with self._lock:
            if generation != self._generation or self._status is not SessionStatus.STOPPING:
                return
            if self._gate is None or not self._gate.close(reason):
                return
            self._cancel_timer('_fallback')

            if self._chunks:
                self._artifact = Artifact.from_chunks(list(self._chunks), **self._audio_format)
                self._status = SessionStatus.READY
            else:
                self._last_error = EmptyCapture()
                self._status = SessionStatus.FAILED
            self._settled.set()

            session_id = self._session_id
            status = self._status
            chunk_count = len(self._chunks)
            byte_count = sum(len(chunk) for chunk in self._chunks)
            elapsed = self._elapsed_seconds

        if status is SessionStatus.READY:
            logger.info(f'Capture {session_id} ready: {chunk_count} chunks, {byte_count} bytes ({reason})')
        else:
            logger.warning(f'Capture {session_id} failed: no audio captured ({reason})')

        if self._practice_logger is not None:
            self._practice_logger.write_capture_end(
                session_id=session_id,
                status=status.value,
                resolved_by=reason,
                chunk_count=chunk_count,
                byte_count=byte_count,
                elapsed_seconds=elapsed,
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _cancel_timer(self, attr: str) -> None:
        handle = getattr(self, attr)
        setattr(self, attr, None)
        if handle is not None:
            handle.cancel()

    def _clear_state(self) -> None:
        self._session_id = None
        self._status = SessionStatus.IDLE
        self._elapsed_seconds = 0
        self._amplitude = 0.0
        self._chunks = []
        self._artifact = None
        self._uploading = False
        self._last_error = None
        self._time_limit = None
        self._gate = None

    def _detach_resources(self) -> List[ReleaseStep]:
        """Invalidate pending callbacks and hand every owned resource to the caller."""
        self._generation += 1
        steps: List[ReleaseStep] = []

        for attr, name in (('_ticker', 'elapsed ticker'), ('_sampler', 'level sampler'), ('_fallback', 'flush fallback')):
            handle = getattr(self, attr)
            setattr(self, attr, None)
            if handle is not None:
                steps.append((name, handle.cancel))

        encoder, self._encoder = self._encoder, None
        if encoder is not None:
            steps.append(('encoder', partial(_stop_if_active, encoder)))

        stream, self._stream = self._stream, None
        if stream is not None:
            steps.append(('device stream', stream.stop_tracks))

        level_tap, self._level_tap = self._level_tap, None
        if level_tap is not None:
            steps.append(('level tap', level_tap.close))

        artifact, self._artifact = self._artifact, None
        if artifact is not None:
            steps.append(('artifact', artifact.revoke))

        return steps

    def _release(self, steps: List[ReleaseStep]) -> None:
        for name, release in steps:
            try:
                release()
            except Exception as e:
                failure = ResourceReleaseFailure(name, e)
                logger.warning(str(failure))
                with self._lock:
                    self._release_failures.append(failure)


def _stop_if_active(encoder: Encoder) -> None:
    if encoder.active:
        encoder.stop()
