"""Shared test fixtures for SpeakPrep tests."""

from typing import Callable, List, Optional

import pytest

from speakprep.core.devices import AudioSource, CaptureConstraints, DeviceStream, Encoder, LevelTap
from speakprep.core.errors import DeviceUnavailable
from speakprep.core.recording import CaptureController
from speakprep.core.scheduling import Scheduler, TimerHandle
from speakprep.core.store import MetadataStore, Question


# ---------------------------------------------------------------------------
# Manual clock
# ---------------------------------------------------------------------------

class ManualTimer(TimerHandle):
    def __init__(self, due: float, interval: Optional[float], callback: Callable[[], None]) -> None:
        self.due = due
        self.interval = interval
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler(Scheduler):
    """Scheduler whose clock only moves when the test calls :meth:`advance`."""

    def __init__(self) -> None:
        self.now = 0.0
        self._timers: List[ManualTimer] = []

    def call_later(self, delay, callback):
        timer = ManualTimer(self.now + delay, None, callback)
        self._timers.append(timer)
        return timer

    def call_every(self, interval, callback):
        timer = ManualTimer(self.now + interval, interval, callback)
        self._timers.append(timer)
        return timer

    @property
    def pending(self) -> List[ManualTimer]:
        self._timers = [t for t in self._timers if not t.cancelled]
        return list(self._timers)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.pending if t.due <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.now = timer.due
            if timer.interval:
                timer.due += timer.interval
            else:
                timer.cancel()
            timer.callback()
        self.now = target


# ---------------------------------------------------------------------------
# Fake device layer
# ---------------------------------------------------------------------------

class FakeEncoder(Encoder):
    def __init__(self, stream: "FakeStream", on_data, on_stop) -> None:
        self._stream = stream
        self.on_data = on_data
        self.on_stop = on_stop
        self._active = False
        self.stop_calls = 0

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        if self._stream.source.on_encoder_start:
            self._stream.source.on_encoder_start()
        self._active = True
        if self._stream.source.initial_chunk:
            self.on_data(self._stream.source.initial_chunk)

    def emit(self, data: bytes) -> None:
        """Deliver a chunk as the device would."""
        self.on_data(data)

    def stop(self) -> None:
        self.stop_calls += 1
        if self._stream.source.fail_encoder_stop:
            raise RuntimeError("encoder exploded")
        if not self._active:
            raise RuntimeError("encoder already inactive")
        self._active = False
        if self._stream.source.flush_fires:
            self.on_stop()

    def fire_stop(self) -> None:
        """Deliver a late stop notification."""
        self.on_stop()


class FakeLevelTap(LevelTap):
    def __init__(self, stream: "FakeStream") -> None:
        self._stream = stream
        self.closed = False

    def sample(self) -> float:
        return self._stream.source.level

    def close(self) -> None:
        if self._stream.source.fail_tap:
            raise RuntimeError("tap close failed")
        self.closed = True


class FakeStream(DeviceStream):
    sample_rate = 16000
    channels = 1
    sample_width = 2
    device_name = "Fake Mic"

    def __init__(self, source: "FakeSource", constraints: CaptureConstraints) -> None:
        self.source = source
        self.constraints = constraints
        self.released = False
        self.encoder: Optional[FakeEncoder] = None
        self.level_tap: Optional[FakeLevelTap] = None

    def open_encoder(self, on_data, on_stop) -> Encoder:
        self.encoder = FakeEncoder(self, on_data, on_stop)
        return self.encoder

    def open_level_tap(self) -> LevelTap:
        self.level_tap = FakeLevelTap(self)
        if self.source.on_level_tap:
            self.source.on_level_tap()
        return self.level_tap

    def stop_tracks(self) -> None:
        if self.source.fail_tracks:
            raise RuntimeError("tracks refused to stop")
        self.released = True


class FakeSource(AudioSource):
    """Configurable stand-in for the microphone."""

    def __init__(self) -> None:
        self.deny = False
        self.flush_fires = True
        self.fail_encoder_stop = False
        self.fail_tracks = False
        self.fail_tap = False
        self.level = 0.5
        self.initial_chunk = b''
        # Called while the controller is still setting up the capture
        self.on_level_tap: Optional[Callable[[], None]] = None
        self.on_encoder_start: Optional[Callable[[], None]] = None
        self.streams: List[FakeStream] = []

    def open(self, constraints: CaptureConstraints) -> DeviceStream:
        if self.deny:
            raise DeviceUnavailable("Permission denied")
        stream = FakeStream(self, constraints)
        self.streams.append(stream)
        return stream

    @property
    def last(self) -> FakeStream:
        return self.streams[-1]

    @property
    def live_streams(self) -> List[FakeStream]:
        return [s for s in self.streams if not s.released]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def controller(source, scheduler):
    return CaptureController(source, scheduler=scheduler, flush_timeout=3.0, level_interval=0.1)


@pytest.fixture
def store(tmp_path):
    return MetadataStore(f"sqlite:///{tmp_path / 'speakprep.db'}")


@pytest.fixture
def question(store):
    return store.add_questions([
        Question(
            serial_number=1,
            part=1,
            category="Hometown",
            question="Can you tell me about your hometown?",
            sample_answer="I come from a vibrant city.",
            key_vocabulary=["vibrant"],
            time_limit=90,
        )
    ])[0]


@pytest.fixture
def temp_audio_dir(tmp_path):
    """Provide temporary recordings directory for tests."""
    audio_dir = tmp_path / "recordings"
    audio_dir.mkdir(parents=True, exist_ok=True)
    return audio_dir
