"""Device layer for SpeakPrep.

The capture controller only ever talks to the abstract classes below; the
PyAudio implementation is the one used by the CLI.

Main public classes
-------------------
:class:`AudioSource`
    Grants an input :class:`DeviceStream` for a set of
    :class:`CaptureConstraints`, or raises
    :class:`~speakprep.core.errors.DeviceUnavailable`.

:class:`DeviceStream`
    A live microphone stream. It opens one :class:`Encoder` (chunked
    capture with an asynchronous flush on stop) and one :class:`LevelTap`
    (amplitude samples for the level meter), and releases the device with
    :meth:`DeviceStream.stop_tracks`.

:class:`PyAudioSource`
    PortAudio-backed source. Audio arrives on PortAudio's callback thread;
    every ``timeslice`` buffers are handed to the encoder's ``on_data``
    callback as one chunk of raw int16 PCM.
"""

import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

import pyaudio
from loguru import logger

from .config import CHANNEL, CHUNK, GAIN, RATE, SAMPLE_WIDTH_INT16, TIMESLICE
from .errors import DeviceUnavailable
from .processing import apply_gain, auto_gain, calculate_amplitude, detect_driver_type

DataCallback = Callable[[bytes], None]
StopCallback = Callable[[], None]


@dataclass(frozen=True)
class CaptureConstraints:
    """What the controller asks of the input device."""

    device_id: Optional[int] = None
    rate: int = RATE
    channels: int = CHANNEL
    frames_per_buffer: int = CHUNK
    timeslice: int = TIMESLICE
    gain: float = GAIN
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain: bool = True


class Encoder:
    """Turns stream buffers into chunks.

    ``stop()`` returns immediately; pending data is delivered through
    ``on_data`` and ``on_stop`` fires once the flush is complete.
    """

    def start(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    @property
    def active(self) -> bool:
        raise NotImplementedError


class LevelTap:
    """Analysis tap exposing the current input amplitude."""

    def sample(self) -> float:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class DeviceStream:
    """A granted input stream."""

    sample_rate: int = RATE
    channels: int = CHANNEL
    sample_width: int = SAMPLE_WIDTH_INT16
    device_name: str = "Unknown"

    def open_encoder(self, on_data: DataCallback, on_stop: StopCallback) -> Encoder:
        raise NotImplementedError

    def open_level_tap(self) -> LevelTap:
        raise NotImplementedError

    def stop_tracks(self) -> None:
        raise NotImplementedError


class AudioSource:
    """Grants device streams."""

    def open(self, constraints: CaptureConstraints) -> DeviceStream:
        raise NotImplementedError


class PyAudioEncoder(Encoder):
    """Groups ``timeslice`` PyAudio buffers into one chunk."""

    def __init__(
        self,
        stream: "PyAudioStream",
        on_data: DataCallback,
        on_stop: StopCallback,
        timeslice: int,
    ) -> None:
        self._stream = stream
        self._on_data = on_data
        self._on_stop = on_stop
        self._timeslice = max(1, timeslice)
        self._pending: List[bytes] = []
        self._active = False
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        with self._lock:
            self._active = True
        self._stream.attach(self._write)

    def _write(self, buffer: bytes) -> None:
        # Runs on the PortAudio callback thread
        with self._lock:
            if not self._active:
                return
            self._pending.append(buffer)
            if len(self._pending) >= self._timeslice:
                data = b''.join(self._pending)
                self._pending = []
                self._on_data(data)

    def stop(self) -> None:
        with self._lock:
            if not self._active:
                raise RuntimeError("Encoder is not recording")
            self._active = False
        self._stream.detach(self._write)

        flush_thread = threading.Thread(target=self._flush, daemon=True)
        flush_thread.name = "SpeakPrepEncoderFlush"
        flush_thread.start()

    def _flush(self) -> None:
        with self._lock:
            data = b''.join(self._pending)
            self._pending = []
            if data:
                self._on_data(data)
        logger.debug('Encoder flushed')
        self._on_stop()


class PyAudioLevelTap(LevelTap):
    """Computes the amplitude of the latest buffer seen by the stream."""

    def __init__(self, stream: "PyAudioStream") -> None:
        self._stream = stream
        self._closed = False

    def sample(self) -> float:
        if self._closed:
            return 0.0
        return calculate_amplitude(self._stream.latest_buffer())

    def close(self) -> None:
        self._closed = True


class PyAudioStream(DeviceStream):
    """A running PortAudio input stream owned by a single capture session."""

    def __init__(
        self,
        audio_interface: pyaudio.PyAudio,
        device_info: dict,
        constraints: CaptureConstraints,
    ) -> None:
        self._audio_interface = audio_interface
        self._constraints = constraints
        self._lock = threading.Lock()
        self._consumers: List[DataCallback] = []
        self._latest = b''
        self._released = False

        self.device_id = int(device_info['index'])
        self.device_name = device_info.get('name', 'Unknown')
        # Use the device's native rate, PortAudio rejects most others
        self.sample_rate = int(device_info.get('defaultSampleRate', constraints.rate))
        self.channels = constraints.channels
        self.sample_width = SAMPLE_WIDTH_INT16

        self._audio_stream = self._audio_interface.open(
            format=pyaudio.paInt16,
            channels=self.channels,
            rate=self.sample_rate,
            input=True,
            input_device_index=self.device_id,
            frames_per_buffer=constraints.frames_per_buffer,
            stream_callback=self._fill_buffer,
        )

    def _fill_buffer(
        self,
        in_data: bytes,
        frame_count: int,
        time_info: object,
        status_flags: object,
    ) -> tuple:
        """PortAudio callback: process the buffer and fan it out to consumers."""
        processed = apply_gain(in_data, self._constraints.gain)
        if self._constraints.auto_gain:
            processed = auto_gain(processed)

        with self._lock:
            self._latest = processed
            consumers = list(self._consumers)
        for consumer in consumers:
            consumer(processed)

        return None, pyaudio.paContinue

    def attach(self, consumer: DataCallback) -> None:
        with self._lock:
            self._consumers.append(consumer)

    def detach(self, consumer: DataCallback) -> None:
        with self._lock:
            if consumer in self._consumers:
                self._consumers.remove(consumer)

    def latest_buffer(self) -> bytes:
        with self._lock:
            return self._latest

    def open_encoder(self, on_data: DataCallback, on_stop: StopCallback) -> Encoder:
        return PyAudioEncoder(self, on_data, on_stop, self._constraints.timeslice)

    def open_level_tap(self) -> LevelTap:
        return PyAudioLevelTap(self)

    def stop_tracks(self) -> None:
        """Stop the PortAudio stream and release the device. Idempotent."""
        if self._released:
            return
        self._released = True
        with self._lock:
            self._consumers = []
            self._latest = b''
        try:
            self._audio_stream.stop_stream()
            self._audio_stream.close()
        finally:
            self._audio_interface.terminate()
        logger.info(f'Microphone released: {self.device_name}')


class PyAudioSource(AudioSource):
    """Opens microphone streams through PyAudio."""

    def open(self, constraints: CaptureConstraints) -> DeviceStream:
        try:
            audio_interface = pyaudio.PyAudio()
        except Exception as e:
            raise DeviceUnavailable(f"Audio subsystem unavailable: {e}") from e

        try:
            if constraints.device_id is None:
                device_info = audio_interface.get_default_input_device_info()
            else:
                device_info = audio_interface.get_device_info_by_index(constraints.device_id)
            if device_info.get('maxInputChannels', 0) <= 0:
                raise ValueError(f"{device_info.get('name', 'device')} has no input channels")
            stream = PyAudioStream(audio_interface, device_info, constraints)
        except Exception as e:
            audio_interface.terminate()
            raise DeviceUnavailable(f"Microphone unavailable: {e}") from e

        if constraints.echo_cancellation or constraints.noise_suppression:
            logger.debug('Echo cancellation and noise suppression are left to the audio server')
        logger.info(f'Microphone opened: {stream.device_name} at {stream.sample_rate} Hz')
        return stream


def list_input_devices(driver_filter: Optional[str] = None) -> List[dict]:
    """List all available input audio devices.

    Args:
        driver_filter: Optional driver type to filter by ('pulse', 'alsa', 'jack', 'usb', 'default')

    Returns:
        List of dicts with keys: id, name, driver, channels, rate, is_default
    """
    audio = pyaudio.PyAudio()
    try:
        try:
            default_device_id = int(audio.get_default_input_device_info()['index'])
        except IOError:
            default_device_id = -1

        input_devices = []
        for i in range(audio.get_device_count()):
            device_info = audio.get_device_info_by_index(i)
            if device_info.get('maxInputChannels', 0) <= 0:
                continue
            device_name = device_info.get('name', 'Unknown')
            driver_type = detect_driver_type(device_name)
            if driver_filter and driver_type != driver_filter.lower():
                continue
            input_devices.append({
                'id': i,
                'name': device_name,
                'driver': driver_type,
                'channels': device_info.get('maxInputChannels', 0),
                'rate': int(device_info.get('defaultSampleRate', 0)),
                'is_default': i == default_device_id,
            })
        return input_devices
    finally:
        audio.terminate()
