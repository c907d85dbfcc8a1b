"""Audio processing utilities for SpeakPrep.

This module provides the level metering used for live feedback, gain
adjustment and driver detection.
"""

import numpy as np
from loguru import logger

# Decibel window mapped onto the [0, 1] amplitude scale
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0
MAX_INT16 = 32768


def calculate_amplitude(
    audio_data: bytes,
    min_db: float = MIN_DECIBELS,
    max_db: float = MAX_DECIBELS,
) -> float:
    """Calculate a normalized loudness value from a buffer of int16 samples.

    The buffer is windowed and transformed to the frequency domain; every
    bin magnitude is converted to dBFS, clamped to ``[min_db, max_db]`` and
    scaled to ``[0, 1]``. The result is the mean over all bins.

    Args:
        audio_data: Raw audio bytes (int16, mono)
        min_db: Level mapped to 0
        max_db: Level mapped to 1

    Returns:
        Amplitude in the range 0.0 to 1.0
    """
    try:
        samples = np.frombuffer(audio_data, dtype=np.int16).astype(np.float64) / MAX_INT16
        if samples.size < 2:
            return 0.0

        window = np.hanning(samples.size)
        spectrum = np.abs(np.fft.rfft(samples * window)) / (window.sum() / 2)
        with np.errstate(divide='ignore'):
            decibels = 20 * np.log10(spectrum)
        scaled = (np.clip(decibels, min_db, max_db) - min_db) / (max_db - min_db)
        return float(np.mean(scaled))
    except Exception as e:
        logger.debug(f"Error calculating amplitude: {e}")
        return 0.0


def apply_gain(audio_data: bytes, gain_factor: float = 1.0) -> bytes:
    """Apply gain/amplification to audio data.

    Args:
        audio_data: Raw audio bytes (int16)
        gain_factor: Gain multiplier (1.0 = no change, 2.0 = +6dB, 0.5 = -6dB)

    Returns:
        Amplified audio data as bytes
    """
    if gain_factor == 1.0:
        return audio_data

    try:
        audio_array = np.frombuffer(audio_data, dtype=np.int16).astype(np.float32)
        audio_array = np.clip(audio_array * gain_factor, -32767, 32767).astype(np.int16)
        return audio_array.tobytes()
    except Exception as e:
        logger.debug(f"Error applying gain: {e}")
        return audio_data


def auto_gain(audio_data: bytes, target_peak: float = 0.5, max_gain: float = 4.0) -> bytes:
    """Boost quiet buffers so their peak approaches *target_peak* of full scale.

    Buffers that are already loud enough are returned unchanged; the boost
    never exceeds *max_gain*.
    """
    try:
        peak = int(np.max(np.abs(np.frombuffer(audio_data, dtype=np.int16).astype(np.int32))))
    except ValueError:
        return audio_data
    if peak == 0:
        return audio_data

    gain = min(max_gain, (target_peak * MAX_INT16) / peak)
    if gain <= 1.0:
        return audio_data
    return apply_gain(audio_data, gain)


def detect_driver_type(device_name: str) -> str:
    """Detect the audio driver type from device name.

    Args:
        device_name: The name of the audio device

    Returns:
        Driver type: 'pulse', 'alsa', 'jack', 'usb' or 'default'
    """
    name_lower = device_name.lower()

    if 'pulse' in name_lower or 'pipewire' in name_lower:
        return 'pulse'
    elif 'alsa' in name_lower or 'hw:' in name_lower or 'plughw' in name_lower:
        return 'alsa'
    elif 'jack' in name_lower:
        return 'jack'
    elif 'usb' in name_lower:
        return 'usb'
    else:
        return 'default'
