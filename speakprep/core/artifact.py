"""The assembled recording produced by a capture session."""

import io
from dataclasses import dataclass, field
from typing import List

import numpy as np
import soundfile as sf
from pydub import AudioSegment

from .config import CHANNEL, RATE, SAMPLE_WIDTH_INT16

RAW_CONTENT_TYPE = 'audio/L16'

CONTENT_TYPES = {
    'wav': 'audio/wav',
    'flac': 'audio/flac',
    'ogg': 'audio/ogg',
    'mp3': 'audio/mpeg',
}


@dataclass
class Artifact:
    """Raw int16 PCM of one recording, concatenated from its chunks in arrival order."""

    data: bytes
    sample_rate: int = RATE
    channels: int = CHANNEL
    sample_width: int = SAMPLE_WIDTH_INT16
    content_type: str = RAW_CONTENT_TYPE
    revoked: bool = field(default=False, compare=False)

    @classmethod
    def from_chunks(cls, chunks: List[bytes], **kwargs) -> "Artifact":
        return cls(data=b''.join(chunks), **kwargs)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def duration_sec(self) -> float:
        frame_bytes = self.sample_width * self.channels
        if not frame_bytes or not self.sample_rate:
            return 0.0
        return len(self.data) / frame_bytes / self.sample_rate

    def export(self, file_format: str = 'wav') -> bytes:
        """Encode the PCM into a container.

        Args:
            file_format: 'wav', 'flac', 'ogg' (soundfile) or 'mp3' (pydub/ffmpeg)

        Returns:
            Encoded file contents

        Raises:
            ValueError: If the artifact was revoked or the format is unknown
        """
        if self.revoked:
            raise ValueError("Artifact has been revoked")

        fmt = file_format.lower()
        if fmt not in CONTENT_TYPES:
            raise ValueError(f"Unsupported format: {file_format}")

        if fmt == 'mp3':
            segment = AudioSegment(
                data=self.data,
                sample_width=self.sample_width,
                frame_rate=self.sample_rate,
                channels=self.channels,
            )
            out = io.BytesIO()
            segment.export(out, format='mp3', bitrate='128k')
            return out.getvalue()

        # Normalize to float32 for soundfile (-1.0 to 1.0 range)
        samples = np.frombuffer(self.data, dtype=np.int16).astype(np.float32) / 32768.0
        if self.channels > 1:
            samples = samples.reshape(-1, self.channels)
        out = io.BytesIO()
        sf.write(out, samples, self.sample_rate, format=fmt.upper(), subtype=_subtype(fmt))
        return out.getvalue()

    def revoke(self) -> None:
        """Release the buffer; the artifact cannot be exported afterwards."""
        self.data = b''
        self.revoked = True


def content_type_for(file_format: str) -> str:
    return CONTENT_TYPES.get(file_format.lower(), 'application/octet-stream')


def _subtype(file_format: str) -> str:
    return 'VORBIS' if file_format == 'ogg' else 'PCM_16'
