"""Local copies of practice recordings.

This module keeps a learner's recordings on disk next to the practice log so
they can be replayed or re-submitted without the network.
"""

from pathlib import Path
from typing import Any, Dict, List

from loguru import logger

from .artifact import CONTENT_TYPES, Artifact
from .config import OUTPUT_DIR


class StorageManager:
    """Manages local recording files."""

    def __init__(self, storage_dir: str = OUTPUT_DIR) -> None:
        """Initialize storage manager.

        Args:
            storage_dir: Root directory for local recordings
        """
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def save_artifact(self, artifact: Artifact, name: str, file_format: str) -> Path:
        """Encode *artifact* and write it as ``<name>.<file_format>``.

        Returns:
            Path of the written file
        """
        file_path = self.storage_dir / f"{Path(name).stem}.{file_format.lower()}"
        file_path.write_bytes(artifact.export(file_format))
        logger.info(f"Saved recording: {file_path}")
        return file_path

    def list_recordings(self) -> List[Dict[str, Any]]:
        """List stored recordings, newest first.

        Returns:
            List of recording metadata dictionaries
        """
        recordings = []
        try:
            for audio_file in self.storage_dir.iterdir():
                if audio_file.suffix.lstrip('.').lower() not in CONTENT_TYPES:
                    continue
                recordings.append(self._describe(audio_file))
        except OSError as e:
            logger.error(f"Error listing recordings: {e}")

        recordings.sort(key=lambda r: r["created"], reverse=True)
        return recordings

    def delete_recording(self, filename: str) -> bool:
        """Delete a recording file.

        Returns:
            True if successful, False otherwise
        """
        try:
            file_path = self.storage_dir / filename
            if file_path.is_file():
                file_path.unlink()
                logger.info(f"Deleted recording: {filename}")
                return True
        except OSError as e:
            logger.error(f"Error deleting recording: {e}")

        return False

    @staticmethod
    def _describe(file_path: Path) -> Dict[str, Any]:
        stat = file_path.stat()
        return {
            "name": file_path.stem,
            "path": str(file_path),
            "size": stat.st_size,
            "created": stat.st_mtime,
        }
