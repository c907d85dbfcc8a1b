"""Configuration management for SpeakPrep.

This module provides configuration constants and the :class:`AppConfig` class
which merges defaults with values from an optional YAML file
(``.speakprep.yml`` in the working directory).

Capture constants
-----------------
- ``RATE``               – requested sample rate in Hz (default 16 000)
- ``CHUNK``              – PyAudio buffer size in frames (100 ms)
- ``CHANNEL``            – number of input channels (default 1 / mono)
- ``TIMESLICE``          – how many PyAudio buffers form one captured chunk
- ``FLUSH_TIMEOUT``      – seconds :meth:`CaptureController.stop` waits for the
  encoder before assembling whatever arrived
- ``LEVEL_INTERVAL``     – seconds between two amplitude samples
- ``DEFAULT_TIME_LIMIT`` – fallback answer length when a question has none
- ``FILE_FORMAT``        – container used for local copies and uploads

Configuration file
------------------
.. code-block:: yaml

    recording:
      rate: 16000
      timeslice: 10
      file_format: flac
      output_dir: recordings/
      flush_timeout: 3.0
    database:
      url: sqlite:///speakprep.db
    s3:
      bucket: recordings
      endpoint_url: https://s3.example.com
      access_key: ...
      secret_key: ...
      public_base_url: https://cdn.example.com/recordings
    log:
      file: practice.jsonl
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

# Capture parameters
RATE = 16000
CHUNK = int(RATE / 10)  # 100ms
CHANNEL = 1
TIMESLICE = 10  # buffers per chunk, 1s of audio
GAIN = 1.0
FLUSH_TIMEOUT = 3.0
LEVEL_INTERVAL = 0.1
DEFAULT_TIME_LIMIT = 120
FILE_FORMAT = 'wav'  # 'wav', 'flac', 'ogg' or 'mp3'
OUTPUT_DIR = 'recordings/'

CONFIG_FILE = '.speakprep.yml'
DATABASE_URL = 'sqlite:///speakprep.db'

# Local practice log
LOG_FILE = 'practice.jsonl'

SAMPLE_WIDTH_INT16 = 2


class AppConfig:
    """Application configuration management."""

    def __init__(self, config_path: Optional[Path] = None) -> None:
        """Initialize configuration with defaults.

        Args:
            config_path: YAML file to load. Defaults to ``.speakprep.yml`` in
                the current working directory.
        """
        self._config: Dict[str, Any] = {
            'rate': RATE,
            'chunk': CHUNK,
            'channel': CHANNEL,
            'timeslice': TIMESLICE,
            'gain': GAIN,
            'flush_timeout': FLUSH_TIMEOUT,
            'level_interval': LEVEL_INTERVAL,
            'default_time_limit': DEFAULT_TIME_LIMIT,
            'file_format': FILE_FORMAT,
            'output_dir': OUTPUT_DIR,
            'sample_width': SAMPLE_WIDTH_INT16,
        }
        self._config_path = Path(config_path) if config_path else Path.cwd() / CONFIG_FILE
        self._load_yaml_config()

    def _load_yaml_config(self) -> None:
        """Load optional YAML configuration."""
        if not self._config_path.exists():
            return

        content = yaml.safe_load(self._config_path.read_text(encoding='utf-8'))
        if not content:
            return

        if not isinstance(content, dict):
            raise ValueError(f"Configuration in {self._config_path.name} must be a mapping")

        recording_config = content.get('recording')
        if isinstance(recording_config, dict):
            for key in self._config.keys():
                if key in recording_config:
                    self._config[key] = recording_config[key]

        for key, value in content.items():
            if key == 'recording':
                continue
            self._config[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value."""
        self._config[key] = value

    def get_output_dir(self) -> Path:
        """Get the local recordings directory, creating it if needed."""
        path = Path(self._config.get('output_dir', OUTPUT_DIR))
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_s3_config(self) -> Optional[Dict[str, Any]]:
        """Get S3 configuration mapping, if present."""
        s3_config = self._config.get('s3')
        if isinstance(s3_config, dict):
            return s3_config
        return None

    def get_database_url(self) -> str:
        """Return the SQLAlchemy URL of the metadata database."""
        database_config = self._config.get('database')
        if isinstance(database_config, dict) and database_config.get('url'):
            return str(database_config['url'])
        return DATABASE_URL

    def get_log_path(self, output_dir: Optional[Path] = None) -> Path:
        """Return the practice log file path.

        The log file name is taken from the ``log.file`` key when present,
        otherwise from :data:`LOG_FILE`. The file is placed inside
        *output_dir* (defaults to :meth:`get_output_dir`).
        """
        log_config = self._config.get('log')
        log_file = LOG_FILE
        if isinstance(log_config, dict):
            log_file = log_config.get('file', LOG_FILE)
        base = Path(output_dir) if output_dir is not None else self.get_output_dir()
        return base / log_file
