"""Utility tests for SpeakPrep."""

import pytest

from speakprep.cli.utils import console, format_time, make_device_table, make_level_progress


def test_console_available():
    """Test that console is available."""
    assert console is not None
    assert hasattr(console, 'print')


@pytest.mark.parametrize("seconds, text", [(0, "0:00"), (9, "0:09"), (90, "1:30"), (600, "10:00"), (-3, "0:00")])
def test_format_time(seconds, text):
    assert format_time(seconds) == text


def test_make_device_table():
    table = make_device_table([
        {"id": 0, "name": "Built-in Mic", "driver": "alsa", "channels": 2, "rate": 44100, "is_default": True},
        {"id": 3, "name": "USB Headset", "driver": "usb", "channels": 1, "rate": 16000, "is_default": False},
    ])
    assert table.row_count == 2


def test_level_progress_has_clock_field():
    with make_level_progress() as progress:
        task = progress.add_task("level", total=100, clock="0:00 / 1:30")
        progress.update(task, completed=42)
        assert progress.tasks[0].fields["clock"] == "0:00 / 1:30"
        assert progress.tasks[0].percentage == 42
