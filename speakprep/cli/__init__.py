"""Command-line interface for SpeakPrep."""

from .commands import app

__all__ = ["app"]
