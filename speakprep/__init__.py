"""SpeakPrep - IELTS speaking practice recorder.

This package records spoken answers to IELTS prompt questions from the
microphone and publishes them to object storage with a metadata record.
"""

from .cli.commands import app

__version__ = "1.0.0"

__all__ = ["app", "__version__"]
