"""
Memoscribe - voice memo transcription pipeline.

Turns a recorded memo into time-stamped captions through four sequential
stages: audio normalization → speech recognition → telemetry →
sentence timestamp alignment.
"""

__version__ = "0.1.0"
