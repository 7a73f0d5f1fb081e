"""
memoscribe.audio - Audio decoding and sample format normalization.

Pipeline Stage 1: decode a memo recording and convert it to the sample
rate, channel count and encoding the recognition engine requires.
"""

from __future__ import annotations
