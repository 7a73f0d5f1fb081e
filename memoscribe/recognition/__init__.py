"""
memoscribe.recognition - Pluggable speech recognition engines.

Pipeline Stage 2: run a normalized sample buffer through a neural
(Whisper) or platform dictation engine behind one interface.
"""

from __future__ import annotations
