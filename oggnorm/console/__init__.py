"""CONSOLE — Orchestration & output layer.

Modules:
  session: step-driven loudness measurement state machine
  splitter: 4+ channel source → instrumental / vocal stereo WAV stems
"""

from oggnorm.console.session import (
    NormalizationSession,
    SessionState,
    StepResult,
    measure_loudness,
)
from oggnorm.console.splitter import (
    SplitResult,
    StemMapping,
    TrackSplitter,
)

__all__ = [
    "NormalizationSession",
    "SessionState",
    "StepResult",
    "measure_loudness",
    "SplitResult",
    "StemMapping",
    "TrackSplitter",
]
