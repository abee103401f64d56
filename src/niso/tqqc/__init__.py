"""TQQC delta search core.

Parity reduction, the significance gate, step and convergence control, and
the adaptive search loop itself.
"""

from __future__ import annotations

from niso.tqqc.types import (
    Direction,
    IterationRecord,
    SigMode,
    Strategy,
    TqqcConfig,
    TqqcResult,
    ZeroCrossing,
)

__all__ = [
    "Direction",
    "IterationRecord",
    "SigMode",
    "Strategy",
    "TqqcConfig",
    "TqqcResult",
    "ZeroCrossing",
]
