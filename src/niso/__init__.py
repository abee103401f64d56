"""Noise-as-parameter-space optimization for parity circuits.

Searches a time-evolution offset delta that minimizes the measured parity
degradation caused by hardware noise, using a statistically gated adaptive
local search driven through a pluggable execution backend.
"""

from __future__ import annotations

from niso.errors import (
    ConfigurationInvalid,
    ExecutionFailure,
    InsufficientSamples,
    InvalidMeasurement,
    NisoError,
)
from niso.optimizer import OptimizationAborted, TqqcOptimizer, quick_optimize
from niso.tqqc.types import IterationRecord, Strategy, TqqcConfig, TqqcResult

__version__ = "0.3.0"

__all__ = [
    "ConfigurationInvalid",
    "ExecutionFailure",
    "InsufficientSamples",
    "InvalidMeasurement",
    "IterationRecord",
    "NisoError",
    "OptimizationAborted",
    "Strategy",
    "TqqcConfig",
    "TqqcOptimizer",
    "TqqcResult",
    "quick_optimize",
]
