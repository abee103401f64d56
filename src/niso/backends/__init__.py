"""Execution backends.

Importing this package registers the ``simulator`` and ``hardware``
backends with the registry.
"""

from __future__ import annotations

from niso.backends.base import (
    ExecutionPort,
    ExecutionResult,
    available_backends,
    build_backend,
    register_backend,
)
from niso.backends.hardware import HardwareBackend, HardwareSettings
from niso.backends.retry import RetryPolicy
from niso.backends.simulator import SimulatorBackend

__all__ = [
    "ExecutionPort",
    "ExecutionResult",
    "HardwareBackend",
    "HardwareSettings",
    "RetryPolicy",
    "SimulatorBackend",
    "available_backends",
    "build_backend",
    "register_backend",
]
