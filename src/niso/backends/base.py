"""Execution backend contract and registry.

The search only ever talks to an ExecutionPort: ``execute`` runs one circuit
and returns counts, ``calibration`` optionally reports device properties.
Backends register themselves by name and are built once per run from the
configured name.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from niso.circuit import Circuit
from niso.errors import ConfigurationInvalid
from niso.noise import CalibrationSnapshot


@dataclass(frozen=True)
class ExecutionResult:
    """Counts for one executed circuit plus backend metadata."""

    counts: dict[str, int]
    shots: int
    backend: str = ""
    job_id: str | None = None
    execution_time_s: float = 0.0
    seed: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class ExecutionPort(ABC):
    """Run circuits and report calibration data."""

    name: str = "abstract"

    @abstractmethod
    def execute(
        self, circuit: Circuit, shots: int, *, seed: int | None = None
    ) -> ExecutionResult:
        """Execute one circuit.

        Raises an ExecutionFailure subclass when no counts can be produced.
        """

    @abstractmethod
    def calibration(self) -> CalibrationSnapshot | None:
        """Current device calibration, or None when the backend has none."""

    def execute_batch(
        self,
        circuits: Sequence[Circuit],
        shots: int,
        *,
        seeds: Sequence[int | None] | None = None,
    ) -> list[ExecutionResult]:
        """Execute independent circuits, one result per circuit, in order."""
        if seeds is None:
            seeds = [None] * len(circuits)
        return [
            self.execute(circuit, shots, seed=seed)
            for circuit, seed in zip(circuits, seeds)
        ]

    def close(self) -> None:
        """Release resources held by the backend."""

    def __enter__(self) -> ExecutionPort:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


_BACKENDS: dict[str, Callable[..., ExecutionPort]] = {}


def register_backend(name: str):
    """Class decorator registering a backend under ``name``."""

    def decorator(cls):
        if name in _BACKENDS:
            raise ValueError(f"Backend '{name}' is already registered")
        _BACKENDS[name] = cls
        cls.name = name
        return cls

    return decorator


def build_backend(name: str, **kwargs: Any) -> ExecutionPort:
    if name not in _BACKENDS:
        raise ConfigurationInvalid(
            "backend",
            f"unknown backend '{name}', available: {sorted(_BACKENDS)}",
        )
    return _BACKENDS[name](**kwargs)


def available_backends() -> list[str]:
    return sorted(_BACKENDS)
