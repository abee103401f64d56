"""Noise model and calibration snapshot.

Both are immutable and read concurrently by simulator workers.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace

from niso.constants import (
    GATE_TIME_1Q_NS,
    GATE_TIME_2Q_NS,
    MAX_NOISE,
    T1_TYPICAL_US,
    T2_TYPICAL_US,
)
from niso.errors import ConfigurationInvalid


def _check_probability(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ConfigurationInvalid(name, f"must be a probability, got {value}")


@dataclass(frozen=True)
class CalibrationSnapshot:
    """Per-qubit device properties as reported by a backend."""

    backend: str
    t1_us: dict[int, float] = field(default_factory=dict)
    t2_us: dict[int, float] = field(default_factory=dict)
    readout_errors: dict[int, float] = field(default_factory=dict)
    gate_errors_1q: dict[int, float] = field(default_factory=dict)
    gate_errors_2q: dict[tuple[int, int], float] = field(default_factory=dict)

    @property
    def num_qubits(self) -> int:
        return len(set(self.t1_us) | set(self.t2_us) | set(self.readout_errors))

    def averages(self) -> dict[str, float | None]:
        """Mean of each property over the qubits (or pairs) that report it."""

        def mean(values) -> float | None:
            values = list(values)
            return sum(values) / len(values) if values else None

        return {
            "t1_us": mean(self.t1_us.values()),
            "t2_us": mean(self.t2_us.values()),
            "readout_error": mean(self.readout_errors.values()),
            "gate_error_1q": mean(self.gate_errors_1q.values()),
            "gate_error_2q": mean(self.gate_errors_2q.values()),
        }


@dataclass(frozen=True)
class NoiseModel:
    """Uniform noise parameters consumed by the simulator backend.

    Gate errors are depolarizing probabilities applied to each qubit a gate
    acts on. ``coherent_phase`` is a systematic Z rotation (radians) picked up
    by the target of every two-qubit gate; it is the error a delta offset can
    compensate.
    """

    t1_us: float = math.inf
    t2_us: float = math.inf
    gate_error_1q: float = 0.0
    gate_error_2q: float = 0.0
    readout_error: float = 0.0
    coherent_phase: float = 0.0
    gate_time_1q_ns: float = GATE_TIME_1Q_NS
    gate_time_2q_ns: float = GATE_TIME_2Q_NS

    def __post_init__(self) -> None:
        _check_probability("gate_error_1q", self.gate_error_1q)
        _check_probability("gate_error_2q", self.gate_error_2q)
        _check_probability("readout_error", self.readout_error)
        if self.t1_us <= 0 or self.t2_us <= 0:
            raise ConfigurationInvalid("t1_us/t2_us", "relaxation times must be positive")
        if not math.isfinite(self.coherent_phase):
            raise ConfigurationInvalid("coherent_phase", "must be finite")

    @classmethod
    def ideal(cls) -> NoiseModel:
        return cls()

    @classmethod
    def from_depol(cls, p: float) -> NoiseModel:
        """Depolarizing preset: 1q error p, 2q error 10p, readout p/4."""
        if not 0.0 <= p <= MAX_NOISE:
            raise ConfigurationInvalid("noise", f"must be in [0, {MAX_NOISE}], got {p}")
        if p == 0.0:
            return cls.ideal()
        return cls(
            t1_us=T1_TYPICAL_US,
            t2_us=T2_TYPICAL_US,
            gate_error_1q=p,
            gate_error_2q=min(10.0 * p, 1.0),
            readout_error=p / 4.0,
        )

    @classmethod
    def ibm_typical(cls) -> NoiseModel:
        return cls(
            t1_us=T1_TYPICAL_US,
            t2_us=T2_TYPICAL_US,
            gate_error_1q=0.0003,
            gate_error_2q=0.01,
            readout_error=0.01,
        )

    @classmethod
    def from_calibration(cls, snapshot: CalibrationSnapshot) -> NoiseModel:
        """Average a calibration snapshot into a uniform model.

        Properties the snapshot does not report fall back to the typical
        device values.
        """
        avg = snapshot.averages()
        typical = cls.ibm_typical()

        def pick(key: str) -> float:
            value = avg[key]
            return getattr(typical, key) if value is None else value

        return cls(
            t1_us=pick("t1_us"),
            t2_us=pick("t2_us"),
            gate_error_1q=pick("gate_error_1q"),
            gate_error_2q=pick("gate_error_2q"),
            readout_error=pick("readout_error"),
        )

    def with_coherent_phase(self, phase: float) -> NoiseModel:
        return replace(self, coherent_phase=phase)

    def is_ideal(self) -> bool:
        return (
            self.gate_error_1q == 0.0
            and self.gate_error_2q == 0.0
            and self.readout_error == 0.0
            and self.coherent_phase == 0.0
            and math.isinf(self.t1_us)
            and math.isinf(self.t2_us)
        )
