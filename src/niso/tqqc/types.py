"""Dataclass definitions for the TQQC delta search."""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any

from niso.constants import (
    DEFAULT_CONFIDENCE,
    DEFAULT_DECAY_RATE,
    DEFAULT_INNER_MAX,
    DEFAULT_NOISE,
    DEFAULT_OUTER_LOOP,
    DEFAULT_QUBITS,
    DEFAULT_SHOTS,
    DEFAULT_STEP_AMP,
    DEFAULT_WINDOW,
    MAX_CONFIDENCE,
    MAX_NOISE,
    MIN_BASELINE,
    MIN_CONFIDENCE,
)
from niso.errors import ConfigurationInvalid


class Strategy(str, Enum):
    GLOBAL = "global"  # one delta for the whole circuit
    LAYERWISE = "layerwise"  # one delta per entangling layer


class SigMode(str, Enum):
    FIXED = "fixed"
    ADAPTIVE = "adaptive"


class ZeroCrossing(str, Enum):
    CLAMP = "clamp"  # stop at 0 when a move would cross the origin
    FLIP = "flip"  # continue on the other side


class Direction(str, Enum):
    PLUS = "plus"
    MINUS = "minus"
    STAY = "stay"


@dataclass(frozen=True)
class TqqcConfig:
    """Immutable configuration for one search run.

    Use the ``with_*`` methods to derive adjusted copies; every copy is
    validated again on construction.
    """

    qubits: int = DEFAULT_QUBITS
    outer_loop: int = DEFAULT_OUTER_LOOP
    inner_max: int = DEFAULT_INNER_MAX
    step_amp: float = DEFAULT_STEP_AMP
    window: int = DEFAULT_WINDOW
    decay_rate: float = DEFAULT_DECAY_RATE
    shots: int = DEFAULT_SHOTS
    noise: float = DEFAULT_NOISE
    seed: int | None = None
    theta: float = 0.0
    strategy: Strategy = Strategy.GLOBAL
    use_statistical_test: bool = True
    confidence: float = DEFAULT_CONFIDENCE
    sig_mode: SigMode = SigMode.FIXED
    dynamic_inner: bool = True
    zero_crossing: ZeroCrossing = ZeroCrossing.CLAMP
    entangler: str = "cx"  # 'cx' or 'cz'
    backend: str = "simulator"

    def __post_init__(self) -> None:
        # Accept plain strings for the enum fields (YAML, CLI)
        for name, enum_type in (
            ("strategy", Strategy),
            ("sig_mode", SigMode),
            ("zero_crossing", ZeroCrossing),
        ):
            value = getattr(self, name)
            if not isinstance(value, enum_type):
                try:
                    object.__setattr__(self, name, enum_type(str(value).lower()))
                except ValueError as exc:
                    raise ConfigurationInvalid(name, f"unknown value {value!r}") from exc
        self._validate()

    def _validate(self) -> None:
        if self.qubits < 2:
            raise ConfigurationInvalid("qubits", f"must be >= 2, got {self.qubits}")
        if self.outer_loop < 1:
            raise ConfigurationInvalid("outer_loop", "must be positive")
        if self.inner_max < 1:
            raise ConfigurationInvalid("inner_max", "must be positive")
        if not self.step_amp > 0 or not math.isfinite(self.step_amp):
            raise ConfigurationInvalid("step_amp", "must be a positive finite number")
        if self.window < 1:
            raise ConfigurationInvalid("window", "must be >= 1")
        if not 0.0 < self.decay_rate <= 1.0:
            raise ConfigurationInvalid(
                "decay_rate", f"must be in (0, 1], got {self.decay_rate}"
            )
        if self.shots < 1:
            raise ConfigurationInvalid("shots", "must be positive")
        if not 0.0 <= self.noise <= MAX_NOISE:
            raise ConfigurationInvalid(
                "noise", f"must be in [0, {MAX_NOISE}], got {self.noise}"
            )
        if not MIN_CONFIDENCE <= self.confidence <= MAX_CONFIDENCE:
            raise ConfigurationInvalid(
                "confidence",
                f"must be in [{MIN_CONFIDENCE}, {MAX_CONFIDENCE}], got {self.confidence}",
            )
        if self.entangler not in ("cx", "cz"):
            raise ConfigurationInvalid("entangler", f"unknown entangler {self.entangler!r}")
        if self.seed is not None and self.seed < 0:
            raise ConfigurationInvalid("seed", "must be non-negative")

    # -- presets --

    @classmethod
    def default_7q(cls) -> TqqcConfig:
        return cls()

    @classmethod
    def default_5q(cls) -> TqqcConfig:
        return cls(qubits=5)

    @classmethod
    def quick(cls, qubits: int = DEFAULT_QUBITS) -> TqqcConfig:
        """Reduced budget for smoke runs."""
        return cls(qubits=qubits, outer_loop=10, shots=4096, inner_max=5)

    @classmethod
    def benchmark(cls, qubits: int = DEFAULT_QUBITS) -> TqqcConfig:
        """Seeded configuration for reproducible comparisons."""
        return cls(qubits=qubits, seed=42)

    @classmethod
    def ideal(cls, qubits: int = DEFAULT_QUBITS) -> TqqcConfig:
        return cls(qubits=qubits, noise=0.0)

    # -- derived copies --

    def with_qubits(self, qubits: int) -> TqqcConfig:
        return replace(self, qubits=qubits)

    def with_noise(self, noise: float) -> TqqcConfig:
        return replace(self, noise=noise)

    def with_seed(self, seed: int | None) -> TqqcConfig:
        return replace(self, seed=seed)

    def with_shots(self, shots: int) -> TqqcConfig:
        return replace(self, shots=shots)

    def with_outer_loop(self, outer_loop: int) -> TqqcConfig:
        return replace(self, outer_loop=outer_loop)

    def with_inner_max(self, inner_max: int) -> TqqcConfig:
        return replace(self, inner_max=inner_max)

    def with_step_amp(self, step_amp: float) -> TqqcConfig:
        return replace(self, step_amp=step_amp)

    def with_window(self, window: int) -> TqqcConfig:
        return replace(self, window=window)

    def with_decay_rate(self, decay_rate: float) -> TqqcConfig:
        return replace(self, decay_rate=decay_rate)

    def with_strategy(self, strategy: Strategy | str) -> TqqcConfig:
        return replace(self, strategy=strategy)

    def with_backend(self, backend: str) -> TqqcConfig:
        return replace(self, backend=backend)

    def with_statistical_test(
        self, enabled: bool = True, confidence: float | None = None
    ) -> TqqcConfig:
        return replace(
            self,
            use_statistical_test=enabled,
            confidence=self.confidence if confidence is None else confidence,
        )

    def with_confidence(self, confidence: float) -> TqqcConfig:
        return replace(self, confidence=confidence)

    def with_zero_crossing(self, policy: ZeroCrossing | str) -> TqqcConfig:
        return replace(self, zero_crossing=policy)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("strategy", "sig_mode", "zero_crossing"):
            data[key] = data[key].value
        return data


@dataclass(frozen=True)
class IterationRecord:
    """One outer-loop observation."""

    iteration: int
    delta: float  # delta after this iteration's update
    step: float  # step amplitude used for the probes
    parity_plus: float
    parity_minus: float
    parity_selected: float
    improvement: float  # parity_selected - baseline
    inner_count: int
    direction: Direction
    significant: bool
    z: float = 0.0
    layer: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["direction"] = self.direction.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IterationRecord:
        return cls(**{**data, "direction": Direction(data["direction"])})


@dataclass(frozen=True)
class TqqcResult:
    """Final outcome of one search run."""

    delta_opt: float
    parity_baseline: float
    parity_final: float
    iterations: int
    early_stopped: bool
    ties_count: int
    significant_moves: int
    total_inner_iterations: int
    history: tuple[IterationRecord, ...] = field(default_factory=tuple)
    layer_deltas: tuple[float, ...] = field(default_factory=tuple)

    @property
    def improvement(self) -> float:
        return self.parity_final - self.parity_baseline

    @property
    def improvement_percent(self) -> float:
        if abs(self.parity_baseline) < MIN_BASELINE:
            return 0.0
        return self.improvement / abs(self.parity_baseline) * 100.0

    def improved(self) -> bool:
        return self.improvement > 0.0

    def k_estimated(self, max_points: int) -> float:
        """Early-stop efficiency against a budget of ``max_points`` iterations.

        A run of k iterations costs 2k + 1 executions (two probes per
        iteration plus the baseline). The saved share of executions is
        divided by the saved share of iterations; 1.0 when the run did not
        stop early.
        """
        if not self.early_stopped or self.iterations >= max_points:
            return 1.0
        early_stop_frac = 1.0 - self.iterations / max_points
        compute_reduction = 1.0 - (2 * self.iterations + 1) / (2 * max_points + 1)
        return compute_reduction / early_stop_frac

    def to_dict(self) -> dict[str, Any]:
        return {
            "delta_opt": self.delta_opt,
            "parity_baseline": self.parity_baseline,
            "parity_final": self.parity_final,
            "improvement": self.improvement,
            "improvement_percent": self.improvement_percent,
            "iterations": self.iterations,
            "early_stopped": self.early_stopped,
            "ties_count": self.ties_count,
            "significant_moves": self.significant_moves,
            "total_inner_iterations": self.total_inner_iterations,
            "layer_deltas": list(self.layer_deltas),
            "history": [record.to_dict() for record in self.history],
        }

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TqqcResult:
        return cls(
            delta_opt=data["delta_opt"],
            parity_baseline=data["parity_baseline"],
            parity_final=data["parity_final"],
            iterations=data["iterations"],
            early_stopped=data["early_stopped"],
            ties_count=data["ties_count"],
            significant_moves=data["significant_moves"],
            total_inner_iterations=data["total_inner_iterations"],
            history=tuple(IterationRecord.from_dict(r) for r in data.get("history", [])),
            layer_deltas=tuple(data.get("layer_deltas", ())),
        )
