"""Run orchestration.

TqqcOptimizer wires a backend to the search: it measures the delta = 0
baseline, drives one DeltaSearch per parameter (one for the global
strategy, one per entangling layer for the layerwise strategy, all
sharing one outer iteration budget), and packages the result with
execution metrics.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, replace

import numpy as np

import niso.backends  # noqa: F401  (registers the built-in backends)
from niso.backends.base import ExecutionPort, build_backend
from niso.circuit import Circuit, build_parity_circuit, entangling_layers
from niso.errors import ExecutionFailure, InvalidMeasurement, NisoError
from niso.noise import CalibrationSnapshot, NoiseModel
from niso.tqqc.parity import ParityEvaluator
from niso.tqqc.search import DeltaSearch
from niso.tqqc.stat_test import StatisticalTest
from niso.tqqc.types import IterationRecord, Strategy, TqqcConfig, TqqcResult

logger = logging.getLogger(__name__)


class OptimizationAborted(NisoError):
    """A backend failure or unusable counts ended the run.

    Carries the iteration history collected before the failure; the
    underlying ExecutionFailure or InvalidMeasurement is chained as
    ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        history: tuple[IterationRecord, ...] = (),
        parity_baseline: float | None = None,
    ) -> None:
        self.history = history
        self.parity_baseline = parity_baseline
        super().__init__(message)


def layer_budget(remaining: int, layers_left: int) -> int:
    """Fair share of the remaining outer iterations for the next layer.

    Rounds up, so earlier layers run first when the budget is short and
    the trailing layers get 0.
    """
    return -(-remaining // layers_left)


class SeedStream:
    """Hands out one seed per execution call, derived from a root seed.

    Without a root seed every call returns None and backends draw fresh
    entropy.
    """

    def __init__(self, seed: int | None) -> None:
        self._sequence = None if seed is None else np.random.SeedSequence(seed)

    def __call__(self) -> int | None:
        if self._sequence is None:
            return None
        child = self._sequence.spawn(1)[0]
        return int(child.generate_state(1)[0])


@dataclass(frozen=True)
class ExecutionMetrics:
    circuit_executions: int
    total_shots: int
    wall_time_s: float
    backend_time_s: float


@dataclass(frozen=True)
class OptimizationReport:
    """Result of the full path: search result plus execution metadata."""

    result: TqqcResult
    metrics: ExecutionMetrics
    calibration: CalibrationSnapshot | None = None

    def to_dict(self) -> dict:
        data = self.result.to_dict()
        data["metrics"] = {
            "circuit_executions": self.metrics.circuit_executions,
            "total_shots": self.metrics.total_shots,
            "wall_time_s": self.metrics.wall_time_s,
            "backend_time_s": self.metrics.backend_time_s,
        }
        if self.calibration is not None:
            data["calibration"] = {
                "backend": self.calibration.backend,
                **self.calibration.averages(),
            }
        return data


class TqqcOptimizer:
    """Drive one TQQC run against an execution backend.

    The backend is built from ``config.backend`` when none is given; the
    simulator receives ``noise_model`` or the depolarizing preset for
    ``config.noise``.
    """

    def __init__(
        self,
        config: TqqcConfig | None = None,
        backend: ExecutionPort | None = None,
        noise_model: NoiseModel | None = None,
    ) -> None:
        self.config = config or TqqcConfig()
        self.noise_model = noise_model
        self.backend = backend or self._build_backend()
        self.evaluator = ParityEvaluator()
        self._seeds = SeedStream(self.config.seed)
        self._searches: list[DeltaSearch] = []
        self._layer_deltas: list[float] = []
        self._baseline_executions = 0
        self._baseline_time_s = 0.0

    def _build_backend(self) -> ExecutionPort:
        if self.config.backend == "simulator":
            model = self.noise_model or NoiseModel.from_depol(self.config.noise)
            return build_backend("simulator", noise_model=model)
        return build_backend(self.config.backend)

    def circuit(
        self, delta: float, layer_offsets: tuple[float, ...] | None = None
    ) -> Circuit:
        return build_parity_circuit(
            self.config.qubits,
            theta=self.config.theta,
            delta=delta,
            entangler=self.config.entangler,
            layer_offsets=layer_offsets,
        )

    def measure_parity(self, delta: float, theta: float | None = None) -> float:
        """Single-execution parity at theta + delta."""
        shift = 0.0 if theta is None else theta - self.config.theta
        result = self.backend.execute(
            self.circuit(delta + shift), self.config.shots, seed=self._seeds()
        )
        return self.evaluator.evaluate(result)

    def scan_delta(
        self, deltas: Iterable[float], theta: float | None = None
    ) -> list[tuple[float, float]]:
        """Parity landscape over a grid of offsets."""
        return [(float(d), self.measure_parity(d, theta)) for d in deltas]

    def _baseline(self) -> float:
        result = self.backend.execute(
            self.circuit(0.0), self.config.shots, seed=self._seeds()
        )
        self._baseline_executions += 1
        self._baseline_time_s += result.execution_time_s
        return self.evaluator.evaluate(result)

    def _collected_history(self) -> tuple[IterationRecord, ...]:
        return tuple(r for search in self._searches for r in search.history)

    def _run_global(self, baseline: float, stat_test: StatisticalTest) -> None:
        search = DeltaSearch(
            self.config,
            self.backend,
            probe=self.circuit,
            baseline=baseline,
            next_seed=self._seeds,
            stat_test=stat_test,
            evaluator=self.evaluator,
        )
        self._searches.append(search)
        search.run()

    def _run_layerwise(self, baseline: float, stat_test: StatisticalTest) -> None:
        offsets = [0.0] * entangling_layers(self.config.qubits)
        self._layer_deltas = offsets
        parity = baseline
        remaining = self.config.outer_loop
        for layer in range(len(offsets)):
            budget = layer_budget(remaining, len(offsets) - layer)
            if budget == 0:
                logger.debug("Layer %d has no iterations left in the budget", layer)
                continue

            def probe(x: float, layer: int = layer) -> Circuit:
                trial = list(offsets)
                trial[layer] = x
                return self.circuit(0.0, tuple(trial))

            search = DeltaSearch(
                replace(self.config, outer_loop=budget),
                self.backend,
                probe=probe,
                baseline=baseline,
                next_seed=self._seeds,
                stat_test=stat_test,
                evaluator=self.evaluator,
                layer=layer,
                initial_parity=parity,
            )
            self._searches.append(search)
            search.run()
            remaining -= search.iteration
            offsets[layer] = search.delta
            parity = search.parity_current
            logger.debug("Layer %d settled at delta=%+.4f", layer, search.delta)

    def _assemble(self, baseline: float) -> TqqcResult:
        searches = self._searches
        last = searches[-1]
        layered = self.config.strategy is Strategy.LAYERWISE
        layer_deltas = tuple(self._layer_deltas) if layered else ()
        history = self._collected_history()
        return TqqcResult(
            delta_opt=sum(layer_deltas) if layered else last.delta,
            parity_baseline=baseline,
            parity_final=last.parity_current,
            iterations=len(history),
            early_stopped=all(s.early_stopped for s in searches),
            ties_count=sum(s.ties for s in searches),
            significant_moves=sum(s.significant_moves for s in searches),
            total_inner_iterations=sum(s.total_inner for s in searches),
            history=history,
            layer_deltas=layer_deltas,
        )

    def _calibration(self) -> CalibrationSnapshot | None:
        try:
            return self.backend.calibration()
        except ExecutionFailure as exc:
            logger.warning("Calibration unavailable, reporting none: %s", exc)
            return None

    def optimize(self) -> TqqcResult:
        """Baseline, search to completion, result.

        Raises OptimizationAborted, chained to the ExecutionFailure or
        InvalidMeasurement, when the backend fails or returns unusable counts
        mid-run.
        """
        return self.optimize_full(include_calibration=False).result

    def optimize_full(self, include_calibration: bool = True) -> OptimizationReport:
        """Like optimize, plus execution counts, timing and calibration."""
        config = self.config
        self._seeds = SeedStream(config.seed)
        self._searches = []
        self._layer_deltas = []
        self._baseline_executions = 0
        self._baseline_time_s = 0.0
        stat_test = StatisticalTest.from_config(config)

        logger.info(
            "TQQC run: %d qubits, noise=%.3f, shots=%d, strategy=%s, backend=%s",
            config.qubits,
            config.noise,
            config.shots,
            config.strategy.value,
            self.backend.name,
        )
        start = time.perf_counter()
        baseline: float | None = None
        try:
            baseline = self._baseline()
            if config.strategy is Strategy.LAYERWISE:
                self._run_layerwise(baseline, stat_test)
            else:
                self._run_global(baseline, stat_test)
        except (ExecutionFailure, InvalidMeasurement) as exc:
            history = self._collected_history()
            logger.error(
                "Run aborted after %d iteration(s): %s", len(history), exc
            )
            kind = "Backend failure" if isinstance(exc, ExecutionFailure) else "Bad counts"
            raise OptimizationAborted(
                f"{kind}: {exc}", history=history, parity_baseline=baseline
            ) from exc
        wall = time.perf_counter() - start

        result = self._assemble(baseline)
        executions = self._baseline_executions + sum(s.executions for s in self._searches)
        metrics = ExecutionMetrics(
            circuit_executions=executions,
            total_shots=executions * config.shots,
            wall_time_s=wall,
            backend_time_s=self._baseline_time_s
            + sum(s.backend_time_s for s in self._searches),
        )
        logger.info(
            "delta_opt=%+.4f improvement=%+.2f%% iterations=%d early_stopped=%s",
            result.delta_opt,
            result.improvement_percent,
            result.iterations,
            result.early_stopped,
        )
        calibration = self._calibration() if include_calibration else None
        return OptimizationReport(result=result, metrics=metrics, calibration=calibration)


def quick_optimize(
    qubits: int = 7,
    noise: float = 0.02,
    seed: int | None = None,
    backend: ExecutionPort | None = None,
) -> tuple[float, float]:
    """Reduced-budget run returning only (delta_opt, improvement_percent)."""
    config = TqqcConfig.quick(qubits).with_noise(noise).with_seed(seed)
    result = TqqcOptimizer(config, backend=backend).optimize()
    return result.delta_opt, result.improvement_percent
