"""Adaptive delta search.

Each outer iteration probes the parity at delta + step and delta - step,
repeating both probes ``inner_count`` times, and moves delta toward the
better side when the difference is statistically significant. Ties leave
delta in place and shrink the step at once. A move clamped at the origin
lands on a point neither probe visited, so the parity there is measured
before it is recorded. The step also decays by
``decay_rate`` every iteration, which bounds the total excursion.

The search stops early when recent improvements have flattened out or
when ``window`` consecutive iterations were ties; otherwise it runs the
full ``outer_loop`` budget. Execution failures propagate unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from niso.backends.base import ExecutionPort, ExecutionResult
from niso.circuit import Circuit
from niso.constants import TIE_EPSILON
from niso.errors import InsufficientSamples, TransportFailure
from niso.tqqc.convergence import ConvergenceWindow, inner_count
from niso.tqqc.parity import ParityEvaluator
from niso.tqqc.stat_test import StatisticalTest
from niso.tqqc.types import Direction, IterationRecord, TqqcConfig, ZeroCrossing

logger = logging.getLogger(__name__)

ProbeFactory = Callable[[float], Circuit]
SeedSource = Callable[[], "int | None"]


def _no_seed() -> None:
    return None


class DeltaSearch:
    """Stateful search over one delta parameter.

    ``probe`` builds the circuit for a candidate offset. ``baseline`` is the
    parity at delta = 0, measured by the caller; improvements are reported
    against it. ``initial_parity`` seeds the current parity when the search
    starts from an already improved point. ``next_seed`` hands out the
    seed for every execution call in order.
    """

    def __init__(
        self,
        config: TqqcConfig,
        port: ExecutionPort,
        probe: ProbeFactory,
        baseline: float,
        next_seed: SeedSource | None = None,
        stat_test: StatisticalTest | None = None,
        evaluator: ParityEvaluator | None = None,
        layer: int | None = None,
        initial_parity: float | None = None,
    ) -> None:
        self.config = config
        self.port = port
        self.probe = probe
        self.baseline = baseline
        self.next_seed = next_seed or _no_seed
        self.stat_test = stat_test or StatisticalTest.from_config(config)
        self.evaluator = evaluator or ParityEvaluator()
        self.layer = layer

        self.tau = self.stat_test.threshold
        self.delta = 0.0
        self.step_amplitude = config.step_amp
        self.parity_current = baseline if initial_parity is None else initial_parity
        self.gradient = 0.0
        self.iteration = 0
        self.ties = 0
        self.significant_moves = 0
        self.total_inner = 0
        self.executions = 0
        self.backend_time_s = 0.0
        self.early_stopped = False
        self.history: list[IterationRecord] = []
        self.window = ConvergenceWindow(config.window, self.tau)

    @property
    def done(self) -> bool:
        return self.early_stopped or self.iteration >= self.config.outer_loop

    @property
    def improvement(self) -> float:
        return self.parity_current - self.baseline

    def _inner_count(self) -> int:
        if not self.config.dynamic_inner:
            return 1
        return inner_count(self.gradient, self.tau, self.config.inner_max)

    def _execute(self, circuits: list[Circuit]) -> list[ExecutionResult]:
        seeds = [self.next_seed() for _ in circuits]
        results = self.port.execute_batch(circuits, self.config.shots, seeds=seeds)
        if len(results) != len(circuits):
            raise TransportFailure(
                f"Backend returned {len(results)} results for {len(circuits)} circuits"
            )
        self._account(results)
        return results

    def _measure(self, step: float, repetitions: int) -> tuple[float, int, float, int]:
        """Run both probes ``repetitions`` times as one batch."""
        plus = self.probe(self.delta + step)
        minus = self.probe(self.delta - step)
        results = self._execute([plus, minus] * repetitions)
        parity_plus, shots_plus = self.evaluator.mean(results[0::2])
        parity_minus, shots_minus = self.evaluator.mean(results[1::2])
        return parity_plus, shots_plus, parity_minus, shots_minus

    def _measure_current(self, repetitions: int) -> float:
        """Parity at the current delta, for points no probe has visited."""
        results = self._execute([self.probe(self.delta)] * repetitions)
        return self.evaluator.mean(results)[0]

    def _account(self, results: list[ExecutionResult]) -> None:
        self.executions += len(results)
        self.backend_time_s += sum(r.execution_time_s for r in results)

    def _classify(
        self, parity_plus: float, shots_plus: int, parity_minus: float, shots_minus: int
    ) -> tuple[bool, float]:
        """Significance flag and z statistic for one comparison."""
        if abs(parity_plus - parity_minus) < TIE_EPSILON:
            return False, 0.0
        if not self.config.use_statistical_test:
            return True, 0.0
        try:
            outcome = self.stat_test.compare(
                parity_plus, parity_minus, shots_plus, shots_minus
            )
        except InsufficientSamples:
            logger.warning("Iteration %d: no samples to compare, counted as tie", self.iteration)
            return False, 0.0
        return outcome.significant, outcome.z

    def _move(self, direction: Direction, step: float) -> bool:
        """Apply a move; returns True when it was clamped at the origin."""
        sign = 1.0 if direction is Direction.PLUS else -1.0
        target = self.delta + sign * step
        crosses = self.delta != 0.0 and target * self.delta < 0.0
        clamped = crosses and self.config.zero_crossing is ZeroCrossing.CLAMP
        self.delta = 0.0 if clamped else target
        return clamped

    def step(self) -> IterationRecord:
        """Run one outer iteration and return its record."""
        if self.done:
            raise RuntimeError("search already finished")

        repetitions = self._inner_count()
        step = self.step_amplitude
        parity_plus, shots_plus, parity_minus, shots_minus = self._measure(step, repetitions)
        significant, z = self._classify(parity_plus, shots_plus, parity_minus, shots_minus)

        if significant:
            direction = Direction.PLUS if parity_plus > parity_minus else Direction.MINUS
            if self._move(direction, step):
                self.parity_current = self._measure_current(repetitions)
            else:
                self.parity_current = (
                    parity_plus if direction is Direction.PLUS else parity_minus
                )
            self.significant_moves += 1
        else:
            direction = Direction.STAY
            self.ties += 1
            # plateau: shrink immediately, on top of the regular decay
            self.step_amplitude *= self.config.decay_rate

        self.step_amplitude *= self.config.decay_rate
        self.gradient = parity_plus - parity_minus
        self.total_inner += repetitions

        record = IterationRecord(
            iteration=self.iteration,
            delta=self.delta,
            step=step,
            parity_plus=parity_plus,
            parity_minus=parity_minus,
            parity_selected=self.parity_current,
            improvement=self.improvement,
            inner_count=repetitions,
            direction=direction,
            significant=significant,
            z=z,
            layer=self.layer,
        )
        self.history.append(record)
        self.iteration += 1

        logger.debug(
            "iter %d: delta=%+.4f step=%.4f P+=%.4f P-=%.4f inner=%d %s",
            record.iteration,
            record.delta,
            step,
            parity_plus,
            parity_minus,
            repetitions,
            direction.value,
        )

        self.window.push(record.improvement, tie=not significant)
        if self.window.converged() and self.iteration < self.config.outer_loop:
            self.early_stopped = True
            logger.info(
                "Converged after %d iteration(s) (%s)",
                self.iteration,
                "ties" if self.window.stalled() else "stable improvement",
            )
        return record

    def run(self) -> list[IterationRecord]:
        """Iterate until convergence or budget exhaustion."""
        while not self.done:
            self.step()
        return self.history
