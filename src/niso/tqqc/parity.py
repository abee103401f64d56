"""Parity expectation from measurement counts.

<P> = sum_x (-1)^popcount(x) * n_x / N

An outcome with an even number of ones contributes +1, odd contributes -1.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

from niso.errors import InvalidMeasurement

if TYPE_CHECKING:
    from niso.backends.base import ExecutionResult


def parity_sign(bitstring: str) -> int:
    """+1 for an even number of ones, -1 for odd."""
    ones = 0
    for ch in bitstring:
        if ch == "1":
            ones += 1
        elif ch not in "0 ":
            raise InvalidMeasurement(f"Invalid bitstring {bitstring!r}")
    return 1 if ones % 2 == 0 else -1


def _checked_total(counts: Mapping[str, int], total_shots: int | None) -> int:
    for outcome, count in counts.items():
        if count < 0:
            raise InvalidMeasurement(f"Negative count {count} for outcome {outcome!r}")
    observed = sum(counts.values())
    total = observed if total_shots is None else total_shots
    if total <= 0:
        raise InvalidMeasurement("Total shot count must be positive")
    if observed > total:
        raise InvalidMeasurement(f"Counts sum to {observed}, more than {total} shots")
    return total


def parity_expectation(
    counts: Mapping[str, int], total_shots: int | None = None
) -> float:
    """Reduce counts to a parity value in [-1, 1].

    ``total_shots`` defaults to the sum of the counts.
    """
    total = _checked_total(counts, total_shots)
    signed = sum(parity_sign(outcome) * count for outcome, count in counts.items())
    return signed / total


def p_even(counts: Mapping[str, int], total_shots: int | None = None) -> float:
    """Probability of an even-parity outcome."""
    total = _checked_total(counts, total_shots)
    even = sum(c for outcome, c in counts.items() if parity_sign(outcome) > 0)
    return even / total


def p_odd(counts: Mapping[str, int], total_shots: int | None = None) -> float:
    return 1.0 - p_even(counts, total_shots)


class ParityEvaluator:
    """Reduce execution results to parity values."""

    def evaluate(self, result: ExecutionResult) -> float:
        return parity_expectation(result.counts, result.shots)

    def mean(self, results: Iterable[ExecutionResult]) -> tuple[float, int]:
        """Shot-weighted mean parity over repeated executions.

        Returns the mean and the pooled shot count.
        """
        weighted = 0.0
        shots = 0
        for result in results:
            weighted += self.evaluate(result) * result.shots
            shots += result.shots
        if shots == 0:
            raise InvalidMeasurement("No executions to average")
        return weighted / shots, shots
