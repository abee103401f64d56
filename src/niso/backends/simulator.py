"""Noisy density-matrix simulator backend.

Every gate is applied exactly, followed by the noise channels of the
NoiseModel on the qubits it touched:

1. coherent phase: Rz(coherent_phase) on the target of two-qubit gates
2. depolarizing on the first qubit of the gate:
   rho -> (1-p) rho + p/3 (X rho X + Y rho Y + Z rho Z)
3. relaxation over the gate duration: amplitude damping from T1 and pure
   dephasing from T2

Readout error flips each measured bit independently. Counts are drawn
from the final outcome distribution with a multinomial sample, so the
only randomness is the shot sampling and one seed fully determines it.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

import numpy as np
from numpy.typing import NDArray

from niso.backends.base import ExecutionPort, ExecutionResult, register_backend
from niso.circuit import Circuit, Gate
from niso.errors import ValidationFailed
from niso.noise import CalibrationSnapshot, NoiseModel

logger = logging.getLogger(__name__)

MAX_SIMULATOR_QUBITS = 10
_CACHE_LIMIT = 256

_I = np.eye(2, dtype=np.complex128)
_X = np.array([[0, 1], [1, 0]], dtype=np.complex128)
_Y = np.array([[0, -1j], [1j, 0]], dtype=np.complex128)
_Z = np.array([[1, 0], [0, -1]], dtype=np.complex128)
_H = np.array([[1, 1], [1, -1]], dtype=np.complex128) / math.sqrt(2)
_S = np.array([[1, 0], [0, 1j]], dtype=np.complex128)
_SDG = _S.conj().T
# Two-qubit matrices in the |control target> basis
_CX = np.array(
    [[1, 0, 0, 0], [0, 1, 0, 0], [0, 0, 0, 1], [0, 0, 1, 0]], dtype=np.complex128
)
_CZ = np.diag([1, 1, 1, -1]).astype(np.complex128)

_FIXED = {"h": _H, "x": _X, "y": _Y, "z": _Z, "s": _S, "sdg": _SDG, "cx": _CX, "cz": _CZ}


def _rx(theta: float) -> NDArray[np.complex128]:
    c, s = math.cos(theta / 2), math.sin(theta / 2)
    return np.array([[c, -1j * s], [-1j * s, c]], dtype=np.complex128)


def _ry(theta: float) -> NDArray[np.complex128]:
    c, s = math.cos(theta / 2), math.sin(theta / 2)
    return np.array([[c, -s], [s, c]], dtype=np.complex128)


def _rz(theta: float) -> NDArray[np.complex128]:
    phase = np.exp(0.5j * theta)
    return np.array([[phase.conjugate(), 0], [0, phase]], dtype=np.complex128)


def gate_matrix(gate: Gate) -> NDArray[np.complex128]:
    if gate.name == "rx":
        return _rx(gate.params[0])
    if gate.name == "ry":
        return _ry(gate.params[0])
    if gate.name == "rz":
        return _rz(gate.params[0])
    return _FIXED[gate.name]


def depolarizing_kraus(p: float) -> list[NDArray[np.complex128]]:
    if p <= 0.0:
        return [_I]
    return [
        math.sqrt(1.0 - p) * _I,
        math.sqrt(p / 3.0) * _X,
        math.sqrt(p / 3.0) * _Y,
        math.sqrt(p / 3.0) * _Z,
    ]


def relaxation_kraus(
    duration_ns: float, t1_us: float, t2_us: float
) -> list[NDArray[np.complex128]]:
    """Amplitude damping followed by pure dephasing, merged into one set."""
    t_us = duration_ns * 1e-3
    gamma = 0.0 if math.isinf(t1_us) else 1.0 - math.exp(-t_us / t1_us)
    # 1/T2 = 1/(2 T1) + 1/T_phi
    rate_phi = (0.0 if math.isinf(t2_us) else 1.0 / t2_us) - (
        0.0 if math.isinf(t1_us) else 0.5 / t1_us
    )
    lam = 1.0 - math.exp(-2.0 * t_us * rate_phi) if rate_phi > 0 else 0.0
    if gamma == 0.0 and lam == 0.0:
        return [_I]
    damp = [
        np.array([[1, 0], [0, math.sqrt(1.0 - gamma)]], dtype=np.complex128),
        np.array([[0, math.sqrt(gamma)], [0, 0]], dtype=np.complex128),
    ]
    dephase = [
        np.array([[1, 0], [0, math.sqrt(1.0 - lam)]], dtype=np.complex128),
        np.array([[0, 0], [0, math.sqrt(lam)]], dtype=np.complex128),
    ]
    return [d @ a for d in dephase for a in damp]


def apply_kraus(
    rho: NDArray[np.complex128],
    kraus: Sequence[NDArray[np.complex128]],
    qubits: tuple[int, ...],
    n: int,
) -> NDArray[np.complex128]:
    """rho -> sum_k K rho K^dagger on the given qubits.

    Basis index bit q belongs to qubit q, so in the (2,)*2n tensor view the
    row axis of qubit q is n-1-q and its column axis is 2n-1-q.
    """
    k = len(qubits)
    rows = [n - 1 - q for q in qubits]
    cols = [2 * n - 1 - q for q in qubits]
    ins = list(range(k, 2 * k))
    tensor = rho.reshape((2,) * (2 * n))
    out = np.zeros_like(tensor)
    for op in kraus:
        t = op.reshape((2,) * (2 * k))
        left = np.moveaxis(np.tensordot(t, tensor, axes=(ins, rows)), list(range(k)), rows)
        both = np.tensordot(left, t.conj(), axes=(cols, ins))
        out += np.moveaxis(both, list(range(2 * n - k, 2 * n)), cols)
    return out.reshape(2**n, 2**n)


def apply_readout_error(
    probs: NDArray[np.float64], error: float, n: int
) -> NDArray[np.float64]:
    if error <= 0.0:
        return probs
    tensor = probs.reshape((2,) * n)
    for q in range(n):
        axis = n - 1 - q
        tensor = (1.0 - error) * tensor + error * np.flip(tensor, axis=axis)
    return tensor.reshape(-1)


@register_backend("simulator")
class SimulatorBackend(ExecutionPort):
    """Local noisy simulator.

    ``max_workers`` > 1 runs batches on a thread pool. Seeds are fixed per
    circuit before dispatch, so results do not depend on scheduling.
    """

    def __init__(
        self,
        noise_model: NoiseModel | None = None,
        max_workers: int = 1,
    ) -> None:
        self.noise_model = noise_model or NoiseModel.ideal()
        self.max_workers = max(1, max_workers)
        self._cache: dict[Circuit, NDArray[np.float64]] = {}
        self._lock = threading.Lock()

    def calibration(self) -> CalibrationSnapshot | None:
        return None

    def probabilities(self, circuit: Circuit) -> NDArray[np.float64]:
        """Outcome distribution after noise and readout error."""
        with self._lock:
            cached = self._cache.get(circuit)
        if cached is not None:
            return cached

        n = circuit.num_qubits
        if n > MAX_SIMULATOR_QUBITS:
            raise ValidationFailed(
                f"Simulator supports at most {MAX_SIMULATOR_QUBITS} qubits, got {n}"
            )
        model = self.noise_model
        rho = np.zeros((2**n, 2**n), dtype=np.complex128)
        rho[0, 0] = 1.0
        relax_1q = relaxation_kraus(model.gate_time_1q_ns, model.t1_us, model.t2_us)
        relax_2q = relaxation_kraus(model.gate_time_2q_ns, model.t1_us, model.t2_us)
        depol_1q = depolarizing_kraus(model.gate_error_1q)
        depol_2q = depolarizing_kraus(model.gate_error_2q)

        for gate in circuit.gates:
            rho = apply_kraus(rho, [gate_matrix(gate)], gate.qubits, n)
            if gate.is_two_qubit and model.coherent_phase != 0.0:
                rho = apply_kraus(rho, [_rz(model.coherent_phase)], gate.qubits[1:], n)
            depol = depol_2q if gate.is_two_qubit else depol_1q
            relax = relax_2q if gate.is_two_qubit else relax_1q
            if len(depol) > 1:
                rho = apply_kraus(rho, depol, gate.qubits[:1], n)
            for q in gate.qubits:
                if len(relax) > 1:
                    rho = apply_kraus(rho, relax, (q,), n)

        probs = np.clip(np.real(np.diag(rho)), 0.0, None)
        probs = apply_readout_error(probs, model.readout_error, n)
        probs = probs / probs.sum()

        with self._lock:
            if len(self._cache) >= _CACHE_LIMIT:
                self._cache.clear()
            self._cache[circuit] = probs
        return probs

    def execute(
        self, circuit: Circuit, shots: int, *, seed: int | None = None
    ) -> ExecutionResult:
        if shots < 1:
            raise ValidationFailed(f"shots must be positive, got {shots}")
        start = time.perf_counter()
        probs = self.probabilities(circuit)
        rng = np.random.default_rng(seed)
        samples = rng.multinomial(shots, probs)
        n = circuit.num_qubits
        counts = {
            format(int(index), f"0{n}b"): int(samples[index])
            for index in np.flatnonzero(samples)
        }
        return ExecutionResult(
            counts=counts,
            shots=shots,
            backend=self.name,
            execution_time_s=time.perf_counter() - start,
            seed=seed,
        )

    def execute_batch(
        self,
        circuits: Sequence[Circuit],
        shots: int,
        *,
        seeds: Sequence[int | None] | None = None,
    ) -> list[ExecutionResult]:
        if seeds is None:
            seeds = [None] * len(circuits)
        if self.max_workers == 1 or len(circuits) < 2:
            return super().execute_batch(circuits, shots, seeds=seeds)
        logger.debug("Running %d circuits on %d workers", len(circuits), self.max_workers)
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            return list(
                pool.map(
                    lambda pair: self.execute(pair[0], shots, seed=pair[1]),
                    zip(circuits, seeds),
                )
            )
