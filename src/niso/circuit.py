"""Gate-level circuit model and the TQQC parity circuit builder.

A Circuit is an immutable, ordered tuple of gates over a fixed qubit count.
Backends borrow it for the duration of an execute call; nothing mutates it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from niso.errors import CircuitInvalid

SINGLE_QUBIT_GATES = {"h", "x", "y", "z", "s", "sdg", "rx", "ry", "rz"}
TWO_QUBIT_GATES = {"cx", "cz"}
PARAMETRIC_GATES = {"rx", "ry", "rz"}
BASES = ("X", "Y", "Z")


@dataclass(frozen=True)
class Gate:
    """A single gate application."""

    name: str
    qubits: tuple[int, ...]
    params: tuple[float, ...] = ()

    def __post_init__(self) -> None:
        if self.name in SINGLE_QUBIT_GATES:
            arity = 1
        elif self.name in TWO_QUBIT_GATES:
            arity = 2
        else:
            raise CircuitInvalid(f"Unsupported gate '{self.name}'")
        if len(self.qubits) != arity:
            raise CircuitInvalid(
                f"Gate '{self.name}' expects {arity} qubit(s), got {len(self.qubits)}"
            )
        if arity == 2 and self.qubits[0] == self.qubits[1]:
            raise CircuitInvalid(f"Gate '{self.name}' needs two distinct qubits")
        expected = 1 if self.name in PARAMETRIC_GATES else 0
        if len(self.params) != expected:
            raise CircuitInvalid(
                f"Gate '{self.name}' expects {expected} parameter(s)"
            )
        if any(not math.isfinite(p) for p in self.params):
            raise CircuitInvalid(f"Gate '{self.name}' has a non-finite angle")

    @property
    def is_two_qubit(self) -> bool:
        return self.name in TWO_QUBIT_GATES


@dataclass(frozen=True)
class Circuit:
    """Immutable gate sequence terminated by a measurement of every qubit."""

    num_qubits: int
    gates: tuple[Gate, ...] = field(default_factory=tuple)
    name: str = "circuit"

    def __post_init__(self) -> None:
        if self.num_qubits < 1:
            raise CircuitInvalid("A circuit needs at least one qubit")
        for gate in self.gates:
            for q in gate.qubits:
                if not 0 <= q < self.num_qubits:
                    raise CircuitInvalid(
                        f"Qubit {q} out of range for {self.num_qubits}-qubit circuit"
                    )

    def __len__(self) -> int:
        return len(self.gates)

    def two_qubit_count(self) -> int:
        return sum(1 for g in self.gates if g.is_two_qubit)

    def depth(self) -> int:
        """Number of layers when gates are packed as early as possible."""
        frontier = [0] * self.num_qubits
        for gate in self.gates:
            level = max(frontier[q] for q in gate.qubits) + 1
            for q in gate.qubits:
                frontier[q] = level
        return max(frontier, default=0)


def entangling_layers(num_qubits: int) -> int:
    """Layers in the linear entangler chain: one per neighbouring pair."""
    return max(num_qubits - 1, 0)


def build_parity_circuit(
    num_qubits: int,
    theta: float = 0.0,
    delta: float = 0.0,
    basis: str = "X",
    entangler: str = "cx",
    layer_offsets: tuple[float, ...] | None = None,
) -> Circuit:
    """Build the TQQC parity circuit.

    H on qubit 0, an entangler chain (0,1), (1,2), ... producing a GHZ state,
    an optional Rz(offset) on each chain target, Rz(theta + delta) on qubit 0,
    then a basis change on every qubit (X: H, Y: Sdg then H, Z: nothing).
    With the CZ entangler every target is wrapped in H so the chain still
    prepares a GHZ state.
    """
    if num_qubits < 2:
        raise CircuitInvalid("Parity circuit needs at least 2 qubits")
    basis = basis.upper()
    if basis not in BASES:
        raise CircuitInvalid(f"Unknown measurement basis '{basis}'")
    if entangler not in TWO_QUBIT_GATES:
        raise CircuitInvalid(f"Unknown entangler '{entangler}'")
    n_layers = entangling_layers(num_qubits)
    if layer_offsets is not None and len(layer_offsets) != n_layers:
        raise CircuitInvalid(
            f"Expected {n_layers} layer offsets, got {len(layer_offsets)}"
        )

    gates: list[Gate] = [Gate("h", (0,))]
    for layer in range(n_layers):
        control, target = layer, layer + 1
        if entangler == "cz":
            gates.append(Gate("h", (target,)))
            gates.append(Gate("cz", (control, target)))
            gates.append(Gate("h", (target,)))
        else:
            gates.append(Gate("cx", (control, target)))
        if layer_offsets is not None and layer_offsets[layer] != 0.0:
            gates.append(Gate("rz", (target,), (float(layer_offsets[layer]),)))

    gates.append(Gate("rz", (0,), (float(theta + delta),)))

    for q in range(num_qubits):
        if basis == "X":
            gates.append(Gate("h", (q,)))
        elif basis == "Y":
            gates.append(Gate("sdg", (q,)))
            gates.append(Gate("h", (q,)))

    return Circuit(num_qubits, tuple(gates), name=f"tqqc_{num_qubits}q")
