"""OpenQASM 2.0 export for job submission."""

from __future__ import annotations

from niso.circuit import Circuit, Gate

HEADER = 'OPENQASM 2.0;\ninclude "qelib1.inc";\n'


def _format_gate(gate: Gate) -> str:
    args = ", ".join(f"q[{q}]" for q in gate.qubits)
    if gate.params:
        params = ", ".join(repr(float(p)) for p in gate.params)
        return f"{gate.name}({params}) {args};"
    return f"{gate.name} {args};"


def to_qasm2(circuit: Circuit) -> str:
    """Serialize a circuit, measuring every qubit into a same-sized register.

    Classical bit i holds qubit i, so the backend's bitstrings print
    qubit 0 rightmost like the simulator's.
    """
    n = circuit.num_qubits
    lines = [HEADER, f"qreg q[{n}];", f"creg c[{n}];"]
    lines.extend(_format_gate(gate) for gate in circuit.gates)
    lines.append("barrier " + ", ".join(f"q[{q}]" for q in range(n)) + ";")
    lines.extend(f"measure q[{q}] -> c[{q}];" for q in range(n))
    return "\n".join(lines) + "\n"
