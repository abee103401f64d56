"""Tests for the circuit model, the parity circuit builder and QASM export."""

import pytest

from niso.backends.qasm import to_qasm2
from niso.circuit import Circuit, Gate, build_parity_circuit, entangling_layers
from niso.errors import CircuitInvalid


class TestGate:
    def test_valid(self):
        gate = Gate("rz", (0,), (0.5,))
        assert not gate.is_two_qubit
        assert Gate("cx", (0, 1)).is_two_qubit

    @pytest.mark.parametrize(
        "name,qubits,params",
        [
            ("swap", (0, 1), ()),
            ("h", (0, 1), ()),
            ("cx", (1, 1), ()),
            ("rz", (0,), ()),
            ("h", (0,), (0.1,)),
            ("rx", (0,), (float("nan"),)),
        ],
    )
    def test_invalid(self, name, qubits, params):
        with pytest.raises(CircuitInvalid):
            Gate(name, qubits, params)

    def test_qubit_out_of_range(self):
        with pytest.raises(CircuitInvalid):
            Circuit(2, (Gate("h", (2,)),))


class TestParityCircuit:
    def test_structure(self):
        circuit = build_parity_circuit(4, theta=0.1, delta=0.2)
        names = [g.name for g in circuit.gates]
        assert names == ["h", "cx", "cx", "cx", "rz", "h", "h", "h", "h"]
        assert circuit.gates[4].params == pytest.approx((0.3,))
        assert circuit.two_qubit_count() == 3
        assert entangling_layers(4) == 3

    def test_depth_grows_with_chain(self):
        assert build_parity_circuit(5).depth() > build_parity_circuit(3).depth()

    def test_layer_offsets_skip_zeros(self):
        circuit = build_parity_circuit(3, layer_offsets=(0.0, 0.4))
        rz = [g for g in circuit.gates if g.name == "rz"]
        assert [(g.qubits, g.params) for g in rz] == [((2,), (0.4,)), ((0,), (0.0,))]

    def test_cz_entangler(self):
        circuit = build_parity_circuit(3, entangler="cz")
        assert circuit.two_qubit_count() == 2
        assert all(g.name != "cx" for g in circuit.gates)

    def test_z_basis_has_no_rotation(self):
        circuit = build_parity_circuit(2, basis="z")
        assert circuit.gates[-1].name == "rz"

    def test_circuits_are_hashable_and_equal(self):
        assert build_parity_circuit(3, delta=0.1) == build_parity_circuit(3, delta=0.1)
        assert len({build_parity_circuit(3, delta=d) for d in (0.1, 0.1, 0.2)}) == 2

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"num_qubits": 1},
            {"num_qubits": 3, "basis": "W"},
            {"num_qubits": 3, "entangler": "iswap"},
            {"num_qubits": 3, "layer_offsets": (0.1,)},
        ],
    )
    def test_rejected(self, kwargs):
        with pytest.raises(CircuitInvalid):
            build_parity_circuit(**kwargs)


class TestQasm:
    def test_export(self):
        qasm = to_qasm2(build_parity_circuit(2, delta=0.25))
        lines = qasm.splitlines()
        assert lines[0] == "OPENQASM 2.0;"
        assert "qreg q[2];" in lines
        assert "creg c[2];" in lines
        assert "cx q[0], q[1];" in lines
        assert "rz(0.25) q[0];" in lines
        assert lines[-2:] == ["measure q[0] -> c[0];", "measure q[1] -> c[1];"]

    def test_barrier_before_measure(self):
        lines = to_qasm2(build_parity_circuit(3)).splitlines()
        assert lines[-4] == "barrier q[0], q[1], q[2];"
