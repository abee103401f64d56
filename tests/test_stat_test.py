"""Tests for the significance gate and depth-corrected thresholds."""

from __future__ import annotations

import pytest

from niso.errors import ConfigurationInvalid, InsufficientSamples
from niso.tqqc.stat_test import (
    StatisticalTest,
    Verdict,
    adaptive_confidence,
    base_threshold,
    critical_value,
    exceeds_critical_noise,
    threshold_for_qubits,
    z_from_parity,
    z_from_proportions,
)
from niso.tqqc.types import SigMode, TqqcConfig


class TestThresholds:
    """Tests for the qubit-tier threshold formula."""

    def test_reference_tier(self):
        assert threshold_for_qubits(5) == pytest.approx(0.030)

    def test_seven_qubits_is_five_over_one_point_five(self):
        assert threshold_for_qubits(7) == pytest.approx(threshold_for_qubits(5) / 1.5)

    def test_untabulated_tiers_follow_depth(self):
        assert threshold_for_qubits(9) == pytest.approx(0.015)
        assert threshold_for_qubits(3) == pytest.approx(0.060)
        assert threshold_for_qubits(2) == pytest.approx(0.120)

    def test_monotone_in_qubits(self):
        values = [threshold_for_qubits(n) for n in range(2, 15)]
        assert all(a > b for a, b in zip(values, values[1:]))

    def test_single_qubit_rejected(self):
        with pytest.raises(ConfigurationInvalid):
            threshold_for_qubits(1)

    def test_noisy_base(self):
        assert base_threshold(0.02) == pytest.approx(0.030)
        assert base_threshold(0.03) == pytest.approx(0.040)

    def test_critical_noise(self):
        assert exceeds_critical_noise(0.03, 7)
        assert not exceeds_critical_noise(0.02, 7)


class TestCriticalValues:
    def test_default_level(self):
        assert critical_value(0.90) == pytest.approx(1.645, abs=1e-3)

    def test_table_levels(self):
        assert critical_value(0.95) == pytest.approx(1.96, abs=1e-2)
        assert critical_value(0.975) == pytest.approx(2.24, abs=1e-2)
        assert critical_value(0.99) == pytest.approx(2.576, abs=1e-2)

    def test_adaptive_adjustments(self):
        assert adaptive_confidence(0.95, noise=0.03, shots=2048) == pytest.approx(0.99)
        assert adaptive_confidence(0.95, noise=0.01, shots=20000) == pytest.approx(0.90)
        assert adaptive_confidence(0.95, noise=0.01, shots=8192) == pytest.approx(0.95)

    def test_adaptive_mode_raises_level(self):
        fixed = StatisticalTest(7, confidence=0.90, noise=0.03, shots=1024)
        adaptive = StatisticalTest(
            7, confidence=0.90, mode=SigMode.ADAPTIVE, noise=0.03, shots=1024
        )
        assert adaptive.critical > fixed.critical


class TestZStatistic:
    def test_known_value(self):
        # se = sqrt(2 * (1 - 0.25) / 1000)
        z = z_from_parity(0.5, 0.5 - 0.0387, 1000, 1000)
        assert z == pytest.approx(1.0, rel=0.05)

    def test_perfect_parities_give_zero(self):
        assert z_from_parity(1.0, 1.0, 100, 100) == 0.0

    def test_zero_shots(self):
        with pytest.raises(InsufficientSamples):
            z_from_parity(0.5, 0.4, 0, 100)

    def test_pooled_proportions(self):
        assert z_from_proportions(0.5, 0.5, 100, 100) == 0.0
        assert z_from_proportions(0.6, 0.5, 1000, 1000) > 4.0
        with pytest.raises(InsufficientSamples):
            z_from_proportions(0.6, 0.5, 0, 1000)


class TestStatisticalTest:
    """Tests for probe comparison classification."""

    @pytest.fixture
    def gate(self):
        return StatisticalTest.from_config(TqqcConfig())

    def test_large_difference_is_significant(self, gate):
        outcome = gate.compare(0.80, 0.70, 8192, 8192)
        assert outcome.verdict is Verdict.SIGNIFICANT
        assert outcome.significant
        assert outcome.z > outcome.critical
        assert outcome.difference == pytest.approx(0.10)

    def test_shot_noise_is_tie(self, gate):
        outcome = gate.compare(0.800, 0.795, 1024, 1024)
        assert outcome.verdict is Verdict.TIE
        assert outcome.p_value > 0.1

    def test_exact_equality_is_tie(self, gate):
        assert gate.compare(0.5, 0.5, 10**9, 10**9).verdict is Verdict.TIE

    def test_more_shots_resolve_smaller_differences(self, gate):
        assert not gate.compare(0.80, 0.79, 1024, 1024).significant
        assert gate.compare(0.80, 0.79, 200_000, 200_000).significant

    def test_zero_shots_raise(self, gate):
        with pytest.raises(InsufficientSamples):
            gate.compare(0.8, 0.7, 0, 0)

    def test_threshold_follows_config(self):
        assert StatisticalTest.from_config(TqqcConfig(qubits=5)).threshold == pytest.approx(0.030)
        assert StatisticalTest.from_config(TqqcConfig()).threshold == pytest.approx(0.020)
