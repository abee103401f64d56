"""Numeric constants shared across the package."""

from __future__ import annotations

# Search defaults (7-qubit tier)
DEFAULT_QUBITS = 7
DEFAULT_OUTER_LOOP = 20
DEFAULT_INNER_MAX = 10
DEFAULT_STEP_AMP = 0.12
DEFAULT_WINDOW = 3
DEFAULT_DECAY_RATE = 0.9
DEFAULT_SHOTS = 8192
DEFAULT_NOISE = 0.02
DEFAULT_CONFIDENCE = 0.90

# Depth-corrected thresholds. The reference tier is 5 qubits (chain depth 4);
# other tiers scale inversely with chain depth.
REFERENCE_QUBITS = 5
THRESHOLD_5Q = 0.030
THRESHOLD_5Q_NOISY = 0.040
NOISY_REGIME = 0.02  # noise level above which the noisy base threshold applies

# Empirical 7-qubit noise level beyond which TQQC stops paying off
CRITICAL_NOISE_7Q = 0.027

# Parity differences below this are exact ties
TIE_EPSILON = 1e-9
# Standard errors below this yield z = 0
MIN_STANDARD_ERROR = 1e-10
# Baselines smaller than this report 0% improvement
MIN_BASELINE = 1e-9

# Adaptive significance bounds
ADAPTIVE_LEVEL_MIN = 0.90
ADAPTIVE_LEVEL_MAX = 0.99
LOW_SHOTS = 4096
HIGH_SHOTS = 16384

# Accepted noise range for depolarizing presets
MAX_NOISE = 0.06
MIN_CONFIDENCE = 0.80
MAX_CONFIDENCE = 0.99

# Gate durations (ns) used for T1/T2 relaxation
GATE_TIME_1Q_NS = 35.0
GATE_TIME_2Q_NS = 300.0

# Typical superconducting device parameters
T1_TYPICAL_US = 100.0
T2_TYPICAL_US = 60.0
