"""
Tests for the remote job-queue backend.

HTTP traffic is mocked with the responses library; polling uses an
injected clock and sleep so no test waits in real time.
"""

from __future__ import annotations

import json
from dataclasses import replace

import pytest
import requests
import responses

from niso.backends.hardware import (
    ENV_API_TOKEN,
    ENV_API_URL,
    ENV_BACKEND_NAME,
    ENV_TIMEOUT,
    HardwareBackend,
    HardwareSettings,
    job_status,
    normalize_counts,
    parse_properties,
)
from niso.backends.retry import RetryPolicy
from niso.circuit import build_parity_circuit
from niso.errors import (
    AuthenticationFailed,
    ConfigurationInvalid,
    ExecutionTimeout,
    RateLimited,
    TransportFailure,
    ValidationFailed,
)


# =============================================================================
# Constants for Tests
# =============================================================================

API = "https://quantum.example.com/api/v1"
TOKEN = "tok_test_123"
DEVICE = "fake_device"


# =============================================================================
# Fixtures
# =============================================================================


class FakeClock:
    def __init__(self, ticks):
        self.ticks = list(ticks)
        self.last = self.ticks[-1]

    def __call__(self) -> float:
        return self.ticks.pop(0) if self.ticks else self.last


@pytest.fixture
def slept() -> list[float]:
    return []


@pytest.fixture
def settings() -> HardwareSettings:
    return HardwareSettings(
        api_url=API,
        token=TOKEN,
        backend_name=DEVICE,
        job_timeout=100.0,
        retry=RetryPolicy(max_attempts=2, base_delay=0.5),
    )


@pytest.fixture
def backend(settings, slept):
    hw = HardwareBackend(settings, sleep=slept.append)
    yield hw
    hw.close()


def add_job(job_id="job-1", counts=None, status="COMPLETED"):
    responses.add(responses.POST, f"{API}/jobs", json={"id": job_id, "status": "QUEUED"})
    responses.add(responses.GET, f"{API}/jobs/{job_id}", json={"id": job_id, "status": status})
    responses.add(
        responses.GET,
        f"{API}/jobs/{job_id}/results",
        json={"results": [{"counts": c, "shots": 100} for c in (counts or [{"00": 100}])]},
    )


# =============================================================================
# Parsing helpers
# =============================================================================


class TestParsing:
    def test_job_status_layouts(self):
        assert job_status({"status": "done"}) == "DONE"
        assert job_status({"state": {"status": "Running"}}) == "RUNNING"
        assert job_status({}) == "QUEUED"

    def test_hex_counts(self):
        assert normalize_counts({"0x0": 10, "0x5": 3}, 3) == {"000": 10, "101": 3}

    def test_spaced_counts_merge(self):
        assert normalize_counts({"0 1": 2, "01": 3}, 2) == {"01": 5}

    def test_parse_properties(self):
        def gate_error(value):
            return {"name": "gate_error", "value": value}

        payload = {
            "qubits": [
                [
                    {"name": "T1", "value": 120.0, "unit": "us"},
                    {"name": "T2", "value": 80000.0, "unit": "ns"},
                    {"name": "readout_error", "value": 0.02},
                ],
                [
                    {"name": "T1", "value": 100.0, "unit": "us"},
                    {"name": "prob_meas0_prep1", "value": 0.03},
                ],
            ],
            "gates": [
                {"gate": "sx", "qubits": [0], "parameters": [gate_error(3e-4)]},
                {"gate": "ecr", "qubits": [0, 1], "parameters": [gate_error(8e-3)]},
                {
                    "gate": "cx",
                    "qubits": [0, 1],
                    "parameters": [{"name": "gate_length", "value": 300}],
                },
            ],
        }
        snap = parse_properties(DEVICE, payload)
        assert snap.t1_us == {0: 120.0, 1: 100.0}
        assert snap.t2_us == {0: pytest.approx(80.0)}
        assert snap.readout_errors == {0: 0.02, 1: 0.03}
        assert snap.gate_errors_1q == {0: 3e-4}
        assert snap.gate_errors_2q == {(0, 1): 8e-3}
        assert snap.num_qubits == 2


# =============================================================================
# Settings
# =============================================================================


class TestSettings:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv(ENV_API_URL, API)
        monkeypatch.setenv(ENV_API_TOKEN, TOKEN)
        monkeypatch.setenv(ENV_BACKEND_NAME, DEVICE)
        monkeypatch.setenv(ENV_TIMEOUT, "42")
        s = HardwareSettings.from_env()
        assert s.api_url == API
        assert s.backend_name == DEVICE
        assert s.job_timeout == 42.0

    def test_explicit_overrides_env(self, monkeypatch):
        monkeypatch.setenv(ENV_API_URL, "https://other.example.com")
        s = HardwareSettings.from_env(api_url=API, token=TOKEN, backend_name=DEVICE)
        assert s.api_url == API

    def test_missing_token(self, monkeypatch):
        monkeypatch.delenv(ENV_API_TOKEN, raising=False)
        with pytest.raises(ConfigurationInvalid) as exc_info:
            HardwareSettings.from_env(api_url=API, backend_name=DEVICE)
        assert exc_info.value.field == "token"

    def test_batch_size_bounds(self):
        with pytest.raises(ConfigurationInvalid):
            HardwareSettings(API, TOKEN, DEVICE, max_batch_size=101)

    def test_session_headers(self, backend):
        assert backend.session.headers["Authorization"] == f"Bearer {TOKEN}"


# =============================================================================
# Job lifecycle
# =============================================================================


class TestExecute:
    @responses.activate
    def test_submit_payload_and_counts(self, backend):
        add_job(counts=[{"0x0": 60, "0x3": 40}])
        circuit = build_parity_circuit(2, delta=0.1)
        result = backend.execute(circuit, 100, seed=7)

        assert result.counts == {"00": 60, "11": 40}
        assert result.job_id == "job-1"
        assert result.backend == DEVICE
        body = json.loads(responses.calls[0].request.body)
        assert body["program_id"] == "sampler"
        assert body["backend"] == DEVICE
        assert body["params"]["shots"] == 100
        assert body["params"]["seed_simulator"] == 7
        assert body["params"]["seeds"] == [7]
        assert body["params"]["circuits"][0].startswith("OPENQASM 2.0;")
        assert "rz(0.1) q[0];" in body["params"]["circuits"][0]

    @responses.activate
    def test_polls_until_done(self, backend, slept):
        responses.add(responses.POST, f"{API}/jobs", json={"id": "job-2"})
        for status in ("QUEUED", "RUNNING"):
            responses.add(
                responses.GET, f"{API}/jobs/job-2", json={"state": {"status": status}}
            )
        responses.add(responses.GET, f"{API}/jobs/job-2", json={"state": {"status": "DONE"}})
        responses.add(
            responses.GET,
            f"{API}/jobs/job-2/results",
            json={"results": [{"counts": {"01": 5}}]},
        )
        result = backend.execute(build_parity_circuit(2), 5)
        assert result.counts == {"01": 5}
        assert result.shots == 5
        # 1s then 2s backoff
        assert slept == [1.0, 2.0]

    @responses.activate
    def test_batches_are_chunked(self, settings, slept):
        hw = HardwareBackend(replace(settings, max_batch_size=2), sleep=slept.append)
        add_job("a", counts=[{"00": 1}, {"00": 2}])
        add_job("b", counts=[{"00": 3}])
        circuits = [build_parity_circuit(2, delta=d) for d in (0.1, 0.2, 0.3)]
        results = hw.execute_batch(circuits, 10, seeds=[11, 12, 13])
        assert [r.counts["00"] for r in results] == [1, 2, 3]
        assert [r.job_id for r in results] == ["a", "a", "b"]
        posts = [c.request for c in responses.calls if c.request.method == "POST"]
        first, second = (json.loads(r.body) for r in posts)
        assert first["params"]["seeds"] == [11, 12]
        assert first["params"]["seed_simulator"] == 11
        assert second["params"]["seeds"] == [13]

    @responses.activate
    def test_unseeded_job_sends_no_seeds(self, backend):
        add_job()
        backend.execute(build_parity_circuit(2), 100)
        params = json.loads(responses.calls[0].request.body)["params"]
        assert "seeds" not in params
        assert "seed_simulator" not in params

    @responses.activate
    def test_result_count_mismatch(self, backend):
        add_job(counts=[{"00": 1}, {"00": 1}])
        with pytest.raises(TransportFailure):
            backend.execute(build_parity_circuit(2), 10)

    @responses.activate
    def test_failed_job(self, backend):
        add_job(status="FAILED")
        with pytest.raises(TransportFailure, match="failed"):
            backend.execute(build_parity_circuit(2), 10)

    @responses.activate
    def test_timeout_cancels_job(self, settings, slept):
        hw = HardwareBackend(settings, sleep=slept.append, clock=FakeClock([0.0, 50.0, 150.0]))
        responses.add(responses.POST, f"{API}/jobs", json={"id": "slow"})
        responses.add(responses.GET, f"{API}/jobs/slow", json={"status": "RUNNING"})
        responses.add(responses.DELETE, f"{API}/jobs/slow", status=204)

        with pytest.raises(ExecutionTimeout) as exc_info:
            hw.execute(build_parity_circuit(2), 10)
        assert exc_info.value.elapsed_s == pytest.approx(150.0)
        assert responses.calls[-1].request.method == "DELETE"
        assert slept == [1.0]


# =============================================================================
# Error mapping
# =============================================================================


class TestErrors:
    @responses.activate
    def test_rate_limit_retried(self, backend, slept):
        responses.add(
            responses.POST, f"{API}/jobs", status=429, headers={"Retry-After": "3"}
        )
        add_job()
        result = backend.execute(build_parity_circuit(2), 100)
        assert result.counts == {"00": 100}
        assert slept[0] == 3.0

    @responses.activate
    def test_rate_limit_exhausted(self, backend):
        responses.add(responses.POST, f"{API}/jobs", status=429)
        with pytest.raises(RateLimited) as exc_info:
            backend.execute(build_parity_circuit(2), 100)
        assert exc_info.value.retry_after == 60.0
        assert len(responses.calls) == 2

    @responses.activate
    def test_unauthorized(self, backend):
        responses.add(responses.POST, f"{API}/jobs", status=401, body="bad token")
        with pytest.raises(AuthenticationFailed) as exc_info:
            backend.execute(build_parity_circuit(2), 100)
        assert exc_info.value.status_code == 401

    @responses.activate
    def test_validation(self, backend):
        responses.add(responses.POST, f"{API}/jobs", status=422, json={"detail": "shots"})
        with pytest.raises(ValidationFailed):
            backend.execute(build_parity_circuit(2), 100)

    @responses.activate
    def test_server_error(self, backend):
        responses.add(responses.POST, f"{API}/jobs", status=500)
        with pytest.raises(TransportFailure) as exc_info:
            backend.execute(build_parity_circuit(2), 100)
        assert exc_info.value.status_code == 500

    @responses.activate
    def test_connection_error(self, backend):
        responses.add(
            responses.POST,
            f"{API}/jobs",
            body=requests.exceptions.ConnectionError("refused"),
        )
        with pytest.raises(TransportFailure, match="Connection error"):
            backend.execute(build_parity_circuit(2), 100)

    @responses.activate
    def test_request_timeout(self, backend):
        responses.add(
            responses.POST, f"{API}/jobs", body=requests.exceptions.ReadTimeout("slow")
        )
        with pytest.raises(ExecutionTimeout):
            backend.execute(build_parity_circuit(2), 100)

    @responses.activate
    def test_invalid_json(self, backend):
        responses.add(responses.POST, f"{API}/jobs", body="<html>")
        with pytest.raises(TransportFailure, match="Invalid JSON"):
            backend.execute(build_parity_circuit(2), 100)


# =============================================================================
# Calibration
# =============================================================================


class TestCalibration:
    @responses.activate
    def test_calibration_cached(self, backend):
        responses.add(
            responses.GET,
            f"{API}/backends/{DEVICE}/properties",
            json={"qubits": [[{"name": "T1", "value": 90.0}]], "gates": []},
        )
        first = backend.calibration()
        second = backend.calibration()
        assert first is second
        assert first.t1_us == {0: 90.0}
        assert len(responses.calls) == 1

    @responses.activate
    def test_refresh(self, backend):
        url = f"{API}/backends/{DEVICE}/properties"
        responses.add(responses.GET, url, json={"qubits": [[{"name": "T1", "value": 90.0}]]})
        responses.add(responses.GET, url, json={"qubits": [[{"name": "T1", "value": 70.0}]]})
        backend.calibration()
        assert backend.refresh_calibration().t1_us == {0: 70.0}
