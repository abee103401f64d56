"""
Remote job-queue backend.

Circuits are exported to OpenQASM 2.0 and submitted as sampler jobs to a
REST API, in batches of at most ``max_batch_size`` circuits per job. The
job is polled with bounded exponential backoff until it reaches a terminal
state or the wall-clock ceiling expires.

Configuration
-------------
.. code-block:: bash

    export NISO_API_URL=https://quantum.example.com/api/v1
    export NISO_API_TOKEN=xxxxxxxx
    export NISO_BACKEND_NAME=ibm_torino
    export NISO_TIMEOUT=600

Errors are mapped onto the ExecutionFailure taxonomy: HTTP 429 becomes
RateLimited (retried by the RetryPolicy, then re-raised), 401/403
AuthenticationFailed, 400/422 ValidationFailed, connection problems and
other statuses TransportFailure, and an expired ceiling ExecutionTimeout.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from niso.backends.base import ExecutionPort, ExecutionResult, register_backend
from niso.backends.qasm import to_qasm2
from niso.backends.retry import RetryPolicy
from niso.circuit import Circuit
from niso.errors import (
    AuthenticationFailed,
    ConfigurationInvalid,
    ExecutionTimeout,
    RateLimited,
    TransportFailure,
    ValidationFailed,
)
from niso.noise import CalibrationSnapshot

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_BATCH_SIZE = 100
DEFAULT_JOB_TIMEOUT = 600.0  # seconds, wall clock per job
DEFAULT_REQUEST_TIMEOUT = 30.0  # seconds, per HTTP request
DEFAULT_RETRY_AFTER = 60.0  # seconds, when a 429 carries no header
POLL_INITIAL = 1.0
POLL_FACTOR = 2.0
POLL_MAX = 30.0

ENV_API_URL = "NISO_API_URL"
ENV_API_TOKEN = "NISO_API_TOKEN"
ENV_BACKEND_NAME = "NISO_BACKEND_NAME"
ENV_TIMEOUT = "NISO_TIMEOUT"

_DONE = {"COMPLETED", "DONE"}
_FAILED = {"FAILED", "ERROR"}
_CANCELLED = {"CANCELLED", "CANCELED"}

_TIME_UNITS = {"us": 1.0, "µs": 1.0, "ns": 1e-3, "ms": 1e3, "s": 1e6}


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class HardwareSettings:
    """Connection and polling settings for the job-queue backend."""

    api_url: str
    token: str
    backend_name: str
    job_timeout: float = DEFAULT_JOB_TIMEOUT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    max_batch_size: int = MAX_BATCH_SIZE
    poll_initial: float = POLL_INITIAL
    poll_factor: float = POLL_FACTOR
    poll_max: float = POLL_MAX
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    tags: tuple[str, ...] = ("niso", "tqqc")

    def __post_init__(self) -> None:
        if not self.api_url:
            raise ConfigurationInvalid(
                "api_url", f"required, set {ENV_API_URL} or pass api_url"
            )
        if not self.token:
            raise ConfigurationInvalid(
                "token", f"required, set {ENV_API_TOKEN} or pass token"
            )
        if not self.backend_name:
            raise ConfigurationInvalid(
                "backend_name", f"required, set {ENV_BACKEND_NAME} or pass backend_name"
            )
        if not 1 <= self.max_batch_size <= MAX_BATCH_SIZE:
            raise ConfigurationInvalid(
                "max_batch_size", f"must be in [1, {MAX_BATCH_SIZE}]"
            )
        if self.job_timeout <= 0 or self.request_timeout <= 0:
            raise ConfigurationInvalid("timeout", "must be positive")

    @classmethod
    def from_env(
        cls,
        api_url: str | None = None,
        token: str | None = None,
        backend_name: str | None = None,
        **kwargs: Any,
    ) -> HardwareSettings:
        """Settings from NISO_* environment variables with explicit overrides."""
        if "job_timeout" not in kwargs and os.getenv(ENV_TIMEOUT):
            kwargs["job_timeout"] = float(os.environ[ENV_TIMEOUT])
        return cls(
            api_url=api_url or os.getenv(ENV_API_URL, ""),
            token=token or os.getenv(ENV_API_TOKEN, ""),
            backend_name=backend_name or os.getenv(ENV_BACKEND_NAME, ""),
            **kwargs,
        )


# =============================================================================
# Response parsing
# =============================================================================


def job_status(payload: dict[str, Any]) -> str:
    """Normalized upper-case status from either response layout.

    Older responses carry ``status``; newer ones nest it as
    ``state.status``. A job with neither has just been queued.
    """
    status = payload.get("status")
    if not status:
        status = (payload.get("state") or {}).get("status")
    return str(status or "QUEUED").upper()


def normalize_counts(counts: dict[str, int], num_qubits: int) -> dict[str, int]:
    """Convert hex keys ("0x5") to zero-padded bitstrings."""
    normalized: dict[str, int] = {}
    for key, value in counts.items():
        if key.startswith("0x"):
            key = format(int(key, 16), f"0{num_qubits}b")
        else:
            key = key.replace(" ", "")
        normalized[key] = normalized.get(key, 0) + int(value)
    return normalized


def parse_properties(backend: str, payload: dict[str, Any]) -> CalibrationSnapshot:
    """Build a calibration snapshot from a backend properties document."""
    t1: dict[int, float] = {}
    t2: dict[int, float] = {}
    readout: dict[int, float] = {}
    for index, qubit_props in enumerate(payload.get("qubits") or []):
        for prop in qubit_props:
            name = prop.get("name")
            value = float(prop.get("value", 0.0))
            scale = _TIME_UNITS.get(prop.get("unit", "us"), 1.0)
            if name == "T1":
                t1[index] = value * scale
            elif name == "T2":
                t2[index] = value * scale
            elif name in ("readout_error", "prob_meas0_prep1") and index not in readout:
                readout[index] = value

    errors_1q: dict[int, float] = {}
    errors_2q: dict[tuple[int, int], float] = {}
    for gate in payload.get("gates") or []:
        qubits = gate.get("qubits") or []
        for param in gate.get("parameters") or []:
            if param.get("name") != "gate_error":
                continue
            value = float(param["value"])
            if gate.get("gate") in ("cx", "ecr", "cz") and len(qubits) >= 2:
                errors_2q[(qubits[0], qubits[1])] = value
            elif gate.get("gate") in ("sx", "x") and len(qubits) == 1:
                errors_1q[qubits[0]] = value

    return CalibrationSnapshot(
        backend=backend,
        t1_us=t1,
        t2_us=t2,
        readout_errors=readout,
        gate_errors_1q=errors_1q,
        gate_errors_2q=errors_2q,
    )


# =============================================================================
# Backend
# =============================================================================


@register_backend("hardware")
class HardwareBackend(ExecutionPort):
    """Submit circuits to a remote sampler service.

    ``sleep`` and ``clock`` are injectable so polling can be exercised
    without real waiting.
    """

    def __init__(
        self,
        settings: HardwareSettings | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or HardwareSettings.from_env()
        self.session = session or self._create_session()
        self._sleep = sleep
        self._clock = clock
        self._api_base = self.settings.api_url.rstrip("/")
        self._calibration: CalibrationSnapshot | None = None

        logger.debug(
            "HardwareBackend initialized: api=%s, backend=%s",
            self._api_base,
            self.settings.backend_name,
        )

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": f"Bearer {self.settings.token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": "niso-tqqc/0.3",
            }
        )
        # Transient server errors only; 429 is handled by the RetryPolicy
        retry_strategy = Retry(
            total=3,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET", "DELETE"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    # -- HTTP plumbing --

    def _request(
        self, method: str, path: str, *, json: Any = None
    ) -> requests.Response:
        url = f"{self._api_base}{path}"
        timeout = self.settings.request_timeout
        try:
            response = self.session.request(method, url, json=json, timeout=timeout)
        except requests.exceptions.Timeout as e:
            raise ExecutionTimeout(
                f"Request timeout after {timeout}s: {method} {path}"
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise TransportFailure(f"Connection error to {self._api_base}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise TransportFailure(f"Request failed: {method} {path}: {e}") from e

        logger.debug("API %s %s -> %d", method, path, response.status_code)
        self._raise_for_status(response, f"{method} {path}")
        return response

    @staticmethod
    def _raise_for_status(response: requests.Response, context: str) -> None:
        if response.ok:
            return
        status = response.status_code
        detail = response.text[:200]
        if status == 429:
            header = response.headers.get("Retry-After")
            try:
                retry_after = float(header) if header else DEFAULT_RETRY_AFTER
            except ValueError:
                retry_after = DEFAULT_RETRY_AFTER
            raise RateLimited(retry_after, f"{context}: rate limited")
        if status in (401, 403):
            raise AuthenticationFailed(f"{context}: {detail}", status_code=status)
        if status in (400, 422):
            raise ValidationFailed(f"{context}: {detail}", status_code=status)
        raise TransportFailure(f"{context}: HTTP {status}: {detail}", status_code=status)

    def _json(self, method: str, path: str, *, json: Any = None) -> dict[str, Any]:
        response = self.settings.retry.call(
            lambda: self._request(method, path, json=json), sleep=self._sleep
        )
        try:
            return response.json()
        except ValueError as e:
            raise TransportFailure(f"Invalid JSON from {method} {path}") from e

    # -- job lifecycle --

    def submit(
        self,
        circuits: Sequence[Circuit],
        shots: int,
        seeds: Sequence[int | None] | None = None,
    ) -> str:
        """Submit one sampler job and return its id.

        ``seeds`` holds one entry per circuit and is sent as ``seeds``, so
        repeated copies of a circuit sample independently. The first seed
        also goes out as the job-level ``seed_simulator``.
        """
        params: dict[str, Any] = {
            "circuits": [to_qasm2(c) for c in circuits],
            "shots": shots,
        }
        if seeds and any(s is not None for s in seeds):
            if len(seeds) != len(circuits):
                raise ValidationFailed(
                    f"Got {len(seeds)} seeds for {len(circuits)} circuits"
                )
            params["seeds"] = list(seeds)
            if seeds[0] is not None:
                params["seed_simulator"] = seeds[0]
        payload = {
            "program_id": "sampler",
            "backend": self.settings.backend_name,
            "params": params,
            "tags": list(self.settings.tags),
        }
        body = self._json("POST", "/jobs", json=payload)
        job_id = body.get("id")
        if not job_id:
            raise TransportFailure("Job submission response carried no id")
        if job_status(body) in _FAILED:
            raise ValidationFailed(f"Job {job_id} rejected on submission")
        logger.info("Submitted job %s with %d circuit(s)", job_id, len(circuits))
        return job_id

    def wait(self, job_id: str) -> str:
        """Poll until the job is terminal or the wall-clock ceiling expires."""
        start = self._clock()
        interval = self.settings.poll_initial
        while True:
            status = job_status(self._json("GET", f"/jobs/{job_id}"))
            if status in _DONE:
                return status
            if status in _FAILED:
                raise TransportFailure(f"Job {job_id} failed")
            if status in _CANCELLED:
                raise TransportFailure(f"Job {job_id} was cancelled")

            elapsed = self._clock() - start
            remaining = self.settings.job_timeout - elapsed
            if remaining <= 0:
                self.cancel(job_id)
                raise ExecutionTimeout(
                    f"Job {job_id} still {status} after {elapsed:.1f}s",
                    elapsed_s=elapsed,
                )
            self._sleep(min(interval, remaining))
            interval = min(interval * self.settings.poll_factor, self.settings.poll_max)

    def cancel(self, job_id: str) -> None:
        try:
            self._request("DELETE", f"/jobs/{job_id}")
        except (TransportFailure, ExecutionTimeout, RateLimited) as e:
            logger.warning("Could not cancel job %s: %s", job_id, e)

    def results(
        self, job_id: str, circuits: Sequence[Circuit], shots: int
    ) -> list[ExecutionResult]:
        body = self._json("GET", f"/jobs/{job_id}/results")
        entries = body.get("results") or []
        if len(entries) != len(circuits):
            raise TransportFailure(
                f"Job {job_id} returned {len(entries)} results for {len(circuits)} circuits"
            )
        results = []
        for circuit, entry in zip(circuits, entries):
            counts = entry.get("counts")
            if counts is None:
                raise TransportFailure(f"Job {job_id} result has no counts")
            results.append(
                ExecutionResult(
                    counts=normalize_counts(counts, circuit.num_qubits),
                    shots=int(entry.get("shots") or shots),
                    backend=self.settings.backend_name,
                    job_id=job_id,
                    execution_time_s=float(entry.get("time_taken") or 0.0),
                )
            )
        return results

    # -- ExecutionPort --

    def execute(
        self, circuit: Circuit, shots: int, *, seed: int | None = None
    ) -> ExecutionResult:
        return self.execute_batch([circuit], shots, seeds=[seed])[0]

    def execute_batch(
        self,
        circuits: Sequence[Circuit],
        shots: int,
        *,
        seeds: Sequence[int | None] | None = None,
    ) -> list[ExecutionResult]:
        size = self.settings.max_batch_size
        results: list[ExecutionResult] = []
        for start in range(0, len(circuits), size):
            chunk = circuits[start : start + size]
            chunk_seeds = seeds[start : start + size] if seeds else None
            job_id = self.submit(chunk, shots, chunk_seeds)
            self.wait(job_id)
            results.extend(self.results(job_id, chunk, shots))
        return results

    def calibration(self) -> CalibrationSnapshot | None:
        if self._calibration is None:
            self.refresh_calibration()
        return self._calibration

    def refresh_calibration(self) -> CalibrationSnapshot:
        name = self.settings.backend_name
        payload = self._json("GET", f"/backends/{name}/properties")
        self._calibration = parse_properties(name, payload)
        logger.info(
            "Loaded calibration for %s (%d qubits)", name, self._calibration.num_qubits
        )
        return self._calibration

    def close(self) -> None:
        self.session.close()
