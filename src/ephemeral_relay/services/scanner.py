"""Remote content scanning providers.

This module provides the pluggable scanning capability used by the content
safety pipeline. It includes:

- A ``ScanProvider`` protocol shared by every provider
- ``VirusTotalScanner``, an HTTP client for file analysis and domain reputation
- ``NullScanner``, selected when no provider is configured
- Circuit breaker and metrics collection around the remote provider
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol
from urllib.parse import urlsplit

import httpx

from ephemeral_relay.core.settings import Settings, settings
from ephemeral_relay.models import ScanVerdict, VerdictSource

# Configure logger for this module
logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_OK = 200
HTTP_INTERNAL_SERVER_ERROR = 500

ANALYSIS_COMPLETED = "completed"


class ScanProviderError(RuntimeError):
    """Base exception raised for remote scanning failures."""


class ScannerDisabledError(ScanProviderError):
    """Raised when a remote scan is attempted while no provider is configured."""


class ScanProvider(Protocol):
    """Capability consumed by the safety pipeline."""

    name: str

    @property
    def configured(self) -> bool: ...

    async def scan_file(self, data: bytes, filename: str) -> ScanVerdict | None: ...

    async def check_url(self, url: str) -> ScanVerdict | None: ...

    def get_status(self) -> dict[str, Any]: ...

    async def close(self) -> None: ...


class CircuitState(Enum):
    """Circuit breaker states for the remote provider."""
    CLOSED = "closed"      # Normal operation - requests allowed
    OPEN = "open"          # Provider failing - requests rejected immediately
    HALF_OPEN = "half_open"  # Probing whether the provider recovered


@dataclass
class ScannerMetrics:
    """Metrics collection for remote scan requests."""

    request_count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_response_time: float = 0.0
    max_response_time: float = 0.0
    error_counts_by_type: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    endpoint_counts: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def record_request(
        self, endpoint: str, response_time: float, success: bool, error_type: str | None = None
    ) -> None:
        """Record a request metric."""
        self.request_count += 1
        self.total_response_time += response_time
        self.max_response_time = max(self.max_response_time, response_time)
        self.endpoint_counts[endpoint] += 1

        if success:
            self.success_count += 1
        else:
            self.error_count += 1
            if error_type:
                self.error_counts_by_type[error_type] += 1

    def get_average_response_time(self) -> float:
        return self.total_response_time / self.request_count if self.request_count > 0 else 0.0


@dataclass
class CircuitBreaker:
    """Circuit breaker guarding the remote provider."""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 2

    _state: CircuitState = CircuitState.CLOSED
    _failure_count: int = 0
    _success_count: int = 0
    _last_failure_time: float = 0.0

    def is_open(self) -> bool:
        """Check if circuit is open."""
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._last_failure_time > self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
            return self._state == CircuitState.OPEN
        return False

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._state = CircuitState.CLOSED
                self._failure_count = 0
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN

    def get_state(self) -> CircuitState:
        return self._state

    def get_failure_count(self) -> int:
        return self._failure_count


@dataclass(frozen=True)
class ScannerConfig:
    """Immutable configuration for the remote provider."""

    api_key: str | None
    base_url: str
    upload_timeout_seconds: float
    lookup_timeout_seconds: float
    poll_interval_seconds: float


def load_scanner_config(config: Settings | None = None) -> ScannerConfig:
    """Build configuration object from global settings."""
    config = config or settings
    return ScannerConfig(
        api_key=config.virustotal_api_key,
        base_url=config.virustotal_base_url.rstrip("/"),
        upload_timeout_seconds=float(config.scan_upload_timeout_seconds),
        lookup_timeout_seconds=float(config.scan_lookup_timeout_seconds),
        poll_interval_seconds=float(config.scan_poll_interval_seconds),
    )


def extract_hostname(url: str) -> str:
    """Return the host portion of ``url``, or ``url`` itself if it has none."""
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        hostname = None
    return hostname or url


class VirusTotalScanner:
    """HTTP client wrapper for the VirusTotal v3 API."""

    name = "virustotal"

    def __init__(
        self,
        config: ScannerConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_scanner_config()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._circuit_breaker = CircuitBreaker()
        self._metrics = ScannerMetrics()

    @property
    def configured(self) -> bool:
        return bool(self.config.api_key)

    async def _ensure_client(self) -> httpx.AsyncClient:
        if not self.configured:
            raise ScannerDisabledError("VirusTotal API key not configured")

        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    headers={"x-apikey": self.config.api_key or ""},
                    timeout=httpx.Timeout(self.config.lookup_timeout_seconds),
                    transport=self._transport,
                )

        return self._client

    @dataclass
    class RequestParams:
        """Parameters for HTTP requests."""
        method: str
        path: str
        files: Mapping[str, Any] | None = None
        timeout: float | None = None

    async def _request(self, params: RequestParams) -> dict[str, Any]:
        if self._circuit_breaker.is_open():
            raise ScanProviderError("Scanner circuit breaker is open - provider unavailable")

        client = await self._ensure_client()
        endpoint = f"{params.method} {params.path.split('/')[1]}"
        start_time = time.monotonic()
        success = False
        error_type = None

        try:
            response = await client.request(
                params.method,
                params.path,
                files=params.files,
                timeout=params.timeout if params.timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )

            if response.status_code >= HTTP_INTERNAL_SERVER_ERROR:
                self._circuit_breaker.record_failure()
                error_type = f"http_{response.status_code}"
                raise ScanProviderError(f"Provider responded with {response.status_code}")

            self._circuit_breaker.record_success()
            if response.status_code != HTTP_OK:
                error_type = f"http_{response.status_code}"
                raise ScanProviderError(
                    f"Unexpected provider response ({response.status_code}) for {endpoint}"
                )

            try:
                body = response.json()
            except ValueError as exc:
                error_type = "malformed_response"
                raise ScanProviderError("Provider returned a non-JSON body") from exc
            success = True
            return body
        except httpx.HTTPError as exc:
            self._circuit_breaker.record_failure()
            error_type = "network_error"
            raise ScanProviderError(f"Provider request failed: {exc}") from exc
        except httpx.InvalidURL as exc:
            # the lookup target came from user content; not a provider fault
            error_type = "invalid_url"
            raise ScanProviderError(f"Cannot build provider request: {exc}") from exc
        finally:
            self._metrics.record_request(
                endpoint, time.monotonic() - start_time, success, error_type
            )

    async def scan_file(self, data: bytes, filename: str) -> ScanVerdict | None:
        """Submit a file for analysis and wait for the completed verdict.

        The analysis is polled every ``poll_interval_seconds`` until the
        provider reports it as completed. Callers bound the total wait.

        Raises:
            ScanProviderError: On network failure or a malformed response
        """
        logger.info("Submitting file for analysis: %s (%d bytes)", filename, len(data))
        body = await self._request(
            self.RequestParams(
                method="POST",
                path="/files",
                files={"file": (filename, data)},
                timeout=self.config.upload_timeout_seconds,
            )
        )
        try:
            analysis_id = str(body["data"]["id"])
        except (KeyError, TypeError) as exc:
            raise ScanProviderError("Provider response is missing the analysis id") from exc

        logger.debug("File %s submitted as analysis %s", filename, analysis_id)
        while True:
            await asyncio.sleep(self.config.poll_interval_seconds)
            body = await self._request(
                self.RequestParams(method="GET", path=f"/analyses/{analysis_id}")
            )
            try:
                attributes = body["data"]["attributes"]
                status = attributes.get("status")
                if status != ANALYSIS_COMPLETED:
                    logger.debug("Analysis %s still %s", analysis_id, status)
                    continue
                verdict = ScanVerdict.from_stats(attributes["stats"], VerdictSource.FILE_SCAN)
            except (KeyError, TypeError, AttributeError, ValueError) as exc:
                raise ScanProviderError(f"Malformed analysis response for {analysis_id}") from exc

            logger.info(
                "Analysis %s completed: malicious=%d suspicious=%d",
                analysis_id,
                verdict.malicious,
                verdict.suspicious,
            )
            return verdict

    async def check_url(self, url: str) -> ScanVerdict | None:
        """Look up the reputation of the domain hosting ``url``.

        Raises:
            ScanProviderError: On network failure or a malformed response
        """
        domain = extract_hostname(url)
        logger.info("Reputation lookup for domain %s", domain)
        body = await self._request(
            self.RequestParams(method="GET", path=f"/domains/{domain}")
        )
        try:
            stats = body["data"]["attributes"]["last_analysis_stats"]
            return ScanVerdict.from_stats(stats, VerdictSource.URL_REPUTATION)
        except (KeyError, TypeError, AttributeError, ValueError) as exc:
            raise ScanProviderError(f"Malformed reputation response for {domain}") from exc

    def get_status(self) -> dict[str, Any]:
        """Return circuit breaker state and request metrics."""
        return {
            "provider": self.name,
            "configured": self.configured,
            "circuit_state": self._circuit_breaker.get_state().value,
            "failure_count": self._circuit_breaker.get_failure_count(),
            "request_count": self._metrics.request_count,
            "success_count": self._metrics.success_count,
            "error_count": self._metrics.error_count,
            "average_response_time": self._metrics.get_average_response_time(),
            "max_response_time": self._metrics.max_response_time,
            "error_counts_by_type": dict(self._metrics.error_counts_by_type),
            "endpoint_counts": dict(self._metrics.endpoint_counts),
        }

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


class NullScanner:
    """Provider used when remote scanning is not configured."""

    name = "none"

    @property
    def configured(self) -> bool:
        return False

    async def scan_file(self, data: bytes, filename: str) -> ScanVerdict | None:
        return None

    async def check_url(self, url: str) -> ScanVerdict | None:
        return None

    def get_status(self) -> dict[str, Any]:
        return {"provider": self.name, "configured": False}

    async def close(self) -> None:
        return None


def build_scanner(config: Settings | None = None) -> ScanProvider:
    """Select the scanning provider for this process."""
    config = config or settings
    if config.scanner_configured:
        logger.info("VirusTotal API key loaded; remote scanning enabled")
        return VirusTotalScanner(load_scanner_config(config))
    logger.warning("VirusTotal API key not found; using pattern detection only")
    return NullScanner()
