"""
Global Exception Handling

Provides structured error responses and circuit breaker pattern
for graceful failure handling of remote capabilities.
"""

import threading
import traceback
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tile_upscaler.core.logging import get_logger, request_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class UpscalerBaseException(Exception):
    """Base exception for the upscaler."""

    kind = "Internal"

    def __init__(
        self,
        message: str,
        code: int = 500,
        request_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.request_id = request_id or request_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "kind": self.kind,
            "request_id": self.request_id,
            "code": self.code,
            "stage": self.stage,
            "details": self.details,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        }


class InvalidParameterError(UpscalerBaseException):
    """Raised for a tile size, overlap or scale the pipeline cannot work with."""

    kind = "InvalidParameter"

    def __init__(self, message: str, parameter: Optional[str] = None, **kwargs):
        super().__init__(message, code=400, **kwargs)
        if parameter:
            self.details["parameter"] = parameter


class InvalidImageError(UpscalerBaseException):
    """Raised when the source image is unreadable or has no pixels."""

    kind = "InvalidImage"

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class TileLimitExceededError(UpscalerBaseException):
    """Raised when decomposition would produce more tiles than allowed."""

    kind = "TileLimitExceeded"

    def __init__(self, tile_count: int, max_tiles: int, **kwargs):
        super().__init__(
            f"Tile count too large ({tile_count} > {max_tiles}). "
            "Please increase tile size or reduce overlap.",
            code=400,
            **kwargs
        )
        self.details["tile_count"] = tile_count
        self.details["max_tiles"] = max_tiles


class EnhancementFailedError(UpscalerBaseException):
    """Raised when the enhancement capability fails; the whole batch fails."""

    kind = "EnhancementFailed"

    def __init__(
        self,
        message: str,
        tile_index: Optional[int] = None,
        service: Optional[str] = None,
        http_status: Optional[int] = None,
        code: int = 502,
        **kwargs
    ):
        super().__init__(message, code=code, **kwargs)
        if tile_index is not None:
            self.details["tile_index"] = tile_index
        if service:
            self.details["service"] = service
        if http_status is not None:
            self.details["http_status"] = http_status


class EnhancementTimeoutError(EnhancementFailedError):
    """Raised when a capability call exceeds its deadline."""

    kind = "TimedOut"

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=504, **kwargs)


class CircuitBreakerOpenError(EnhancementFailedError):
    """Raised when circuit breaker is open."""

    def __init__(self, service: str, **kwargs):
        super().__init__(
            f"Service '{service}' is temporarily unavailable (circuit breaker open)",
            service=service,
            code=503,
            **kwargs
        )


# =============================================================================
# Circuit Breaker Implementation
# =============================================================================

class CircuitBreaker:
    """
    Circuit Breaker pattern for graceful failure handling.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: Too many failures, requests fail fast
    - HALF_OPEN: Testing if service is recovered

    Tile workers share one breaker per service, so state changes are locked.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        half_open_max_calls: int = 3
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls

        self._lock = threading.Lock()
        self._failure_count = 0
        self._last_failure_time: Optional[datetime] = None
        self._state = "CLOSED"
        self._half_open_calls = 0

    @property
    def state(self) -> str:
        """Get current circuit breaker state."""
        with self._lock:
            return self._current_state()

    def _current_state(self) -> str:
        if self._state == "OPEN" and self._last_failure_time:
            elapsed = (datetime.now(timezone.utc) - self._last_failure_time).total_seconds()
            if elapsed >= self.recovery_timeout:
                self._state = "HALF_OPEN"
                self._half_open_calls = 0
        return self._state

    def can_execute(self) -> bool:
        """Check if request can proceed."""
        with self._lock:
            state = self._current_state()
            if state == "CLOSED":
                return True
            if state == "HALF_OPEN":
                return self._half_open_calls < self.half_open_max_calls
            return False

    def record_success(self):
        """Record a successful call."""
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_calls += 1
                if self._half_open_calls >= self.half_open_max_calls:
                    self._state = "CLOSED"
                    self._failure_count = 0
                    logger.info(
                        "circuit_breaker_closed",
                        circuit=self.name,
                        message="Service recovered"
                    )
            elif self._state == "CLOSED":
                self._failure_count = 0

    def record_failure(self, error: Optional[Exception] = None):
        """Record a failed call."""
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = datetime.now(timezone.utc)

            if self._state == "HALF_OPEN":
                self._state = "OPEN"
                logger.warning(
                    "circuit_breaker_reopened",
                    circuit=self.name,
                    error=str(error) if error else None
                )
            elif self._state == "CLOSED" and self._failure_count >= self.failure_threshold:
                self._state = "OPEN"
                logger.warning(
                    "circuit_breaker_opened",
                    circuit=self.name,
                    failure_count=self._failure_count,
                    error=str(error) if error else None
                )

    def reset(self):
        """Reset the circuit breaker."""
        with self._lock:
            self._state = "CLOSED"
            self._failure_count = 0
            self._last_failure_time = None
            self._half_open_calls = 0


# Global circuit breakers for external services
circuit_breakers: Dict[str, CircuitBreaker] = {
    "nano_banana": CircuitBreaker("nano_banana", failure_threshold=3, recovery_timeout=120),
}


def get_circuit_breaker(name: str) -> CircuitBreaker:
    """Get or create a circuit breaker for a service."""
    if name not in circuit_breakers:
        circuit_breakers[name] = CircuitBreaker(name)
    return circuit_breakers[name]


# =============================================================================
# Exception Handlers
# =============================================================================

def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(UpscalerBaseException)
    async def upscaler_exception_handler(request: Request, exc: UpscalerBaseException):
        logger.error(
            "upscaler_exception",
            error=exc.message,
            kind=exc.kind,
            code=exc.code,
            stage=exc.stage,
            details=exc.details
        )

        return JSONResponse(
            status_code=exc.code,
            content=exc.to_dict()
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        request_id = request_id_var.get()

        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "kind": "Internal",
                "request_id": request_id,
                "code": 500,
                "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            }
        )
