# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Logging and hook-based telemetry for the Dataverse command library.

Telemetry is opt-in. When enabled, every HTTP request issued by the low-level
OData client is logged through the standard :mod:`logging` module and dispatched
to any registered :class:`TelemetryHook`. Page retries reported by the paginated
fetcher are surfaced the same way.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    Generator,
    List,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)

LOGGER_NAME = "dataverse_commands"

_log = logging.getLogger(LOGGER_NAME)


# ============================================================================
# Configuration
# ============================================================================


@dataclass(frozen=True)
class TelemetryConfig:
    """Configuration for request logging and telemetry hooks.

    Example:
        Log every request at DEBUG and failures at WARNING::

            config = DataverseConfig(
                telemetry=TelemetryConfig(enable_logging=True, log_level="DEBUG")
            )

        Custom hook::

            config = DataverseConfig(
                telemetry=TelemetryConfig(hooks=[MyTimingHook()])
            )
    """

    enable_logging: bool = False
    log_level: str = "WARNING"
    logger_name: str = LOGGER_NAME

    hooks: List["TelemetryHook"] = field(default_factory=list)


# ============================================================================
# Context Objects
# ============================================================================


@dataclass
class RequestContext:
    """Context passed to telemetry hooks for each HTTP request."""

    client_request_id: str
    correlation_id: Optional[str]

    method: str
    url: str
    operation: str  # e.g. "records.create", "query.fetch_all"
    table_name: Optional[str] = None

    start_time: float = field(default_factory=time.perf_counter)

    # Custom data bag for hooks to share state
    custom_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ResponseContext:
    """Response information passed to telemetry hooks."""

    status_code: int
    duration_ms: float
    service_request_id: Optional[str] = None
    error: Optional[Exception] = None


# ============================================================================
# Hook Protocol
# ============================================================================


@runtime_checkable
class TelemetryHook(Protocol):
    """Protocol for custom telemetry hooks.

    All methods are optional; implement only what you need.

    Example:
        class RetryCounter:
            def __init__(self):
                self.retries = 0

            def on_retry(self, operation, state):
                self.retries += 1
    """

    def on_request_start(self, context: RequestContext) -> None:
        """Called before each HTTP request is sent."""
        ...

    def on_request_end(self, request: RequestContext, response: ResponseContext) -> None:
        """Called after each HTTP request completes."""
        ...

    def on_request_error(self, request: RequestContext, error: Exception) -> None:
        """Called when the transport raises."""
        ...

    def on_retry(self, operation: str, state: Any) -> None:
        """Called when a page request is about to be retried."""
        ...

    def get_additional_headers(self) -> Dict[str, str]:
        """Return additional headers to include in requests."""
        ...


# ============================================================================
# Telemetry Manager
# ============================================================================


class TelemetryManager:
    """Dispatches request telemetry to the logger and hooks.

    This class is internal and not part of the public API.
    """

    def __init__(self, config: Optional[TelemetryConfig] = None) -> None:
        self._config = config or TelemetryConfig()
        self._logger: Optional[logging.Logger] = None
        self._hooks = list(self._config.hooks)

        if self._config.enable_logging:
            self._logger = logging.getLogger(self._config.logger_name)
            self._logger.setLevel(getattr(logging, self._config.log_level.upper()))

    @property
    def is_logging_enabled(self) -> bool:
        return self._logger is not None

    @contextmanager
    def trace_request(
        self,
        operation: str,
        method: str,
        url: str,
        client_request_id: str,
        correlation_id: Optional[str],
        table_name: Optional[str] = None,
    ) -> Generator[RequestContext, None, None]:
        """Create a request context spanning one HTTP round trip.

        Usage:
            with telemetry.trace_request("records.create", "POST", url, req_id, corr_id) as ctx:
                response = self._http.request(...)
                telemetry.record_response(ctx, response.status_code)
        """
        ctx = RequestContext(
            client_request_id=client_request_id,
            correlation_id=correlation_id,
            method=method,
            url=url,
            operation=operation,
            table_name=table_name,
        )
        self._dispatch("on_request_start", ctx)
        try:
            yield ctx
        except Exception as e:
            if self._logger:
                self._logger.warning(
                    "%s %s failed: %s",
                    operation,
                    method,
                    e,
                    extra={"client_request_id": client_request_id},
                )
            self._dispatch("on_request_error", ctx, e)
            raise

    def record_response(
        self,
        ctx: RequestContext,
        status_code: int,
        service_request_id: Optional[str] = None,
        error: Optional[Exception] = None,
    ) -> None:
        """Log the response and dispatch it to hooks."""
        duration_ms = (time.perf_counter() - ctx.start_time) * 1000
        response = ResponseContext(
            status_code=status_code,
            duration_ms=duration_ms,
            service_request_id=service_request_id,
            error=error,
        )
        if self._logger:
            level = logging.WARNING if status_code >= 400 else logging.DEBUG
            self._logger.log(
                level,
                "%s %s %s %.1fms",
                ctx.operation,
                ctx.method,
                status_code,
                duration_ms,
                extra={
                    "client_request_id": ctx.client_request_id,
                    "service_request_id": service_request_id,
                },
            )
        self._dispatch("on_request_end", ctx, response)

    def record_retry(self, operation: str, state: Any) -> None:
        """Log a page retry reported by the paginated fetcher."""
        if self._logger:
            self._logger.warning(
                "%s retry %s after HTTP %s, waiting %.1fs: %s",
                operation,
                getattr(state, "attempt", "?"),
                getattr(state, "status_code", "?"),
                getattr(state, "delay", 0.0),
                getattr(state, "url", ""),
            )
        self._dispatch("on_retry", operation, state)

    def _dispatch(self, method_name: str, *args: Any) -> None:
        for hook in self._hooks:
            handler = getattr(hook, method_name, None)
            if handler is None:
                continue
            try:
                handler(*args)
            except Exception:
                # Hooks must not break requests
                _log.debug("Telemetry hook %r.%s failed", hook, method_name, exc_info=True)

    def get_additional_headers(self) -> Dict[str, str]:
        """Collect additional headers from all hooks."""
        headers: Dict[str, str] = {}
        for hook in self._hooks:
            getter = getattr(hook, "get_additional_headers", None)
            if getter is None:
                continue
            try:
                hook_headers = getter()
            except Exception:
                _log.debug("Telemetry hook %r.get_additional_headers failed", hook, exc_info=True)
                continue
            if hook_headers:
                headers.update(hook_headers)
        return headers


# ============================================================================
# No-op Manager for when telemetry is disabled
# ============================================================================


class NoOpTelemetryManager:
    """No-op telemetry manager when telemetry is disabled."""

    is_logging_enabled = False

    @contextmanager
    def trace_request(
        self,
        operation: str,
        method: str,
        url: str,
        client_request_id: str,
        correlation_id: Optional[str],
        table_name: Optional[str] = None,
    ) -> Generator[RequestContext, None, None]:
        yield RequestContext(
            client_request_id=client_request_id,
            correlation_id=correlation_id,
            method=method,
            url=url,
            operation=operation,
            table_name=table_name,
        )

    def record_response(self, *args: Any, **kwargs: Any) -> None:
        pass

    def record_retry(self, *args: Any, **kwargs: Any) -> None:
        pass

    def get_additional_headers(self) -> Dict[str, str]:
        return {}


def create_telemetry_manager(
    config: Optional[TelemetryConfig],
) -> Union[TelemetryManager, NoOpTelemetryManager]:
    """Factory to create the appropriate telemetry manager."""
    if config is None:
        return NoOpTelemetryManager()
    if not (config.enable_logging or config.hooks):
        return NoOpTelemetryManager()
    return TelemetryManager(config)


__all__ = [
    "LOGGER_NAME",
    "TelemetryConfig",
    "TelemetryHook",
    "TelemetryManager",
    "NoOpTelemetryManager",
    "RequestContext",
    "ResponseContext",
    "create_telemetry_manager",
]
