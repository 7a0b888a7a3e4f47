# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, TypeVar

from . import _error_codes as ec
from .errors import ConfigurationError
from .telemetry import TelemetryConfig

MAX_PAGE_SIZE = 5000
DEFAULT_FETCH_MAX_RETRIES = 3

_T = TypeVar("_T")


@dataclass(frozen=True)
class DataverseConfig:
    """
    Configuration settings for Dataverse client operations.

    :param language_code: LCID (Locale ID) for labels in metadata payloads. Default is 1033 (English - United States).
    :type language_code: int
    :param http_retries: Maximum number of attempts for network errors (default: 5).
    :type http_retries: int or None
    :param http_backoff: Base delay in seconds for exponential backoff (default: 0.5).
    :type http_backoff: float or None
    :param http_max_backoff: Maximum delay between retry attempts in seconds (default: 60.0).
    :type http_max_backoff: float or None
    :param http_timeout: Request timeout in seconds (default: method-dependent).
    :type http_timeout: float or None
    :param http_jitter: Whether to add jitter to retry delays (default: True).
    :type http_jitter: bool or None
    :param http_retry_transient_errors: Whether single-shot requests retry 429/502/503/504 (default: True).
        Paged retrieval always manages its own retries.
    :type http_retry_transient_errors: bool or None
    :param page_size: Page-size hint for paged retrieval, 1..5000 (default: server decides).
    :type page_size: int or None
    :param fetch_max_retries: Per-page retry budget for transient failures during paged retrieval (default: 3).
    :type fetch_max_retries: int
    :param telemetry: Optional logging/hook configuration.
    :type telemetry: ~dataverse_commands.core.telemetry.TelemetryConfig or None
    """

    language_code: int = 1033

    # HTTP retry and resilience configuration
    http_retries: Optional[int] = None
    http_backoff: Optional[float] = None
    http_max_backoff: Optional[float] = None
    http_timeout: Optional[float] = None
    http_jitter: Optional[bool] = None
    http_retry_transient_errors: Optional[bool] = None

    # Paged retrieval
    page_size: Optional[int] = None
    fetch_max_retries: int = DEFAULT_FETCH_MAX_RETRIES

    telemetry: Optional[TelemetryConfig] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DataverseConfig":
        """
        Create a configuration instance from ``DATAVERSE_*`` environment variables.

        Unset variables keep their defaults. Recognised variables:
        ``DATAVERSE_LANGUAGE_CODE``, ``DATAVERSE_HTTP_RETRIES``, ``DATAVERSE_HTTP_BACKOFF``,
        ``DATAVERSE_HTTP_TIMEOUT``, ``DATAVERSE_PAGE_SIZE``, ``DATAVERSE_FETCH_MAX_RETRIES``
        and ``DATAVERSE_LOG_LEVEL`` (enables request logging at that level).

        :param environ: Mapping to read instead of :data:`os.environ`.
        :return: Configuration instance.
        :rtype: ~dataverse_commands.core.config.DataverseConfig
        :raises ~dataverse_commands.core.errors.ConfigurationError: If a variable has an invalid value.
        """
        env = os.environ if environ is None else environ

        log_level = (env.get("DATAVERSE_LOG_LEVEL") or "").strip()
        telemetry = TelemetryConfig(enable_logging=True, log_level=log_level.upper()) if log_level else None

        config = cls(
            language_code=_env_value(env, "DATAVERSE_LANGUAGE_CODE", int, 1033),
            http_retries=_env_value(env, "DATAVERSE_HTTP_RETRIES", int, None),
            http_backoff=_env_value(env, "DATAVERSE_HTTP_BACKOFF", float, None),
            http_timeout=_env_value(env, "DATAVERSE_HTTP_TIMEOUT", float, None),
            page_size=_env_value(env, "DATAVERSE_PAGE_SIZE", int, None),
            fetch_max_retries=_env_value(env, "DATAVERSE_FETCH_MAX_RETRIES", int, DEFAULT_FETCH_MAX_RETRIES),
            telemetry=telemetry,
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` for out-of-range paging settings."""
        if self.page_size is not None and not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ConfigurationError(
                f"page_size must be between 1 and {MAX_PAGE_SIZE}, got {self.page_size}",
                subcode=ec.CONFIG_PAGE_SIZE,
            )
        if self.fetch_max_retries < 0:
            raise ConfigurationError(
                f"fetch_max_retries must be >= 0, got {self.fetch_max_retries}",
                subcode=ec.CONFIG_MAX_RETRIES,
            )


def _env_value(env: Mapping[str, str], name: str, cast: Callable[[str], _T], default: Optional[_T]) -> Optional[_T]:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ConfigurationError(
            f"Environment variable {name} has invalid value {raw!r}",
            subcode=ec.CONFIG_ENV_VALUE,
            details={"variable": name},
        ) from None
