# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
HTTP client with automatic retry logic, timeout handling, and optional session support.

This module provides :class:`HttpClient`, a wrapper around the requests library
that adds configurable retry behavior for network errors and transient HTTP
statuses, default timeouts per HTTP method, and optional connection pooling via
session reuse.
"""

from __future__ import annotations

import random
import time
from typing import Any, Optional

import requests

from .errors import parse_retry_after


class HttpClient:
    """
    HTTP client with configurable retry logic, timeout handling, and optional session support.

    :param retries: Maximum number of attempts per request. Default is 5.
    :type retries: int or None
    :param backoff: Base delay in seconds between retry attempts. Default is 0.5.
    :type backoff: float or None
    :param timeout: Default request timeout in seconds. If None, uses per-method defaults.
    :type timeout: float or None
    :param max_backoff: Upper bound for any single retry delay. Default is 60.0.
    :type max_backoff: float or None
    :param jitter: Add +/-25% random variation to computed delays. Default is True.
    :type jitter: bool
    :param retry_transient_errors: Retry 429/502/503/504 responses. Default is True.
    :type retry_transient_errors: bool
    :param session: Optional requests.Session for connection pooling.
    :type session: requests.Session or None
    """

    def __init__(
        self,
        *,
        retries: Optional[int] = None,
        backoff: Optional[float] = None,
        timeout: Optional[float] = None,
        max_backoff: Optional[float] = None,
        jitter: bool = True,
        retry_transient_errors: bool = True,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.max_attempts = max(1, retries if retries is not None else 5)
        self.base_delay = backoff if backoff is not None else 0.5
        self.max_backoff = max_backoff if max_backoff is not None else 60.0
        self.default_timeout: Optional[float] = timeout
        self.jitter = jitter
        self.retry_transient_errors = retry_transient_errors
        self._session = session

        # Transient HTTP status codes retried for single-shot requests
        self.transient_status_codes = {429, 502, 503, 504}

    def request(
        self,
        method: str,
        url: str,
        *,
        retry_transient: Optional[bool] = None,
        attempts: Optional[int] = None,
        **kwargs: Any,
    ) -> requests.Response:
        """
        Execute an HTTP request with automatic retry logic and timeout management.

        Applies default timeouts based on HTTP method (120s for POST/DELETE, 10s for others)
        and retries network errors with exponential backoff. Transient HTTP statuses are
        retried too unless disabled globally or with ``retry_transient=False``; in that case
        the response is returned unchanged for the caller to classify.

        :param method: HTTP method (GET, POST, PATCH, DELETE, etc.).
        :type method: str
        :param url: Target URL for the request.
        :type url: str
        :param retry_transient: Per-call override of ``retry_transient_errors``.
        :type retry_transient: bool or None
        :param attempts: Per-call override of the attempt limit. ``1`` sends the request once
            and lets a network error propagate immediately.
        :type attempts: int or None
        :param kwargs: Additional arguments passed to ``requests.request()`` or
            ``session.request()``, including headers, json, params, etc.
        :return: HTTP response object.
        :rtype: requests.Response
        :raises requests.exceptions.RequestException: If all retry attempts fail.
        """
        if "timeout" not in kwargs:
            if self.default_timeout is not None:
                kwargs["timeout"] = self.default_timeout
            else:
                m = (method or "").lower()
                kwargs["timeout"] = 120 if m in ("post", "delete") else 10

        retry_status = self.retry_transient_errors if retry_transient is None else retry_transient
        max_attempts = self.max_attempts if attempts is None else max(1, attempts)

        for attempt in range(max_attempts):
            try:
                response = self._send(method, url, **kwargs)
            except requests.exceptions.RequestException:
                if attempt == max_attempts - 1:
                    raise
                time.sleep(self._calculate_retry_delay(attempt))
                continue

            if (
                retry_status
                and response.status_code in self.transient_status_codes
                and attempt < max_attempts - 1
            ):
                time.sleep(self._calculate_retry_delay(attempt, response))
                continue
            return response

        # This should never be reached due to the logic above
        raise RuntimeError("Unexpected end of retry loop")

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        if self._session is not None:
            return self._session.request(method, url, **kwargs)
        return requests.request(method, url, **kwargs)

    def _calculate_retry_delay(self, attempt: int, response: Optional[requests.Response] = None) -> float:
        """
        Calculate the delay before the next retry attempt.

        Priority order:

        1. ``Retry-After`` header on the response, capped at ``max_backoff``
        2. ``base_delay * 2**attempt``, capped at ``max_backoff``, with optional +/-25% jitter

        :param attempt: Zero-based retry attempt number.
        :type attempt: int
        :param response: Optional response carrying a ``Retry-After`` header.
        :type response: requests.Response or None
        :return: Delay in seconds, always >= 0.
        :rtype: float
        """
        if response is not None:
            retry_after = parse_retry_after((response.headers or {}).get("Retry-After"))
            if retry_after is not None:
                return min(retry_after, self.max_backoff)

        delay = min(self.base_delay * (2**attempt), self.max_backoff)
        if self.jitter:
            jitter_range = delay * 0.25
            delay = max(0, delay + random.uniform(-jitter_range, jitter_range))
        return delay

    def close(self) -> None:
        """
        Close the HTTP client and release resources.

        If a session was provided, this method closes it. Safe to call multiple times.
        """
        if self._session is not None:
            self._session.close()
            self._session = None
