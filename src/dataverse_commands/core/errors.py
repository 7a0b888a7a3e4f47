# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Structured exceptions raised by the Dataverse command library.

Every error derives from :class:`DataverseError`, which carries a stable ``code``,
an optional ``subcode`` (see :mod:`~dataverse_commands.core._error_codes`), the HTTP
status when one applies, and a ``details`` dictionary for diagnostics.

The paginated fetcher raises exactly one of :class:`ConfigurationError`,
:class:`RequestFailed`, :class:`RetryExhausted` or :class:`Cancelled`.
"""

from __future__ import annotations

import datetime as _dt
import math
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

from . import _error_codes as ec

_BODY_EXCERPT_LIMIT = 500


class DataverseError(Exception):
    """Base structured error for the Dataverse command library."""

    def __init__(
        self,
        message: str,
        *,
        code: str,
        subcode: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
        is_transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.subcode = subcode
        self.status_code = status_code
        self.details = details or {}
        self.source = source or "client"
        self.is_transient = is_transient
        self.timestamp = _dt.datetime.now(_dt.timezone.utc).isoformat().replace("+00:00", "Z")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "subcode": self.subcode,
            "status_code": self.status_code,
            "details": self.details,
            "source": self.source,
            "is_transient": self.is_transient,
            "timestamp": self.timestamp,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"{self.__class__.__name__}(code={self.code!r}, subcode={self.subcode!r}, message={self.message!r})"


class ValidationError(DataverseError):
    def __init__(self, message: str, *, subcode: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="validation_error", subcode=subcode, details=details, source="client")


class ConfigurationError(DataverseError):
    """Malformed request parameters or settings, detected before any network call."""

    def __init__(self, message: str, *, subcode: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="configuration_error", subcode=subcode, details=details, source="client")


class MetadataError(DataverseError):
    def __init__(self, message: str, *, subcode: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="metadata_error", subcode=subcode, details=details, source="client")


class AuthenticationError(DataverseError):
    def __init__(
        self,
        message: str,
        *,
        subcode: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message,
            code="authentication_error",
            subcode=subcode,
            status_code=status_code,
            details=details,
            source="server" if status_code else "client",
        )


class EnvironmentListError(DataverseError):
    def __init__(self, message: str, *, subcode: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="environment_list_error", subcode=subcode, details=details, source="client")


class HttpError(DataverseError):
    def __init__(
        self,
        message: str,
        status_code: int,
        is_transient: bool = False,
        subcode: Optional[str] = None,
        service_error_code: Optional[str] = None,
        correlation_id: Optional[str] = None,
        request_id: Optional[str] = None,
        body_excerpt: Optional[str] = None,
        retry_after: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        d = details or {}
        if service_error_code is not None:
            d["service_error_code"] = service_error_code
        if correlation_id is not None:
            d["correlation_id"] = correlation_id
        if request_id is not None:
            d["request_id"] = request_id
        if body_excerpt is not None:
            d["body_excerpt"] = body_excerpt
        if retry_after is not None:
            d["retry_after"] = retry_after
        super().__init__(
            message,
            code="http_error",
            subcode=subcode or ec.http_subcode(status_code),
            status_code=status_code,
            details=d,
            source="server",
            is_transient=is_transient,
        )

    @property
    def retry_after(self) -> Optional[float]:
        return self.details.get("retry_after")

    @classmethod
    def from_response(cls, response: Any, *, retry_after: Optional[float] = None) -> "HttpError":
        """Build an :class:`HttpError` from a non-success HTTP response.

        The OData error envelope (``{"error": {"code": ..., "message": ...}}``) is
        decoded when present; otherwise a short excerpt of the body is kept.
        """
        status = int(getattr(response, "status_code", 0) or 0)
        headers = getattr(response, "headers", None) or {}
        service_code: Optional[str] = None
        server_message: Optional[str] = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            err = body["error"]
            service_code = err.get("code") if isinstance(err.get("code"), str) else None
            server_message = err.get("message") if isinstance(err.get("message"), str) else None

        excerpt: Optional[str] = None
        if server_message is None:
            text = getattr(response, "text", None)
            if isinstance(text, str) and text:
                excerpt = text[:_BODY_EXCERPT_LIMIT]

        if retry_after is None:
            retry_after = parse_retry_after(headers.get("Retry-After"))

        reason = server_message or excerpt or getattr(response, "reason", None) or "request failed"
        return cls(
            f"HTTP {status}: {reason}",
            status_code=status,
            is_transient=is_transient_status(status),
            service_error_code=service_code,
            correlation_id=headers.get("x-ms-correlation-request-id") or headers.get("x-ms-correlation-id"),
            request_id=headers.get("x-ms-service-request-id") or headers.get("REQ_ID"),
            body_excerpt=excerpt,
            retry_after=retry_after,
            details={"server_message": server_message} if server_message else None,
        )


class FetchError(DataverseError):
    """Base class for failures of a paginated fetch.

    :param url: The request URL that was in flight when the fetch stopped. It can be
        used to resume the collection from that page.
    :param pages_fetched: Number of pages successfully decoded before the failure.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str,
        subcode: Optional[str] = None,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        pages_fetched: int = 0,
        details: Optional[Dict[str, Any]] = None,
        source: Optional[str] = None,
    ) -> None:
        d = dict(details or {})
        if url is not None:
            d["url"] = url
        d["pages_fetched"] = pages_fetched
        super().__init__(message, code=code, subcode=subcode, status_code=status_code, details=d, source=source)
        self.url = url
        self.pages_fetched = pages_fetched


class RequestFailed(FetchError):
    """A non-transient failure: 4xx other than 429, undecodable body, or transport error."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        server_message: Optional[str] = None,
        subcode: Optional[str] = None,
        url: Optional[str] = None,
        pages_fetched: int = 0,
        cause: Optional[BaseException] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if server_message:
            details["server_message"] = server_message
        super().__init__(
            message,
            code="request_failed",
            subcode=subcode or (ec.http_subcode(status_code) if status_code else None),
            status_code=status_code,
            url=url,
            pages_fetched=pages_fetched,
            details=details,
            source="server" if status_code else "client",
        )
        self.server_message = server_message
        self.cause = cause


class RetryExhausted(FetchError):
    """Transient failures on a single page outlasted the retry budget."""

    def __init__(
        self,
        message: str,
        *,
        attempts: int,
        status_code: Optional[int],
        last_error: Optional[BaseException] = None,
        url: Optional[str] = None,
        pages_fetched: int = 0,
    ) -> None:
        super().__init__(
            message,
            code="retry_exhausted",
            subcode=ec.FETCH_RETRY_EXHAUSTED,
            status_code=status_code,
            url=url,
            pages_fetched=pages_fetched,
            details={"attempts": attempts},
            source="server",
        )
        self.attempts = attempts
        self.last_error = last_error
        self.is_transient = True


class Cancelled(FetchError):
    """The caller asked the fetch to stop (cancellation token or deadline)."""

    def __init__(
        self,
        message: str = "Fetch cancelled",
        *,
        subcode: Optional[str] = None,
        url: Optional[str] = None,
        pages_fetched: int = 0,
    ) -> None:
        super().__init__(
            message,
            code="cancelled",
            subcode=subcode or ec.FETCH_CANCELLED,
            url=url,
            pages_fetched=pages_fetched,
            source="client",
        )


def is_transient_status(status_code: int) -> bool:
    """Return True for 429 and any 5xx status."""
    return status_code in ec.TRANSIENT_STATUS_CODES or 500 <= status_code <= 599


def parse_retry_after(value: Any) -> Optional[float]:
    """Parse a ``Retry-After`` header value into seconds.

    Accepts delta-seconds (``"7"``, ``"1.5"``) and HTTP-dates. Returns None when the
    value is missing, unparseable or not finite. Negative values clamp to 0.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        return max(0.0, seconds) if math.isfinite(seconds) else None
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=_dt.timezone.utc)
    return max(0.0, (when - _dt.datetime.now(_dt.timezone.utc)).total_seconds())


__all__ = [
    "DataverseError",
    "HttpError",
    "ValidationError",
    "ConfigurationError",
    "MetadataError",
    "AuthenticationError",
    "EnvironmentListError",
    "FetchError",
    "RequestFailed",
    "RetryExhausted",
    "Cancelled",
    "is_transient_status",
    "parse_retry_after",
]
