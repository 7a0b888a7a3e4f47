# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Paginated, retrying retrieval of an OData collection.

:class:`PaginatedFetcher` issues GET requests against a collection endpoint, follows
``@odata.nextLink`` continuation links, retries throttling (429) and server (5xx)
failures per page, and returns every record in server order as a
:class:`FetchResult`. It never logs; retries are reported through an optional
``on_retry`` callback so the caller decides how to surface them.

Example::

    request = FetchRequest(
        base_address="https://org.crm.dynamics.com/api/data/v9.2",
        collection_name="accounts",
        page_size=500,
        max_retries=3,
        credential=token,
    )
    result = fetch_all(request, HttpClient(retry_transient_errors=False))
    print(result.page_count, len(result.records))
"""

from __future__ import annotations

import dataclasses
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Protocol, Sequence, Set
from urllib.parse import urljoin, urlparse

import requests

from ..core import _error_codes as ec
from ..core.config import DEFAULT_FETCH_MAX_RETRIES, MAX_PAGE_SIZE
from ..core.errors import (
    Cancelled,
    ConfigurationError,
    HttpError,
    RequestFailed,
    RetryExhausted,
    is_transient_status,
)

# Default waits when a transient response carries no Retry-After header
DEFAULT_THROTTLE_DELAY = 10.0
DEFAULT_SERVER_ERROR_DELAY = 5.0

# Longest wait the platform timers accept
MAX_RETRY_DELAY = threading.TIMEOUT_MAX

_NEXT_LINK_KEYS = ("@odata.nextLink", "odata.nextLink")


class Requester(Protocol):
    """Anything that can issue an HTTP request and return a response-like object.

    The response must expose ``status_code``, ``headers`` and ``json()``.
    :class:`~dataverse_commands.core.http.HttpClient` satisfies this protocol.
    """

    def request(self, method: str, url: str, **kwargs: Any) -> Any: ...


@dataclass(frozen=True)
class FetchRequest:
    """
    Parameters of one paginated fetch. Immutable once the fetch begins.

    :param base_address: Web API root, e.g. ``https://org.crm.dynamics.com/api/data/v9.2``.
    :param collection_name: Collection path under the root, e.g. ``accounts`` or ``EntityDefinitions``.
    :param page_size: Page-size hint sent as ``Prefer: odata.maxpagesize``; 1..5000.
    :param max_retries: Per-page retry budget for 429/5xx responses; 0 disables retries.
    :param credential: Optional bearer token attached to every request of the fetch.
    :param select: Columns for ``$select``.
    :param filter: ``$filter`` expression.
    :param orderby: Expressions for ``$orderby``.
    :param expand: Navigation properties for ``$expand``.
    :param top: ``$top`` limit across all pages.
    :param headers: Extra request headers.
    """

    base_address: str
    collection_name: str
    page_size: int = MAX_PAGE_SIZE
    max_retries: int = DEFAULT_FETCH_MAX_RETRIES
    credential: Optional[str] = field(default=None, repr=False)
    select: Optional[Sequence[str]] = None
    filter: Optional[str] = None
    orderby: Optional[Sequence[str]] = None
    expand: Optional[Sequence[str]] = None
    top: Optional[int] = None
    headers: Optional[Mapping[str, str]] = None

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` when the request cannot be issued."""
        parsed = urlparse(self.base_address if isinstance(self.base_address, str) else "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(
                f"base_address must be an absolute http(s) URL, got {self.base_address!r}",
                subcode=ec.CONFIG_BASE_ADDRESS,
            )
        name = self.collection_name.strip().strip("/") if isinstance(self.collection_name, str) else ""
        if not name or any(c.isspace() for c in name.split("?", 1)[0]):
            raise ConfigurationError(
                f"collection_name must be a non-empty path segment, got {self.collection_name!r}",
                subcode=ec.CONFIG_COLLECTION_NAME,
            )
        if not _is_int(self.page_size) or not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise ConfigurationError(
                f"page_size must be an integer between 1 and {MAX_PAGE_SIZE}, got {self.page_size!r}",
                subcode=ec.CONFIG_PAGE_SIZE,
            )
        if not _is_int(self.max_retries) or self.max_retries < 0:
            raise ConfigurationError(
                f"max_retries must be a non-negative integer, got {self.max_retries!r}",
                subcode=ec.CONFIG_MAX_RETRIES,
            )
        if self.top is not None and (not _is_int(self.top) or self.top < 1):
            raise ConfigurationError(f"top must be a positive integer, got {self.top!r}")

    def query_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if self.select:
            params["$select"] = ",".join(self.select)
        if self.filter:
            params["$filter"] = self.filter
        if self.orderby:
            params["$orderby"] = ",".join(self.orderby)
        if self.expand:
            params["$expand"] = ",".join(self.expand)
        if self.top is not None:
            params["$top"] = int(self.top)
        return params

    def initial_url(self) -> str:
        """Return the URL of the first page request, query options included."""
        url = f"{self.base_address.rstrip('/')}/{self.collection_name.strip().strip('/')}"
        params = self.query_params()
        if not params:
            return url
        prepared = requests.models.PreparedRequest()
        prepared.prepare_url(url, params)
        return prepared.url

    def request_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
        }
        if self.headers:
            headers.update(self.headers)
        headers["Prefer"] = f"odata.maxpagesize={self.page_size}"
        if self.credential:
            headers["Authorization"] = f"Bearer {self.credential}"
        return headers


@dataclass
class Page:
    """One decoded response: the ``value`` array and the continuation link, if any."""

    records: List[Any]
    next_link: Optional[str] = None


@dataclass
class FetchResult:
    """All records of a collection in server order, and the number of pages fetched."""

    records: List[Any]
    page_count: int

    def __iter__(self) -> Iterator[Any]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)


@dataclass
class RetryState:
    """Retry bookkeeping for the page currently in flight."""

    attempt: int = 0
    last_error: Optional[BaseException] = None
    url: Optional[str] = None
    status_code: Optional[int] = None
    delay: float = 0.0


class CancellationToken:
    """
    Cooperative cancellation for a fetch, with an optional deadline.

    The fetcher checks the token before every page request and waits on it during
    retry backoff, so :meth:`cancel` from another thread interrupts a pending wait.

    :param timeout: Seconds from now after which the token counts as cancelled.
    :type timeout: float or None
    """

    def __init__(self, timeout: Optional[float] = None, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    @property
    def requested(self) -> bool:
        return self.cancelled or self.expired

    def wait(self, seconds: float) -> bool:
        """Wait up to ``seconds``; return True if cancellation took effect meanwhile."""
        if self._deadline is not None:
            remaining = self._deadline - self._clock()
            if remaining <= seconds:
                self._event.wait(max(0.0, remaining))
                return True
        return self._event.wait(seconds)


class PaginatedFetcher:
    """
    Retrieves every page of a collection, retrying transient failures per page.

    :param requester: Transport used for GET requests. It should not retry 429/5xx
        itself; the fetcher owns that policy.
    :type requester: Requester
    :param sleep: Delay primitive for backoff waits. Defaults to :func:`time.sleep`,
        or to waiting on the cancellation token when one is supplied.
    :param on_retry: Called with a snapshot :class:`RetryState` before each backoff wait.
    :param throttle_delay: Wait for 429 responses without ``Retry-After`` (seconds).
    :param server_error_delay: Wait for 5xx responses without ``Retry-After`` (seconds).
    """

    def __init__(
        self,
        requester: Requester,
        *,
        sleep: Optional[Callable[[float], None]] = None,
        on_retry: Optional[Callable[[RetryState], None]] = None,
        throttle_delay: float = DEFAULT_THROTTLE_DELAY,
        server_error_delay: float = DEFAULT_SERVER_ERROR_DELAY,
    ) -> None:
        self._requester = requester
        self._sleep = sleep
        self._on_retry = on_retry
        self.throttle_delay = throttle_delay
        self.server_error_delay = server_error_delay

    def fetch_all(self, request: FetchRequest, *, cancel: Optional[CancellationToken] = None) -> FetchResult:
        """
        Fetch the whole collection.

        :raises ~dataverse_commands.core.errors.ConfigurationError: Invalid request, before any network call.
        :raises ~dataverse_commands.core.errors.RequestFailed: Non-transient failure on any page.
        :raises ~dataverse_commands.core.errors.RetryExhausted: A page kept failing transiently.
        :raises ~dataverse_commands.core.errors.Cancelled: The cancellation token fired.
        """
        records: List[Any] = []
        page_count = 0
        for page in self.iter_pages(request, cancel=cancel):
            records.extend(page.records)
            page_count += 1
        return FetchResult(records=records, page_count=page_count)

    def iter_pages(self, request: FetchRequest, *, cancel: Optional[CancellationToken] = None) -> Iterator[Page]:
        """Yield pages lazily in server order. Validation happens on the first ``next()``."""
        request.validate()
        headers = request.request_headers()
        url = request.initial_url()
        followed: Set[str] = set()
        pages = 0
        while True:
            page = self._fetch_page(request, url, headers, cancel, pages)
            pages += 1
            yield page
            if not page.next_link:
                return
            followed.add(url)
            next_url = urljoin(url, page.next_link)
            if next_url in followed:
                raise RequestFailed(
                    f"Server returned continuation link {next_url} that was already followed",
                    subcode=ec.FETCH_NEXT_LINK_CYCLE,
                    url=next_url,
                    pages_fetched=pages,
                )
            url = next_url

    def _fetch_page(
        self,
        request: FetchRequest,
        url: str,
        headers: Dict[str, str],
        cancel: Optional[CancellationToken],
        pages: int,
    ) -> Page:
        state = RetryState(url=url)
        while True:
            self._check_cancel(cancel, url, pages)
            try:
                response = self._requester.request("get", url, headers=dict(headers))
            except HttpError as e:
                # Requesters that raise on non-2xx are classified like responses
                error = e
                status = e.status_code or 0
            except (requests.exceptions.RequestException, OSError) as e:
                raise RequestFailed(
                    f"GET {url} failed: {e}",
                    subcode=ec.FETCH_TRANSPORT,
                    url=url,
                    pages_fetched=pages,
                    cause=e,
                ) from e
            else:
                status = int(response.status_code)
                if 200 <= status < 300:
                    return self._decode(response, url, pages)
                error = HttpError.from_response(response)

            if not is_transient_status(status):
                server_message = error.details.get("server_message")
                raise RequestFailed(
                    f"GET {url} failed with HTTP {status}" + (f": {server_message}" if server_message else ""),
                    status_code=status,
                    server_message=server_message,
                    url=url,
                    pages_fetched=pages,
                    cause=error,
                ) from error

            state.attempt += 1
            state.last_error = error
            state.status_code = status
            if state.attempt > request.max_retries:
                raise RetryExhausted(
                    f"GET {url} still failing with HTTP {status} after {state.attempt} attempt(s)",
                    attempts=state.attempt,
                    status_code=status,
                    last_error=error,
                    url=url,
                    pages_fetched=pages,
                ) from error

            retry_after = error.retry_after
            if retry_after is None:
                retry_after = self.throttle_delay if status == 429 else self.server_error_delay
            state.delay = min(float(retry_after), MAX_RETRY_DELAY)
            if self._on_retry is not None:
                self._on_retry(dataclasses.replace(state))
            self._wait(state.delay, cancel, url, pages)

    def _wait(self, delay: float, cancel: Optional[CancellationToken], url: str, pages: int) -> None:
        if delay <= 0:
            return
        if self._sleep is not None:
            self._sleep(delay)
        elif cancel is not None:
            if cancel.wait(delay):
                self._check_cancel(cancel, url, pages)
        else:
            time.sleep(delay)

    @staticmethod
    def _check_cancel(cancel: Optional[CancellationToken], url: str, pages: int) -> None:
        if cancel is None:
            return
        if cancel.cancelled:
            raise Cancelled(url=url, pages_fetched=pages)
        if cancel.expired:
            raise Cancelled("Fetch deadline exceeded", subcode=ec.FETCH_DEADLINE, url=url, pages_fetched=pages)

    @staticmethod
    def _decode(response: Any, url: str, pages: int) -> Page:
        status = int(response.status_code)
        try:
            body = response.json()
        except ValueError as e:
            raise RequestFailed(
                f"GET {url} returned a body that is not JSON",
                status_code=status,
                subcode=ec.FETCH_DECODE,
                url=url,
                pages_fetched=pages,
                cause=e,
            ) from e
        items = body.get("value") if isinstance(body, dict) else None
        if not isinstance(items, list):
            raise RequestFailed(
                f"GET {url} returned JSON without a 'value' array",
                status_code=status,
                subcode=ec.FETCH_DECODE,
                url=url,
                pages_fetched=pages,
            )
        next_link = next((body[k] for k in _NEXT_LINK_KEYS if body.get(k)), None)
        if next_link is not None and not isinstance(next_link, str):
            raise RequestFailed(
                f"GET {url} returned a non-string continuation link",
                status_code=status,
                subcode=ec.FETCH_DECODE,
                url=url,
                pages_fetched=pages,
            )
        return Page(records=list(items), next_link=next_link)


def fetch_all(
    request: FetchRequest,
    requester: Requester,
    *,
    cancel: Optional[CancellationToken] = None,
    sleep: Optional[Callable[[float], None]] = None,
    on_retry: Optional[Callable[[RetryState], None]] = None,
) -> FetchResult:
    """Fetch every record of ``request``'s collection. See :meth:`PaginatedFetcher.fetch_all`."""
    return PaginatedFetcher(requester, sleep=sleep, on_retry=on_retry).fetch_all(request, cancel=cancel)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


__all__ = [
    "FetchRequest",
    "Page",
    "FetchResult",
    "RetryState",
    "CancellationToken",
    "PaginatedFetcher",
    "Requester",
    "fetch_all",
]
