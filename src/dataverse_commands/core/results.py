# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Result types for Dataverse operations.

- :class:`RequestMetadata`: HTTP request/response metadata for diagnostics
- :class:`DataverseResponse`: result plus telemetry dictionary
- :class:`OperationResult`: wrapper that behaves like its value and can expose
  telemetry through ``.with_response_details()``

Example::

    ids = client.records.create("account", [{"name": "A"}, {"name": "B"}])
    print(ids[0])

    response = client.records.create("account", {"name": "A"}).with_response_details()
    print(response.telemetry["client_request_id"])
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Iterator, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RequestMetadata:
    """
    HTTP request/response metadata for diagnostics and tracing.

    :param client_request_id: Client-generated ``x-ms-client-request-id`` of the last request.
    :param correlation_id: ``x-ms-correlation-id`` shared by all requests of one call scope.
    :param service_request_id: Server-returned ``x-ms-service-request-id`` (if available).
    :param http_status_code: HTTP status code of the last response.
    """

    client_request_id: Optional[str] = None
    correlation_id: Optional[str] = None
    service_request_id: Optional[str] = None
    http_status_code: Optional[int] = None


@dataclass
class DataverseResponse(Generic[T]):
    """Operation result together with its telemetry dictionary."""

    result: T
    telemetry: Dict[str, Any] = field(default_factory=dict)


class OperationResult(Generic[T]):
    """
    Wrapper that acts like the underlying result by default.

    Supports iteration, indexing, ``len``, ``in``, equality and truthiness against
    the wrapped value; ``.value`` returns it directly.
    """

    __slots__ = ("_result", "_metadata")

    def __init__(self, result: T, metadata: Optional[RequestMetadata] = None) -> None:
        self._result = result
        self._metadata = metadata or RequestMetadata()

    @property
    def value(self) -> T:
        return self._result

    @property
    def metadata(self) -> RequestMetadata:
        return self._metadata

    def with_response_details(self) -> DataverseResponse[T]:
        """Return the result with a telemetry dictionary built from the request metadata."""
        telemetry: Dict[str, Any] = {
            "client_request_id": self._metadata.client_request_id,
            "correlation_id": self._metadata.correlation_id,
            "service_request_id": self._metadata.service_request_id,
            "http_status_code": self._metadata.http_status_code,
        }
        return DataverseResponse(result=self._result, telemetry=telemetry)

    def __iter__(self) -> Iterator:
        if isinstance(self._result, (list, tuple)):
            return iter(self._result)
        return iter([self._result])

    def __getitem__(self, key: Any) -> Any:
        return self._result[key]  # type: ignore

    def __len__(self) -> int:
        if isinstance(self._result, (list, tuple, dict)):
            return len(self._result)
        return 1

    def __str__(self) -> str:
        return str(self._result)

    def __repr__(self) -> str:
        return f"OperationResult({self._result!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, OperationResult):
            return self._result == other._result
        return self._result == other

    def __bool__(self) -> bool:
        return bool(self._result)

    def __contains__(self, item: Any) -> bool:
        if isinstance(self._result, (list, tuple, dict, str)):
            return item in self._result
        return item == self._result

    __hash__ = None  # type: ignore[assignment]


__all__ = ["RequestMetadata", "DataverseResponse", "OperationResult"]
