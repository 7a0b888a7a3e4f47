# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Low-level Dataverse Web API client.

:class:`_ODataClient` owns the HTTP transport, bearer headers, telemetry and the
metadata caches. Operation namespaces call it inside a call scope so that every
request of one logical operation shares a correlation id.
"""

from __future__ import annotations

import re
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

import requests

from ..core import _error_codes as ec
from ..core._auth import _AuthManager, scope_for
from ..core.config import DataverseConfig
from ..core.errors import HttpError, MetadataError
from ..core.http import HttpClient
from ..core.results import RequestMetadata
from ..core.telemetry import create_telemetry_manager
from ._paging import PaginatedFetcher, RetryState

API_VERSION = "v9.2"

_GUID_RE = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")

_ENTITY_SELECT = "MetadataId,LogicalName,SchemaName,EntitySetName,PrimaryIdAttribute,PrimaryNameAttribute"


class _PageRequester:
    """Adapts :class:`_ODataClient` to the requester protocol of the paginated fetcher.

    Each page request is sent once: transient statuses come back unretried so the
    fetcher applies its per-page budget, and network errors propagate at once so the
    fetcher reports them as fatal.
    """

    def __init__(self, odata: "_ODataClient", operation: str, table: Optional[str] = None) -> None:
        self._odata = odata
        self._operation = operation
        self._table = table

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        return self._odata._send(
            method, url, operation=self._operation, table=self._table, retry_transient=False, attempts=1, **kwargs
        )


class _ODataClient:
    """Dataverse Web API client: CRUD, paged retrieval and metadata helpers."""

    @staticmethod
    def _escape_odata_quotes(value: str) -> str:
        """Escape single quotes for OData queries (by doubling them)."""
        return value.replace("'", "''")

    def __init__(
        self,
        auth: _AuthManager,
        base_url: str,
        config: Optional[DataverseConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.auth = auth
        self.base_url = (base_url or "").rstrip("/")
        if not self.base_url:
            raise ValueError("base_url is required.")
        self.api = f"{self.base_url}/api/data/{API_VERSION}"
        self.config = config or DataverseConfig.from_env()
        self._http = HttpClient(
            retries=self.config.http_retries,
            backoff=self.config.http_backoff,
            timeout=self.config.http_timeout,
            max_backoff=self.config.http_max_backoff,
            jitter=self.config.http_jitter if self.config.http_jitter is not None else True,
            retry_transient_errors=(
                self.config.http_retry_transient_errors if self.config.http_retry_transient_errors is not None else True
            ),
            session=session,
        )
        self._telemetry = create_telemetry_manager(self.config.telemetry)
        # Cache: logical name -> EntityDefinitions row (EntitySetName, PrimaryIdAttribute, ...)
        self._entity_cache: Dict[str, Dict[str, Any]] = {}
        self._scope = threading.local()
        self._last = threading.local()

    def close(self) -> None:
        self._http.close()
        self._entity_cache.clear()

    # --------------------------- plumbing -------------------------------
    @contextmanager
    def _call_scope(self) -> Iterator[str]:
        """Share one correlation id across all requests made inside the block. Nested scopes reuse it."""
        existing = getattr(self._scope, "correlation_id", None)
        if existing:
            yield existing
            return
        self._scope.correlation_id = str(uuid.uuid4())
        try:
            yield self._scope.correlation_id
        finally:
            self._scope.correlation_id = None

    def _token(self) -> str:
        return self.auth._acquire_token(scope_for(self.base_url)).access_token

    def _headers(self) -> Dict[str, str]:
        """Build standard OData headers with bearer auth."""
        return {
            "Authorization": f"Bearer {self._token()}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
        }

    def _send(
        self,
        method: str,
        url: str,
        *,
        operation: str = "request",
        table: Optional[str] = None,
        retry_transient: Optional[bool] = None,
        **kwargs: Any,
    ) -> requests.Response:
        """Issue one traced request and return the response whatever its status."""
        client_request_id = str(uuid.uuid4())
        correlation_id = getattr(self._scope, "correlation_id", None)
        headers = dict(kwargs.pop("headers", None) or {})
        headers.update(self._telemetry.get_additional_headers())
        headers["x-ms-client-request-id"] = client_request_id
        if correlation_id:
            headers["x-ms-correlation-id"] = correlation_id

        with self._telemetry.trace_request(
            operation, method.upper(), url, client_request_id, correlation_id, table_name=table
        ) as ctx:
            r = self._http.request(method, url, headers=headers, retry_transient=retry_transient, **kwargs)
            service_request_id = r.headers.get("x-ms-service-request-id") if r.headers else None
            self._telemetry.record_response(ctx, r.status_code, service_request_id)

        self._last.metadata = RequestMetadata(
            client_request_id=client_request_id,
            correlation_id=correlation_id,
            service_request_id=service_request_id,
            http_status_code=r.status_code,
        )
        return r

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Issue a request and raise :class:`HttpError` for any non-2xx response."""
        r = self._send(method, url, **kwargs)
        if not 200 <= r.status_code < 300:
            raise HttpError.from_response(r)
        return r

    def _last_metadata(self) -> RequestMetadata:
        return getattr(self._last, "metadata", None) or RequestMetadata()

    def _page_fetcher(self, operation: str, table: Optional[str] = None) -> PaginatedFetcher:
        """Return a fetcher whose requests and retries flow through this client's telemetry."""

        def on_retry(state: RetryState) -> None:
            self._telemetry.record_retry(operation, state)

        return PaginatedFetcher(_PageRequester(self, operation, table), on_retry=on_retry)

    @staticmethod
    def _json(r: requests.Response) -> Any:
        if r.status_code == 204 or not r.content:
            return None
        try:
            return r.json()
        except ValueError:
            return None

    @staticmethod
    def _guid_from_headers(r: requests.Response) -> Optional[str]:
        for name in ("OData-EntityId", "OData-EntityID", "Location"):
            value = r.headers.get(name)
            if value:
                m = _GUID_RE.search(value)
                if m:
                    return m.group(0)
        return None

    @staticmethod
    def _solution_headers(headers: Dict[str, str], solution: Optional[str]) -> Dict[str, str]:
        if solution:
            headers["MSCRM.SolutionUniqueName"] = solution
        return headers

    def _format_key(self, key: str) -> str:
        k = key.strip()
        if k.startswith("(") and k.endswith(")"):
            return k
        # Alternate key syntax: name='value'
        if "=" in k and "'" in k:
            k = re.sub(
                r"(\w+)='([^']*)'",
                lambda m: f"{m.group(1)}='{self._escape_odata_quotes(m.group(2))}'",
                k,
            )
        return f"({k})"

    # ----------------------- entity resolution --------------------------
    def _entity_definition(self, table: str) -> Dict[str, Any]:
        """Return the cached EntityDefinitions row for a table logical or schema name."""
        logical = (table or "").strip().lower()
        if not logical:
            raise ValueError("table name is required")
        cached = self._entity_cache.get(logical)
        if cached:
            return cached
        ent = self._get_entity(logical)
        if not ent or not ent.get("EntitySetName"):
            raise MetadataError(
                f"Unable to resolve entity set for table '{table}'.",
                subcode=ec.METADATA_ENTITYSET_NOT_FOUND,
                details={"table": table},
            )
        self._entity_cache[logical] = ent
        return ent

    def _entity_set(self, table: str) -> str:
        return self._entity_definition(table)["EntitySetName"]

    def _primary_id_attr(self, table: str) -> str:
        ent = self._entity_definition(table)
        return ent.get("PrimaryIdAttribute") or f"{ent.get('LogicalName') or table.lower()}id"

    def _get_entity(self, table: str) -> Optional[Dict[str, Any]]:
        """Look up a table definition by logical name (case-insensitive). Returns None when absent."""
        logical = self._escape_odata_quotes(table.strip().lower())
        params = {"$select": _ENTITY_SELECT, "$filter": f"LogicalName eq '{logical}'"}
        r = self._request("get", f"{self.api}/EntityDefinitions", headers=self._headers(), params=params)
        items = (self._json(r) or {}).get("value") or []
        return items[0] if items else None

    # ----------------------------- CRUD ---------------------------------
    def _create(self, table: str, data: Union[Dict[str, Any], List[Dict[str, Any]]]) -> List[str]:
        """Create one record (POST) or many (``CreateMultiple``); return the new GUIDs."""
        entity_set = self._entity_set(table)
        if isinstance(data, dict):
            return [self._create_single(entity_set, data, table)]
        if isinstance(data, list):
            return self._create_multiple(entity_set, data, table)
        raise TypeError("data must be dict or list[dict]")

    def _create_single(self, entity_set: str, record: Dict[str, Any], table: Optional[str] = None) -> str:
        r = self._request(
            "post", f"{self.api}/{entity_set}", headers=self._headers(), json=record,
            operation="records.create", table=table,
        )
        guid = self._guid_from_headers(r)
        if guid:
            return guid
        header_keys = ", ".join(sorted(r.headers.keys()))
        raise MetadataError(
            f"Create response missing GUID in OData-EntityId/Location headers (status={r.status_code}). "
            f"Headers: {header_keys}"
        )

    def _stamp_type(self, table: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not all(isinstance(r, dict) for r in records):
            raise TypeError("All items must be dicts")
        if all("@odata.type" in r for r in records):
            return records
        logical = self._entity_definition(table)["LogicalName"]
        return [r if "@odata.type" in r else {**r, "@odata.type": f"Microsoft.Dynamics.CRM.{logical}"} for r in records]

    def _create_multiple(self, entity_set: str, records: List[Dict[str, Any]], table: str) -> List[str]:
        if not records:
            return []
        payload = {"Targets": self._stamp_type(table, records)}
        url = f"{self.api}/{entity_set}/Microsoft.Dynamics.CRM.CreateMultiple"
        r = self._request("post", url, headers=self._headers(), json=payload, operation="records.create", table=table)
        body = self._json(r)
        ids = body.get("Ids") if isinstance(body, dict) else None
        if isinstance(ids, list):
            return [i for i in ids if isinstance(i, str)]
        return []

    def _get(self, table: str, key: str, select: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        params = {"$select": ",".join(select)} if select else None
        url = f"{self.api}/{self._entity_set(table)}{self._format_key(key)}"
        r = self._request("get", url, headers=self._headers(), params=params, operation="records.get", table=table)
        return self._json(r) or {}

    def _update(self, table: str, key: str, changes: Dict[str, Any]) -> None:
        """PATCH an existing record. ``If-Match: *`` prevents an accidental upsert."""
        url = f"{self.api}/{self._entity_set(table)}{self._format_key(key)}"
        headers = self._headers()
        headers["If-Match"] = "*"
        self._request("patch", url, headers=headers, json=changes, operation="records.update", table=table)

    def _update_by_ids(
        self, table: str, ids: List[str], changes: Union[Dict[str, Any], List[Dict[str, Any]]]
    ) -> None:
        """Broadcast one patch to every id, or pair patches with ids 1:1, through ``UpdateMultiple``."""
        if not ids:
            return None
        pk_attr = self._primary_id_attr(table)
        if isinstance(changes, dict):
            batch = [{**changes, pk_attr: rid} for rid in ids]
        elif isinstance(changes, list):
            if len(changes) != len(ids):
                raise ValueError("Length of changes list must match length of ids list")
            if not all(isinstance(p, dict) for p in changes):
                raise TypeError("Each patch must be a dict")
            batch = [{**patch, pk_attr: rid} for rid, patch in zip(ids, changes)]
        else:
            raise TypeError("changes must be dict or list[dict]")
        url = f"{self.api}/{self._entity_set(table)}/Microsoft.Dynamics.CRM.UpdateMultiple"
        payload = {"Targets": self._stamp_type(table, batch)}
        self._request("post", url, headers=self._headers(), json=payload, operation="records.update", table=table)
        return None

    def _delete(self, table: str, key: str) -> None:
        url = f"{self.api}/{self._entity_set(table)}{self._format_key(key)}"
        headers = self._headers()
        headers["If-Match"] = "*"
        self._request("delete", url, headers=headers, operation="records.delete", table=table)

    # ----------------------------- tables -------------------------------
    def _wait_for_entity_ready(self, table: str, delays: Optional[List[int]] = None) -> Optional[Dict[str, Any]]:
        """Poll until a freshly created table reports an EntitySetName."""
        delays = delays or [0, 2, 5, 10, 20, 30]
        ent: Optional[Dict[str, Any]] = None
        for delay in delays:
            if delay > 0:
                time.sleep(delay)
            ent = self._get_entity(table)
            if ent and ent.get("EntitySetName"):
                return ent
        return ent

    def _create_entity(self, payload: Dict[str, Any], solution: Optional[str] = None) -> Dict[str, Any]:
        schema_name = payload["SchemaName"]
        if self._get_entity(schema_name):
            raise MetadataError(
                f"Table '{schema_name}' already exists. No update performed.",
                subcode=ec.METADATA_TABLE_ALREADY_EXISTS,
            )
        headers = self._solution_headers(self._headers(), solution)
        self._request(
            "post", f"{self.api}/EntityDefinitions", headers=headers, json=payload,
            operation="tables.create", table=schema_name,
        )
        ent = self._wait_for_entity_ready(schema_name)
        if not ent or not ent.get("EntitySetName"):
            raise MetadataError(
                f"Failed to create or retrieve table '{schema_name}' (EntitySetName not available).",
                subcode=ec.METADATA_TABLE_NOT_FOUND,
            )
        self._entity_cache[ent["LogicalName"]] = ent
        return ent

    def _require_entity(self, table: str) -> Dict[str, Any]:
        ent = self._get_entity(table)
        if not ent or not ent.get("MetadataId"):
            raise MetadataError(f"Table '{table}' not found.", subcode=ec.METADATA_TABLE_NOT_FOUND)
        return ent

    def _delete_table(self, table: str) -> None:
        ent = self._require_entity(table)
        url = f"{self.api}/EntityDefinitions({ent['MetadataId']})"
        self._request("delete", url, headers=self._headers(), operation="tables.delete", table=table)
        self._entity_cache.pop(ent.get("LogicalName", ""), None)

    def _list_tables(self) -> List[Dict[str, Any]]:
        """List all tables, excluding private ones (IsPrivate=true)."""
        params = {"$select": _ENTITY_SELECT, "$filter": "IsPrivate eq false"}
        r = self._request("get", f"{self.api}/EntityDefinitions", headers=self._headers(), params=params,
                          operation="tables.list")
        return (self._json(r) or {}).get("value") or []

    def _get_table_metadata(self, table: str, select: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        logical = self._escape_odata_quotes(table.strip().lower())
        params = {"$select": ",".join(select)} if select else None
        url = f"{self.api}/EntityDefinitions(LogicalName='{logical}')"
        try:
            r = self._request("get", url, headers=self._headers(), params=params, operation="metadata.get_table")
        except HttpError as e:
            if e.status_code == 404:
                raise MetadataError(f"Table '{table}' not found.", subcode=ec.METADATA_TABLE_NOT_FOUND) from e
            raise
        return self._json(r) or {}

    # ----------------------------- columns ------------------------------
    def _create_attribute(self, table: str, payload: Dict[str, Any], solution: Optional[str] = None) -> Optional[str]:
        """POST an attribute definition to an existing table; return its MetadataId."""
        ent = self._require_entity(table)
        url = f"{self.api}/EntityDefinitions({ent['MetadataId']})/Attributes"
        headers = self._solution_headers(self._headers(), solution)
        r = self._request("post", url, headers=headers, json=payload, operation="tables.create_column", table=table)
        return self._guid_from_headers(r)

    def _create_lookup(self, payload: Dict[str, Any], solution: Optional[str] = None) -> Dict[str, Any]:
        """POST a one-to-many relationship with its embedded lookup attribute."""
        headers = self._solution_headers(self._headers(), solution)
        r = self._request(
            "post", f"{self.api}/RelationshipDefinitions", headers=headers, json=payload,
            operation="tables.create_lookup", table=payload.get("ReferencingEntity"),
        )
        return {
            "relationship_id": self._guid_from_headers(r),
            "relationship_schema_name": payload.get("SchemaName"),
            "lookup_schema_name": (payload.get("Lookup") or {}).get("SchemaName"),
            "referenced_entity": payload.get("ReferencedEntity"),
            "referencing_entity": payload.get("ReferencingEntity"),
        }

    def _create_polymorphic_lookup(self, payload: Dict[str, Any], solution: Optional[str] = None) -> Dict[str, Any]:
        headers = self._solution_headers(self._headers(), solution)
        r = self._request(
            "post", f"{self.api}/CreatePolymorphicLookupAttribute", headers=headers, json=payload,
            operation="tables.create_lookup",
        )
        body = self._json(r) or {}
        return {
            "attribute_id": body.get("AttributeId"),
            "relationship_ids": body.get("RelationshipIds") or [],
            "lookup_schema_name": (payload.get("Lookup") or {}).get("SchemaName"),
        }

    def _get_attributes(self, table: str, select: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        logical = self._escape_odata_quotes(table.strip().lower())
        params = {"$select": ",".join(select)} if select else None
        url = f"{self.api}/EntityDefinitions(LogicalName='{logical}')/Attributes"
        try:
            r = self._request("get", url, headers=self._headers(), params=params, operation="metadata.get_columns")
        except HttpError as e:
            if e.status_code == 404:
                raise MetadataError(f"Table '{table}' not found.", subcode=ec.METADATA_TABLE_NOT_FOUND) from e
            raise
        return (self._json(r) or {}).get("value") or []

    def _get_attribute(self, table: str, column: str) -> Optional[Dict[str, Any]]:
        """Return one attribute definition, or None when the table or column does not exist."""
        logical = self._escape_odata_quotes(table.strip().lower())
        col = self._escape_odata_quotes(column.strip().lower())
        url = f"{self.api}/EntityDefinitions(LogicalName='{logical}')/Attributes(LogicalName='{col}')"
        try:
            r = self._request("get", url, headers=self._headers(), operation="metadata.get_column")
        except HttpError as e:
            if e.status_code == 404:
                return None
            raise
        return self._json(r)

    def _delete_attribute(self, table: str, column: str) -> None:
        attr = self._get_attribute(table, column)
        if not attr or not attr.get("MetadataId"):
            raise MetadataError(
                f"Column '{column}' not found on table '{table}'.",
                subcode=ec.METADATA_COLUMN_NOT_FOUND,
            )
        ent = self._require_entity(table)
        url = f"{self.api}/EntityDefinitions({ent['MetadataId']})/Attributes({attr['MetadataId']})"
        self._request("delete", url, headers=self._headers(), operation="tables.delete_column", table=table)

    # -------------------------- option sets -----------------------------
    def _create_global_option_set(self, payload: Dict[str, Any], solution: Optional[str] = None) -> Optional[str]:
        headers = self._solution_headers(self._headers(), solution)
        r = self._request(
            "post", f"{self.api}/GlobalOptionSetDefinitions", headers=headers, json=payload,
            operation="metadata.create_option_set",
        )
        return self._guid_from_headers(r)

    def _get_global_option_set(self, name: str) -> Optional[Dict[str, Any]]:
        url = f"{self.api}/GlobalOptionSetDefinitions(Name='{self._escape_odata_quotes(name)}')"
        try:
            r = self._request("get", url, headers=self._headers(), operation="metadata.get_option_set")
        except HttpError as e:
            if e.status_code == 404:
                return None
            raise
        return self._json(r)

    def _list_global_option_sets(self) -> List[Dict[str, Any]]:
        r = self._request(
            "get", f"{self.api}/GlobalOptionSetDefinitions", headers=self._headers(),
            operation="metadata.list_option_sets",
        )
        return (self._json(r) or {}).get("value") or []

    def _delete_global_option_set(self, name: str) -> None:
        existing = self._get_global_option_set(name)
        if not existing or not existing.get("MetadataId"):
            raise MetadataError(f"Global option set '{name}' not found.", subcode=ec.METADATA_OPTIONSET_NOT_FOUND)
        url = f"{self.api}/GlobalOptionSetDefinitions({existing['MetadataId']})"
        self._request("delete", url, headers=self._headers(), operation="metadata.delete_option_set")

    # ----------------------------- raw ----------------------------------
    def _invoke(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Send an arbitrary Web API request. ``path`` is relative to the API root unless absolute."""
        url = path if path.lower().startswith(("http://", "https://")) else f"{self.api}/{path.lstrip('/')}"
        merged = self._headers()
        if headers:
            merged.update(headers)
        kwargs: Dict[str, Any] = {"headers": merged, "operation": "invoke_request"}
        if params:
            kwargs["params"] = params
        if json is not None:
            kwargs["json"] = json
        r = self._request(method.lower(), url, **kwargs)
        body = self._json(r)
        if body is None and r.status_code != 204:
            guid = self._guid_from_headers(r)
            if guid:
                return {"id": guid}
        return body
