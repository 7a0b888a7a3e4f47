# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Authentication helpers.

:class:`_AuthManager` turns any :class:`~azure.core.credentials.TokenCredential`
(Azure Identity credentials included) into bearer tokens for a Dataverse scope.

:class:`ClientSecretTokenCredential` is a credential that talks to the Microsoft
identity platform token endpoint directly with ``requests`` using the OAuth 2.0
client-credentials grant, for service principals that should not depend on a
particular identity SDK build.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import requests
from azure.core.credentials import AccessToken, TokenCredential

from . import _error_codes as ec
from .errors import AuthenticationError

DEFAULT_AUTHORITY = "https://login.microsoftonline.com"

# Refresh cached tokens this many seconds before they expire
_EXPIRY_SKEW_SECONDS = 300


@dataclass
class _TokenPair:
    resource: str
    access_token: str


class _AuthManager:
    """Azure Identity-based authentication helper for Dataverse."""

    def __init__(self, credential: TokenCredential) -> None:
        if not isinstance(credential, TokenCredential):
            raise TypeError("credential must implement azure.core.credentials.TokenCredential.")
        self.credential: TokenCredential = credential

    def _acquire_token(self, scope: str) -> _TokenPair:
        """Acquire an access token for the given scope."""
        token = self.credential.get_token(scope)
        if not getattr(token, "token", None):
            raise AuthenticationError(f"Credential returned no token for scope '{scope}'.", subcode=ec.AUTH_TOKEN_MISSING)
        return _TokenPair(resource=scope, access_token=token.token)


def scope_for(base_url: str) -> str:
    """Return the ``.default`` scope for a Dataverse environment URL."""
    return f"{(base_url or '').rstrip('/')}/.default"


class ClientSecretTokenCredential(TokenCredential):
    """
    Client-credentials token provider calling the OAuth 2.0 token endpoint directly.

    Tokens are cached per scope set until shortly before they expire.

    :param tenant_id: Directory (tenant) ID or domain.
    :type tenant_id: str
    :param client_id: Application (client) ID of the service principal.
    :type client_id: str
    :param client_secret: Client secret of the service principal.
    :type client_secret: str
    :param authority: Identity platform host. Default is ``https://login.microsoftonline.com``.
    :type authority: str
    :param session: Optional requests.Session used for token requests.
    :type session: requests.Session or None
    :param timeout: Token request timeout in seconds. Default is 30.
    :type timeout: float

    Example::

        credential = ClientSecretTokenCredential(tenant_id, client_id, secret)
        with DataverseClient("https://org.crm.dynamics.com", credential) as client:
            ...
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        *,
        authority: str = DEFAULT_AUTHORITY,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ) -> None:
        for name, value in (("tenant_id", tenant_id), ("client_id", client_id), ("client_secret", client_secret)):
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{name} is required.")
        self.tenant_id = tenant_id.strip()
        self.client_id = client_id.strip()
        self._client_secret = client_secret
        self.authority = (authority or DEFAULT_AUTHORITY).rstrip("/")
        self._session = session
        self._timeout = timeout
        self._cache: Dict[Tuple[str, ...], AccessToken] = {}
        self._lock = threading.Lock()

    @property
    def token_endpoint(self) -> str:
        return f"{self.authority}/{self.tenant_id}/oauth2/v2.0/token"

    def get_token(self, *scopes: str, **kwargs: Any) -> AccessToken:
        if not scopes:
            raise ValueError("At least one scope is required.")
        key = tuple(sorted(scopes))
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None and cached.expires_on - _EXPIRY_SKEW_SECONDS > time.time():
                return cached
            token = self._request_token(scopes)
            self._cache[key] = token
            return token

    def _request_token(self, scopes: Tuple[str, ...]) -> AccessToken:
        data = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "scope": " ".join(scopes),
        }
        try:
            if self._session is not None:
                r = self._session.post(self.token_endpoint, data=data, timeout=self._timeout)
            else:
                r = requests.post(self.token_endpoint, data=data, timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            raise AuthenticationError(
                f"Token request to {self.token_endpoint} failed: {e}",
                subcode=ec.AUTH_TOKEN_REQUEST_FAILED,
            ) from e

        try:
            body = r.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if r.status_code != 200:
            error = body.get("error") or f"http_{r.status_code}"
            description = body.get("error_description") or (r.text or "")[:300]
            raise AuthenticationError(
                f"Token request rejected ({error}): {description}",
                subcode=ec.AUTH_TOKEN_REQUEST_FAILED,
                status_code=r.status_code,
                details={"error": error, "correlation_id": body.get("correlation_id")},
            )

        access_token = body.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise AuthenticationError("Token response did not contain an access_token.", subcode=ec.AUTH_TOKEN_MISSING)
        try:
            expires_in = int(body.get("expires_in", 3600))
        except (TypeError, ValueError):
            expires_in = 3600
        return AccessToken(access_token, int(time.time()) + expires_in)

    def close(self) -> None:
        if self._session is not None:
            self._session.close()


__all__ = ["ClientSecretTokenCredential", "scope_for"]
