# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Shared pytest fixtures and fake HTTP objects.

:class:`FakeResponse` mimics the parts of ``requests.Response`` the library reads.
:class:`ScriptedHTTP` replays scripted ``(status, headers, body)`` tuples and
records every call, so it can stand in for the fetcher's requester or for the
OData client's ``HttpClient``.
"""

import json

import pytest
from azure.core.credentials import AccessToken, TokenCredential

from dataverse_commands.core.config import DataverseConfig


class FakeResponse:
    def __init__(self, status_code=200, headers=None, body=None):
        self.status_code = status_code
        self.headers = dict(headers or {})
        self.reason = "Reason"
        self._body = body
        if isinstance(body, (dict, list)):
            self.text = json.dumps(body)
        else:
            self.text = body or ""
        self.content = self.text.encode("utf-8")

    def json(self):
        if isinstance(self._body, (dict, list)):
            return self._body
        return json.loads(self.text)


class ScriptedHTTP:
    def __init__(self, responses):
        self._responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self._responses:
            raise AssertionError(f"No more responses for {method} {url}")
        item = self._responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        status, headers, body = item
        return FakeResponse(status, headers, body)

    @property
    def urls(self):
        return [c["url"] for c in self.calls]

    def close(self):
        pass


class DummyAuth:
    def _acquire_token(self, scope):
        class T:
            access_token = "test_token_12345"

        return T()


class DummyCredential(TokenCredential):
    def get_token(self, *scopes, **kwargs):
        return AccessToken("dummy-token", 9999999999)


def page(records, next_link=None):
    """Scripted 200 response carrying one collection page."""
    body = {"value": records}
    if next_link:
        body["@odata.nextLink"] = next_link
    return (200, {}, body)


@pytest.fixture
def dummy_auth():
    return DummyAuth()


@pytest.fixture
def test_config():
    """Test configuration with safe defaults."""
    return DataverseConfig(language_code=1033, http_retries=1, http_backoff=0.0, http_timeout=5)


@pytest.fixture
def sample_base_url():
    return "https://org.example.com"


@pytest.fixture
def sample_guid():
    return "11111111-2222-3333-4444-555555555555"
