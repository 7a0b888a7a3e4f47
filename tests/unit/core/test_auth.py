# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

import time
from unittest.mock import MagicMock, patch

import pytest
import requests
from azure.core.credentials import AccessToken

from conftest import DummyCredential, FakeResponse
from dataverse_commands.core import _error_codes as ec
from dataverse_commands.core._auth import ClientSecretTokenCredential, _AuthManager, scope_for
from dataverse_commands.core.errors import AuthenticationError


def token_response(token="abc", expires_in=3600):
    return FakeResponse(200, {}, {"token_type": "Bearer", "access_token": token, "expires_in": expires_in})


class TestAuthManager:
    def test_rejects_non_credential(self):
        with pytest.raises(TypeError):
            _AuthManager("not-a-credential")

    def test_acquire_token(self):
        pair = _AuthManager(DummyCredential())._acquire_token("https://org.example.com/.default")
        assert pair.access_token == "dummy-token"
        assert pair.resource == "https://org.example.com/.default"

    def test_empty_token(self):
        cred = DummyCredential()
        cred.get_token = lambda *s, **k: AccessToken("", 0)
        with pytest.raises(AuthenticationError) as exc:
            _AuthManager(cred)._acquire_token("scope")
        assert exc.value.subcode == ec.AUTH_TOKEN_MISSING


def test_scope_for():
    assert scope_for("https://org.crm.dynamics.com/") == "https://org.crm.dynamics.com/.default"


class TestClientSecretTokenCredential:
    def make(self, session=None):
        return ClientSecretTokenCredential("tenant-1", "client-1", "s3cret", session=session)

    @pytest.mark.parametrize("args", [("", "c", "s"), ("t", " ", "s"), ("t", "c", None)])
    def test_requires_all_parts(self, args):
        with pytest.raises(ValueError):
            ClientSecretTokenCredential(*args)

    def test_token_endpoint(self):
        assert self.make().token_endpoint == "https://login.microsoftonline.com/tenant-1/oauth2/v2.0/token"

    @patch("requests.post")
    def test_client_credentials_grant(self, mock_post):
        mock_post.return_value = token_response("abc", 1800)
        before = int(time.time())
        token = self.make().get_token("https://org.example.com/.default")
        assert token.token == "abc"
        assert before + 1800 <= token.expires_on <= int(time.time()) + 1800
        url = mock_post.call_args.args[0]
        data = mock_post.call_args.kwargs["data"]
        assert url.endswith("/tenant-1/oauth2/v2.0/token")
        assert data == {
            "grant_type": "client_credentials",
            "client_id": "client-1",
            "client_secret": "s3cret",
            "scope": "https://org.example.com/.default",
        }

    def test_tokens_are_cached_per_scope(self):
        session = MagicMock(spec=requests.Session)
        session.post.side_effect = [token_response("one"), token_response("two")]
        cred = self.make(session=session)
        assert cred.get_token("a/.default").token == "one"
        assert cred.get_token("a/.default").token == "one"
        assert cred.get_token("b/.default").token == "two"
        assert session.post.call_count == 2

    def test_expiring_token_is_refreshed(self):
        session = MagicMock(spec=requests.Session)
        session.post.side_effect = [token_response("short", 60), token_response("fresh")]
        cred = self.make(session=session)
        assert cred.get_token("a/.default").token == "short"
        assert cred.get_token("a/.default").token == "fresh"

    def test_rejected_request(self):
        session = MagicMock(spec=requests.Session)
        session.post.return_value = FakeResponse(
            401, {}, {"error": "invalid_client", "error_description": "AADSTS7000215: Invalid client secret"}
        )
        with pytest.raises(AuthenticationError) as exc:
            self.make(session=session).get_token("a/.default")
        assert exc.value.status_code == 401
        assert exc.value.subcode == ec.AUTH_TOKEN_REQUEST_FAILED
        assert "invalid_client" in exc.value.message

    def test_transport_failure(self):
        session = MagicMock(spec=requests.Session)
        session.post.side_effect = requests.exceptions.ConnectionError("dns")
        with pytest.raises(AuthenticationError) as exc:
            self.make(session=session).get_token("a/.default")
        assert exc.value.subcode == ec.AUTH_TOKEN_REQUEST_FAILED

    def test_missing_access_token(self):
        session = MagicMock(spec=requests.Session)
        session.post.return_value = FakeResponse(200, {}, {"token_type": "Bearer"})
        with pytest.raises(AuthenticationError) as exc:
            self.make(session=session).get_token("a/.default")
        assert exc.value.subcode == ec.AUTH_TOKEN_MISSING

    def test_no_scopes(self):
        with pytest.raises(ValueError):
            self.make().get_token()
