"""
Tests for the OAuth token provider (HTTP session mocked).
"""

from unittest.mock import Mock

import pytest

from mtd_sync.core.exceptions import AuthenticationFailedError
from mtd_sync.core.models import SyncSettings
from mtd_sync.todo.auth import DEVICE_CODE_GRANT, SLOW_DOWN_STEP, TokenProvider, format_auth_failure


NOW = 1_700_000_000.0


def response(status, payload):
    resp = Mock()
    resp.status_code = status
    resp.json.return_value = payload
    resp.text = ""
    return resp


@pytest.fixture
def settings():
    return SyncSettings(client_id="client", tenant_id="tenant")


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def provider(settings, session, sleeps):
    return TokenProvider(
        settings,
        session=session,
        save_callback=Mock(),
        prompt=Mock(),
        clock=lambda: NOW,
        sleep=sleeps.append,
    )


class TestTokens:

    def test_cached_token_is_reused(self, provider, settings, session):
        settings.access_token = "cached"
        settings.access_token_expires_at = int((NOW + 3600) * 1000)
        assert provider.get_valid_access_token() == "cached"
        session.post.assert_not_called()

    def test_expired_token_is_refreshed(self, provider, settings, session):
        settings.access_token = "old"
        settings.refresh_token = "refresh"
        session.post.return_value = response(200, {
            "access_token": "new", "refresh_token": "refresh2", "expires_in": 3600,
        })

        assert provider.get_valid_access_token() == "new"

        url = session.post.call_args[0][0]
        data = session.post.call_args[1]["data"]
        assert url == "https://login.microsoftonline.com/tenant/oauth2/v2.0/token"
        assert data["grant_type"] == "refresh_token"
        assert data["refresh_token"] == "refresh"
        assert settings.refresh_token == "refresh2"
        assert settings.access_token_expires_at == int(NOW * 1000) + (3600 - 60) * 1000
        provider.save_callback.assert_called()

    def test_invalid_grant_clears_refresh_token(self, provider, settings, session):
        settings.refresh_token = "revoked"
        session.post.return_value = response(400, {"error": "invalid_grant", "error_description": "expired"})

        assert provider.get_valid_access_token() is None
        assert settings.refresh_token == ""

    def test_no_client_id(self, provider, settings, session):
        settings.client_id = ""
        assert provider.get_valid_access_token() is None
        session.post.assert_not_called()

    def test_logout(self, provider, settings):
        settings.access_token = "a"
        settings.refresh_token = "r"
        provider.logout()
        assert not provider.is_logged_in()
        assert settings.access_token == "" and settings.refresh_token == ""


class TestDeviceCodeFlow:

    def test_polls_until_authorized(self, provider, settings, session, sleeps):
        session.post.side_effect = [
            response(200, {
                "device_code": "dev", "user_code": "ABCD", "verification_uri": "https://microsoft.com/devicelogin",
                "interval": 2, "expires_in": 900, "message": "Go sign in",
            }),
            response(400, {"error": "authorization_pending"}),
            response(400, {"error": "slow_down"}),
            response(200, {"access_token": "tok", "refresh_token": "ref", "expires_in": 3600}),
        ]

        assert provider.login() == "tok"

        provider.prompt.assert_called_once_with("Go sign in")
        assert sleeps == [2, 2 + SLOW_DOWN_STEP]
        poll_data = session.post.call_args_list[1][1]["data"]
        assert poll_data["grant_type"] == DEVICE_CODE_GRANT
        assert poll_data["device_code"] == "dev"
        assert settings.refresh_token == "ref"

    def test_declined_login_raises(self, provider, session):
        session.post.side_effect = [
            response(200, {"device_code": "dev", "user_code": "A", "verification_uri": "u", "interval": 1}),
            response(400, {"error": "authorization_declined", "error_description": "User said no"}),
        ]
        with pytest.raises(AuthenticationFailedError) as excinfo:
            provider.login()
        assert excinfo.value.error_code == "authorization_declined"
        assert "User said no" in str(excinfo.value)

    def test_device_code_error_has_hint(self, provider, session):
        session.post.return_value = response(400, {
            "error": "unauthorized_client", "error_description": "AADSTS7000218",
        })
        with pytest.raises(AuthenticationFailedError) as excinfo:
            provider.start_device_login()
        assert "Allow public client flows" in str(excinfo.value)

    def test_format_auth_failure(self):
        text = format_auth_failure("Failed", {"error": "invalid_scope"}, 400)
        assert text.splitlines()[:3] == ["Failed", "HTTP 400", "Error: invalid_scope"]
        assert "Suggestion:" in text
