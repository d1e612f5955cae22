"""
Tests for CredentialCache expiry and the Zoom S2S token exchange
"""

import base64
from unittest.mock import Mock, patch

import pytest
import requests

from zoomvault.credentials import CredentialCache, ZoomTokenFetcher
from zoomvault.exceptions import AuthError


class TestCredentialCache:
    def test_reused_before_expiry_and_refreshed_once_after(self, clock):
        fetch = Mock(side_effect=["token-1", "token-2"])
        cache = CredentialCache(fetch, clock=clock)

        first = cache.get_credential()
        clock.advance(59 * 60)
        assert cache.get_credential() is first
        assert fetch.call_count == 1

        clock.advance(2 * 60)
        refreshed = cache.get_credential()
        assert refreshed.token == "token-2"
        assert cache.get_credential() is refreshed
        assert fetch.call_count == 2

    def test_expiry_is_fixed_one_hour(self, clock):
        cache = CredentialCache(lambda: "tok", clock=clock)

        credential = cache.get_credential()

        assert credential.expires_at == clock.now + 3600
        assert not credential.is_valid(clock.now + 3600)

    def test_failure_is_not_cached(self, clock):
        fetch = Mock(side_effect=[AuthError("denied"), "token"])
        cache = CredentialCache(fetch, clock=clock)

        with pytest.raises(AuthError):
            cache.get_credential()

        assert cache.get_credential().token == "token"
        assert fetch.call_count == 2

    def test_unexpected_fetch_error_becomes_auth_error(self, clock):
        cache = CredentialCache(Mock(side_effect=RuntimeError("socket closed")), clock=clock)

        with pytest.raises(AuthError, match="OAuth token request failed"):
            cache.get_credential()

    def test_empty_token_rejected(self, clock):
        cache = CredentialCache(lambda: "", clock=clock)

        with pytest.raises(AuthError, match="empty access token"):
            cache.get_credential()

    def test_invalidate_forces_refresh(self, clock):
        fetch = Mock(side_effect=["a", "b"])
        cache = CredentialCache(fetch, clock=clock)

        cache.get_credential()
        cache.invalidate()

        assert cache.get_credential().token == "b"

    def test_independent_caches(self, clock):
        one = CredentialCache(lambda: "one", clock=clock)
        two = CredentialCache(lambda: "two", clock=clock)

        assert one.get_credential().token == "one"
        assert two.get_credential().token == "two"

    def test_repr_hides_token(self, clock):
        cache = CredentialCache(lambda: "super-secret", clock=clock)
        credential = cache.get_credential()

        assert "super-secret" not in repr(credential)
        assert "super-secret" not in repr(cache)


class TestZoomTokenFetcher:
    @patch("requests.post")
    def test_account_credentials_exchange(self, mock_post):
        mock_post.return_value = Mock(
            status_code=200, json=lambda: {"access_token": "abc", "expires_in": 3599}
        )
        fetcher = ZoomTokenFetcher("acc", "cli", "sec")

        assert fetcher() == "abc"

        kwargs = mock_post.call_args.kwargs
        assert mock_post.call_args.args[0] == "https://zoom.us/oauth/token"
        assert kwargs["data"] == {"grant_type": "account_credentials", "account_id": "acc"}
        expected = base64.b64encode(b"cli:sec").decode()
        assert kwargs["headers"]["Authorization"] == f"Basic {expected}"
        assert kwargs["timeout"] == 30

    @patch("requests.post")
    def test_timeout(self, mock_post):
        mock_post.side_effect = requests.exceptions.Timeout()

        with pytest.raises(AuthError):
            ZoomTokenFetcher("acc", "cli", "sec")()

    @patch("requests.post")
    def test_rejected_credentials(self, mock_post):
        response = Mock(status_code=400, text="invalid_client")
        response.raise_for_status.side_effect = requests.exceptions.HTTPError("400")
        response.json.return_value = {"reason": "Invalid client_id or client_secret"}
        mock_post.return_value = response

        with pytest.raises(AuthError):
            ZoomTokenFetcher("acc", "cli", "sec")()

    @patch("requests.post")
    def test_missing_access_token(self, mock_post):
        mock_post.return_value = Mock(status_code=200, json=lambda: {"token_type": "bearer"})

        with pytest.raises(AuthError):
            ZoomTokenFetcher("acc", "cli", "sec")()

    def test_from_zoom_key(self):
        key = base64.b64encode(b"my-client:my-secret").decode()

        fetcher = ZoomTokenFetcher.from_zoom_key("acc", key)

        assert fetcher.client_id == "my-client"
        assert fetcher.client_secret == "my-secret"

    @pytest.mark.parametrize("key", ["not base64!!", base64.b64encode(b"no-colon").decode()])
    def test_from_zoom_key_rejects_bad_keys(self, key):
        with pytest.raises(AuthError):
            ZoomTokenFetcher.from_zoom_key("acc", key)

    def test_repr_hides_secrets(self):
        text = repr(ZoomTokenFetcher("acc-id", "client-id", "client-secret"))

        assert "client-secret" not in text
        assert "client-id" not in text
