"""
Server-to-Server OAuth credential exchange and an expiring in-memory credential cache
"""

from __future__ import annotations

import base64
import binascii
import logging
import time
from collections.abc import Callable

import requests

from zoomvault.exceptions import AuthError
from zoomvault.models import Credential

# Fixed credential lifetime, independent of the expires_in Zoom reports
CREDENTIAL_TTL_SECONDS = 60 * 60

logger = logging.getLogger(__name__)


class CredentialCache:
    """Hand out a valid bearer credential, refreshing it when absent or expired.

    The cached ``Credential`` is immutable and replaced wholesale on refresh,
    so concurrent readers need no lock. Two threads racing on an expired
    credential may both refresh; the last one to finish wins.
    """

    def __init__(
        self,
        fetch_token: Callable[[], str],
        *,
        clock: Callable[[], float] = time.time,
        ttl: float = CREDENTIAL_TTL_SECONDS,
    ):
        self._fetch_token = fetch_token
        self._clock = clock
        self._ttl = ttl
        self._credential: Credential | None = None

    def __repr__(self) -> str:
        return f"CredentialCache(ttl={self._ttl!r}, cached={self._credential is not None})"

    def get_credential(self) -> Credential:
        """Return the cached credential, fetching a new one if it is missing or expired

        Raises:
            AuthError: If the token endpoint is unreachable or rejects the credentials.
                Nothing is cached on failure, so the next call hits the network again.
        """
        current = self._credential
        now = self._clock()
        if current is not None and current.is_valid(now):
            return current

        logger.debug("Requesting new Zoom access token")
        try:
            token = self._fetch_token()
        except AuthError:
            raise
        except Exception as e:
            raise AuthError("OAuth token request failed", details=str(e)) from e

        if not token:
            raise AuthError("OAuth token request returned an empty access token")

        credential = Credential(token=str(token), expires_at=now + self._ttl)
        self._credential = credential
        return credential

    def invalidate(self) -> None:
        """Drop the cached credential; the next get_credential() refreshes"""
        self._credential = None


class ZoomTokenFetcher:
    """Callable performing the Zoom ``account_credentials`` token exchange"""

    def __init__(
        self,
        account_id: str,
        client_id: str,
        client_secret: str,
        token_url: str = "https://zoom.us/oauth/token",
        *,
        timeout: float = 30,
    ):
        self.account_id = account_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.timeout = timeout

    @classmethod
    def from_zoom_key(
        cls, account_id: str, zoom_key: str, token_url: str = "https://zoom.us/oauth/token"
    ) -> ZoomTokenFetcher:
        """Build a fetcher from a base64-encoded ``client_id:client_secret`` pair"""
        try:
            decoded = base64.b64decode(zoom_key, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise AuthError("ZOOM_KEY is not valid base64", details=str(e)) from e
        client_id, sep, client_secret = decoded.partition(":")
        if not sep or not client_id or not client_secret:
            raise AuthError("ZOOM_KEY must encode 'client_id:client_secret'")
        return cls(account_id, client_id, client_secret, token_url)

    def __repr__(self) -> str:
        return (
            f"ZoomTokenFetcher(token_url={self.token_url!r}, "
            f"account_id_set={bool(self.account_id)}, client_id_set={bool(self.client_id)})"
        )

    def __call__(self) -> str:
        credentials = f"{self.client_id}:{self.client_secret}"
        encoded_credentials = base64.b64encode(credentials.encode()).decode()

        headers = {
            "Authorization": f"Basic {encoded_credentials}",
            "Content-Type": "application/x-www-form-urlencoded",
        }
        data = {"grant_type": "account_credentials", "account_id": self.account_id}

        try:
            response = requests.post(
                self.token_url, headers=headers, data=data, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise AuthError(
                "Authentication timeout",
                details=f"Zoom OAuth server did not respond within {self.timeout} seconds",
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise AuthError(
                "Connection error during authentication",
                details=f"Could not connect to Zoom OAuth server: {e}",
            ) from e
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else "unknown"
            raise AuthError(
                f"OAuth token request failed (HTTP {status_code})",
                details="Check ZOOM_ACCOUNT_ID, ZOOM_CLIENT_ID and ZOOM_CLIENT_SECRET",
            ) from e
        except requests.exceptions.RequestException as e:
            raise AuthError("OAuth token request failed", details=f"Request error: {e}") from e

        try:
            token_data = response.json()
        except ValueError as e:
            raise AuthError(
                "Invalid OAuth response",
                details=f"Could not parse JSON response from Zoom OAuth server: {e}",
            ) from e

        if not isinstance(token_data, dict) or "access_token" not in token_data:
            raise AuthError(
                "Invalid OAuth token response",
                details="Response did not contain required 'access_token' field",
            )

        logger.info("Obtained new Zoom access token")
        return str(token_data["access_token"])
