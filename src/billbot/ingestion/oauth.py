"""Google OAuth2 client: authorization URL, code exchange, token refresh."""

import base64
import hashlib
import json
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import requests

from ..errors import AuthError, RefreshFailedError

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GMAIL_READONLY_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"


@dataclass
class OAuthTokens:
    """Token endpoint response."""

    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None


def create_code_verifier() -> str:
    """Generate a PKCE code verifier."""
    return secrets.token_urlsafe(64)


def code_challenge(verifier: str) -> str:
    """S256 PKCE challenge for a verifier."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def encode_state(user_id: str, code_verifier: str, timestamp: Optional[int] = None) -> str:
    """Pack the user id and PKCE verifier into the OAuth state parameter."""
    payload = {
        "userId": user_id,
        "timestamp": timestamp if timestamp is not None else int(time.time() * 1000),
        "codeVerifier": code_verifier,
    }
    return base64.urlsafe_b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def decode_state(state: str) -> tuple[str, str]:
    """Unpack an OAuth state parameter.

    Returns:
        tuple[str, str]: (user_id, code_verifier)

    Raises:
        AuthError: If the state is malformed
    """
    try:
        padding = "=" * (-len(state) % 4)
        payload = json.loads(base64.urlsafe_b64decode(state + padding))
        user_id = payload["userId"]
        code_verifier = payload["codeVerifier"]
    except (ValueError, KeyError, TypeError) as e:
        raise AuthError(f"Invalid OAuth state parameter: {e}") from e

    if not user_id or not code_verifier:
        raise AuthError("Invalid OAuth state parameter")
    return user_id, code_verifier


class GoogleOAuthClient:
    """Talks to Google's OAuth2 endpoints for Gmail read-only access."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.session = session or requests.Session()
        self.timeout = timeout

    def authorization_url(self, state: str, code_verifier: str) -> str:
        """Build the consent URL. Offline access forces a refresh token."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": GMAIL_READONLY_SCOPE,
            "state": state,
            "code_challenge": code_challenge(code_verifier),
            "code_challenge_method": "S256",
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def _post_token(self, data: dict) -> requests.Response:
        return self.session.post(GOOGLE_TOKEN_URL, data=data, timeout=self.timeout)

    @staticmethod
    def _body(response: requests.Response):
        try:
            return response.json()
        except ValueError:
            return response.text

    def exchange_code(self, code: str, code_verifier: str) -> OAuthTokens:
        """Exchange an authorization code for tokens.

        Raises:
            AuthError: If the exchange fails or no refresh token is issued
        """
        try:
            response = self._post_token({
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "code_verifier": code_verifier,
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_uri,
            })
        except requests.RequestException as e:
            raise AuthError(f"OAuth code exchange failed: {e}") from e

        if not response.ok:
            raise AuthError(f"OAuth code exchange failed ({response.status_code}): {self._body(response)}")

        data = response.json()
        if not data.get("refresh_token"):
            raise AuthError(
                "No refresh token received. This can happen if you previously authorized this app. "
                "Please revoke access at https://myaccount.google.com/permissions and try again."
            )

        return OAuthTokens(
            access_token=data["access_token"],
            expires_in=int(data.get("expires_in") or 3600),
            refresh_token=data["refresh_token"],
        )

    def refresh(self, refresh_token: str) -> OAuthTokens:
        """Refresh an access token.

        Raises:
            RefreshFailedError: If the provider rejects the refresh
        """
        try:
            response = self._post_token({
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            })
        except requests.RequestException as e:
            raise RefreshFailedError(0, str(e)) from e

        if not response.ok:
            body = self._body(response)
            logger.error(f"Token refresh rejected: {response.status_code} {body}")
            raise RefreshFailedError(response.status_code, body)

        data = response.json()
        return OAuthTokens(
            access_token=data["access_token"],
            expires_in=int(data.get("expires_in") or 3600),
            refresh_token=data.get("refresh_token"),
        )
