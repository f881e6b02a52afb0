"""Google OAuth token endpoint client."""

from __future__ import annotations

from urllib.parse import urlencode

import httpx
from loguru import logger

from leadsync.domain.entities.credential import TokenGrant
from leadsync.domain.errors import AuthError, TransientExternalError


class GoogleOAuthProvider:
    """Exchange authorization codes and refresh tokens at Google's token endpoint."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str = "https://oauth2.googleapis.com/token",
        auth_url: str = "https://accounts.google.com/o/oauth2/v2/auth",
        redirect_uri: str | None = None,
        scopes: list[str] | None = None,
        http_client: httpx.Client | None = None,
        timeout: float = 30.0,
    ):
        if not client_id or not client_secret:
            raise ValueError("Google OAuth client id and secret are required")
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.auth_url = auth_url
        self.redirect_uri = redirect_uri
        self.scopes = scopes or ["https://www.googleapis.com/auth/spreadsheets"]
        self._http = http_client or httpx.Client(timeout=timeout)

    def build_auth_url(self, state: str, redirect_uri: str | None = None) -> str:
        """Consent screen URL requesting offline access."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri or self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{self.auth_url}?{urlencode(params)}"

    def refresh(self, refresh_token: str) -> TokenGrant:
        """Refresh-token grant.

        An ``invalid_grant`` answer means the refresh token is revoked or
        expired and raises a terminal AuthError. Any other failure is transient.
        """
        return self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            action="refresh",
        )

    def exchange_code(self, code: str, redirect_uri: str | None = None) -> TokenGrant:
        """Authorization-code grant."""
        redirect = redirect_uri or self.redirect_uri
        if not redirect:
            raise ValueError("redirect_uri is required to exchange an authorization code")
        return self._token_request(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect},
            action="exchange",
        )

    def _token_request(self, form: dict[str, str], action: str) -> TokenGrant:
        data = {"client_id": self.client_id, "client_secret": self.client_secret, **form}
        try:
            response = self._http.post(self.token_url, data=data)
        except httpx.TransportError as e:
            logger.error(f"Google token {action} failed: {e}")
            raise TransientExternalError(f"Google token {action} failed: {e}") from e

        payload = _json_or_empty(response)
        if response.status_code != 200:
            error_code = payload.get("error")
            description = payload.get("error_description") or response.text[:200]
            logger.error(
                f"Google token {action} rejected: status={response.status_code} error={error_code}"
            )
            if error_code == "invalid_grant":
                raise AuthError(
                    "Google refresh token is invalid or revoked. User needs to reconnect.",
                    needs_reauthorization=True,
                    details={"error": error_code},
                )
            raise TransientExternalError(
                f"Failed to {action} Google token: {description}",
                status_code=response.status_code,
            )

        access_token = payload.get("access_token")
        if not access_token:
            raise TransientExternalError(f"Google token {action} returned no access token")

        return TokenGrant(
            access_token=access_token,
            expires_in=int(payload.get("expires_in") or 3600),
            refresh_token=payload.get("refresh_token"),
            scope=payload.get("scope"),
        )

    def close(self) -> None:
        self._http.close()


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
