"""Authorization collaborators: API key, bearer token, or OAuth2 credentials.

Precedence is API key > bearer token > OAuth. Only OAuth supports ``refresh()``;
the cached access token lives on the ``OAuth`` instance, so every executor
built from the same ``Config`` shares it.
"""

from __future__ import annotations

from collections.abc import Mapping
import json
import logging
from pathlib import Path
from typing import Any, Literal, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from sparkbatch._http import SYNTHETIC_KEY_HEADER
from sparkbatch.errors import (
    REDACTED,
    ConfigurationError,
    ErrorCause,
    InternetError,
    RequestSnapshot,
    ResponseSnapshot,
    UnauthorizedError,
    classify,
)

AuthMethod = Literal["api_key", "token", "oauth"]

logger = logging.getLogger(__name__)


class AccessToken(BaseModel):
    """OAuth2 token endpoint response."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    access_token: str
    expires_in: int | None = None
    refresh_expires_in: int | None = None
    token_type: str = "Bearer"
    scope: str | None = None


@runtime_checkable
class AuthProvider(Protocol):
    """What the request executor needs from an auth collaborator."""

    @property
    def method(self) -> AuthMethod | None:
        """Active authorization method."""
        ...

    def as_headers(self) -> dict[str, str]:
        """Headers that authorize the next request."""
        ...

    async def refresh(self, client: httpx.AsyncClient) -> None:
        """Renew credentials after a 401."""
        ...


class OAuth:
    """OAuth2 client-credentials holder with a cached access token."""

    def __init__(self, client_id: str, client_secret: str) -> None:
        if not (client_id or "").strip() or not (client_secret or "").strip():
            raise ConfigurationError(
                "OAuth client ID and secret are required",
                hint="Pass oauth={'client_id': ..., 'client_secret': ...} "
                "or set CSPARK_CLIENT_ID and CSPARK_CLIENT_SECRET.",
            )
        self.client_id = client_id.strip()
        self._client_secret = client_secret.strip()
        self._access_token: AccessToken | None = None

    @classmethod
    def from_value(cls, value: OAuth | Mapping[str, Any] | str | Path) -> OAuth:
        """Build from an instance, a mapping, or a path to a JSON credentials file."""
        if isinstance(value, OAuth):
            return value
        if isinstance(value, (str, Path)):
            return cls.from_file(value)
        if isinstance(value, Mapping):
            return cls(
                str(value.get("client_id") or value.get("clientId") or ""),
                str(value.get("client_secret") or value.get("clientSecret") or ""),
            )
        raise ConfigurationError(
            "invalid OAuth credentials",
            hint="Provide a mapping with client_id/client_secret or a path to a JSON file.",
        )

    @classmethod
    def from_file(cls, path: str | Path) -> OAuth:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ConfigurationError(
                f"failed to read OAuth credentials from <{path}>",
                hint="The file must be JSON with clientId and clientSecret.",
                cause=exc,
            ) from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"OAuth credentials file <{path}> must hold an object")
        return cls.from_value(data)

    @property
    def access_token(self) -> AccessToken | None:
        return self._access_token

    async def retrieve_token(
        self, client: httpx.AsyncClient, token_url: str
    ) -> AccessToken:
        """Request a fresh access token and cache it."""
        logger.info("retrieving OAuth2 access token...")
        form = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self._client_secret,
        }
        snapshot = RequestSnapshot(
            method="POST",
            url=token_url,
            body={**form, "client_secret": REDACTED},
        )
        try:
            response = await client.post(token_url, data=form)
        except httpx.TransportError as exc:
            logger.warning("failed to retrieve OAuth2 access token")
            raise InternetError(
                f"failed to reach token endpoint <{token_url}>",
                status=0,
                cause=ErrorCause(snapshot),
            ) from exc

        cause = ErrorCause(
            snapshot,
            ResponseSnapshot(
                status=response.status_code,
                headers=dict(response.headers),
                raw=response.text,
            ),
        )
        if response.status_code >= 400:
            logger.warning("failed to retrieve OAuth2 access token")
            raise classify(
                response.status_code,
                "failed to retrieve OAuth2 access token",
                cause=cause,
            )

        try:
            token = AccessToken.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise UnauthorizedError(
                "no access token found in token endpoint response",
                status=response.status_code,
                cause=cause,
            ) from exc

        self._access_token = token
        return token

    def to_dict(self) -> dict[str, str]:
        return {"client_id": self.client_id, "client_secret": REDACTED}

    def __repr__(self) -> str:
        return f"OAuth(client_id={self.client_id!r}, client_secret='{REDACTED}')"


class Authorization:
    """Resolved authorization for one configuration.

    Satisfies ``AuthProvider``.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        token: str | None = None,
        oauth: OAuth | None = None,
        token_url: str | None = None,
    ) -> None:
        self.api_key = (api_key or "").strip() or None
        self.token = _strip_bearer(token)
        self.oauth = oauth
        self.token_url = token_url
        if self.method is None:
            raise ConfigurationError(
                "user authentication is required",
                hint="Provide a valid API key, bearer token, or OAuth credentials. "
                "For public APIs, set the API key to 'open'.",
            )

    @property
    def method(self) -> AuthMethod | None:
        if self.api_key:
            return "api_key"
        if self.token:
            return "token"
        if self.oauth is not None:
            return "oauth"
        return None

    @property
    def is_open(self) -> bool:
        """Whether public (credential-less) APIs are targeted."""
        return self.api_key == "open" or self.token == "open"

    @property
    def needs_token(self) -> bool:
        return (
            self.method == "oauth"
            and self.oauth is not None
            and self.oauth.access_token is None
        )

    def as_headers(self) -> dict[str, str]:
        if self.api_key:
            return {SYNTHETIC_KEY_HEADER: self.api_key}
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        if self.oauth is not None and self.oauth.access_token is not None:
            return {"Authorization": f"Bearer {self.oauth.access_token.access_token}"}
        return {}

    async def refresh(self, client: httpx.AsyncClient) -> None:
        if self.oauth is None or not self.token_url:
            raise ConfigurationError("only OAuth credentials can be refreshed")
        await self.oauth.retrieve_token(client, self.token_url)

    def __repr__(self) -> str:
        return f"Authorization(method={self.method!r})"


def _strip_bearer(token: str | None) -> str | None:
    if not token:
        return None
    value = token.strip()
    if value.lower().startswith("bearer"):
        value = value[len("bearer") :].strip()
    return value or None
