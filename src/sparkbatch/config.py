"""Configuration: frozen Config with explicit base URL and credentials."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

import dotenv

from sparkbatch._http import (
    API_VERSION,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_INTERVAL_S,
    DEFAULT_TIMEOUT_S,
)
from sparkbatch.auth import Authorization, OAuth
from sparkbatch.errors import ConfigurationError

if TYPE_CHECKING:
    from sparkbatch.executor import Interceptor

ENV_BASE_URL = "CSPARK_BASE_URL"
ENV_TENANT = "CSPARK_TENANT_NAME"
ENV_ENVIRONMENT = "CSPARK_ENVIRONMENT"
ENV_API_KEY = "CSPARK_API_KEY"
ENV_BEARER_TOKEN = "CSPARK_BEARER_TOKEN"
ENV_CLIENT_ID = "CSPARK_CLIENT_ID"
ENV_CLIENT_SECRET = "CSPARK_CLIENT_SECRET"
ENV_OAUTH_PATH = "CSPARK_OAUTH_PATH"

_dotenv_loaded = False


def _load_dotenv_once() -> None:
    global _dotenv_loaded
    if not _dotenv_loaded:
        dotenv.load_dotenv()
        _dotenv_loaded = True


def _read_env(name: str) -> str | None:
    value = os.environ.get(name)
    if value is None:
        return None
    return value.strip() or None


@dataclass(frozen=True)
class BaseUrl:
    """Tenant-scoped base URL, e.g. ``https://excel.uat.us.coherent.global/my-tenant``."""

    origin: str
    tenant: str

    @classmethod
    def resolve(
        cls,
        url: str | None = None,
        *,
        tenant: str | None = None,
        env: str | None = None,
    ) -> BaseUrl:
        """Build from a full URL (tenant in the path or given) or from env + tenant."""
        if url:
            parts = urlsplit(url.strip())
            if parts.scheme not in ("http", "https") or not parts.netloc:
                raise ConfigurationError(
                    f"invalid base URL <{url}>",
                    hint="Use a URL like https://excel.uat.us.coherent.global/my-tenant",
                )
            segments = [s for s in parts.path.split("/") if s]
            resolved = segments[0] if segments else (tenant or "").strip()
            if not resolved:
                raise ConfigurationError(
                    "tenant name is required",
                    hint=f"Include the tenant in the base URL path or set {ENV_TENANT}.",
                )
            return cls(f"{parts.scheme}://{parts.netloc}", resolved)

        if env and tenant:
            env_name = env.strip().lower()
            return cls(f"https://excel.{env_name}.coherent.global", tenant.strip().lower())

        raise ConfigurationError(
            "cannot build base URL from the given parameters",
            hint=f"Set {ENV_BASE_URL}, or both {ENV_ENVIRONMENT} and {ENV_TENANT}.",
        )

    @property
    def full(self) -> str:
        return f"{self.origin}/{self.tenant}"

    @property
    def oauth2(self) -> str:
        """Keycloak realm URL for this tenant."""
        return f"{self.origin.replace('excel', 'keycloak', 1)}/auth/realms/{self.tenant}"

    @property
    def token_url(self) -> str:
        return f"{self.oauth2}/protocol/openid-connect/token"

    def api(self, endpoint: str = "", *, version: str = API_VERSION) -> str:
        """Return the absolute URL of an API endpoint."""
        path = f"{self.full}/{version.strip('/')}"
        endpoint = endpoint.strip("/")
        return f"{path}/{endpoint}" if endpoint else path

    def __str__(self) -> str:
        return self.full


@dataclass(frozen=True)
class Config:
    """Immutable client configuration.

    Base URL and credentials fall back to ``CSPARK_*`` environment variables
    (a local ``.env`` file is honored). Auth precedence is API key > bearer
    token > OAuth.

    Example:
        config = Config(base_url="https://excel.uat.us.coherent.global/my-tenant", api_key="...")
    """

    base_url: str | None = None
    tenant: str | None = None
    env: str | None = None
    api_key: str | None = None
    token: str | None = None
    #: ``OAuth`` instance, ``{"client_id", "client_secret"}`` mapping, or path to a JSON file.
    oauth: OAuth | Mapping[str, Any] | str | Path | None = None
    timeout_s: float = DEFAULT_TIMEOUT_S
    #: Applies to 401 (OAuth refresh) and 429 (rate limit) retries only.
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_interval_s: float = DEFAULT_RETRY_INTERVAL_S
    extra_headers: Mapping[str, str] = field(default_factory=dict)
    interceptors: tuple[Interceptor, ...] = ()

    base: BaseUrl = field(init=False, repr=False, compare=False)
    auth: Authorization = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        """Resolve environment fallbacks and validate configuration."""
        _load_dotenv_once()

        if isinstance(self.timeout_s, bool) or not (
            isinstance(self.timeout_s, (int, float)) and self.timeout_s > 0
        ):
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s!r}",
                hint="This bounds each HTTP call, in seconds.",
            )
        if isinstance(self.max_retries, bool) or not (
            isinstance(self.max_retries, int) and self.max_retries >= 0
        ):
            raise ConfigurationError(
                f"max_retries must be an integer ≥ 0, got {self.max_retries!r}",
                hint="This bounds retries for expired OAuth tokens and rate limits.",
            )
        if not isinstance(self.retry_interval_s, (int, float)) or self.retry_interval_s < 0:
            raise ConfigurationError(
                f"retry_interval_s must be ≥ 0, got {self.retry_interval_s!r}",
                hint="This is the base interval of the randomized backoff.",
            )

        base = BaseUrl.resolve(
            self.base_url or _read_env(ENV_BASE_URL),
            tenant=self.tenant or _read_env(ENV_TENANT),
            env=self.env or _read_env(ENV_ENVIRONMENT),
        )
        object.__setattr__(self, "base", base)
        object.__setattr__(self, "base_url", base.full)
        object.__setattr__(self, "tenant", base.tenant)

        api_key = self.api_key or _read_env(ENV_API_KEY)
        token = self.token or _read_env(ENV_BEARER_TOKEN)
        oauth = self._resolve_oauth()
        object.__setattr__(self, "api_key", api_key)
        object.__setattr__(self, "token", token)
        object.__setattr__(self, "oauth", oauth)
        object.__setattr__(
            self,
            "auth",
            Authorization(
                api_key=api_key, token=token, oauth=oauth, token_url=base.token_url
            ),
        )
        object.__setattr__(self, "extra_headers", dict(self.extra_headers))
        object.__setattr__(self, "interceptors", tuple(self.interceptors))

    def _resolve_oauth(self) -> OAuth | None:
        if self.oauth is not None:
            return OAuth.from_value(self.oauth)
        client_id = _read_env(ENV_CLIENT_ID)
        client_secret = _read_env(ENV_CLIENT_SECRET)
        if client_id and client_secret:
            return OAuth(client_id, client_secret)
        path = _read_env(ENV_OAUTH_PATH)
        if path:
            return OAuth.from_file(path)
        return None

    def copy_with(self, **changes: Any) -> Config:
        """Return a modified copy; the OAuth token cache stays shared."""
        return replace(self, **changes)

    def with_interceptors(self, *interceptors: Interceptor) -> Config:
        """Return a copy with *interceptors* appended (duplicates skipped)."""
        merged = list(self.interceptors)
        for interceptor in interceptors:
            if interceptor not in merged:
                merged.append(interceptor)
        return self.copy_with(interceptors=tuple(merged))

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(base_url={self.base_url!r}, auth={self.auth.method!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"token={'[REDACTED]' if self.token else None}, "
            f"timeout_s={self.timeout_s}, max_retries={self.max_retries})"
        )

    __repr__ = __str__
