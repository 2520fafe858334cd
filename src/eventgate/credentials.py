"""Google OAuth access-token management backed by a local credential file.

The credential file (default ``~/.google-oauth/oauth.json``) is produced by
the one-time consent flow and holds::

    {
      "client_id": "...",
      "client_secret": "...",
      "refresh_token": "...",
      "access_token": "...",
      "token_expiry": "2026-10-18T12:00:00Z"
    }

:class:`CredentialManager` is the single way to obtain an access token. It
reloads the file on every call, returns the cached token while it has more
than the safety margin (5 minutes) left, and otherwise exchanges the refresh
token for a new one. A refreshed record is written back as a whole-file
atomic replacement before the token is handed out. Keys it does not know
about (e.g. ``scopes``) are carried through unchanged.

Secret material is never logged; :class:`OAuthCredential` redacts it from
``repr()``/``str()``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
DEFAULT_SAFETY_MARGIN = timedelta(minutes=5)
DEFAULT_TIMEOUT_SECONDS = 30.0
_DEFAULT_EXPIRES_IN_SECONDS = 3600


class CredentialError(RuntimeError):
    """Base class for OAuth credential failures."""


class CredentialConfigurationError(CredentialError):
    """The credential file is missing or unreadable. Not retryable."""


class CredentialRefreshError(CredentialError):
    """The token endpoint rejected the refresh request."""

    def __init__(self, status_code: int | None, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        if status_code is None:
            super().__init__(f"Token refresh failed: {detail}")
        else:
            super().__init__(f"Token refresh failed ({status_code}): {detail}")


class CredentialNetworkError(CredentialError):
    """The token endpoint could not be reached or timed out."""


class CredentialPersistenceError(CredentialError):
    """A refreshed credential could not be written back to disk."""


class OAuthCredential(BaseModel):
    """One OAuth client + refresh token, with the current access token."""

    model_config = ConfigDict(extra="allow")

    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)
    access_token: str | None = None
    token_expiry: datetime | None = None

    @field_validator("client_id", "client_secret", "refresh_token")
    @classmethod
    def _normalize_non_empty(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("must be a non-empty string")
        return normalized

    @field_validator("access_token")
    @classmethod
    def _normalize_access_token(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator("token_expiry")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def is_fresh(self, now: datetime, margin: timedelta = DEFAULT_SAFETY_MARGIN) -> bool:
        """True when the access token stays valid for longer than *margin*."""
        if self.access_token is None or self.token_expiry is None:
            return False
        return now < self.token_expiry - margin

    def __repr__(self) -> str:
        return (
            f"OAuthCredential("
            f"client_id={self.client_id!r}, "
            f"client_secret=<REDACTED>, "
            f"refresh_token=<REDACTED>, "
            f"access_token={'<REDACTED>' if self.access_token else None}, "
            f"token_expiry={self.token_expiry!r})"
        )

    __str__ = __repr__


class CredentialFileStore:
    """Reads and atomically rewrites the JSON credential file."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> OAuthCredential:
        if not self.path.exists():
            raise CredentialConfigurationError(f"OAuth credentials not found at {self.path}")
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise CredentialConfigurationError(
                f"OAuth credentials at {self.path} are unreadable: {exc}"
            ) from exc
        if not isinstance(payload, dict):
            raise CredentialConfigurationError(
                f"OAuth credentials at {self.path} must be a JSON object"
            )
        try:
            return OAuthCredential.model_validate(payload)
        except ValidationError as exc:
            fields = ", ".join(str(err["loc"][0]) for err in exc.errors() if err.get("loc"))
            raise CredentialConfigurationError(
                f"OAuth credentials at {self.path} are invalid (fields: {fields or 'unknown'})"
            ) from exc

    def save(self, credential: OAuthCredential) -> None:
        """Replace the whole file in one rename so readers never see a partial record."""
        payload = credential.model_dump(mode="json")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


@dataclass(frozen=True)
class CredentialStatus:
    """Non-secret view of the credential file for operators."""

    path: Path
    client_id: str
    has_access_token: bool
    token_expiry: datetime | None
    fresh: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "client_id": self.client_id,
            "has_access_token": self.has_access_token,
            "token_expiry": self.token_expiry.isoformat() if self.token_expiry else None,
            "fresh": self.fresh,
        }


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return _DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, int | float):
        return int(value) if value > 0 else _DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip()) or _DEFAULT_EXPIRES_IN_SECONDS
    return _DEFAULT_EXPIRES_IN_SECONDS


def _refresh_error_detail(response: httpx.Response) -> str:
    """Prefer ``error_description``, then ``error``, then the raw body."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        for key in ("error_description", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return " ".join(value.split())[:200]

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return "Token endpoint returned no error payload"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CredentialManager:
    """Hands out Google access tokens, refreshing and persisting as needed.

    Parameters
    ----------
    store:
        Where the credential record lives.
    http_client:
        Client used for the token endpoint. One with *timeout* is created
        (and owned) when omitted.
    token_url:
        OAuth token endpoint.
    safety_margin:
        A cached token is reused only while it has more than this left.
    timeout:
        Per-request timeout for the owned client, in seconds.
    clock:
        Returns the current aware time; overridable for tests.
    """

    def __init__(
        self,
        store: CredentialFileStore,
        *,
        http_client: httpx.AsyncClient | None = None,
        token_url: str = GOOGLE_OAUTH_TOKEN_URL,
        safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._token_url = token_url
        self._safety_margin = safety_margin
        self._timeout = timeout
        self._clock = clock
        self._refresh_lock = asyncio.Lock()

    @property
    def store(self) -> CredentialFileStore:
        return self._store

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _load(self) -> OAuthCredential:
        return await asyncio.to_thread(self._store.load)

    async def get_access_token(self, *, force_refresh: bool = False) -> str:
        """Return a usable access token.

        With ``force_refresh`` the cached token is ignored and exactly one
        refresh is performed.

        Raises
        ------
        CredentialConfigurationError
            The credential file is missing or invalid.
        CredentialRefreshError
            The token endpoint returned a non-success status.
        CredentialNetworkError
            The token endpoint could not be reached.
        CredentialPersistenceError
            The refreshed record could not be written back.
        """
        if not force_refresh:
            credential = await self._load()
            if credential.is_fresh(self._clock(), self._safety_margin):
                assert credential.access_token is not None
                return credential.access_token

        async with self._refresh_lock:
            credential = await self._load()
            if not force_refresh and credential.is_fresh(self._clock(), self._safety_margin):
                assert credential.access_token is not None
                return credential.access_token

            refreshed = await self._refresh(credential)
            try:
                await asyncio.to_thread(self._store.save, refreshed)
            except OSError as exc:
                raise CredentialPersistenceError(
                    f"Could not persist refreshed credentials to {self._store.path}: {exc}"
                ) from exc
            logger.info(
                "Refreshed Google access token",
                extra={
                    "client_id": refreshed.client_id,
                    "token_expiry": refreshed.token_expiry.isoformat()
                    if refreshed.token_expiry
                    else None,
                    "forced": force_refresh,
                },
            )
            assert refreshed.access_token is not None
            return refreshed.access_token

    async def _refresh(self, credential: OAuthCredential) -> OAuthCredential:
        try:
            response = await self._client().post(
                self._token_url,
                data={
                    "client_id": credential.client_id,
                    "client_secret": credential.client_secret,
                    "refresh_token": credential.refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise CredentialNetworkError(f"Token refresh request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise CredentialRefreshError(response.status_code, _refresh_error_detail(response))

        try:
            payload = response.json()
        except ValueError as exc:
            raise CredentialRefreshError(
                response.status_code, "token endpoint returned invalid JSON"
            ) from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise CredentialRefreshError(
                response.status_code, "token response is missing a non-empty access_token"
            )

        expires_in = _coerce_expires_in_seconds(payload.get("expires_in"))
        return credential.model_copy(
            update={
                "access_token": access_token.strip(),
                "token_expiry": self._clock() + timedelta(seconds=expires_in),
            }
        )

    async def status(self) -> CredentialStatus:
        """Describe the stored credential without revealing secrets."""
        credential = await self._load()
        return CredentialStatus(
            path=self._store.path,
            client_id=credential.client_id,
            has_access_token=credential.access_token is not None,
            token_expiry=credential.token_expiry,
            fresh=credential.is_fresh(self._clock(), self._safety_margin),
        )
