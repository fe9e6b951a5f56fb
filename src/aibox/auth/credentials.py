"""GitHub device-flow login and Copilot API token lifecycle.

The long-lived OAuth token obtained through the device flow is persisted in
the settings store. The short-lived Copilot API token derived from it lives
only in memory and is refreshed on demand, at most one exchange at a time.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import httpx

from ..constants import (
    COPILOT_EDITOR_VERSION,
    COPILOT_TOKEN_URL,
    DEFAULT_COPILOT_CLIENT_ID,
    DEVICE_CODE_GRANT_TYPE,
    GITHUB_ACCESS_TOKEN_URL,
    GITHUB_DEVICE_CODE_URL,
    SETTING_COPILOT_OAUTH_TOKEN,
    TOKEN_SAFETY_MARGIN_SEC,
)
from ..errors import AuthError, NetworkError, ProviderError
from ..logging import extract_http_error_context, log_event
from ..settings import SettingsStore
from ..timeouts import DEFAULT_TIMEOUT_SEC, build_httpx_timeout

DEVICE_FLOW_SCOPE = "read:user"
DEFAULT_POLL_INTERVAL_SEC = 5


class CredentialPhase(str, Enum):
    LOGGED_OUT = "logged_out"
    DEVICE_CODE_ISSUED = "device_code_issued"
    AUTHORIZED = "authorized"
    TOKEN_CACHED = "token_cached"
    REFRESHING = "refreshing"


class PollStatus(str, Enum):
    PENDING = "pending"
    SLOW_DOWN = "slow_down"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    EXPIRED = "expired"


@dataclass(frozen=True, slots=True)
class DeviceCode:
    """Device authorization grant shown to the user."""

    device_code: str
    user_code: str
    verification_uri: str
    interval: int
    expires_in: int


@dataclass(frozen=True, slots=True)
class PollResult:
    """Outcome of one access-token poll.

    ``interval`` is set for SLOW_DOWN (the server's new minimum). The OAuth
    token itself is stored, never returned.
    """

    status: PollStatus
    interval: int | None = None


@dataclass(slots=True)
class _ApiToken:
    value: str
    expires_at: float


def _json_object(response: httpx.Response, context: str) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise ProviderError(f"{context}: invalid JSON response: {e}") from e
    if not isinstance(data, dict):
        raise ProviderError(f"{context}: unexpected response shape")
    return data


def _positive_int(value: Any, fallback: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return fallback
    return int(value)


class CredentialManager:
    """Own the Copilot credential lifecycle.

    Phases move LoggedOut -> DeviceCodeIssued -> Authorized -> TokenCached,
    with Refreshing while an exchange is in flight. ``logout`` returns to
    LoggedOut from any phase and discards the result of an in-flight
    exchange.
    """

    def __init__(
        self,
        settings: SettingsStore,
        *,
        client_id: str = DEFAULT_COPILOT_CLIENT_ID,
        safety_margin_sec: int | float = TOKEN_SAFETY_MARGIN_SEC,
        timeout: int | float = DEFAULT_TIMEOUT_SEC,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.client_id = client_id
        self.safety_margin_sec = safety_margin_sec
        self.clock = clock
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=build_httpx_timeout(timeout)
        )

        # Guards the fields below; never held across an await.
        self._lock = threading.Lock()
        self._api_token: _ApiToken | None = None
        self._exchange: asyncio.Task[str] | None = None
        self._generation = 0
        self._device_code_issued = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> CredentialPhase:
        """Current phase; token values are never exposed."""
        with self._lock:
            if self._exchange is not None and not self._exchange.done():
                return CredentialPhase.REFRESHING
            api_token = self._cached_token_locked()
            device_code_issued = self._device_code_issued
        if self._oauth_token() is not None:
            if api_token is not None:
                return CredentialPhase.TOKEN_CACHED
            return CredentialPhase.AUTHORIZED
        if device_code_issued:
            return CredentialPhase.DEVICE_CODE_ISSUED
        return CredentialPhase.LOGGED_OUT

    def is_logged_in(self) -> bool:
        return self._oauth_token() is not None

    def _oauth_token(self) -> str | None:
        return self.settings.get(SETTING_COPILOT_OAUTH_TOKEN) or None

    # ------------------------------------------------------------------
    # Device authorization flow
    # ------------------------------------------------------------------

    async def start_login(self) -> DeviceCode:
        """Request a device code; nothing is stored until authorization succeeds."""
        try:
            response = await self.http_client.post(
                GITHUB_DEVICE_CODE_URL,
                data={"client_id": self.client_id, "scope": DEVICE_FLOW_SCOPE},
                headers={"Accept": "application/json"},
            )
        except httpx.TransportError as e:
            raise NetworkError(f"Could not reach GitHub: {e}") from e

        if response.is_error:
            raise ProviderError(
                f"Device code request failed ({response.status_code})",
                status_code=response.status_code,
            )

        data = _json_object(response, "Device code request")
        try:
            device_code = DeviceCode(
                device_code=str(data["device_code"]),
                user_code=str(data["user_code"]),
                verification_uri=str(data["verification_uri"]),
                interval=_positive_int(data.get("interval"), DEFAULT_POLL_INTERVAL_SEC),
                expires_in=_positive_int(data.get("expires_in"), 900),
            )
        except KeyError as e:
            raise ProviderError(f"Device code response is missing {e}") from e

        with self._lock:
            self._device_code_issued = True
        log_event(
            "device_flow_started",
            level=logging.INFO,
            verification_uri=device_code.verification_uri,
            interval=device_code.interval,
            expires_in=device_code.expires_in,
        )
        return device_code

    async def poll_login(self, device_code: str | DeviceCode) -> PollResult:
        """Poll once for the user's decision; the caller owns the loop and its pacing."""
        code = device_code.device_code if isinstance(device_code, DeviceCode) else device_code
        try:
            response = await self.http_client.post(
                GITHUB_ACCESS_TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "device_code": code,
                    "grant_type": DEVICE_CODE_GRANT_TYPE,
                },
                headers={"Accept": "application/json"},
            )
        except httpx.TransportError as e:
            raise NetworkError(f"Could not reach GitHub: {e}") from e

        if response.is_error:
            raise ProviderError(
                f"Access token poll failed ({response.status_code})",
                status_code=response.status_code,
            )

        data = _json_object(response, "Access token poll")
        access_token = data.get("access_token")
        if isinstance(access_token, str) and access_token:
            self._store_oauth_token(access_token)
            result = PollResult(PollStatus.AUTHORIZED)
        else:
            result = self._poll_error(data)

        log_event(
            "device_flow_poll",
            level=logging.INFO,
            outcome=result.status.value,
            interval=result.interval,
        )
        return result

    def _poll_error(self, data: dict[str, Any]) -> PollResult:
        error = data.get("error")
        if error == "authorization_pending":
            return PollResult(PollStatus.PENDING)
        if error == "slow_down":
            return PollResult(
                PollStatus.SLOW_DOWN,
                interval=_positive_int(data.get("interval"), DEFAULT_POLL_INTERVAL_SEC),
            )
        if error == "expired_token":
            with self._lock:
                self._device_code_issued = False
            return PollResult(PollStatus.EXPIRED)
        if error == "access_denied":
            with self._lock:
                self._device_code_issued = False
            return PollResult(PollStatus.DENIED)
        description = data.get("error_description") or error or "no access token in response"
        raise ProviderError(f"Device authorization failed: {description}")

    def _store_oauth_token(self, token: str) -> None:
        self.settings.set(SETTING_COPILOT_OAUTH_TOKEN, token)
        with self._lock:
            # A new login invalidates anything derived from the previous one.
            self._generation += 1
            self._api_token = None
            self._exchange = None
            self._device_code_issued = False

    # ------------------------------------------------------------------
    # API token
    # ------------------------------------------------------------------

    def _cached_token_locked(self) -> _ApiToken | None:
        token = self._api_token
        if token is None:
            return None
        if self.clock() + self.safety_margin_sec >= token.expires_at:
            return None
        return token

    async def get_api_token(self) -> str:
        """Return a valid API token, refreshing it when near expiry.

        Concurrent callers that find the cache stale share a single exchange
        and all receive its result or its error.

        Raises:
            AuthError: Not logged in, or GitHub rejected the OAuth token
            NetworkError: GitHub could not be reached
            ProviderError: Unexpected response from the token endpoint
        """
        oauth_token = self._oauth_token()
        with self._lock:
            cached = self._cached_token_locked()
            if cached is not None:
                remaining = cached.expires_at - self.clock()
            elif oauth_token is None:
                task = None
            else:
                task = self._exchange
                if task is None or task.done():
                    task = asyncio.ensure_future(
                        self._exchange_token(oauth_token, self._generation)
                    )
                    task.add_done_callback(_consume_task_error)
                    self._exchange = task

        if cached is not None:
            log_event("token_cache_hit", level=logging.DEBUG, expires_in=round(remaining))
            return cached.value
        if task is None:
            raise AuthError("Not logged in to GitHub Copilot; run the login flow first")
        return await asyncio.shield(task)

    async def _exchange_token(self, oauth_token: str, generation: int) -> str:
        started = time.perf_counter()
        try:
            token = await self._request_api_token(oauth_token)
        except (AuthError, NetworkError, ProviderError) as e:
            log_event(
                "token_exchange",
                level=logging.ERROR,
                result="failed",
                latency_ms=round((time.perf_counter() - started) * 1000, 1),
                error_type=type(e).__name__,
                error=str(e),
                **extract_http_error_context(e.__cause__ or e),
            )
            raise

        with self._lock:
            if generation != self._generation:
                raise AuthError("Logged out while the API token was being refreshed")
            self._api_token = token

        log_event(
            "token_exchange",
            level=logging.INFO,
            result="ok",
            latency_ms=round((time.perf_counter() - started) * 1000, 1),
            expires_in=round(token.expires_at - self.clock()),
        )
        return token.value

    async def _request_api_token(self, oauth_token: str) -> _ApiToken:
        try:
            response = await self.http_client.get(
                COPILOT_TOKEN_URL,
                headers={
                    "Authorization": f"token {oauth_token}",
                    "Accept": "application/json",
                    "Editor-Version": COPILOT_EDITOR_VERSION,
                },
            )
        except httpx.TransportError as e:
            raise NetworkError(f"Could not reach GitHub: {e}") from e

        if response.status_code in (401, 403):
            raise AuthError(
                "GitHub rejected the stored OAuth token; log in again"
            )
        if response.is_error:
            raise ProviderError(
                f"Copilot token exchange failed ({response.status_code})",
                status_code=response.status_code,
            )

        data = _json_object(response, "Copilot token exchange")
        value = data.get("token")
        expires_at = data.get("expires_at")
        if (
            not isinstance(value, str)
            or not value
            or isinstance(expires_at, bool)
            or not isinstance(expires_at, (int, float))
        ):
            raise ProviderError("Copilot token exchange returned an invalid token")
        return _ApiToken(value=value, expires_at=float(expires_at))

    # ------------------------------------------------------------------
    # Logout / cleanup
    # ------------------------------------------------------------------

    def logout(self) -> None:
        """Forget every credential; an in-flight exchange result is discarded."""
        with self._lock:
            self._generation += 1
            self._api_token = None
            self._exchange = None
            self._device_code_issued = False
        self.settings.delete(SETTING_COPILOT_OAUTH_TOKEN)
        log_event("logout", level=logging.INFO, phase=CredentialPhase.LOGGED_OUT.value)

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()


def _consume_task_error(task: asyncio.Task[str]) -> None:
    # Every waiting caller may have been cancelled; mark the error retrieved.
    if not task.cancelled():
        task.exception()
