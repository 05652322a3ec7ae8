# src/backoffice_bff/session_manager.py

import asyncio
import typing

import httpx
from pydantic import ValidationError

from .auth_utils import TokenRefreshError, is_token_expired, parse_usr_no
from .config import settings, ACCESS_TOKEN_COOKIE, LOGIN_ID_COOKIE, USR_NO_COOKIE
from .cookie_store import CookieStore
from .session_data import TokenResponse

Navigator = typing.Callable[[str], None]


def _consume_refresh_error(task: asyncio.Task) -> None:
    # Marks the failure as retrieved even when every waiter was cancelled.
    if not task.cancelled():
        task.exception()


class BackendTokenIssuer:
    """Requests a new access token from the backend token endpoint."""

    def __init__(self, http: httpx.AsyncClient, token_path: typing.Optional[str] = None):
        self._http = http
        self._token_path = token_path or settings.TOKEN_ENDPOINT

    async def issue(self, login_id: typing.Optional[str]) -> str:
        params = {"loginId": login_id} if login_id else None
        try:
            response = await self._http.get(self._token_path, params=params)
        except httpx.HTTPError as e:
            raise TokenRefreshError(f"Could not reach token endpoint: {e}") from e

        if response.is_error:
            raise TokenRefreshError(
                f"Token endpoint answered {response.status_code}", status_code=response.status_code
            )
        try:
            body = TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise TokenRefreshError(f"Token endpoint returned a malformed body: {e}") from e

        if not body.is_ok:
            raise TokenRefreshError(f"Token endpoint returned no usable token (result={body.result})")
        return body.accessToken


class SessionManager:
    """
    Holds the session token for one tab (or one incoming browser request in the BFF):
    an in-memory cache backed by the `accessToken` cookie, the `loginId` refresh
    identity, and at most one pending refresh shared by all callers.
    """

    def __init__(
        self,
        cookies: CookieStore,
        issuer: BackendTokenIssuer,
        navigator: typing.Optional[Navigator] = None,
        login_path: typing.Optional[str] = None,
        cookie_max_age: typing.Optional[int] = None,
        expiry_leeway_seconds: typing.Optional[int] = None,
    ):
        self._cookies = cookies
        self._issuer = issuer
        self._navigator = navigator
        self._login_path = login_path or settings.LOGIN_PAGE_PATH
        self._cookie_max_age = settings.ACCESS_TOKEN_COOKIE_MAX_AGE if cookie_max_age is None else cookie_max_age
        self._leeway = settings.TOKEN_EXPIRY_LEEWAY_SECONDS if expiry_leeway_seconds is None else expiry_leeway_seconds
        self._token: typing.Optional[str] = None
        self._pending_refresh: typing.Optional[asyncio.Task] = None
        self._expired = False

    @property
    def token(self) -> typing.Optional[str]:
        return self._token

    @property
    def login_path(self) -> str:
        return self._login_path

    @property
    def refresh_in_flight(self) -> bool:
        return self._pending_refresh is not None

    def _usable(self, token: typing.Optional[str]) -> bool:
        return bool(token) and not is_token_expired(token, self._leeway)

    async def ensure_token(self) -> str:
        if self._usable(self._token):
            return self._token

        cookie_token = self._cookies.get(ACCESS_TOKEN_COOKIE)
        if self._usable(cookie_token):
            self._token = cookie_token
            return cookie_token

        if self._token or cookie_token:
            print("SESSION: Cached access token is expired. Refreshing before sending.")
        self._token = None
        return await self.refresh_token()

    async def refresh_token(self, stale_token: typing.Optional[str] = None) -> str:
        if self._pending_refresh is None:
            if stale_token is not None:
                # Another caller already replaced the token this request was sent with.
                if self._token and self._token != stale_token:
                    return self._token
                # Another caller's refresh already failed and expired the session.
                if self._expired:
                    raise TokenRefreshError("Session already expired")
            self._pending_refresh = asyncio.ensure_future(self._run_refresh())
            self._pending_refresh.add_done_callback(_consume_refresh_error)
        # Shielded: a cancelled caller must not cancel the refresh other callers wait on.
        return await asyncio.shield(self._pending_refresh)

    async def _run_refresh(self) -> str:
        login_id = self._cookies.get(LOGIN_ID_COOKIE)
        print(f"SESSION: Refreshing access token (loginId present: {'Yes' if login_id else 'No'}).")
        try:
            token = await self._issuer.issue(login_id)
        except TokenRefreshError as e:
            print(f"SESSION: Token refresh failed: {e.reason}")
            self.expire()
            raise
        finally:
            self._pending_refresh = None

        self._store_token(token)
        print("SESSION: Access token refreshed.")
        return token

    def _store_token(self, token: str) -> None:
        self._token = token
        self._expired = False
        self._cookies.set(ACCESS_TOKEN_COOKIE, token, max_age=self._cookie_max_age, path="/")

    def store_login(self, token: str, login_id: str, usr_no: typing.Optional[typing.Any] = None) -> None:
        self._store_token(token)
        self._cookies.set(LOGIN_ID_COOKIE, login_id, path="/")
        if usr_no is not None and str(usr_no).strip():
            self._cookies.set(USR_NO_COOKIE, str(usr_no), path="/")

    def clear(self) -> None:
        self._token = None
        for name in (ACCESS_TOKEN_COOKIE, LOGIN_ID_COOKIE, USR_NO_COOKIE):
            self._cookies.delete(name, path="/")

    def expire(self) -> None:
        """Purges all credentials and sends the user agent to the login page."""
        self.clear()
        self._expired = True
        print(f"SESSION: Session expired. Navigating to {self._login_path}")
        if self._navigator is not None:
            self._navigator(self._login_path)

    def login_id(self) -> typing.Optional[str]:
        return self._cookies.get(LOGIN_ID_COOKIE)

    def login_usr_no(self) -> typing.Optional[int]:
        return parse_usr_no(self._cookies.get(USR_NO_COOKIE))
