# src/backoffice_bff/api_client.py

import dataclasses
import typing

import httpx
from fastapi import status

from .auth_utils import (
    SessionExpiredError,
    TokenRefreshError,
    UnauthorizedError,
    bearer_header,
    is_excluded_path,
)
from .config import settings
from .cookie_store import CookieStore
from .session_manager import BackendTokenIssuer, Navigator, SessionManager


@dataclasses.dataclass(frozen=True)
class RequestAttempt:
    method: str
    path: str
    params: typing.Any = None
    json: typing.Any = None
    content: typing.Optional[bytes] = None
    headers: typing.Mapping[str, str] = dataclasses.field(default_factory=dict)
    has_retried: bool = False

    def retried(self) -> "RequestAttempt":
        return dataclasses.replace(self, has_retried=True)


class AuthenticatedHttpClient:
    """
    Sends requests to the backend API with the session's bearer token.
    A 401 on a non-excluded path refreshes the token once and replays the request.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        session: SessionManager,
        excluded_paths: typing.Optional[typing.Iterable[str]] = None,
    ):
        self._http = http
        self._session = session
        self._excluded_paths = list(settings.EXCLUDED_TOKEN_PATHS if excluded_paths is None else excluded_paths)

    @property
    def session(self) -> SessionManager:
        return self._session

    def is_excluded(self, path: str) -> bool:
        return is_excluded_path(path, self._excluded_paths)

    async def request(
        self,
        method: str,
        path: str,
        params: typing.Any = None,
        json: typing.Any = None,
        content: typing.Optional[bytes] = None,
        headers: typing.Optional[typing.Mapping[str, str]] = None,
    ) -> httpx.Response:
        attempt = RequestAttempt(
            method=method.upper(),
            path=path,
            params=params,
            json=json,
            content=content,
            headers=dict(headers or {}),
        )
        return await self._send(attempt)

    async def get(self, path: str, **kwargs) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def _send(self, attempt: RequestAttempt, token: typing.Optional[str] = None) -> httpx.Response:
        if self.is_excluded(attempt.path):
            return await self._dispatch(attempt, None)

        if token is None:
            try:
                token = await self._session.ensure_token()
            except TokenRefreshError as e:
                raise SessionExpiredError(None, self._session.login_path) from e

        response = await self._dispatch(attempt, token)
        if response.status_code != status.HTTP_401_UNAUTHORIZED:
            return response

        if attempt.has_retried:
            print(f"API_CLIENT: {attempt.method} {attempt.path} still unauthorized after refresh. Giving up.")
            raise UnauthorizedError(response)

        print(f"API_CLIENT: {attempt.method} {attempt.path} returned 401. Refreshing token and retrying once.")
        try:
            new_token = await self._session.refresh_token(stale_token=token)
        except TokenRefreshError as e:
            raise SessionExpiredError(response, self._session.login_path) from e
        return await self._send(attempt.retried(), new_token)

    async def _dispatch(self, attempt: RequestAttempt, token: typing.Optional[str]) -> httpx.Response:
        headers = {k: v for k, v in attempt.headers.items() if k.lower() != "authorization"}
        if token:
            headers.update(bearer_header(token))
        return await self._http.request(
            attempt.method,
            attempt.path,
            params=attempt.params,
            json=attempt.json,
            content=attempt.content,
            headers=headers,
        )


def build_api_client(
    http: httpx.AsyncClient,
    cookies: CookieStore,
    navigator: typing.Optional[Navigator] = None,
) -> AuthenticatedHttpClient:
    """Wires a session manager and client sharing one backend connection pool."""
    session = SessionManager(cookies, BackendTokenIssuer(http), navigator=navigator)
    return AuthenticatedHttpClient(http, session)
