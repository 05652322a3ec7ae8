"""Shared fixtures: a scripted fake backend served through httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Optional

import httpx
import pytest

from backoffice_bff.api_client import AuthenticatedHttpClient
from backoffice_bff.cookie_store import MemoryCookieStore
from backoffice_bff.session_manager import BackendTokenIssuer, SessionManager

BACKEND_BASE_URL = "http://backend.test"
TOKEN_PATH = "/token/backoffice/access-token"


class FakeBackend:
    """
    Accepts requests whose bearer token is in `valid_tokens`, answers 401 otherwise.
    The token endpoint returns `next_token` unless `refresh_status`/`refresh_body` say otherwise.
    """

    def __init__(self) -> None:
        self.valid_tokens: set[str] = set()
        self.next_token: Optional[str] = "T2"
        self.refresh_status = 200
        self.refresh_body: Optional[Any] = None
        self.refresh_gate: Optional[asyncio.Event] = None
        self.refresh_calls: list[httpx.Request] = []
        self.requests: list[httpx.Request] = []
        self.routes: dict[str, Callable[[httpx.Request], httpx.Response]] = {}

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == TOKEN_PATH:
            self.refresh_calls.append(request)
            if self.refresh_gate is not None:
                await self.refresh_gate.wait()
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, json={"message": "refresh failed"})
            body = self.refresh_body if self.refresh_body is not None else {"accessToken": self.next_token}
            if self.next_token:
                self.valid_tokens.add(self.next_token)
            return httpx.Response(200, json=body)

        self.requests.append(request)
        if request.url.path in self.routes:
            return self.routes[request.url.path](request)

        auth = request.headers.get("Authorization", "")
        token = auth[len("Bearer "):] if auth.startswith("Bearer ") else None
        if token not in self.valid_tokens:
            return httpx.Response(401, json={"message": "unauthorized"})
        return httpx.Response(200, json={"path": request.url.path, "token": token})

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    @staticmethod
    def body_of(request: httpx.Request) -> Any:
        return json.loads(request.content.decode("utf-8"))


class Navigations:
    def __init__(self) -> None:
        self.targets: list[str] = []

    def __call__(self, path: str) -> None:
        self.targets.append(path)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def cookies() -> MemoryCookieStore:
    return MemoryCookieStore()


@pytest.fixture
def navigations() -> Navigations:
    return Navigations()


@pytest.fixture
def make_client(backend: FakeBackend, cookies: MemoryCookieStore, navigations: Navigations):
    """
    Builds a client bound to the fake backend. Must be called inside the running event
    loop because httpx.AsyncClient binds to it; use as `async with make_client() as client`.
    """

    class _ClientContext:
        def __init__(self, **session_kwargs: Any) -> None:
            self._session_kwargs = session_kwargs
            self._http: Optional[httpx.AsyncClient] = None

        async def __aenter__(self) -> AuthenticatedHttpClient:
            self._http = httpx.AsyncClient(base_url=BACKEND_BASE_URL, transport=httpx.MockTransport(backend))
            session = SessionManager(
                cookies,
                BackendTokenIssuer(self._http),
                navigator=navigations,
                **self._session_kwargs,
            )
            return AuthenticatedHttpClient(self._http, session)

        async def __aexit__(self, *exc_info: Any) -> None:
            await self._http.aclose()

    return _ClientContext
