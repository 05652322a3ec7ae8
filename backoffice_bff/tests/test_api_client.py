"""AuthenticatedHttpClient: bearer attachment, single refresh-and-replay, excluded paths."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from backoffice_bff.api_client import RequestAttempt, build_api_client
from backoffice_bff.auth_utils import SessionExpiredError, UnauthorizedError
from backoffice_bff.config import ACCESS_TOKEN_COOKIE, LOGIN_ID_COOKIE

from conftest import BACKEND_BASE_URL


def test_request_attaches_bearer_token(make_client, cookies, backend) -> None:
    cookies.set(ACCESS_TOKEN_COOKIE, "T1")
    backend.valid_tokens.add("T1")

    async def scenario():
        async with make_client() as client:
            return await client.get("/goods/list", params={"page": 1})

    response = asyncio.run(scenario())

    assert response.status_code == 200
    assert backend.requests[0].headers["Authorization"] == "Bearer T1"
    assert backend.requests[0].url.params["page"] == "1"
    assert backend.refresh_calls == []


def test_parallel_401s_trigger_exactly_one_refresh(make_client, cookies, backend) -> None:
    cookies.set(ACCESS_TOKEN_COOKIE, "T1")
    cookies.set(LOGIN_ID_COOKIE, "admin")
    backend.next_token = "T2"

    async def scenario():
        async with make_client() as client:
            paths = [f"/goods/{n}" for n in range(5)]
            return await asyncio.gather(*(client.get(p) for p in paths)), client.session.token

    responses, token = asyncio.run(scenario())

    assert [r.status_code for r in responses] == [200] * 5
    assert len(backend.refresh_calls) == 1
    first_attempts = [r for r in backend.requests if r.headers["Authorization"] == "Bearer T1"]
    replays = [r for r in backend.requests if r.headers["Authorization"] == "Bearer T2"]
    assert len(first_attempts) == 5
    assert sorted(r.url.path for r in replays) == [f"/goods/{n}" for n in range(5)]
    assert token == "T2"
    assert cookies.get(ACCESS_TOKEN_COOKIE) == "T2"


def test_excluded_path_never_carries_token_or_refreshes(make_client, cookies, backend) -> None:
    cookies.set(ACCESS_TOKEN_COOKIE, "T1")
    backend.valid_tokens.add("T1")
    backend.routes["/auth/login"] = lambda request: httpx.Response(401, json={"message": "bad credentials"})

    async def scenario():
        async with make_client() as client:
            return await client.post(
                "/auth/login",
                json={"loginId": "admin", "pwd": "wrong"},
                headers={"Authorization": "Bearer sneaked-in"},
            )

    response = asyncio.run(scenario())

    assert response.status_code == 401
    assert "Authorization" not in backend.requests[0].headers
    assert backend.refresh_calls == []


def test_replay_still_unauthorized_is_surfaced_without_looping(make_client, cookies, backend) -> None:
    cookies.set(ACCESS_TOKEN_COOKIE, "T1")
    backend.routes["/users/list"] = lambda request: httpx.Response(401, json={"message": "forbidden user"})

    async def scenario():
        async with make_client() as client:
            with pytest.raises(UnauthorizedError) as exc_info:
                await client.get("/users/list")
            return exc_info.value

    error = asyncio.run(scenario())

    assert error.response.status_code == 401
    assert len(backend.requests_to("/users/list")) == 2
    assert backend.requests_to("/users/list")[1].headers["Authorization"] == "Bearer T2"
    assert len(backend.refresh_calls) == 1


def test_refresh_failure_clears_session_and_redirects_once(make_client, cookies, navigations, backend) -> None:
    cookies.set(ACCESS_TOKEN_COOKIE, "T1")
    cookies.set(LOGIN_ID_COOKIE, "admin")
    backend.refresh_status = 500

    async def scenario():
        async with make_client() as client:
            with pytest.raises(SessionExpiredError) as exc_info:
                await client.get("/brands/list")
            return exc_info.value, client.session.token

    error, token = asyncio.run(scenario())

    assert error.response is not None
    assert error.response.status_code == 401
    assert error.login_path == "/login"
    assert token is None
    assert ACCESS_TOKEN_COOKIE not in cookies
    assert LOGIN_ID_COOKIE not in cookies
    assert navigations.targets == ["/login"]
    assert len(backend.requests_to("/brands/list")) == 1


def test_parallel_requests_with_failed_refresh_redirect_once(make_client, cookies, navigations, backend) -> None:
    cookies.set(ACCESS_TOKEN_COOKIE, "T1")
    backend.refresh_status = 500

    async def scenario():
        async with make_client() as client:
            return await asyncio.gather(
                *(client.get(f"/banners/{n}") for n in range(3)), return_exceptions=True
            )

    results = asyncio.run(scenario())

    assert all(isinstance(r, SessionExpiredError) for r in results)
    assert len(backend.refresh_calls) == 1
    assert navigations.targets == ["/login"]


def test_missing_token_and_failed_refresh_is_raised_before_sending(make_client, navigations, backend) -> None:
    backend.refresh_status = 401

    async def scenario():
        async with make_client() as client:
            with pytest.raises(SessionExpiredError) as exc_info:
                await client.get("/categories/tree")
            return exc_info.value

    error = asyncio.run(scenario())

    assert error.response is None
    assert backend.requests == []
    assert navigations.targets == ["/login"]


@pytest.mark.parametrize("status", [400, 403, 404, 500])
def test_other_errors_pass_through_unchanged(make_client, cookies, backend, status) -> None:
    cookies.set(ACCESS_TOKEN_COOKIE, "T1")
    backend.routes["/resume/list"] = lambda request: httpx.Response(status, json={"message": "nope"})

    async def scenario():
        async with make_client() as client:
            return await client.get("/resume/list")

    response = asyncio.run(scenario())

    assert response.status_code == status
    assert response.json() == {"message": "nope"}
    assert backend.refresh_calls == []


def test_transport_errors_propagate(cookies) -> None:
    cookies.set(ACCESS_TOKEN_COOKIE, "T1")

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        async with httpx.AsyncClient(base_url=BACKEND_BASE_URL, transport=httpx.MockTransport(refuse)) as http:
            client = build_api_client(http, cookies)
            await client.get("/news/list")

    with pytest.raises(httpx.ConnectError):
        asyncio.run(scenario())


def test_request_attempt_retry_marker_is_a_new_value() -> None:
    attempt = RequestAttempt(method="GET", path="/goods/list")
    retried = attempt.retried()

    assert attempt.has_retried is False
    assert retried.has_retried is True
    assert retried.path == attempt.path
