# src/backoffice_bff/ssr_fetch.py

import typing

import httpx
from pydantic import BaseModel, ValidationError
from starlette.requests import Request

from .config import settings, ACCESS_TOKEN_COOKIE, LOGIN_ID_COOKIE
from .cookie_store import CookieStore
from .session_data import TokenCheckResult, TokenResponse


class SSRRequestConfig(BaseModel):
    backend_url: str
    headers: typing.Dict[str, str]


def build_ssr_request_config(request: Request, backend_url: typing.Optional[str] = None) -> SSRRequestConfig:
    """
    Backend URL and headers for a server-side prefetch made on behalf of a browser request.
    An empty backend URL falls back to the incoming host.
    """
    if backend_url is None:
        backend_url = settings.backend_base_url
    if not backend_url:
        host = request.headers.get("host")
        protocol = request.headers.get("x-forwarded-proto") or "http"
        backend_url = f"{protocol}://{host}" if host else ""

    headers: typing.Dict[str, str] = {}
    access_token = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if access_token:
        headers["Authorization"] = f"Bearer {access_token}"
    cookie_header = request.headers.get("cookie")
    if cookie_header:
        headers["Cookie"] = cookie_header

    return SSRRequestConfig(backend_url=backend_url, headers=headers)


async def fetch_ssr_list(
    request: Request,
    url: str,
    http: httpx.AsyncClient,
    backend_url: typing.Optional[str] = None,
) -> typing.List[typing.Any]:
    """Prefetches list data for a page. Any failure yields an empty list so the page still renders."""
    config = build_ssr_request_config(request, backend_url)
    if not config.backend_url:
        return []
    try:
        response = await http.get(f"{config.backend_url}{url}", headers=config.headers)
        if response.is_error:
            print(f"SSR: List prefetch {url} answered {response.status_code}")
            return []
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        print(f"SSR: List prefetch {url} failed: {e}")
        return []
    return data if isinstance(data, list) else []


async def check_access_token(cookies: CookieStore, http: httpx.AsyncClient) -> TokenCheckResult:
    """
    Validates the browser's access token against the backend before rendering.
    A confirmed token is written back to the cookie; a rejected one is removed with the login id.
    """
    access_token = cookies.get(ACCESS_TOKEN_COOKIE)
    if not access_token:
        return TokenCheckResult(data=TokenResponse(), initialToken=None)

    login_id = cookies.get(LOGIN_ID_COOKIE)
    params = {"accessToken": access_token}
    if login_id:
        params["loginId"] = login_id

    data = TokenResponse()
    try:
        response = await http.get(settings.TOKEN_ENDPOINT, params=params)
    except httpx.HTTPError as e:
        print(f"SSR: Access token check could not reach the backend: {e}")
        return TokenCheckResult(data=data, initialToken=access_token)

    if response.is_success:
        try:
            data = TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            print(f"SSR: Access token check returned a malformed body: {e}")
            data = TokenResponse()
        if data.result == "OK" and data.accessToken:
            cookies.set(ACCESS_TOKEN_COOKIE, data.accessToken, max_age=settings.ACCESS_TOKEN_COOKIE_MAX_AGE, path="/")
        else:
            cookies.delete(ACCESS_TOKEN_COOKIE, path="/")
            cookies.delete(LOGIN_ID_COOKIE, path="/")

    return TokenCheckResult(data=data, initialToken=access_token)
