# src/backoffice_bff/auth_utils.py

import time
import typing

import httpx
from jose import jwt
from jose.exceptions import JOSEError

from .config import settings, USR_NO_COOKIE


class BackofficeAuthError(Exception):
    pass


class TokenRefreshError(BackofficeAuthError):
    def __init__(self, reason: str, status_code: typing.Optional[int] = None):
        self.reason = reason
        self.status_code = status_code
        super().__init__(reason)


class SessionExpiredError(BackofficeAuthError):
    """
    The session could not be re-authenticated and has been purged.
    `response` is the 401 that triggered the refresh, or None if the refresh was
    needed before the request could be sent.
    """

    def __init__(self, response: typing.Optional[httpx.Response] = None, login_path: typing.Optional[str] = None):
        self.response = response
        self.login_path = login_path or settings.LOGIN_PAGE_PATH
        super().__init__("Session expired. Please log in again.")


class UnauthorizedError(BackofficeAuthError):
    """A request was replayed with a refreshed token and the backend still answered 401."""

    def __init__(self, response: httpx.Response):
        self.response = response
        super().__init__(f"Request to {response.request.url.path} is still unauthorized after token refresh.")


def is_excluded_path(path: str, excluded: typing.Optional[typing.Iterable[str]] = None) -> bool:
    if excluded is None:
        excluded = settings.EXCLUDED_TOKEN_PATHS
    return any(path.startswith(prefix) for prefix in excluded)


def bearer_header(token: str) -> typing.Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def token_expires_at(token: str) -> typing.Optional[int]:
    """
    Returns the `exp` claim of a JWT access token, or None for opaque tokens.
    The signature is not verified: the backend stays the authority, this only
    lets the client skip a request that is certain to come back 401.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JOSEError:
        return None
    exp = claims.get("exp")
    if isinstance(exp, (int, float)):
        return int(exp)
    return None


def is_token_expired(token: str, leeway_seconds: int = 0, now: typing.Optional[float] = None) -> bool:
    exp = token_expires_at(token)
    if exp is None:
        return False
    if now is None:
        now = time.time()
    return exp <= now + leeway_seconds


def parse_usr_no(value: typing.Optional[str]) -> typing.Optional[int]:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def get_login_usr_no(cookies: typing.Mapping[str, str]) -> typing.Optional[int]:
    """Login user number from the `usrNo` cookie, used to stamp audit fields."""
    return parse_usr_no(cookies.get(USR_NO_COOKIE))
