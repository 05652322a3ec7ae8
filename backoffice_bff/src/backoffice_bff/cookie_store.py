# src/backoffice_bff/cookie_store.py

import typing

from starlette.requests import Request
from starlette.responses import Response

from .config import settings


class CookieStore(typing.Protocol):
    """Key-value persistence for session cookies."""

    def get(self, name: str) -> typing.Optional[str]: ...

    def set(self, name: str, value: str, max_age: typing.Optional[int] = None, path: str = "/") -> None: ...

    def delete(self, name: str, path: str = "/") -> None: ...


class MemoryCookieStore:
    """Process-local cookie jar for scripts and tests."""

    def __init__(self, initial: typing.Optional[typing.Dict[str, str]] = None):
        self._cookies: typing.Dict[str, str] = dict(initial or {})
        self.max_ages: typing.Dict[str, typing.Optional[int]] = {}

    def get(self, name: str) -> typing.Optional[str]:
        return self._cookies.get(name)

    def set(self, name: str, value: str, max_age: typing.Optional[int] = None, path: str = "/") -> None:
        self._cookies[name] = value
        self.max_ages[name] = max_age

    def delete(self, name: str, path: str = "/") -> None:
        self._cookies.pop(name, None)
        self.max_ages.pop(name, None)

    def __contains__(self, name: str) -> bool:
        return name in self._cookies


class RequestCookieStore:
    """
    Cookie jar bound to one incoming browser request.
    Reads start from the request cookies and observe local writes; the writes are
    recorded and replayed onto the outgoing response by `apply`.
    """

    def __init__(self, request: Request):
        self._cookies: typing.Dict[str, str] = dict(request.cookies)
        self._operations: typing.List[typing.Tuple[str, str, typing.Optional[str], typing.Optional[int], str]] = []

    def get(self, name: str) -> typing.Optional[str]:
        return self._cookies.get(name)

    def set(self, name: str, value: str, max_age: typing.Optional[int] = None, path: str = "/") -> None:
        self._cookies[name] = value
        self._operations.append(("set", name, value, max_age, path))

    def delete(self, name: str, path: str = "/") -> None:
        self._cookies.pop(name, None)
        self._operations.append(("delete", name, None, None, path))

    @property
    def has_changes(self) -> bool:
        return bool(self._operations)

    def apply(self, response: Response) -> Response:
        for op, name, value, max_age, path in self._operations:
            if op == "set":
                response.set_cookie(
                    name,
                    value,
                    max_age=max_age,
                    path=path,
                    secure=settings.COOKIE_SECURE,
                    samesite="lax",
                )
            else:
                response.delete_cookie(name, path=path, secure=settings.COOKIE_SECURE, samesite="lax")
        return response
