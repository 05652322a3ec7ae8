# src/backoffice_bff/session_data.py

from pydantic import BaseModel, ConfigDict
from typing import Any, Optional


class TokenResponse(BaseModel):
    """
    Body returned by the backend token endpoint.
    Older endpoints add `result`/`resultMsg`; only `accessToken` is guaranteed on success.
    """
    model_config = ConfigDict(extra="allow")

    result: Optional[str] = None
    resultMsg: Optional[str] = None
    accessToken: Optional[str] = None

    @property
    def is_ok(self) -> bool:
        if self.result is not None and self.result != "OK":
            return False
        return bool(self.accessToken)


class LoginRequest(BaseModel):
    id: str
    password: str


class BackendApiRequest(BaseModel):
    """Envelope accepted by /api/backend-api and forwarded to `requestUri` on the backend."""
    requestUri: Optional[str] = None
    requestParam: Optional[Any] = None
    Authorization: Optional[str] = None


class TokenCheckResult(BaseModel):
    data: Optional[TokenResponse] = None
    initialToken: Optional[str] = None
