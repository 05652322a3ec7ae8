# src/backoffice_bff/main.py

import httpx
import typing
from fastapi import FastAPI, Depends, Request, HTTPException, status, Response
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from .config import settings, TEMPLATES_DIR, ACCESS_TOKEN_COOKIE, LOGIN_ID_COOKIE
from .api_client import AuthenticatedHttpClient, build_api_client
from .auth_utils import SessionExpiredError, UnauthorizedError, get_login_usr_no
from .cookie_store import RequestCookieStore
from .session_data import BackendApiRequest, LoginRequest, TokenCheckResult
from . import ssr_fetch

# Headers that describe the hop to the BFF rather than the payload being proxied
HOP_BY_HOP_HEADERS = {
    "host", "connection", "keep-alive", "content-length", "transfer-encoding",
    "cookie", "authorization", "accept-encoding",
}

# httpx has already decoded the body, so its original length and encoding no longer apply
PASSTHROUGH_DROPPED_HEADERS = {
    "connection", "keep-alive", "transfer-encoding", "content-length", "content-encoding",
}


# --- FastAPI App Setup ---
app = FastAPI(
    title="Back-office BFF API",
    description="Backend-For-Frontend for the back-office admin UI, handling session tokens and proxying to the backend API.",
    version="0.1.0"
)

templates = Jinja2Templates(directory=TEMPLATES_DIR)


# --- Dependencies ---
async def get_backend_http() -> typing.AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        base_url=settings.backend_base_url,
        timeout=settings.REQUEST_TIMEOUT_SECONDS,
    ) as client:
        yield client


class LoginRedirect:
    """Navigator for server-side sessions: remembers where the browser must be sent."""

    def __init__(self):
        self.target: typing.Optional[str] = None

    def __call__(self, path: str) -> None:
        self.target = path


class BrowserSession:
    """One browser request's view of the session: its cookies, client and pending redirect."""

    def __init__(self, request: Request, http: httpx.AsyncClient):
        self.cookies = RequestCookieStore(request)
        self.redirect = LoginRedirect()
        self.client: AuthenticatedHttpClient = build_api_client(http, self.cookies, navigator=self.redirect)

    def respond(self, response: Response) -> Response:
        return self.cookies.apply(response)

    def login_redirect(self) -> Response:
        target = self.redirect.target or settings.LOGIN_PAGE_PATH
        return self.respond(RedirectResponse(url=target, status_code=status.HTTP_302_FOUND))


async def get_browser_session(request: Request, http: httpx.AsyncClient = Depends(get_backend_http)) -> BrowserSession:
    return BrowserSession(request, http)


async def get_authenticated_user(request: Request) -> dict:
    has_session = bool(request.cookies.get(ACCESS_TOKEN_COOKIE) or request.cookies.get(LOGIN_ID_COOKIE))
    print(f"MAIN: get_authenticated_user called for URL: {request.url.path}. Session cookie: {'Yes' if has_session else 'No'}")

    if not has_session:
        raise HTTPException(
            status_code=status.HTTP_307_TEMPORARY_REDIRECT,
            detail="Not authenticated",
            headers={"Location": settings.LOGIN_PAGE_PATH}
        )
    return {
        "loginId": request.cookies.get(LOGIN_ID_COOKIE),
        "usrNo": get_login_usr_no(request.cookies),
    }


def _backend_json(response: httpx.Response) -> typing.Any:
    try:
        return response.json()
    except ValueError:
        return {"message": response.text}


# --- Authentication Routes ---
@app.get("/login", response_class=HTMLResponse)
async def login_page(request: Request):
    return templates.TemplateResponse(request, "login.html", {"login_endpoint": "/api/backend-login"})


@app.post("/api/backend-login")
async def backend_login(login: LoginRequest, session: BrowserSession = Depends(get_browser_session)):
    print(f"MAIN: /api/backend-login hit for loginId: {login.id}")
    try:
        backend_res = await session.client.post(
            settings.LOGIN_ENDPOINT,
            json={"loginId": login.id, "pwd": login.password},
        )
    except httpx.RequestError as e:
        print(f"MAIN: /api/backend-login - Request error calling backend: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": "An error occurred while calling the server."}
        )

    data = _backend_json(backend_res)
    if backend_res.is_error:
        print(f"MAIN: /api/backend-login - Backend rejected login: {backend_res.status_code}")
        return JSONResponse(status_code=backend_res.status_code, content=data)

    token = (data.get("token") or data.get("accessToken")) if isinstance(data, dict) else None
    if not token:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"message": "Login succeeded but the server returned no token."}
        )

    user_info = data.get("userInfo")
    usr_no = user_info.get("usrNo") if isinstance(user_info, dict) else None
    if usr_no is None:
        usr_no = data.get("usrNo")

    session.client.session.store_login(token, login.id, usr_no=usr_no)
    print(f"MAIN: /api/backend-login - Login successful for loginId: {login.id}")
    return session.respond(JSONResponse(content={"token": token}))


@app.get("/logout")
async def logout(session: BrowserSession = Depends(get_browser_session)):
    print(f"MAIN: /logout route hit. loginId before logout: {session.client.session.login_id() or 'Not in session'}")
    try:
        await session.client.post(settings.LOGOUT_ENDPOINT)
    except httpx.RequestError as e:
        print(f"MAIN: /logout - Could not notify backend, clearing session anyway: {str(e)}")

    session.client.session.clear()
    return session.respond(RedirectResponse(url=settings.LOGIN_PAGE_PATH, status_code=status.HTTP_302_FOUND))


# --- BFF API Endpoints ---
@app.api_route("/api/backend-api", methods=["POST", "PUT", "PATCH", "DELETE"])
async def backend_api(
        request: Request,
        body: BackendApiRequest,
        http: httpx.AsyncClient = Depends(get_backend_http)
):
    if not body.requestUri:
        return Response(content="request uri is null", status_code=status.HTTP_405_METHOD_NOT_ALLOWED)

    headers = {"Content-Type": "application/json"}
    if body.Authorization:
        headers["Authorization"] = body.Authorization

    try:
        backend_res = await http.request(request.method, body.requestUri, json=body.requestParam, headers=headers)
        return JSONResponse(status_code=backend_res.status_code, content=backend_res.json())
    except (httpx.HTTPError, ValueError) as e:
        print(f"MAIN: /api/backend-api - Error calling backend {body.requestUri}: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": "An error occurred while calling the server."}
        )


@app.get("/api/bff/userinfo")
async def get_user_info(user: dict = Depends(get_authenticated_user)):
    return user


@app.get("/api/bff/token-check", response_model=TokenCheckResult)
async def token_check(session: BrowserSession = Depends(get_browser_session),
                      http: httpx.AsyncClient = Depends(get_backend_http)):
    result = await ssr_fetch.check_access_token(session.cookies, http)
    return session.respond(JSONResponse(content=result.model_dump()))


@app.get("/api/bff/list")
async def prefetch_list(request: Request, url: str, http: httpx.AsyncClient = Depends(get_backend_http)):
    if not url.startswith("/"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="url must be an absolute backend path.")
    return await ssr_fetch.fetch_ssr_list(request, url, http)


# --- /api/* rewrite to the backend, authenticated with the session token ---
@app.api_route("/api/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def proxy_to_backend(path: str, request: Request, session: BrowserSession = Depends(get_browser_session)):
    backend_path = f"/{path}"
    headers = {k: v for k, v in request.headers.items() if k.lower() not in HOP_BY_HOP_HEADERS}
    body = await request.body()

    try:
        backend_res = await session.client.request(
            request.method,
            backend_path,
            params=list(request.query_params.multi_items()),
            content=body or None,
            headers=headers,
        )
    except SessionExpiredError:
        print(f"MAIN: /api{backend_path} - Session expired. Redirecting to login.")
        return session.login_redirect()
    except UnauthorizedError as e:
        backend_res = e.response
    except httpx.RequestError as e:
        print(f"MAIN: /api{backend_path} - Request error calling backend: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Could not connect to backend: {str(e)}"
        )

    proxied = Response(content=backend_res.content, status_code=backend_res.status_code)
    for name, value in backend_res.headers.multi_items():
        if name.lower() not in PASSTHROUGH_DROPPED_HEADERS:
            proxied.headers.append(name, value)
    return session.respond(proxied)


@app.on_event("startup")
async def startup_event():
    print("--- Back-office BFF (FastAPI) Starting Up ---")
    print(f"Backend URL: {settings.backend_base_url}")
    print(f"Token endpoint: {settings.TOKEN_ENDPOINT}")
    print(f"Excluded token paths: {settings.EXCLUDED_TOKEN_PATHS}")
    print(f"Access token cookie max-age: {settings.ACCESS_TOKEN_COOKIE_MAX_AGE}s")
    print("-------------------------------------------")
