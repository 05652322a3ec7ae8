# src/backoffice_bff/config.py

from pydantic import field_validator, AnyHttpUrl, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Union, Any
from pathlib import Path
from dotenv import load_dotenv

# .env is at the service root, two levels up from src/backoffice_bff/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"
TEMPLATES_DIR = CONFIG_FILE_DIR / "templates"

if ENV_FILE_PATH.exists():
    load_dotenv(dotenv_path=ENV_FILE_PATH, override=True)
    print(f"CONFIG: Successfully loaded .env file from: {ENV_FILE_PATH}")
else:
    print(f"CONFIG: .env file not found at {ENV_FILE_PATH}. Relying on environment variables.")

ACCESS_TOKEN_COOKIE = "accessToken"
LOGIN_ID_COOKIE = "loginId"
USR_NO_COOKIE = "usrNo"


class Settings(BaseSettings):
    # === Backend API ===
    BACKEND_URL: AnyHttpUrl = "http://127.0.0.1:3010"
    REQUEST_TIMEOUT_SECONDS: float = 10.0

    # === Backend endpoints that never carry a bearer token ===
    LOGIN_ENDPOINT: str = "/auth/login"
    LOGOUT_ENDPOINT: str = "/auth/logout"
    TOKEN_ENDPOINT: str = "/token/backoffice/access-token"
    # Comma-separated in the environment, List[str] after validation
    EXCLUDED_TOKEN_PATHS: Union[str, List[str]] = [
        "/auth/login",
        "/token/backoffice/access-token",
        "/auth/logout",
    ]

    # === Session cookies ===
    ACCESS_TOKEN_COOKIE_MAX_AGE: int = 60 * 30  # 30 minutes
    TOKEN_EXPIRY_LEEWAY_SECONDS: int = 30
    COOKIE_SECURE: bool = False  # Set to True in production with HTTPS

    # === UI ===
    LOGIN_PAGE_PATH: str = "/login"

    @property
    def backend_base_url(self) -> str:
        return str(self.BACKEND_URL).rstrip("/")

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    @field_validator("EXCLUDED_TOKEN_PATHS", mode='before')
    @classmethod
    def parse_comma_separated_paths(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            if not v.strip():
                return []
            return [path.strip() for path in v.split(',') if path.strip()]
        if isinstance(v, list):
            return v
        raise TypeError('EXCLUDED_TOKEN_PATHS: Expected a comma-separated string or a list.')

    @model_validator(mode='after')
    def check_excluded_paths(self) -> 'Settings':
        if not isinstance(self.EXCLUDED_TOKEN_PATHS, list):
            raise ValueError(f"EXCLUDED_TOKEN_PATHS ended up as {type(self.EXCLUDED_TOKEN_PATHS)}, expected list.")
        for path in self.EXCLUDED_TOKEN_PATHS:
            if not isinstance(path, str) or not path.startswith("/"):
                raise ValueError(f"EXCLUDED_TOKEN_PATHS entries must be absolute paths, got: {path!r}")
        # Login, logout and the token endpoint are never authenticated, or a refresh could recurse.
        for endpoint in (self.LOGIN_ENDPOINT, self.LOGOUT_ENDPOINT, self.TOKEN_ENDPOINT):
            if endpoint not in self.EXCLUDED_TOKEN_PATHS:
                self.EXCLUDED_TOKEN_PATHS.append(endpoint)
        return self


try:
    settings = Settings()
    print(f"CONFIG: Backend URL: {settings.backend_base_url}")
    print(f"CONFIG: Excluded token paths: {settings.EXCLUDED_TOKEN_PATHS}")
except Exception as e:
    print(f"CONFIG: Error instantiating Settings: {e}")
    import traceback
    traceback.print_exc()
    raise
