"""Auth and mail settings, read once from the environment at process start."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class AuthSettings(BaseSettings):
    model_config = {"env_prefix": "AUTH_", "populate_by_name": True}

    # HMAC secret for session and action tokens -- required, no default.
    # The application fails to start if AUTH_SECRET_KEY is not set.
    secret_key: str = Field(min_length=1)

    # SQLite database file path
    database_path: str = "backend/storage.db"

    # "bcrypt" in production; "simple" only for tests
    password_hasher: Literal["bcrypt", "simple"] = "bcrypt"


class MailSettings(BaseSettings):
    model_config = {"env_prefix": "MAIL_"}

    # "smtp" delivers mail; "log" writes the links to the log (local development)
    backend: Literal["smtp", "log"] = "log"
    host: str = "localhost"
    port: int = 587
    username: str = ""
    password: str = ""
    sender: str = "no-reply@localhost"
    use_tls: bool = True
    timeout_seconds: float = 10.0
