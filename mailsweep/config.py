"""
Configuration loading - environment / .env settings and the OAuth client file
"""

import json
import os
import logging
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, ValidationError

from mailsweep.errors import ConfigError
from mailsweep.models import Settings


logger = logging.getLogger(__name__)

# If modifying these scopes, delete the file token.json.
SCOPES = [
    'https://www.googleapis.com/auth/gmail.modify',
    'https://www.googleapis.com/auth/gmail.readonly',
]

GOOGLE_AUTH_URI = 'https://accounts.google.com/o/oauth2/auth'
GOOGLE_TOKEN_URI = 'https://oauth2.googleapis.com/token'

PACING_MODES = ('fixed', 'adaptive')


class ClientSecrets(BaseModel):
    """The fields of a Google OAuth client file that the flow needs"""
    client_id: str
    client_secret: str
    auth_uri: str = GOOGLE_AUTH_URI
    token_uri: str = GOOGLE_TOKEN_URI


def load_client_config(credentials_path: str) -> Dict[str, Dict]:
    """Read credentials.json and return a client config usable by google_auth_oauthlib"""
    path = Path(credentials_path)
    if not path.exists():
        raise ConfigError(
            f"Credentials file not found at {path}. "
            "Download it from the Google Cloud Console OAuth client page."
        )

    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as error:
        raise ConfigError(f"Unable to read credentials file {path}: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError(f"Credentials file {path} must contain a JSON object")

    client_type = next((key for key in ('web', 'installed') if key in data), None)
    if client_type is None:
        raise ConfigError(f"Credentials file {path} has no 'web' or 'installed' section")

    try:
        secrets = ClientSecrets.model_validate(data[client_type])
    except ValidationError as error:
        raise ConfigError(f"Invalid credentials file {path}: {error}") from error

    logger.debug(f"Loaded {client_type} OAuth client {secrets.client_id[:12]}... from {path}")
    return {client_type: secrets.model_dump()}


# === Settings ===

def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == '':
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def load_settings(**overrides) -> Settings:
    """Build Settings from the environment, then apply non-None overrides (CLI flags)"""
    timeout = _env_float('OAUTH_TIMEOUT', 300.0)

    settings = Settings(
        credentials_path=os.getenv('GMAIL_CREDENTIALS_PATH', 'credentials.json'),
        token_path=os.getenv('GMAIL_TOKEN_PATH', 'token.json'),
        callback_host=os.getenv('OAUTH_CALLBACK_HOST', 'localhost'),
        callback_port=_env_int('OAUTH_CALLBACK_PORT', 8080),
        auth_timeout=timeout,
        page_size=_env_int('PAGE_SIZE', 100),
        pacing=os.getenv('MAILSWEEP_PACING', 'adaptive').lower(),
        pacing_delay=_env_float('PACING_DELAY', 0.1),
        rate_limit_retries=_env_int('RATE_LIMIT_RETRIES', 5),
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    )

    for name, value in overrides.items():
        if not hasattr(settings, name):
            raise ConfigError(f"Unknown setting: {name}")
        if value is not None:
            setattr(settings, name, value)

    validate_settings(settings)
    return settings


def validate_settings(settings: Settings) -> None:
    if not 1 <= settings.page_size <= 500:
        raise ConfigError(f"PAGE_SIZE must be between 1 and 500, got {settings.page_size}")
    if settings.pacing not in PACING_MODES:
        raise ConfigError(f"MAILSWEEP_PACING must be one of {', '.join(PACING_MODES)}, got {settings.pacing!r}")
    if settings.pacing_delay < 0:
        raise ConfigError("PACING_DELAY cannot be negative")
    if settings.rate_limit_retries < 0:
        raise ConfigError("RATE_LIMIT_RETRIES cannot be negative")
    if not 0 <= settings.callback_port <= 65535:
        raise ConfigError(f"OAUTH_CALLBACK_PORT out of range: {settings.callback_port}")

    # 0 means wait for the callback forever
    if settings.auth_timeout is not None and settings.auth_timeout <= 0:
        settings.auth_timeout = None


def describe_timeout(timeout: Optional[float]) -> str:
    return f"{timeout:g}s" if timeout else "no timeout"
