"""
Token Lifecycle Manager - turns a one-time user authorization into a cached, reusable credential
"""

import json
import os
import logging
from pathlib import Path
from typing import Dict, List, Optional, Callable

from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from rich.console import Console

from mailsweep.callback_server import CallbackListener
from mailsweep.config import SCOPES, load_client_config, describe_timeout
from mailsweep.errors import AuthError, AuthErrorKind
from mailsweep.models import Settings
from mailsweep.transport import GmailTransport


logger = logging.getLogger(__name__)


def create_flow(client_config: Dict, scopes: List[str], redirect_uri: str) -> Flow:
    return Flow.from_client_config(client_config, scopes=scopes, redirect_uri=redirect_uri)


class TokenManager:
    """Loads the cached token, or runs the browser authorization once and caches the result"""

    def __init__(
        self,
        settings: Settings,
        flow_factory: Callable[[Dict, List[str], str], Flow] = create_flow,
        listener_factory: Callable[[str, int], CallbackListener] = CallbackListener,
        transport_factory: Callable[..., GmailTransport] = GmailTransport.from_credentials,
        console: Optional[Console] = None
    ):
        self.settings = settings
        self.flow_factory = flow_factory
        self.listener_factory = listener_factory
        self.transport_factory = transport_factory
        self.console = console or Console()

    # === Main Entry Point ===

    def obtain_transport(self) -> GmailTransport:
        creds = self.load_cached_credentials()

        if creds is None:
            creds = self.acquire_credentials()
            self.save_credentials(creds)
        else:
            logger.info("Using cached credentials")

        return self.transport_factory(creds, on_refresh=self.save_credentials)

    # === Token Cache ===

    def load_cached_credentials(self) -> Optional[Credentials]:
        """Read the token cache. Anything unusable means re-authorization, never a crash."""
        token_path = Path(self.settings.token_path)

        if not token_path.exists():
            logger.info("No existing token found - user needs to authorize")
            return None

        try:
            token_info = json.loads(token_path.read_text())
            if not isinstance(token_info, dict):
                raise ValueError(f"expected a JSON object, got {type(token_info).__name__}")
            creds = Credentials.from_authorized_user_info(token_info)
        except (OSError, ValueError) as error:
            logger.warning(f"Ignoring unusable token cache {token_path}: {error}")
            return None

        if not creds.refresh_token:
            logger.warning("Cached token has no refresh token - user needs to re-authorize")
            return None

        if creds.scopes and not creds.has_scopes(SCOPES):
            logger.warning(f"Cached token lacks required scopes {SCOPES} - user needs to re-authorize")
            return None

        return creds

    def save_credentials(self, creds: Credentials) -> bool:
        """Best-effort write of the token cache"""
        token_path = Path(self.settings.token_path)

        try:
            token_path.parent.mkdir(parents=True, exist_ok=True)
            # Owner-only from creation; fchmod covers a cache file that already existed
            fd = os.open(token_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, 'w') as token_file:
                os.fchmod(token_file.fileno(), 0o600)
                token_file.write(creds.to_json())
        except OSError as error:
            logger.error(f"Could not save token to {token_path}: {error}")
            return False

        logger.info(f"Saved credentials to {token_path}")
        return True

    # === Authorization ===

    def acquire_credentials(self) -> Credentials:
        """Run the authorization code flow through the loopback listener"""
        client_config = load_client_config(self.settings.credentials_path)
        flow = self.flow_factory(client_config, SCOPES, self.settings.redirect_uri)

        with self.listener_factory(self.settings.callback_host, self.settings.callback_port) as listener:
            auth_url, _ = flow.authorization_url(access_type='offline', prompt='consent')

            self.console.print("\n[bold]Please visit the following URL to authorize this application:[/bold]")
            self.console.print(auth_url, soft_wrap=True)
            self.console.print(f"[dim]Waiting for callback on {self.settings.redirect_uri} "
                               f"({describe_timeout(self.settings.auth_timeout)})[/dim]")

            code = listener.pending.wait(timeout=self.settings.auth_timeout)
            logger.debug("Exchanging authorization code for tokens")

            try:
                flow.fetch_token(code=code)
            except Exception as error:
                raise AuthError(AuthErrorKind.EXCHANGE_FAILED, f"Token exchange failed: {error}") from error

            logger.info("Successfully authorized with Gmail via OAuth")
            return flow.credentials


def obtain_transport(settings: Settings, **kwargs) -> GmailTransport:
    """Authenticated transport from the token cache, authorizing in the browser if needed"""
    return TokenManager(settings, **kwargs).obtain_transport()
