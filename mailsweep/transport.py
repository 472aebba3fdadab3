"""
Gmail Transport - authenticated access to the messages API
"""

import logging
from typing import List, Dict, Optional, Callable, Tuple

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mailsweep.errors import AuthError, AuthErrorKind


logger = logging.getLogger(__name__)

# Errors from a single request that are about the request, not the caller.
# httplib2 network failures (DNS, redirects, bad responses) do not derive from OSError.
REQUEST_ERRORS = (HttpError, TransportError, httplib2.HttpLib2Error, OSError)


class GmailTransport:
    """Thin wrapper over the Gmail API service object for the signed-in user.

    Expired access tokens are refreshed by the underlying authorized HTTP
    client on first use. When that happens `on_refresh` receives the
    credentials so they can be written back to the token cache. A refresh
    token the server rejects surfaces as AuthError(REFRESH_FAILED).
    """

    def __init__(
        self,
        service,  # Gmail API service object
        credentials: Optional[Credentials] = None,
        on_refresh: Optional[Callable[[Credentials], None]] = None,
        user_id: str = 'me'
    ):
        self.service = service
        self.credentials = credentials
        self.on_refresh = on_refresh
        self.user_id = user_id

    @classmethod
    def from_credentials(
        cls,
        credentials: Credentials,
        on_refresh: Optional[Callable[[Credentials], None]] = None
    ) -> 'GmailTransport':
        service = build('gmail', 'v1', credentials=credentials, cache_discovery=False)
        return cls(service, credentials, on_refresh)

    # === Messages ===

    def list_message_page(self, page_token: Optional[str] = None, page_size: int = 100) -> Tuple[List[str], Optional[str]]:
        """Fetch a page of message ids, returns (ids, next_page_token)"""
        results = self._execute(
            self.service.users().messages().list(
                userId=self.user_id,
                maxResults=page_size,
                pageToken=page_token
            )
        )

        message_ids = [message['id'] for message in results.get('messages', [])]
        return message_ids, results.get('nextPageToken')

    def get_message_metadata(self, message_id: str, headers: Tuple[str, ...] = ('From',)) -> Dict:
        return self._execute(
            self.service.users().messages().get(
                userId=self.user_id,
                id=message_id,
                format='metadata',
                metadataHeaders=list(headers)
            )
        )

    def trash_message(self, message_id: str) -> Dict:
        """Move a message to trash, returns the message resource with its current labelIds"""
        return self._execute(
            self.service.users().messages().trash(
                userId=self.user_id,
                id=message_id
            )
        )

    # === Internals ===

    def _execute(self, request) -> Dict:
        token_before = self.credentials.token if self.credentials is not None else None

        try:
            result = request.execute()
        except RefreshError as error:
            raise AuthError(AuthErrorKind.REFRESH_FAILED, f"Could not refresh access token: {error}") from error

        if self.credentials is not None and self.credentials.token != token_before:
            logger.info("Access token refreshed")
            if self.on_refresh:
                self.on_refresh(self.credentials)

        return result
