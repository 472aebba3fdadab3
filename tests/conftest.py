"""
Shared test fixtures for mailsweep tests
"""

import io

import pytest
from typing import Dict, List, Optional, Set
import httplib2
from googleapiclient.errors import HttpError
from rich.console import Console

from mailsweep.deleter import FixedPacer
from mailsweep.transport import GmailTransport


# === Mock Gmail API Service ===

class MockHttpResponse(dict):
    """Mock httplib2 response: a header dict with status and reason"""
    def __init__(self, status: int, reason: str, headers: Optional[Dict[str, str]] = None):
        super().__init__(headers or {})
        self.status = status
        self.reason = reason


def make_http_error(status: int, reason: str, content: bytes = b'', headers: Optional[Dict[str, str]] = None) -> HttpError:
    return HttpError(resp=MockHttpResponse(status, reason, headers), content=content)


class MockRequest:
    """Mock for an API request object; .execute() returns data or raises"""
    def __init__(self, data=None, error: Optional[Exception] = None):
        self._data = data
        self._error = error

    def execute(self):
        if self._error is not None:
            raise self._error
        return self._data


class MockMessages:
    """Mock for users().messages() backed by a list of message dicts"""

    def __init__(self, mailbox: 'MockGmailService'):
        self._mailbox = mailbox

    def list(self, userId: str, maxResults: int = 100, pageToken: Optional[str] = None):
        mailbox = self._mailbox
        mailbox.list_calls.append(pageToken)

        if mailbox.list_error is not None:
            return MockRequest(error=mailbox.list_error)
        if pageToken in mailbox.fail_list_tokens:
            return MockRequest(error=make_http_error(503, 'Service Unavailable'))

        if mailbox.pages is not None:
            # Scripted pages, token is the index of the page to serve
            index = int(pageToken) if pageToken else 0
            page_ids = mailbox.pages[index]
            next_token = str(index + 1) if index + 1 < len(mailbox.pages) else None
        else:
            start_idx = int(pageToken) if pageToken else 0
            end_idx = min(start_idx + maxResults, len(mailbox.messages))
            page_ids = [m['id'] for m in mailbox.messages[start_idx:end_idx]]
            next_token = str(end_idx) if end_idx < len(mailbox.messages) else None

        # Only id and threadId in list response (like real API)
        result = {'messages': [{'id': message_id, 'threadId': message_id} for message_id in page_ids]}
        if not page_ids:
            result = {'resultSizeEstimate': 0}
        if next_token:
            result['nextPageToken'] = next_token
        return MockRequest(result)

    def get(self, userId: str, id: str, format: str = None, metadataHeaders: List[str] = None):
        mailbox = self._mailbox
        mailbox.get_calls.append(id)

        if id in mailbox.unreachable:
            return MockRequest(error=httplib2.ServerNotFoundError('Unable to find the server at gmail.googleapis.com'))
        if id in mailbox.fail_get:
            return MockRequest(error=make_http_error(500, 'Backend Error'))
        message = mailbox.messages_by_id.get(id)
        if message is None:
            return MockRequest(error=make_http_error(404, 'Not Found'))
        return MockRequest(message)

    def trash(self, userId: str, id: str):
        mailbox = self._mailbox
        mailbox.trash_calls.append(id)

        if id in mailbox.unreachable:
            return MockRequest(error=httplib2.ServerNotFoundError('Unable to find the server at gmail.googleapis.com'))

        remaining = mailbox.rate_limited.get(id, 0)
        if remaining:
            mailbox.rate_limited[id] = remaining - 1
            return MockRequest(error=make_http_error(
                429, 'Too Many Requests', headers=mailbox.rate_limit_headers))

        if id in mailbox.fail_trash:
            return MockRequest(error=make_http_error(404, 'Not Found', b'Message not found'))

        if id in mailbox.not_trashed:
            return MockRequest({'id': id, 'labelIds': ['INBOX']})

        mailbox.trashed.add(id)
        return MockRequest({'id': id, 'labelIds': ['TRASH']})


class MockUsers:
    """Mock for service.users()"""
    def __init__(self, mailbox: 'MockGmailService'):
        self._messages = MockMessages(mailbox)

    def messages(self):
        return self._messages


class MockGmailService:
    """Mock Gmail API service that simulates a mailbox"""

    def __init__(
        self,
        messages: List[dict],
        pages: Optional[List[List[str]]] = None,
        fail_get: Set[str] = None,
        fail_trash: Set[str] = None,
        not_trashed: Set[str] = None,
        rate_limited: Optional[Dict[str, int]] = None,
        rate_limit_headers: Optional[Dict[str, str]] = None,
        list_error: Optional[Exception] = None,
        fail_list_tokens: Set[str] = None,
        unreachable: Set[str] = None
    ):
        self.messages = messages
        self.messages_by_id = {m['id']: m for m in messages}
        self.pages = pages
        self.fail_get = fail_get or set()
        self.fail_trash = fail_trash or set()
        self.not_trashed = not_trashed or set()
        self.rate_limited = dict(rate_limited or {})
        self.rate_limit_headers = rate_limit_headers
        self.list_error = list_error
        self.fail_list_tokens = fail_list_tokens or set()
        self.unreachable = unreachable or set()

        self.list_calls: List[Optional[str]] = []
        self.get_calls: List[str] = []
        self.trash_calls: List[str] = []
        self.trashed: Set[str] = set()

    def users(self):
        return MockUsers(self)


class RecordingSleep:
    """Stands in for time.sleep and records every requested delay"""
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


# === Helpers to create message data ===

def make_message(message_id: str, sender: str, subject: str = 'Hello', labels: List[str] = None) -> dict:
    """Helper to create a metadata-format message dict matching Gmail API structure"""
    return {
        'id': message_id,
        'threadId': message_id,
        'labelIds': labels or ['INBOX'],
        'payload': {
            'headers': [
                {'name': 'From', 'value': sender},
                {'name': 'Subject', 'value': subject}
            ]
        }
    }


def make_message_no_from_header(message_id: str) -> dict:
    return {
        'id': message_id,
        'threadId': message_id,
        'labelIds': ['INBOX'],
        'payload': {'headers': [{'name': 'Subject', 'value': 'Mystery'}]}
    }


# === Fixtures ===

@pytest.fixture
def sample_mailbox() -> List[dict]:
    """A mailbox with a few heavy senders and some edge cases"""
    return [
        make_message('msg_001', 'Newsletter <news@spam.com>', 'Buy now! 50% off'),
        make_message('msg_002', 'Promo Team <promo@spam.com>', 'Limited time offer'),
        make_message('msg_003', 'Newsletter <news@spam.com>', 'Last chance'),
        make_message('msg_004', 'Updates <updates@social.com>', 'New friend request'),
        make_message('msg_005', 'news@spam.com', 'Plain sender format'),
        make_message('msg_006', '"Doe, John" <john@example.com>', 'Lunch?'),
        make_message('msg_007', 'Newsletter <news@spam.com>', 'Weekly digest'),
        make_message_no_from_header('msg_008'),
    ]


@pytest.fixture
def mock_gmail_service(sample_mailbox) -> MockGmailService:
    return MockGmailService(sample_mailbox)


@pytest.fixture
def transport(mock_gmail_service) -> GmailTransport:
    return GmailTransport(mock_gmail_service)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fixed_pacer(recording_sleep) -> FixedPacer:
    return FixedPacer(0.1, sleep=recording_sleep)


@pytest.fixture
def quiet_console() -> Console:
    """Console that writes into a buffer; read it back with .file.getvalue()"""
    return Console(file=io.StringIO(), width=120, color_system=None)
