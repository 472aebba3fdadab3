"""
Error taxonomy for mailsweep
"""

from enum import Enum
from typing import Optional

from mailsweep.models import DeletionOutcome


class MailsweepError(Exception):
    """Base class for all mailsweep errors"""


class ConfigError(MailsweepError):
    """Missing or invalid configuration (credentials file, settings)"""


class AuthErrorKind(Enum):
    EXCHANGE_FAILED = 'exchange_failed'
    REFRESH_FAILED = 'refresh_failed'
    NO_CODE_IN_CALLBACK = 'no_code_in_callback'
    TIMEOUT = 'timeout'
    LISTENER_FAILED = 'listener_failed'


class AuthError(MailsweepError):
    """Authorization could not be completed. Fatal to the run."""

    def __init__(self, kind: AuthErrorKind, message: Optional[str] = None):
        self.kind = kind
        super().__init__(message or kind.value.replace('_', ' '))


class FetchError(MailsweepError):
    """Listing the message store failed; no partial harvest is returned"""


class DeletionError(MailsweepError):
    """Some messages in a batch were not moved to trash"""

    def __init__(self, outcome: DeletionOutcome):
        self.outcome = outcome
        super().__init__(
            f"{outcome.failed} of {outcome.attempted} deletions failed "
            f"({outcome.succeeded} succeeded)"
        )
