"""
Batch Deleter - moves every message of a sender to trash, one at a time
"""

import time
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, Optional, Callable, Sequence

from googleapiclient.errors import HttpError

from mailsweep.errors import DeletionError
from mailsweep.models import DeletionFailure, DeletionOutcome, Settings
from mailsweep.transport import REQUEST_ERRORS, GmailTransport


logger = logging.getLogger(__name__)

TRASH_LABEL = 'TRASH'
PROGRESS_EVERY = 10
RATE_LIMIT_REASONS = ('ratelimitexceeded', 'userratelimitexceeded')


# === Rate Limit Detection ===

def is_rate_limit_error(error: Exception) -> bool:
    """429, or a 403 whose body names one of Gmail's rate limit reasons"""
    if not isinstance(error, HttpError):
        return False
    status = getattr(error.resp, 'status', None)
    if status == 429:
        return True
    if status == 403:
        content = error.content
        if isinstance(content, bytes):
            content = content.decode('utf-8', errors='ignore')
        content = str(content).lower()
        return any(reason in content for reason in RATE_LIMIT_REASONS)
    return False


def retry_after_seconds(error: HttpError) -> Optional[float]:
    """Parse a Retry-After header given either as seconds or as an HTTP date"""
    resp = error.resp
    value = resp.get('retry-after') if hasattr(resp, 'get') else None
    if not value:
        return None

    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug(f"Unparseable Retry-After header: {value!r}")
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())


# === Pacing Policies ===

class FixedPacer:
    """Static delay after every attempt, never retries"""

    def __init__(self, delay: float = 0.1, sleep: Callable[[float], None] = time.sleep):
        self.delay = delay
        self.sleep = sleep

    def pause(self) -> None:
        if self.delay:
            self.sleep(self.delay)

    def rate_limit_delay(self, error: Exception, attempt: int) -> Optional[float]:
        return None


class AdaptivePacer(FixedPacer):
    """Fixed delay between attempts plus backoff when Gmail signals rate limiting.

    Returns the number of seconds to wait before retrying the same message,
    or None once the error is not a rate limit or retries are used up.
    """

    def __init__(
        self,
        delay: float = 0.1,
        max_retries: int = 5,
        initial_backoff: float = 1.0,
        max_backoff: float = 60.0,
        sleep: Callable[[float], None] = time.sleep
    ):
        super().__init__(delay, sleep)
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff

    def rate_limit_delay(self, error: Exception, attempt: int) -> Optional[float]:
        if attempt >= self.max_retries or not is_rate_limit_error(error):
            return None

        retry_after = retry_after_seconds(error)
        if retry_after is not None:
            return min(retry_after, self.max_backoff)
        return min(self.initial_backoff * (2 ** attempt), self.max_backoff)


def build_pacer(settings: Settings, sleep: Callable[[float], None] = time.sleep) -> FixedPacer:
    if settings.pacing == 'fixed':
        return FixedPacer(settings.pacing_delay, sleep=sleep)
    return AdaptivePacer(settings.pacing_delay, max_retries=settings.rate_limit_retries, sleep=sleep)


# === Executor ===

class BatchDeleter:
    """Trashes messages sequentially and accounts for every failure"""

    def __init__(
        self,
        transport: GmailTransport,
        pacer: Optional[FixedPacer] = None,
        progress_callback: Optional[Callable[[str, Dict], None]] = None
    ):
        self.transport = transport
        self.pacer = pacer or AdaptivePacer()
        self.progress_callback = progress_callback

    # === Main Entry Point ===

    def delete_all(self, message_ids: Sequence[str]) -> DeletionOutcome:
        """Trash every id. Raises DeletionError carrying the outcome if any failed."""
        outcome = DeletionOutcome(attempted=len(message_ids))

        self._report_progress("deletion_started", {"messages_to_delete": len(message_ids)})

        for message_id in message_ids:
            failure = self._trash(message_id)

            if failure is None:
                outcome.succeeded += 1
                if outcome.succeeded % PROGRESS_EVERY == 0:
                    logger.info(f"Successfully deleted {outcome.succeeded} emails...")
                    self._report_progress("deletion_progress", {
                        "succeeded": outcome.succeeded,
                        "total": outcome.attempted
                    })
            else:
                logger.warning(f"Failed to delete message {message_id}: {failure.reason}")
                outcome.failures.append(failure)

            # Stay under the per-user quota regardless of outcome
            self.pacer.pause()

        logger.info(f"Deletion finished: {outcome.succeeded} succeeded, {outcome.failed} failed")
        self._report_progress("deletion_completed", {
            "attempted": outcome.attempted,
            "succeeded": outcome.succeeded,
            "failed": outcome.failed
        })

        if outcome.failures:
            raise DeletionError(outcome)
        return outcome

    # === Message Processing ===

    def _trash(self, message_id: str) -> Optional[DeletionFailure]:
        """Move one message to trash, returns a failure or None when confirmed"""
        attempt = 0

        while True:
            try:
                message = self.transport.trash_message(message_id)
            except REQUEST_ERRORS as error:
                wait = self.pacer.rate_limit_delay(error, attempt)
                if wait is None:
                    return DeletionFailure(message_id, f"failed to delete message: {error}")

                attempt += 1
                logger.warning(f"Rate limited trashing {message_id}, retrying in {wait:.1f}s (attempt {attempt})")
                self._report_progress("rate_limited", {"message_id": message_id, "wait": wait, "attempt": attempt})
                self.pacer.sleep(wait)
                continue

            if TRASH_LABEL not in message.get('labelIds', []):
                return DeletionFailure(message_id, "not moved to trash")
            return None

    # === Progress ===

    def _report_progress(self, event: str, data: Dict) -> None:
        """Send progress update if callback is set"""
        if self.progress_callback:
            self.progress_callback(event, data)


def delete_all(
    transport: GmailTransport,
    message_ids: Sequence[str],
    pacer: Optional[FixedPacer] = None,
    progress_callback: Optional[Callable[[str, Dict], None]] = None
) -> DeletionOutcome:
    return BatchDeleter(transport, pacer, progress_callback).delete_all(message_ids)
