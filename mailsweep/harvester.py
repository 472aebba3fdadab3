"""
Sender Aggregator - walks the whole message store and groups message ids by sender
"""

import logging
from typing import Dict, List, Optional, Callable, Set

from mailsweep.errors import FetchError
from mailsweep.models import HarvestResult, SenderRecord
from mailsweep.transport import REQUEST_ERRORS, GmailTransport


logger = logging.getLogger(__name__)


class SenderAggregator:
    """Builds a sender -> SenderRecord map from every message in the mailbox"""

    def __init__(
        self,
        transport: GmailTransport,
        page_size: int = 100,
        progress_callback: Optional[Callable[[str, Dict], None]] = None
    ):
        self.transport = transport
        self.page_size = page_size
        self.progress_callback = progress_callback

    # === Main Entry Point ===

    def aggregate(self) -> HarvestResult:
        """Page through the message list until there is no continuation token"""
        result = HarvestResult()
        seen: Set[str] = set()
        page_token = None

        self._report_progress("harvest_started", {"page_size": self.page_size})

        while True:
            message_ids, page_token = self._fetch_page(page_token)
            result.pages_fetched += 1

            for message_id in message_ids:
                if message_id in seen:
                    logger.debug(f"Skipping message {message_id} already listed on an earlier page")
                    continue
                seen.add(message_id)
                self._collect_message(message_id, result)

            self._report_progress("page_fetched", {
                "page": result.pages_fetched,
                "messages_on_page": len(message_ids),
                "processed_messages": result.message_count,
                "unique_senders": len(result.senders),
                "dropped_messages": result.dropped_count
            })

            if not page_token:
                break

        logger.info(
            f"Harvest complete: {result.message_count:,} messages from {len(result.senders):,} senders "
            f"across {result.pages_fetched} pages ({result.dropped_count} dropped)"
        )
        self._report_progress("harvest_completed", {
            "pages": result.pages_fetched,
            "processed_messages": result.message_count,
            "unique_senders": len(result.senders),
            "dropped_messages": result.dropped_count
        })

        return result

    # === Fetching ===

    def _fetch_page(self, page_token: Optional[str]):
        try:
            return self.transport.list_message_page(page_token=page_token, page_size=self.page_size)
        except REQUEST_ERRORS as error:
            raise FetchError(f"Error listing messages: {error}") from error

    def _collect_message(self, message_id: str, result: HarvestResult) -> None:
        try:
            metadata = self.transport.get_message_metadata(message_id)
        except REQUEST_ERRORS as error:
            logger.warning(f"Could not get metadata for message {message_id}, continuing: {error}")
            self._drop(message_id, result, str(error))
            return

        sender = self.find_sender_header(metadata)
        if sender is None:
            logger.warning(f"Message {message_id} has no From header, continuing")
            self._drop(message_id, result, "no From header")
            return

        identity = extract_sender_identity(sender)
        record = result.senders.get(identity)
        if record is None:
            record = result.senders[identity] = SenderRecord(sender_identity=identity)
        record.add(message_id)

    def _drop(self, message_id: str, result: HarvestResult, reason: str) -> None:
        result.dropped_message_ids.append(message_id)
        self._report_progress("message_dropped", {"message_id": message_id, "reason": reason})

    # === Progress ===

    def _report_progress(self, event: str, data: Dict) -> None:
        """Send progress update if callback is set"""
        if self.progress_callback:
            self.progress_callback(event, data)

    # === Utilities ===

    @staticmethod
    def find_sender_header(metadata: Dict) -> Optional[str]:
        """Value of the first From header, header names compared case-insensitively"""
        for header in metadata.get('payload', {}).get('headers', []):
            if header.get('name', '').lower() == 'from':
                return header.get('value', '')
        return None


def extract_sender_identity(sender: str) -> str:
    """Address between the last '<' and the first '>' after it, else the raw value.

    'Alice <a@x.com>' -> 'a@x.com', 'a@x.com' -> 'a@x.com'
    """
    start = sender.rfind('<')
    if start == -1:
        return sender
    end = sender.find('>', start + 1)
    if end == -1:
        return sender
    return sender[start + 1:end]


def rank_senders(senders: Dict[str, SenderRecord]) -> List[SenderRecord]:
    """Highest count first, ties broken by sender identity"""
    return sorted(senders.values(), key=lambda record: (-record.count, record.sender_identity))


def aggregate(
    transport: GmailTransport,
    page_size: int = 100,
    progress_callback: Optional[Callable[[str, Dict], None]] = None
) -> HarvestResult:
    return SenderAggregator(transport, page_size, progress_callback).aggregate()
