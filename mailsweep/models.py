"""
Shared data models for mailsweep
"""

from dataclasses import dataclass, field
from typing import List, Dict, Optional


@dataclass
class SenderRecord:
    """All harvested messages from a single sender, in first-seen order"""
    sender_identity: str
    count: int = 0
    message_ids: List[str] = field(default_factory=list)

    def add(self, message_id: str) -> None:
        self.message_ids.append(message_id)
        self.count += 1


@dataclass
class HarvestResult:
    """Outcome of walking the whole message store"""
    senders: Dict[str, SenderRecord] = field(default_factory=dict)
    dropped_message_ids: List[str] = field(default_factory=list)
    pages_fetched: int = 0

    @property
    def dropped_count(self) -> int:
        return len(self.dropped_message_ids)

    @property
    def message_count(self) -> int:
        """Number of messages that made it into a sender record"""
        return sum(record.count for record in self.senders.values())


@dataclass
class DeletionFailure:
    """A single message that could not be moved to trash"""
    message_id: str
    reason: str


@dataclass
class DeletionOutcome:
    """Result of one batch deletion run"""
    attempted: int = 0
    succeeded: int = 0
    failures: List[DeletionFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def failed_ids(self) -> List[str]:
        return [failure.message_id for failure in self.failures]


@dataclass
class Settings:
    """Runtime configuration, see mailsweep.config.load_settings"""
    credentials_path: str = 'credentials.json'
    token_path: str = 'token.json'
    callback_host: str = 'localhost'
    callback_port: int = 8080
    auth_timeout: Optional[float] = 300.0
    page_size: int = 100
    pacing: str = 'adaptive'
    pacing_delay: float = 0.1
    rate_limit_retries: int = 5
    log_level: str = 'INFO'

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.callback_host}:{self.callback_port}/callback"
