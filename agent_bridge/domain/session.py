from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from .models import ChatMessage


@dataclass
class Session:
    messages: List[ChatMessage] = field(default_factory=list)
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SessionStore(Protocol):
    def load(self, group_folder: str, session_id: str) -> Optional[Session]:
        ...

    def save(self, group_folder: str, session_id: str, session: Session) -> None:
        ...

    def new_session_id(self) -> str:
        ...
