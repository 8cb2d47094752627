from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    WEB_SEARCH_STARTED = "web_search_started"
    PAGE_FETCH_PROGRESS = "page_fetch_progress"
    WEB_SEARCH_COMPLETE = "web_search_complete"
    ERROR = "error"


@dataclass
class SSEEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        return f"event: {self.event.value}\ndata: {json.dumps(self.data)}\n\n"
