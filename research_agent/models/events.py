from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    STAGE_CHANGE = "stage_change"
    STATUS = "status"
    SOURCE = "source"
    RESULT = "result"
    ERROR = "error"


TERMINAL_EVENTS = frozenset({EventType.RESULT, EventType.ERROR})


@dataclass
class PipelineEvent:
    type: EventType
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "data": self.data}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "PipelineEvent":
        """Parse a `{type, data}` envelope. Raises ValueError on unknown types."""
        event_type = EventType(payload.get("type"))
        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise ValueError(f"event data must be an object, got {type(data).__name__}")
        return cls(type=event_type, data=data)
