from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Literal

CommandType = Literal["report", "general", "unknown"]
ResponseType = Literal["success", "error", "info"]


@dataclass(frozen=True, slots=True)
class VoiceCommand:
    text: str
    type: CommandType
    confidence: float
    employee_name: str | None = None


@dataclass(frozen=True, slots=True)
class AIResponse:
    text: str
    type: ResponseType
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"text": self.text, "type": self.type}
        if self.data is not None:
            payload["data"] = self.data
        return payload


@dataclass(slots=True)
class Session:
    id: str
    busy: bool = True
    started_at: float = field(default_factory=time.monotonic)

    @classmethod
    def open(cls) -> "Session":
        return cls(id=str(int(time.time() * 1000)))


@dataclass(slots=True)
class RecognitionResult:
    final_transcript: str = ""
    interim_transcript: str = ""


@dataclass(slots=True)
class InteractionResult:
    transcript: str
    response: AIResponse
    success: bool

    def to_dict(self) -> dict[str, Any]:
        return {"transcript": self.transcript, "response": self.response.to_dict(), "success": self.success}


State = Literal["IDLE", "LISTENING", "CLASSIFYING", "PROCESSING", "SPEAKING", "FAILED"]


__all__ = [
    "AIResponse",
    "CommandType",
    "InteractionResult",
    "RecognitionResult",
    "ResponseType",
    "Session",
    "State",
    "VoiceCommand",
]
