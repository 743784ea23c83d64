from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal


@dataclass(frozen=True, slots=True)
class RecognitionRequest:
    lang: str
    interim_results: bool = True
    continuous: bool = False
    max_alternatives: int = 3


@dataclass(frozen=True, slots=True)
class RecognitionAlternative:
    transcript: str
    confidence: float = 0.0


@dataclass(frozen=True, slots=True)
class RecognitionItem:
    alternatives: tuple[RecognitionAlternative, ...]
    is_final: bool = False

    @property
    def transcript(self) -> str:
        return self.alternatives[0].transcript if self.alternatives else ""


@dataclass(frozen=True, slots=True)
class RecognitionEvent:
    kind: Literal["start", "result", "error", "end"]
    results: tuple[RecognitionItem, ...] = field(default_factory=tuple)
    result_index: int = 0
    error: str | None = None


RecognitionListener = Callable[[RecognitionEvent], None]


class RecognitionEngine(ABC):
    """Platform speech-recognition capability reporting through a single listener."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether recognition can run at all on this host."""

    @abstractmethod
    def start(self, request: RecognitionRequest, listener: RecognitionListener) -> None:
        """Begin one recognition; events for it go to *listener* until ``end``."""

    @abstractmethod
    def stop(self) -> None:
        """Stop listening and deliver whatever was recognised so far."""

    @abstractmethod
    def abort(self) -> None:
        """Stop listening and discard pending results."""

    @abstractmethod
    async def probe_microphone(self) -> bool:
        """Open and immediately release the input device."""

    async def aclose(self) -> None:
        self.abort()


__all__ = [
    "RecognitionAlternative",
    "RecognitionEngine",
    "RecognitionEvent",
    "RecognitionItem",
    "RecognitionListener",
    "RecognitionRequest",
]
