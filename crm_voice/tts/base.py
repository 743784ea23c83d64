from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True, slots=True)
class Voice:
    name: str
    lang: str
    voice_id: str = ""
    gender: str | None = None
    provider: str = ""

    @property
    def family(self) -> str:
        return self.lang.split("-")[0].lower()


@dataclass(frozen=True, slots=True)
class Utterance:
    text: str
    voice: Voice | None
    lang: str
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0


@dataclass(frozen=True, slots=True)
class SynthesisEvent:
    kind: Literal["start", "end", "error"]
    error: str | None = None


SynthesisListener = Callable[[SynthesisEvent], None]


class SynthesisEngine(ABC):
    """Platform speech-synthesis capability: one utterance at a time, reported through events."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the engine can speak at all."""

    @abstractmethod
    def voices(self) -> list[Voice]:
        """Voices currently exposed by the platform."""

    @abstractmethod
    def speak(self, utterance: Utterance, listener: SynthesisListener) -> None:
        """Queue *utterance*; ``start``/``end``/``error`` events go to *listener*."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop playback and drop anything queued."""

    @property
    @abstractmethod
    def speaking(self) -> bool:
        """True while an utterance is being played."""

    def on_voices_changed(self, callback: Callable[[], None]) -> None:
        """Register *callback* for voice-list changes. Static engines never fire it."""

    async def aclose(self) -> None:
        self.cancel()


__all__ = ["SynthesisEngine", "SynthesisEvent", "SynthesisListener", "Utterance", "Voice"]
