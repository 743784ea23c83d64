from __future__ import annotations

import functools
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path
from typing import Any, Protocol

import yaml

from crm_voice.orchestrator.policies import SynthesisPolicies
from crm_voice.telemetry.logging import get_logger
from crm_voice.tts.base import SynthesisEngine, Voice


class VoiceCatalog(Protocol):
    def voices(self) -> Sequence[Voice]: ...


class StaticVoiceCatalog:
    def __init__(self, voices: Iterable[Voice]) -> None:
        self._voices = tuple(voices)

    def voices(self) -> Sequence[Voice]:
        return self._voices


class EngineVoiceCatalog:
    """Read-only snapshot of an engine's voices, refreshed when the engine reports a change."""

    def __init__(self, engine: SynthesisEngine | None) -> None:
        self._engine = engine
        self._voices: tuple[Voice, ...] = ()
        self._logger = get_logger(__name__)
        if engine is not None:
            engine.on_voices_changed(self.refresh)
            self.refresh()

    def refresh(self) -> None:
        if self._engine is None:
            return
        self._voices = tuple(self._engine.voices())
        self._logger.info("tts.voices.loaded", count=len(self._voices))

    def voices(self) -> Sequence[Voice]:
        return self._voices


def _voice_from_entry(entry: dict[str, Any], provider: str) -> Voice:
    voice_id = str(entry.get("id") or entry.get("voice_id") or "")
    name = str(entry.get("name") or voice_id)
    if not name or not entry.get("lang"):
        raise ValueError(f"Voice entry needs a name and a lang: {entry!r}")
    return Voice(
        name=name,
        lang=str(entry["lang"]),
        voice_id=voice_id or name,
        gender=entry.get("gender"),
        provider=str(entry.get("provider") or provider),
    )


@functools.lru_cache(maxsize=4)
def load_voice_catalog(path: Path) -> StaticVoiceCatalog:
    if not path.exists():
        raise FileNotFoundError(path)
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict) or not isinstance(raw.get("voices"), list):
        raise ValueError(f"{path.name} must define a 'voices' list")
    provider = str(raw.get("provider", ""))
    return StaticVoiceCatalog(_voice_from_entry(entry, provider) for entry in raw["voices"])


def is_female(voice: Voice, markers: Sequence[str] = ("female", "woman", "زن")) -> bool:
    if voice.gender:
        return voice.gender.lower() == "female"
    name = voice.name.lower()
    return any(marker in name for marker in markers)


def select_voice(voices: Sequence[Voice], policies: SynthesisPolicies | None = None) -> Voice | None:
    """Pick the best voice for Persian speech; first matching rule wins."""
    policies = policies or SynthesisPolicies()
    primary = policies.primary_language
    secondary = policies.secondary_language

    def female(voice: Voice) -> bool:
        return is_female(voice, policies.female_markers)

    def quality(voice: Voice) -> bool:
        label = f"{voice.provider} {voice.name}".lower()
        return any(provider in label for provider in policies.quality_providers)

    rules: list[Callable[[Voice], bool]] = [
        lambda v: v.family == primary and female(v),
        lambda v: v.family == primary,
        lambda v: v.family == secondary and female(v),
        lambda v: v.family == secondary,
        female,
        quality,
    ]
    for rule in rules:
        for voice in voices:
            if rule(voice):
                return voice
    return voices[0] if voices else None


def utterance_language(voice: Voice | None, policies: SynthesisPolicies | None = None) -> str:
    """Use the voice's own tag inside the Persian/Arabic families; otherwise a neutral tag."""
    policies = policies or SynthesisPolicies()
    if voice is not None and voice.family in (policies.primary_language, policies.secondary_language):
        return voice.lang
    return policies.neutral_language


__all__ = [
    "EngineVoiceCatalog",
    "StaticVoiceCatalog",
    "VoiceCatalog",
    "is_female",
    "load_voice_catalog",
    "select_voice",
    "utterance_language",
]
