from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from crm_voice.errors import SynthesisError
from crm_voice.orchestrator.policies import SynthesisPolicies
from crm_voice.telemetry.logging import get_logger
from crm_voice.tts.base import SynthesisEngine, SynthesisEvent, Utterance, Voice
from crm_voice.tts.text_prep import prepare_speech
from crm_voice.tts.voice_select import EngineVoiceCatalog, VoiceCatalog, is_female, select_voice, utterance_language

_NOT_FAILURES = {"canceled", "cancelled", "interrupted"}


@dataclass(eq=False)
class _ChunkPlayback:
    utterance: Utterance
    future: asyncio.Future[None]


class ResponseSynthesizer:
    """Speaks responses chunk by chunk through a :class:`SynthesisEngine`."""

    def __init__(
        self,
        engine: SynthesisEngine | None,
        catalog: VoiceCatalog | None = None,
        policies: SynthesisPolicies | None = None,
    ) -> None:
        self._engine = engine
        self._catalog = catalog or EngineVoiceCatalog(engine)
        self._policies = policies or SynthesisPolicies()
        self._current: _ChunkPlayback | None = None
        self._generation = 0
        self._logger = get_logger(__name__)

    def is_supported(self) -> bool:
        return self._engine is not None and self._engine.is_available()

    def is_speaking(self) -> bool:
        if self._engine is None:
            return False
        return self._current is not None or self._engine.speaking

    def refresh_voices(self) -> None:
        refresh = getattr(self._catalog, "refresh", None)
        if callable(refresh):
            refresh()

    async def speak(self, text: str) -> None:
        if not self.is_supported():
            raise SynthesisError("synthesis-unavailable")
        if not text or not text.strip():
            self._logger.warning("tts.speak.empty_text")
            return

        self.stop()
        generation = self._generation
        chunks = prepare_speech(text, self._policies)
        voice = select_voice(self._catalog.voices(), self._policies)
        lang = utterance_language(voice, self._policies)
        self._logger.info(
            "tts.speak.start",
            chars=len(text),
            chunks=len(chunks),
            voice=voice.name if voice else None,
            lang=lang,
        )

        for index, chunk in enumerate(chunks):
            if generation != self._generation:
                self._logger.info("tts.speak.stopped", remaining=len(chunks) - index)
                return
            await self._speak_chunk(chunk, voice, lang)
            if index < len(chunks) - 1:
                await asyncio.sleep(self._policies.chunk_pause_seconds)

    async def _speak_chunk(self, text: str, voice: Voice | None, lang: str) -> None:
        assert self._engine is not None
        utterance = Utterance(
            text=text,
            voice=voice,
            lang=lang,
            rate=self._policies.rate,
            pitch=self._policies.pitch,
            volume=self._policies.volume,
        )
        playback = _ChunkPlayback(
            utterance=utterance,
            future=asyncio.get_running_loop().create_future(),
        )
        self._current = playback
        try:
            self._engine.speak(utterance, lambda event: self._on_event(playback, event))
        except Exception as exc:
            self._current = None
            raise SynthesisError("synthesis-failed", detail=str(exc)) from exc
        try:
            await playback.future
        finally:
            if self._current is playback:
                self._current = None

    def _on_event(self, playback: _ChunkPlayback, event: SynthesisEvent) -> None:
        if playback is not self._current or playback.future.done():
            self._logger.debug("tts.event.stale", kind=event.kind, error=event.error)
            return
        if event.kind == "start":
            self._logger.debug("tts.chunk.start", preview=playback.utterance.text[:50])
        elif event.kind == "end":
            self._logger.debug("tts.chunk.end")
            playback.future.set_result(None)
        elif event.kind == "error":
            if event.error in _NOT_FAILURES:
                self._logger.info("tts.chunk.cancelled", reason=event.error)
                playback.future.set_result(None)
                return
            self._logger.error("tts.chunk.error", error=event.error)
            if event.error in ("network", "synthesis-failed", "synthesis-unavailable"):
                failure = SynthesisError(event.error)
            else:
                failure = SynthesisError("synthesis-failed", message=f"خطا در پخش صدا: {event.error}", detail=event.error)
            playback.future.set_exception(failure)

    def _release(self, playback: _ChunkPlayback | None) -> None:
        if playback is not None and not playback.future.done():
            playback.future.set_result(None)

    async def test_voice(self) -> None:
        """Speak a fixed Persian sample sentence through the selected voice."""
        self._logger.info("tts.test_voice")
        await self.speak(self._policies.test_sentence)

    def stop(self) -> None:
        """Cancel playback now; the pending chunk resolves and no further chunk starts."""
        self._generation += 1
        playback = self._current
        if self._engine is not None and (playback is not None or self._engine.speaking):
            self._engine.cancel()
        self._current = None
        self._release(playback)

    def stop_gracefully(self) -> None:
        """Detach the current utterance before cancelling so its late callbacks are ignored."""
        self._generation += 1
        playback, self._current = self._current, None
        self._release(playback)
        if self._engine is not None and (playback is not None or self._engine.speaking):
            self._engine.cancel()
        self._logger.info("tts.stopped_gracefully", detached=playback is not None)

    def get_voice_info(self) -> dict[str, Any]:
        voices = list(self._catalog.voices())
        best = select_voice(voices, self._policies)
        persian = [v for v in voices if v.family == self._policies.primary_language]
        arabic = [v for v in voices if v.family == self._policies.secondary_language]
        return {
            "total": len(voices),
            "persian": len(persian),
            "arabic": len(arabic),
            "female": sum(1 for v in voices if is_female(v, self._policies.female_markers)),
            "best_voice": f"{best.name} ({best.lang})" if best else None,
            "has_good_voice": bool(persian or arabic),
        }


__all__ = ["ResponseSynthesizer"]
