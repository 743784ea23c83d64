from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from crm_voice.backend.client import CrmBackendClient
from crm_voice.config import AppSettings
from crm_voice.intent.classifier import CommandClassifier
from crm_voice.intent.processor import BackendService, CommandProcessor
from crm_voice.orchestrator.policies import CapturePolicies, SessionPolicies, SynthesisPolicies
from crm_voice.orchestrator.state_machine import SessionOrchestrator, StateBridge
from crm_voice.telemetry.logging import get_logger
from crm_voice.transcription.base import RecognitionEngine
from crm_voice.transcription.capture import SpeechCapture
from crm_voice.transcription.manual import ManualInputSource, PendingManualInput
from crm_voice.tts.base import SynthesisEngine
from crm_voice.tts.synthesizer import ResponseSynthesizer
from crm_voice.tts.voice_select import load_voice_catalog

if TYPE_CHECKING:
    from crm_voice.tts.kokoro import KokoroSynthesisEngine

logger = get_logger(__name__)


class VoiceRuntime:
    """Process-wide voice components plus the resources they own."""

    def __init__(
        self,
        orchestrator: SessionOrchestrator,
        manual_input: ManualInputSource | None,
        closers: list[Callable[[], Awaitable[None]]],
        voice_reloader: Callable[[], None] | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.manual_input = manual_input
        self.voice_reloader = voice_reloader
        self._closers = closers

    @property
    def pending_manual_input(self) -> PendingManualInput | None:
        return self.manual_input if isinstance(self.manual_input, PendingManualInput) else None

    def reload_voices(self) -> dict[str, Any] | None:
        """Re-read the voice catalog; None when the synthesis engine has no catalog to reload."""
        if self.voice_reloader is None:
            return None
        self.voice_reloader()
        voice_info = self.orchestrator.get_system_status()["voice_info"]
        logger.info("runtime.voices.reloaded", total=voice_info["total"])
        return voice_info

    async def startup(self) -> None:
        await self.orchestrator.startup()

    async def shutdown(self) -> None:
        await self.orchestrator.shutdown()
        for close in reversed(self._closers):
            try:
                await close()
            except Exception as exc:
                logger.error("runtime.close_failed", error=str(exc))
        logger.info("runtime.shutdown")


def build_recognition_engine(settings: AppSettings) -> RecognitionEngine | None:
    capture = settings.capture
    if capture.engine == "none" or not capture.vosk_model_paths:
        logger.warning("runtime.capture.disabled", engine=capture.engine)
        return None
    from crm_voice.transcription.vosk import VoskRecognitionEngine

    return VoskRecognitionEngine(
        capture.vosk_model_paths,
        sample_rate=capture.sample_rate,
        frame_ms=capture.frame_ms,
        energy_threshold=capture.energy_threshold,
        no_speech_seconds=capture.no_speech_seconds,
        device=capture.input_device,
    )


def build_synthesis_engine(settings: AppSettings) -> KokoroSynthesisEngine | None:
    synthesis = settings.synthesis
    if synthesis.engine == "none":
        logger.warning("runtime.synthesis.disabled")
        return None
    from crm_voice.tts.kokoro import KokoroSynthesisEngine

    return KokoroSynthesisEngine(
        synthesis.kokoro_url,
        synthesis.kokoro_api_key,
        catalog=load_voice_catalog(synthesis.voice_catalog_path),
    )


def reload_voice_catalog(engine: KokoroSynthesisEngine, path: Path) -> None:
    load_voice_catalog.cache_clear()
    engine.reload_voices(load_voice_catalog(path))


def build_runtime(
    settings: AppSettings,
    *,
    recognition_engine: RecognitionEngine | None = None,
    synthesis_engine: SynthesisEngine | None = None,
    backend: BackendService | None = None,
    manual_input: ManualInputSource | None = None,
    bridge: StateBridge | None = None,
) -> VoiceRuntime:
    closers: list[Callable[[], Awaitable[None]]] = []
    voice_reloader: Callable[[], None] | None = None

    if recognition_engine is None:
        recognition_engine = build_recognition_engine(settings)
        if recognition_engine is not None:
            closers.append(recognition_engine.aclose)
    if synthesis_engine is None:
        synthesis_engine = build_synthesis_engine(settings)
        if synthesis_engine is not None:
            closers.append(synthesis_engine.aclose)
            voice_reloader = functools.partial(
                reload_voice_catalog, synthesis_engine, settings.synthesis.voice_catalog_path
            )
    if backend is None:
        client = CrmBackendClient(settings.backend)
        closers.append(client.aclose)
        backend = client
    if manual_input is None:
        manual_input = PendingManualInput()

    capture_settings = settings.capture
    capture_policies = CapturePolicies(
        language=capture_settings.language,
        fallback_languages=tuple(capture_settings.fallback_languages),
        timeout_seconds=capture_settings.timeout_seconds,
    )
    synthesis_policies = SynthesisPolicies(rate=settings.synthesis.rate)

    capture = SpeechCapture(recognition_engine, policies=capture_policies, manual_input=manual_input)
    synthesizer = ResponseSynthesizer(synthesis_engine, policies=synthesis_policies)
    orchestrator = SessionOrchestrator(
        capture=capture,
        synthesizer=synthesizer,
        processor=CommandProcessor(backend),
        classifier=CommandClassifier(),
        ui_bridge=bridge,
        policies=SessionPolicies(),
    )
    logger.info(
        "runtime.built",
        capture_engine=type(recognition_engine).__name__ if recognition_engine else None,
        synthesis_engine=type(synthesis_engine).__name__ if synthesis_engine else None,
    )
    return VoiceRuntime(orchestrator, manual_input, closers, voice_reloader=voice_reloader)


def build_orchestrator(settings: AppSettings, **overrides) -> SessionOrchestrator:
    return build_runtime(settings, **overrides).orchestrator


__all__ = [
    "VoiceRuntime",
    "build_orchestrator",
    "build_recognition_engine",
    "build_runtime",
    "build_synthesis_engine",
    "reload_voice_catalog",
]
