from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, Protocol

from crm_voice.errors import (
    CaptureError,
    SessionBusyError,
    SessionCancelledError,
    StateTransitionError,
    SynthesisError,
    VoiceError,
)
from crm_voice.intent.classifier import CommandClassifier
from crm_voice.intent.processor import CommandProcessor
from crm_voice.lang.normalize import normalize_transcript
from crm_voice.orchestrator.events import AIResponse, InteractionResult, Session, State
from crm_voice.orchestrator.policies import SessionPolicies
from crm_voice.telemetry.logging import bind_session, get_logger
from crm_voice.telemetry.tracing import get_tracer
from crm_voice.transcription.capture import SpeechCapture
from crm_voice.tts.synthesizer import ResponseSynthesizer


class StateBridge(Protocol):
    async def publish_state(self, state: State, payload: dict | None = None) -> None: ...


class NullStateBridge:
    async def publish_state(self, state: State, payload: dict | None = None) -> None:
        return None


TRANSITIONS: dict[State, frozenset[State]] = {
    "IDLE": frozenset({"LISTENING", "CLASSIFYING"}),
    "LISTENING": frozenset({"CLASSIFYING", "FAILED"}),
    "CLASSIFYING": frozenset({"PROCESSING", "FAILED"}),
    "PROCESSING": frozenset({"SPEAKING", "FAILED"}),
    "SPEAKING": frozenset({"IDLE", "FAILED"}),
    "FAILED": frozenset({"IDLE"}),
}


class SessionOrchestrator:
    """Runs one listen → classify → process → speak round trip at a time.

    A second call while a session is alive is rejected with
    :class:`SessionBusyError` before anything is awaited; it never queues.
    Failures are turned into an :class:`InteractionResult` with an error
    response instead of propagating to the caller.
    """

    def __init__(
        self,
        capture: SpeechCapture,
        synthesizer: ResponseSynthesizer,
        processor: CommandProcessor,
        classifier: CommandClassifier | None = None,
        ui_bridge: StateBridge | None = None,
        policies: SessionPolicies | None = None,
    ) -> None:
        self._capture = capture
        self._synthesizer = synthesizer
        self._processor = processor
        self._classifier = classifier or CommandClassifier()
        self._ui = ui_bridge or NullStateBridge()
        self._policies = policies or SessionPolicies()
        self._state: State = "IDLE"
        self._session: Session | None = None
        self._background: set[asyncio.Task[None]] = set()
        self._logger = get_logger(__name__)
        self._tracer = get_tracer(__name__)
        self._capture.set_interim_listener(self._on_interim)

    @property
    def state(self) -> State:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def is_processing(self) -> bool:
        return self._session is not None

    async def startup(self) -> None:
        self._synthesizer.refresh_voices()
        self._logger.info(
            "orchestrator.ready",
            speech_recognition=self._capture.is_supported(),
            text_to_speech=self._synthesizer.is_supported(),
            voice_info=self._synthesizer.get_voice_info(),
        )

    async def shutdown(self) -> None:
        await self.stop_audio_processing()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._logger.info("orchestrator.shutdown")

    async def handle_voice_interaction(self) -> InteractionResult:
        session = self._open_session()
        with bind_session(session.id), self._tracer.start_as_current_span("voice.session") as span:
            span.set_attribute("session.mode", "voice")
            try:
                await self._transition(session, "LISTENING")
                transcript = await self._listen(session)
                self._logger.info("session.transcript", chars=len(transcript))
                return await self._complete(session, transcript)
            except Exception as exc:
                span.set_attribute("session.failed", True)
                return await self._fail(session, exc)
            finally:
                await self._close_session(session)

    async def handle_text_interaction(self, text: str) -> InteractionResult:
        """Same round trip as :meth:`handle_voice_interaction` with typed text instead of capture."""
        session = self._open_session()
        with bind_session(session.id), self._tracer.start_as_current_span("voice.session") as span:
            span.set_attribute("session.mode", "text")
            try:
                transcript = normalize_transcript(text)
                if not transcript:
                    await self._transition(session, "CLASSIFYING")
                    raise CaptureError("manual-input-empty")
                return await self._complete(session, transcript)
            except Exception as exc:
                span.set_attribute("session.failed", True)
                return await self._fail(session, exc)
            finally:
                await self._close_session(session)

    async def stop_audio_processing(self) -> None:
        """Cancel capture and playback and force the machine back to IDLE. Safe to repeat."""
        self._capture.stop_listening()
        self._synthesizer.stop_gracefully()
        session, self._session = self._session, None
        if session is not None:
            session.busy = False
        previous, self._state = self._state, "IDLE"
        if session is None and previous == "IDLE":
            return
        self._logger.info("session.stopped", session_id=session.id if session else None, previous_state=previous)
        await self._ui.publish_state("IDLE", {"session_id": session.id if session else None, "stopped": True})

    def get_system_status(self) -> dict[str, Any]:
        return {
            "is_processing": self.is_processing,
            "state": self._state,
            "speech_recognition_supported": self._capture.is_supported(),
            "tts_supported": self._synthesizer.is_supported(),
            "current_session": self._session.id if self._session else None,
            "capture": self._capture.get_support_info(),
            "voice_info": self._synthesizer.get_voice_info(),
        }

    async def test_system(self) -> dict[str, bool]:
        results = {
            "speech_recognition": self._capture.is_supported(),
            "text_to_speech": self._synthesizer.is_supported(),
            "microphone": await self._capture.test_microphone(),
        }
        results["overall"] = all(results.values())
        self._logger.info("orchestrator.self_test", **results)
        return results

    async def test_voice(self) -> bool:
        if self._session is not None:
            raise SessionBusyError()
        try:
            await self._synthesizer.test_voice()
        except SynthesisError as exc:
            self._logger.warning("orchestrator.voice_test.failed", code=exc.code)
            return False
        return True

    def _open_session(self) -> Session:
        if self._session is not None:
            self._logger.warning("session.rejected_busy", active_session=self._session.id)
            raise SessionBusyError()
        session = Session.open()
        self._session = session
        self._logger.info("session.opened", session_id=session.id)
        return session

    def _ensure_owner(self, session: Session) -> None:
        if self._session is not session:
            raise SessionCancelledError()

    async def _transition(self, session: Session, state: State, payload: dict[str, Any] | None = None) -> None:
        self._ensure_owner(session)
        if state not in TRANSITIONS[self._state]:
            raise StateTransitionError(self._state, state)
        self._state = state
        self._logger.debug("state.transition", state=state)
        await self._ui.publish_state(state, {"session_id": session.id, **(payload or {})})

    async def _listen(self, session: Session) -> str:
        capture = self._capture
        manual_ok = self._policies.manual_fallback and capture.has_manual_input

        if not capture.is_supported():
            if not manual_ok:
                raise CaptureError("unsupported")
            self._logger.warning("session.capture.unsupported_manual_fallback")
            return await capture.get_manual_input()

        if self._policies.probe_microphone:
            microphone_ok = await capture.test_microphone()
            self._ensure_owner(session)
            if not microphone_ok:
                if not manual_ok:
                    raise CaptureError("audio-capture")
                self._logger.warning("session.capture.microphone_manual_fallback")
                return await capture.get_manual_input()

        try:
            return await capture.start_listening()
        except CaptureError as exc:
            if manual_ok and exc.code in self._policies.manual_fallback_codes and self._session is session:
                self._logger.warning("session.capture.manual_fallback", code=exc.code)
                return await capture.get_manual_input()
            raise

    async def _complete(self, session: Session, transcript: str) -> InteractionResult:
        await self._transition(session, "CLASSIFYING", {"transcript": transcript})
        command = self._classifier.analyze(transcript)
        self._logger.info(
            "session.classified",
            type=command.type,
            confidence=command.confidence,
            employee_name=command.employee_name,
        )

        await self._transition(session, "PROCESSING", {"command": command.type, "confidence": command.confidence})
        with self._tracer.start_as_current_span("voice.process") as span:
            span.set_attribute("command.type", command.type)
            response = await self._processor.process(command)
            span.set_attribute("response.type", response.type)

        await self._transition(session, "SPEAKING", {"text": response.text, "response_type": response.type})
        with self._tracer.start_as_current_span("voice.speak"):
            await self._synthesizer.speak(response.text)
        self._ensure_owner(session)

        self._logger.info("session.completed", response_type=response.type)
        return InteractionResult(transcript=transcript, response=response, success=True)

    async def _fail(self, session: Session, exc: Exception) -> InteractionResult:
        cancelled = isinstance(exc, SessionCancelledError) or (isinstance(exc, CaptureError) and exc.code == "aborted")
        if cancelled or self._session is not session:
            self._logger.info("session.cancelled", reason=type(exc).__name__)
            return InteractionResult(
                transcript="",
                response=AIResponse(text=SessionCancelledError().message, type="error"),
                success=False,
            )

        if isinstance(exc, VoiceError):
            message = exc.message
            self._logger.warning("session.failed", error_type=type(exc).__name__, code=exc.code)
        else:
            message = "خطای نامشخص"
            self._logger.exception("session.failed.unexpected", error=str(exc))
        response = AIResponse(text=f"{self._policies.error_prefix}{message}", type="error")

        if "FAILED" in TRANSITIONS[self._state]:
            await self._transition(session, "FAILED", {"error": getattr(exc, "code", type(exc).__name__)})

        # A failed synthesis is not announced through synthesis again.
        if not isinstance(exc, SynthesisError) and self._session is session:
            try:
                await self._synthesizer.speak(response.text)
            except Exception as tts_exc:
                self._logger.error("session.error_speech_failed", error=str(tts_exc))

        return InteractionResult(transcript="", response=response, success=False)

    async def _close_session(self, session: Session) -> None:
        session.busy = False
        if self._session is not session:
            return
        self._session = None
        self._state = "IDLE"
        self._logger.info("session.closed")
        await self._ui.publish_state("IDLE", {"session_id": session.id})

    def _on_interim(self, text: str) -> None:
        session = self._session
        if session is None:
            return
        self._spawn(self._ui.publish_state("LISTENING", {"session_id": session.id, "interim": text}))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


__all__ = ["NullStateBridge", "SessionOrchestrator", "StateBridge", "TRANSITIONS"]
