from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from crm_voice.errors import CaptureError
from crm_voice.lang.normalize import normalize_transcript
from crm_voice.orchestrator.events import RecognitionResult
from crm_voice.orchestrator.policies import CapturePolicies
from crm_voice.telemetry.logging import get_logger
from crm_voice.transcription.base import RecognitionEngine, RecognitionEvent, RecognitionRequest
from crm_voice.transcription.manual import ManualInputSource


@dataclass(eq=False)
class _CaptureAttempt:
    lang: str
    future: asyncio.Future[str]
    result: RecognitionResult = field(default_factory=RecognitionResult)
    closed: bool = False


@dataclass(eq=False)
class _ListenRun:
    stopped: asyncio.Event = field(default_factory=asyncio.Event)
    attempt: _CaptureAttempt | None = None


@dataclass(eq=False)
class _ManualRequest:
    aborted: bool = False


class SpeechCapture:
    """Obtains one finalized transcript per call from a :class:`RecognitionEngine`.

    Network failures are retried, unsupported languages walk the fallback chain and
    every attempt is bounded by a watchdog. The network retry budget is reset by
    each :meth:`start_listening` call and applies to the primary language only;
    fallback languages get a single attempt each.

    :meth:`stop_listening` releases the capture handle immediately: a stopped run
    finishes with ``aborted`` and never blocks the next :meth:`start_listening`.
    """

    def __init__(
        self,
        engine: RecognitionEngine | None,
        policies: CapturePolicies | None = None,
        manual_input: ManualInputSource | None = None,
        interim_listener: Callable[[str], None] | None = None,
    ) -> None:
        self._engine = engine
        self._policies = policies or CapturePolicies()
        self._manual_input = manual_input
        self._interim_listener = interim_listener
        self._run: _ListenRun | None = None
        self._manual_request: _ManualRequest | None = None
        self._retry_count = 0
        self._language = self._policies.language
        self.interim_transcript = ""
        self._logger = get_logger(__name__)

    def set_interim_listener(self, listener: Callable[[str], None] | None) -> None:
        self._interim_listener = listener

    def is_supported(self) -> bool:
        return self._engine is not None and self._engine.is_available()

    def is_listening(self) -> bool:
        return self._run is not None

    @property
    def has_manual_input(self) -> bool:
        return self._manual_input is not None

    @property
    def awaiting_manual_input(self) -> bool:
        return self._manual_request is not None

    @property
    def retry_count(self) -> int:
        return self._retry_count

    async def start_listening(self) -> str:
        if not self.is_supported():
            raise CaptureError("unsupported")
        if self._run is not None:
            raise CaptureError("already-active")

        run = _ListenRun()
        self._run = run
        self._retry_count = 0
        self._language = self._policies.language
        self.interim_transcript = ""
        try:
            return await self._listen_with_retry(run)
        finally:
            if self._run is run:
                self._run = None

    async def _listen_with_retry(self, run: _ListenRun) -> str:
        while True:
            try:
                return await self._run_attempt(run, self._policies.language, self._policies.timeout_seconds)
            except CaptureError as exc:
                if exc.retryable and self._retry_count < self._policies.max_network_retries:
                    self._retry_count += 1
                    self._logger.warning(
                        "capture.retry",
                        attempt=self._retry_count,
                        max_retries=self._policies.max_network_retries,
                    )
                    await self._retry_pause(run)
                    continue
                if exc.code == "language-unsupported":
                    return await self._try_fallback_languages(run)
                raise

    async def _retry_pause(self, run: _ListenRun) -> None:
        try:
            await asyncio.wait_for(run.stopped.wait(), timeout=self._policies.retry_delay_seconds)
        except asyncio.TimeoutError:
            pass
        self._ensure_not_stopped(run)

    async def _try_fallback_languages(self, run: _ListenRun) -> str:
        for lang in self._policies.fallback_languages:
            self._ensure_not_stopped(run)
            self._logger.info("capture.fallback.try", lang=lang)
            try:
                transcript = await self._run_attempt(run, lang, self._policies.fallback_timeout_seconds)
            except CaptureError as exc:
                if exc.code == "aborted":
                    raise
                self._logger.info("capture.fallback.failed", lang=lang, code=exc.code)
                continue
            self._language = lang
            return transcript
        raise CaptureError("language-unsupported")

    @staticmethod
    def _ensure_not_stopped(run: _ListenRun) -> None:
        if run.stopped.is_set():
            raise CaptureError("aborted")

    async def _run_attempt(self, run: _ListenRun, lang: str, timeout: float) -> str:
        assert self._engine is not None
        self._ensure_not_stopped(run)
        attempt = _CaptureAttempt(lang=lang, future=asyncio.get_running_loop().create_future())
        run.attempt = attempt
        request = RecognitionRequest(
            lang=lang,
            interim_results=True,
            continuous=False,
            max_alternatives=self._policies.max_alternatives,
        )
        try:
            self._engine.start(request, lambda event: self._on_event(attempt, event))
        except Exception as exc:
            attempt.closed = True
            self._logger.error("capture.start.failed", lang=lang, error=str(exc))
            raise CaptureError("audio-capture", message="خطا در شروع تشخیص گفتار", detail=str(exc)) from exc

        try:
            return await asyncio.wait_for(attempt.future, timeout=timeout)
        except asyncio.TimeoutError:
            self._logger.warning("capture.timeout", lang=lang, timeout=timeout)
            attempt.closed = True
            self._engine.stop()
            raise CaptureError("timeout") from None
        finally:
            attempt.closed = True
            if run.attempt is attempt:
                run.attempt = None

    def _on_event(self, attempt: _CaptureAttempt, event: RecognitionEvent) -> None:
        if attempt.closed or attempt.future.done():
            self._logger.debug("capture.event.stale", kind=event.kind, lang=attempt.lang)
            return

        if event.kind == "start":
            self._logger.info("capture.started", lang=attempt.lang)
        elif event.kind == "result":
            final = ""
            interim = ""
            for item in event.results[event.result_index :]:
                if item.is_final:
                    final += item.transcript
                else:
                    interim += item.transcript
            attempt.result.final_transcript = normalize_transcript(final)
            attempt.result.interim_transcript = normalize_transcript(interim)
            if attempt.result.interim_transcript:
                self.interim_transcript = attempt.result.interim_transcript
                self._logger.debug("capture.interim", text=attempt.result.interim_transcript)
                if self._interim_listener is not None:
                    self._interim_listener(attempt.result.interim_transcript)
            if attempt.result.final_transcript:
                self._logger.info("capture.final", lang=attempt.lang, chars=len(attempt.result.final_transcript))
                attempt.future.set_result(attempt.result.final_transcript)
        elif event.kind == "error":
            failure = CaptureError.from_platform(event.error)
            self._logger.warning("capture.error", lang=attempt.lang, platform_code=event.error, code=failure.code)
            attempt.future.set_exception(failure)
        elif event.kind == "end":
            # Ended without a final transcript or an error.
            self._logger.info("capture.ended_without_result", lang=attempt.lang)
            attempt.future.set_exception(CaptureError("no-speech"))

    def stop_listening(self) -> None:
        """Abort the in-flight run and any pending manual-input request."""
        run, self._run = self._run, None
        if run is not None:
            run.stopped.set()
            attempt, run.attempt = run.attempt, None
            if attempt is not None and not attempt.future.done():
                attempt.closed = True
                attempt.future.set_exception(CaptureError("aborted"))
            if self._engine is not None:
                self._engine.stop()
            self._logger.info("capture.stopped")

        manual, self._manual_request = self._manual_request, None
        if manual is not None:
            manual.aborted = True
            assert self._manual_input is not None
            self._manual_input.cancel()
            self._logger.info("capture.manual_input.aborted")

    async def test_microphone(self) -> bool:
        if self._engine is None:
            return False
        try:
            available = bool(await self._engine.probe_microphone())
        except Exception as exc:
            self._logger.error("capture.microphone.unavailable", error=str(exc))
            return False
        self._logger.info("capture.microphone.probed", available=available)
        return available

    async def get_manual_input(self) -> str:
        if self._manual_input is None:
            raise CaptureError("unsupported")
        if self._manual_request is not None:
            raise CaptureError("already-active")

        request = _ManualRequest()
        self._manual_request = request
        try:
            text = await self._manual_input.request(self._policies.manual_prompt)
        finally:
            if self._manual_request is request:
                self._manual_request = None
        if request.aborted:
            raise CaptureError("aborted")
        if text is None:
            raise CaptureError("manual-input-cancelled")
        if not text.strip():
            raise CaptureError("manual-input-empty")
        return normalize_transcript(text)

    def get_support_info(self) -> dict[str, Any]:
        return {
            "is_supported": self.is_supported(),
            "current_language": self._language,
            "alternative_languages": [self._policies.language, *self._policies.fallback_languages],
        }


__all__ = ["SpeechCapture"]
