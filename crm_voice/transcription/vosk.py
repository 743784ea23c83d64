from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping
from dataclasses import dataclass, field

from vosk import KaldiRecognizer, Model, SetLogLevel  # type: ignore[import]

from crm_voice.audio.capture import MicrophoneStream, probe_input_device
from crm_voice.telemetry.logging import get_logger
from crm_voice.transcription.base import (
    RecognitionAlternative,
    RecognitionEngine,
    RecognitionEvent,
    RecognitionItem,
    RecognitionListener,
    RecognitionRequest,
)


@dataclass(eq=False)
class _Run:
    request: RecognitionRequest
    listener: RecognitionListener
    microphone: MicrophoneStream | None = None
    stopping: bool = False
    aborted: bool = False
    task: asyncio.Task[None] | None = field(default=None, repr=False)

    def stop(self) -> None:
        self.stopping = True
        if self.microphone is not None:
            self.microphone.close()


class VoskRecognitionEngine(RecognitionEngine):
    """Offline recognition with one Vosk model per language tag.

    ``model_paths`` maps tags such as ``fa-IR`` or ``en`` to model directories; a
    request for ``fa`` matches a ``fa-IR`` model and vice versa. Models are loaded
    on first use and kept for the life of the engine.
    """

    def __init__(
        self,
        model_paths: Mapping[str, str],
        sample_rate: int = 16_000,
        frame_ms: int = 30,
        energy_threshold: float = 500.0,
        no_speech_seconds: float = 8.0,
        end_silence_seconds: float = 1.2,
        device: str | int | None = None,
    ) -> None:
        SetLogLevel(-1)
        self._model_paths = {lang.lower(): path for lang, path in model_paths.items() if path}
        self._models: dict[str, Model] = {}
        self._sample_rate = sample_rate
        self._frame_ms = frame_ms
        self._energy_threshold = energy_threshold
        self._no_speech_seconds = no_speech_seconds
        self._end_silence_seconds = end_silence_seconds
        self._device = device
        self._run: _Run | None = None
        self._logger = get_logger(__name__)

    def is_available(self) -> bool:
        return bool(self._model_paths)

    def languages(self) -> list[str]:
        return sorted(self._model_paths)

    def _resolve_model_path(self, lang: str) -> str | None:
        tag = lang.lower()
        if tag in self._model_paths:
            return self._model_paths[tag]
        family = tag.split("-")[0]
        for known, path in self._model_paths.items():
            if known.split("-")[0] == family:
                return path
        return None

    def _model(self, path: str) -> Model:
        model = self._models.get(path)
        if model is None:
            model = Model(path)
            self._models[path] = model
            self._logger.info("vosk.model.loaded", path=path)
        return model

    def start(self, request: RecognitionRequest, listener: RecognitionListener) -> None:
        # A previous run that is still draining is abandoned; its late events go to its own listener.
        self.abort()
        run = _Run(request=request, listener=listener)
        run.task = asyncio.get_running_loop().create_task(self._execute(run))
        self._run = run

    def stop(self) -> None:
        if self._run is not None:
            self._run.stop()

    def abort(self) -> None:
        if self._run is not None:
            self._run.aborted = True
            self._run.stop()

    async def probe_microphone(self) -> bool:
        return await asyncio.to_thread(probe_input_device, self._device, self._sample_rate)

    async def aclose(self) -> None:
        run, self._run = self._run, None
        if run is None:
            return
        run.aborted = True
        run.stop()
        if run.task is not None:
            await asyncio.gather(run.task, return_exceptions=True)

    async def _execute(self, run: _Run) -> None:
        listener = run.listener
        lang = run.request.lang
        path = self._resolve_model_path(lang)
        if path is None:
            self._logger.warning("vosk.language.unsupported", lang=lang, available=self.languages())
            listener(RecognitionEvent(kind="error", error="language-not-supported"))
            listener(RecognitionEvent(kind="end"))
            return

        try:
            recognizer = KaldiRecognizer(self._model(path), self._sample_rate)
            recognizer.SetMaxAlternatives(run.request.max_alternatives)
        except Exception as exc:
            self._logger.error("vosk.model.failed", lang=lang, path=path, error=str(exc))
            listener(RecognitionEvent(kind="error", error="language-not-supported"))
            listener(RecognitionEvent(kind="end"))
            return

        microphone = MicrophoneStream(
            samplerate=self._sample_rate,
            frame_ms=self._frame_ms,
            energy_threshold=self._energy_threshold,
            device=self._device,
        )
        try:
            microphone.start()
        except Exception as exc:
            self._logger.error("vosk.microphone.failed", error=str(exc))
            listener(RecognitionEvent(kind="error", error="audio-capture"))
            listener(RecognitionEvent(kind="end"))
            return

        run.microphone = microphone
        if run.stopping:
            microphone.close()
        listener(RecognitionEvent(kind="start"))
        try:
            await self._recognize(run, recognizer, microphone)
        finally:
            microphone.close()
            if self._run is run:
                self._run = None
            listener(RecognitionEvent(kind="end"))

    async def _recognize(self, run: _Run, recognizer: KaldiRecognizer, microphone: MicrophoneStream) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        last_voice = started
        heard_speech = False
        last_partial = ""

        async for frame in microphone.frames():
            if run.aborted:
                return
            now = loop.time()
            if frame.vad:
                heard_speech = True
                last_voice = now

            if recognizer.AcceptWaveform(frame.pcm16le):
                alternatives = self._alternatives(recognizer.Result())
                if alternatives:
                    run.listener(self._result(alternatives, is_final=True))
                    return
            elif run.request.interim_results:
                partial = self._partial(recognizer.PartialResult())
                if partial and partial != last_partial:
                    last_partial = partial
                    run.listener(self._result((RecognitionAlternative(transcript=partial),), is_final=False))

            if run.stopping:
                break
            if not heard_speech and now - started > self._no_speech_seconds:
                run.listener(RecognitionEvent(kind="error", error="no-speech"))
                return
            if heard_speech and now - last_voice > self._end_silence_seconds:
                break

        if run.aborted:
            return
        alternatives = self._alternatives(recognizer.FinalResult())
        if alternatives:
            run.listener(self._result(alternatives, is_final=True))

    @staticmethod
    def _result(alternatives: tuple[RecognitionAlternative, ...], is_final: bool) -> RecognitionEvent:
        return RecognitionEvent(kind="result", results=(RecognitionItem(alternatives=alternatives, is_final=is_final),))

    def _alternatives(self, payload: str) -> tuple[RecognitionAlternative, ...]:
        data = self._parse(payload)
        if "alternatives" in data:
            return tuple(
                RecognitionAlternative(transcript=text, confidence=float(entry.get("confidence", 0.0)))
                for entry in data["alternatives"]
                if (text := str(entry.get("text") or "").strip())
            )
        text = str(data.get("text") or "").strip()
        return (RecognitionAlternative(transcript=text),) if text else ()

    def _partial(self, payload: str) -> str:
        return str(self._parse(payload).get("partial") or "").strip()

    def _parse(self, payload: str) -> dict:
        if not payload:
            return {}
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            self._logger.debug("vosk.payload.unparsable", payload=payload[:120])
            return {}
        return data if isinstance(data, dict) else {}


__all__ = ["VoskRecognitionEngine"]
