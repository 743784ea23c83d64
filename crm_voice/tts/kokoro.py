from __future__ import annotations

import asyncio
from collections.abc import Callable

import httpx

from crm_voice.audio.output import AudioPlayer
from crm_voice.telemetry.logging import get_logger
from crm_voice.tts.base import SynthesisEngine, SynthesisEvent, SynthesisListener, Utterance, Voice
from crm_voice.tts.voice_select import VoiceCatalog


class KokoroSynthesisEngine(SynthesisEngine):
    """Kokoro HTTP speech endpoint played through the local sound device."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        catalog: VoiceCatalog,
        player: AudioPlayer | None = None,
        model: str = "kokoro",
        default_voice: str = "af_heart",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._api_key = api_key
        self._catalog = catalog
        self._player = player or AudioPlayer()
        self._model = model
        self._default_voice = default_voice
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0), transport=transport)
        self._task: asyncio.Task[None] | None = None
        self._cancelled: set[asyncio.Task[None]] = set()
        self._voice_callbacks: list[Callable[[], None]] = []
        self._logger = get_logger(__name__)

    def is_available(self) -> bool:
        return bool(self._base_url)

    def voices(self) -> list[Voice]:
        return list(self._catalog.voices())

    def on_voices_changed(self, callback: Callable[[], None]) -> None:
        self._voice_callbacks.append(callback)

    def reload_voices(self, catalog: VoiceCatalog) -> None:
        self._catalog = catalog
        for callback in self._voice_callbacks:
            callback()

    @property
    def speaking(self) -> bool:
        return self._task is not None and not self._task.done()

    def speak(self, utterance: Utterance, listener: SynthesisListener) -> None:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run(utterance, listener))

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        self._player.stop()
        task.cancel()
        # Detached so `speaking` is false at once; aclose still waits for it.
        self._cancelled.add(task)
        task.add_done_callback(self._cancelled.discard)

    async def aclose(self) -> None:
        self.cancel()
        if self._cancelled:
            await asyncio.gather(*self._cancelled, return_exceptions=True)
        await self._client.aclose()

    def build_payload(self, utterance: Utterance) -> dict[str, object]:
        voice_id = utterance.voice.voice_id if utterance.voice and utterance.voice.voice_id else self._default_voice
        return {
            "model": self._model,
            "voice": voice_id,
            "input": utterance.text,
            "response_format": "wav",
            "speed": float(utterance.rate),
            "language": utterance.lang,
        }

    async def _run(self, utterance: Utterance, listener: SynthesisListener) -> None:
        listener(SynthesisEvent(kind="start"))
        try:
            audio = await self._fetch_audio(self.build_payload(utterance))
            await self._player.play_bytes(audio, volume=utterance.volume)
        except asyncio.CancelledError:
            listener(SynthesisEvent(kind="error", error="canceled"))
            raise
        except httpx.HTTPError as exc:
            self._logger.error("kokoro.tts.request_failed", error=str(exc))
            listener(SynthesisEvent(kind="error", error="network"))
            return
        except Exception as exc:
            self._logger.error("kokoro.tts.playback_failed", error=str(exc))
            listener(SynthesisEvent(kind="error", error="synthesis-failed"))
            return
        listener(SynthesisEvent(kind="end"))

    async def _fetch_audio(self, payload: dict[str, object], sanitized: bool = False) -> bytes:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        preview = str(payload.get("input", ""))
        self._logger.info(
            "kokoro.tts.request",
            voice=payload.get("voice"),
            language=payload.get("language"),
            chars=len(preview),
            preview=preview[:50],
        )
        try:
            async with self._client.stream("POST", self._base_url, headers=headers, json=payload) as resp:
                resp.raise_for_status()
                return b"".join([chunk async for chunk in resp.aiter_bytes()])
        except httpx.HTTPStatusError as exc:
            # Some Kokoro builds reject language tags they do not know; retry once without it.
            if exc.response.status_code == 400 and not sanitized and "language" in payload:
                self._logger.warning("kokoro.tts.fallback", reason="bad_request", language=payload.get("language"))
                stripped = {key: value for key, value in payload.items() if key != "language"}
                return await self._fetch_audio(stripped, sanitized=True)
            raise


__all__ = ["KokoroSynthesisEngine"]
