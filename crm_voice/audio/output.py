from __future__ import annotations

import asyncio
import io

import numpy as np
import sounddevice as sd
import soundfile as sf

from crm_voice.telemetry.logging import get_logger


class AudioPlayer:
    """Plays decoded audio one clip at a time; :meth:`stop` interrupts the current clip."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._playing = False
        self._logger = get_logger(__name__)

    @property
    def playing(self) -> bool:
        return self._playing

    async def play_bytes(self, audio: bytes, volume: float = 1.0) -> float:
        if not audio:
            self._logger.warning("audio.output.empty_bytes")
            return 0.0
        with io.BytesIO(audio) as buffer:
            data, samplerate = sf.read(buffer, dtype="float32")
        return await self.play_array(np.asarray(data), int(samplerate), volume=volume)

    async def play_array(self, data: np.ndarray, samplerate: int, volume: float = 1.0) -> float:
        if samplerate <= 0 or data.size == 0:
            self._logger.warning("audio.output.invalid_payload", samplerate=samplerate, frames=int(data.size))
            return 0.0

        scaled = np.clip(data * float(max(0.0, min(volume, 1.0))), -1.0, 1.0)
        duration = scaled.shape[0] / float(samplerate)

        def _play() -> None:
            try:
                sd.play(scaled, samplerate=samplerate, blocking=False)
                sd.wait()
            finally:
                sd.stop()

        async with self._lock:
            self._playing = True
            try:
                await asyncio.to_thread(_play)
            finally:
                self._playing = False
        return duration

    def stop(self) -> None:
        if not self._playing:
            return
        sd.stop()
        self._logger.info("audio.output.stopped")


__all__ = ["AudioPlayer"]
