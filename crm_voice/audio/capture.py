from __future__ import annotations

import asyncio
import queue
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass

import numpy as np
import sounddevice as sd

from crm_voice.telemetry.logging import get_logger


@dataclass(frozen=True, slots=True)
class AudioFrame:
    ts: float
    pcm16le: bytes
    energy: float
    vad: bool


class MicrophoneStream:
    """Mono 16-bit microphone frames with an energy-based voice activity flag."""

    def __init__(
        self,
        samplerate: int = 16_000,
        frame_ms: int = 30,
        energy_threshold: float = 500.0,
        device: str | int | None = None,
    ) -> None:
        self.samplerate = samplerate
        self.frame_ms = frame_ms
        self.frame_samples = int(self.samplerate * self.frame_ms / 1000)
        self.energy_threshold = energy_threshold
        self._device = device
        self._queue: queue.Queue[bytes | None] = queue.Queue()
        self._stream: sd.InputStream | None = None
        self._logger = get_logger(__name__)

    @property
    def active(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        if self._stream:
            return

        def callback(indata, frames, time_info, status) -> None:  # type: ignore[override]
            if status:
                self._logger.warning("audio.capture.status", status=str(status))
            pcm = (indata.copy() * (2**15 - 1)).astype(np.int16).tobytes()
            self._queue.put_nowait(pcm)

        self._stream = sd.InputStream(
            samplerate=self.samplerate,
            channels=1,
            blocksize=self.frame_samples,
            dtype="float32",
            callback=callback,
            device=self._device,
        )
        self._stream.start()
        self._logger.info(
            "audio.capture.started",
            samplerate=self.samplerate,
            frame_ms=self.frame_ms,
            device=self._device,
        )

    def close(self) -> None:
        """Stop the device and end :meth:`frames`. Safe to call from any state."""
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.stop()
            stream.close()
            self._logger.info("audio.capture.stopped")
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[AudioFrame]:
        loop = asyncio.get_running_loop()
        while True:
            pcm = await loop.run_in_executor(None, self._queue.get)
            if pcm is None:
                break
            samples = np.frombuffer(pcm, dtype=np.int16)
            energy = float(np.abs(samples).mean()) if samples.size else 0.0
            yield AudioFrame(ts=time.time(), pcm16le=pcm, energy=energy, vad=energy > self.energy_threshold)


def probe_input_device(device: str | int | None = None, samplerate: int = 16_000) -> bool:
    """Open the input device and release it straight away. Blocking; run it in a thread."""
    logger = get_logger(__name__)
    try:
        sd.check_input_settings(device=device, channels=1, samplerate=samplerate, dtype="float32")
        with sd.InputStream(device=device, channels=1, samplerate=samplerate, dtype="float32"):
            pass
    except Exception as exc:
        logger.warning("audio.capture.probe_failed", device=device, error=str(exc))
        return False
    return True


__all__ = ["AudioFrame", "MicrophoneStream", "probe_input_device"]
